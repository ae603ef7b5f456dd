"""portops_sync.shared

Shared utilities used by both the reconcile and analyze modes.
Includes the error hierarchy and JSON run-report writing.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SyncError(Exception):
    """Base class for failures that abort a reconcile or analyze run."""


class LoadError(SyncError):
    """Raised when a bulk read of charges or trips fails; nothing was written."""


class DocumentNotFoundError(SyncError):
    """Raised when an update targets a trip document that no longer exists."""


class BatchCommitError(SyncError):
    """Raised when a chunk commit fails.

    Chunks before ``chunk_index`` stay committed; the failed chunk was
    rolled back and later chunks were never attempted.
    """

    def __init__(self, chunk_index: int, ops_committed: int, cause: BaseException) -> None:
        self.chunk_index = chunk_index
        self.ops_committed = ops_committed
        self.cause = cause
        super().__init__(
            f"chunk {chunk_index} failed after {ops_committed} committed ops: {cause}"
        )


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    params: dict[str, Any],
    counters: SupportsToDict,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **params,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
