"""portops_sync.batch_writer

Sequential chunked commits of planned trip writes.

Each chunk (at most MAX_BATCH_SIZE operations) is one atomic unit and is
committed before the next chunk starts.  A failed chunk aborts the write:
earlier chunks stay committed, later ones are never attempted, and there is
no compensating rollback.

Resumability: a WriteCheckpoint keeps the planned operation list and the
number of chunks committed so far.  A resumed write replays the saved plan
starting at the first uncommitted chunk instead of re-planning.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from portops_sync.config import MAX_BATCH_SIZE
from portops_sync.shared import BatchCommitError
from portops_sync.store import DocumentStore, WriteOp

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

@dataclass
class WriteProgress:
    chunks_total: int = 0
    chunks_committed: int = 0
    chunks_skipped: int = 0  # already committed by an earlier, resumed run
    ops_committed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks_total": self.chunks_total,
            "chunks_committed": self.chunks_committed,
            "chunks_skipped": self.chunks_skipped,
            "ops_committed": self.ops_committed,
        }


# ---------------------------------------------------------------------------
# Checkpoint
# ---------------------------------------------------------------------------

class WriteCheckpoint:
    """Persist the planned ops and the committed-chunk cursor to a JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self.run_id: str | None = None
        self.batch_size: int = MAX_BATCH_SIZE
        self.ops: list[WriteOp] = []
        self.chunks_committed: int = 0

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> bool:
        """Load a saved plan.  Returns False when there is nothing to resume."""
        if not self._path.exists():
            return False
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self.run_id = data.get("run_id")
            self.batch_size = int(data.get("batch_size", MAX_BATCH_SIZE))
            self.ops = [WriteOp.from_dict(raw) for raw in data.get("ops", [])]
            self.chunks_committed = int(data.get("chunks_committed", 0))
        except Exception as exc:  # noqa: BLE001
            log.warning("Checkpoint load failed (%s); starting fresh.", exc)
            self.ops = []
            self.chunks_committed = 0
            return False
        return True

    def start(self, run_id: str, ops: list[WriteOp], batch_size: int) -> None:
        """Save a fresh plan.  Raises TypeError if any op carries non-JSON data."""
        self.run_id = run_id
        self.ops = list(ops)
        self.batch_size = batch_size
        self.chunks_committed = 0
        self._save()

    def mark_committed(self, chunks_committed: int) -> None:
        self.chunks_committed = chunks_committed
        self._save()

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(
                {
                    "run_id": self.run_id,
                    "batch_size": self.batch_size,
                    "chunks_committed": self.chunks_committed,
                    "ops": [op.to_dict() for op in self.ops],
                },
                indent=2,
            ),
            encoding="utf-8",
        )


# ---------------------------------------------------------------------------
# Chunking + commit loop
# ---------------------------------------------------------------------------

def chunked(ops: list[WriteOp], size: int) -> list[list[WriteOp]]:
    if size < 1 or size > MAX_BATCH_SIZE:
        raise ValueError(f"batch size {size} must be in [1, {MAX_BATCH_SIZE}]")
    return [ops[i:i + size] for i in range(0, len(ops), size)]


def write_batches(
    store: DocumentStore,
    collection: str,
    ops: list[WriteOp],
    batch_size: int = MAX_BATCH_SIZE,
    checkpoint: WriteCheckpoint | None = None,
    start_chunk: int = 0,
) -> WriteProgress:
    """Commit ops chunk by chunk, starting at ``start_chunk``.

    Raises BatchCommitError on the first failed chunk.  The checkpoint (if
    any) is advanced after every successful commit and cleared once all
    chunks are committed.
    """
    chunks = chunked(ops, batch_size)
    progress = WriteProgress(chunks_total=len(chunks), chunks_skipped=start_chunk)
    for idx in range(start_chunk):
        progress.ops_committed += len(chunks[idx]) if idx < len(chunks) else 0

    for idx in range(start_chunk, len(chunks)):
        chunk = chunks[idx]
        try:
            store.commit_chunk(collection, chunk)
        except Exception as exc:
            log.error("Chunk %d/%d failed: %s", idx + 1, len(chunks), exc)
            raise BatchCommitError(idx, progress.ops_committed, exc) from exc
        progress.chunks_committed += 1
        progress.ops_committed += len(chunk)
        if checkpoint is not None:
            checkpoint.mark_committed(idx + 1)
        log.info("Committed batch %d/%d (%d ops)", idx + 1, len(chunks), len(chunk))

    if checkpoint is not None:
        checkpoint.clear()
    return progress
