"""portops_sync.config

YAML run configuration for the reconcile and analyze modes.

Usage:
    from pathlib import Path
    from portops_sync.config import load_config

    cfg = load_config(Path("config/reconcile.yml"))
    cfg = cfg.with_overrides(batch_size=200)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_BATCH_SIZE = 500  # store-imposed ceiling on operations per atomic commit

ORPHAN_POLICY_SKIP_MIGRATED = "skip_migrated"
ORPHAN_POLICY_AT_LEAST_ONCE = "at_least_once"
VALID_ORPHAN_POLICIES = (ORPHAN_POLICY_SKIP_MIGRATED, ORPHAN_POLICY_AT_LEAST_ONCE)

KNOWN_YAML_KEYS = frozenset({
    "charge_collection",
    "trip_collection",
    "batch_size",
    "orphan_policy",
    "sample_size",
    "checkpoint_path",
    "report_dir",
})

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "reconcile.yml"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a YAML config file fails schema validation."""


# ---------------------------------------------------------------------------
# SyncConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyncConfig:
    charge_collection: str = "charge"
    trip_collection: str = "trip"
    batch_size: int = MAX_BATCH_SIZE
    orphan_policy: str = ORPHAN_POLICY_SKIP_MIGRATED
    sample_size: int = 20
    checkpoint_path: Path = Path("./artifacts/checkpoints/reconcile.json")
    report_dir: Path = Path("./artifacts/reports")

    def with_overrides(self, **overrides: Any) -> SyncConfig:
        """Return a copy with non-None overrides applied and re-validated."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        data = dataclasses.asdict(self)
        data.update(changes)
        validate_config(data)
        return _from_mapping(data)


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(yaml_path: Path | None = None) -> SyncConfig:
    """Load, validate, and return a SyncConfig.

    A missing default file yields the built-in defaults; an explicit path
    that does not exist raises FileNotFoundError.
    """
    if yaml_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return SyncConfig()
        yaml_path = DEFAULT_CONFIG_PATH
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    validate_config(data)
    return _from_mapping(data)


def validate_config(data: Any) -> None:
    """Raise ConfigValidationError if data does not match the schema."""
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    unknown = set(data.keys()) - KNOWN_YAML_KEYS
    if unknown:
        raise ConfigValidationError(f"Unknown config keys: {sorted(unknown)}")

    for key in ("charge_collection", "trip_collection"):
        if key in data and (not isinstance(data[key], str) or not data[key].strip()):
            raise ConfigValidationError(f"'{key}' must be a non-empty string.")

    for key in ("checkpoint_path", "report_dir"):
        if key in data:
            value = data[key]
            if not isinstance(value, (str, Path)) or not str(value).strip():
                raise ConfigValidationError(f"'{key}' must be a non-empty path string.")

    if "batch_size" in data:
        size = data["batch_size"]
        if isinstance(size, bool) or not isinstance(size, int):
            raise ConfigValidationError(f"'batch_size' value '{size}' is not an integer.")
        if not (1 <= size <= MAX_BATCH_SIZE):
            raise ConfigValidationError(
                f"'batch_size' value {size} must be in [1, {MAX_BATCH_SIZE}]."
            )

    if "sample_size" in data:
        sample = data["sample_size"]
        if isinstance(sample, bool) or not isinstance(sample, int) or sample < 0:
            raise ConfigValidationError(f"'sample_size' value '{sample}' must be an integer >= 0.")

    policy = data.get("orphan_policy", ORPHAN_POLICY_SKIP_MIGRATED)
    if policy not in VALID_ORPHAN_POLICIES:
        raise ConfigValidationError(
            f"Invalid orphan_policy '{policy}'. Must be one of {list(VALID_ORPHAN_POLICIES)}."
        )


def _from_mapping(data: dict[str, Any]) -> SyncConfig:
    defaults = SyncConfig()
    return SyncConfig(
        charge_collection=str(data.get("charge_collection", defaults.charge_collection)),
        trip_collection=str(data.get("trip_collection", defaults.trip_collection)),
        batch_size=int(data.get("batch_size", defaults.batch_size)),
        orphan_policy=str(data.get("orphan_policy", defaults.orphan_policy)),
        sample_size=int(data.get("sample_size", defaults.sample_size)),
        checkpoint_path=Path(data.get("checkpoint_path", defaults.checkpoint_path)),
        report_dir=Path(data.get("report_dir", defaults.report_dir)),
    )
