"""portops_sync.reconcile

Charge → trip reconciliation pipeline (--mode reconcile).

For every charge, find the trip it corresponds to (see matching.py) and
plan one of:
  - nothing         : under the skip_migrated orphan policy, an earlier run
                      already created a trip for this charge ("already
                      migrated", checked before matching); or the matched
                      trip is already confirmed with a ship name
                      ("already synced");
  - update          : confirm the matched trip and copy ship name + GT and
                      the charge creator as confirmer;
  - create          : the charge matched nothing: create a standalone,
                      already-confirmed trip tagged source='migration';
  - diagnostic orphan: the charge has no parseable boarding time; it is
                      reported and never written.

Planned operations are then committed in chunks (batch_writer.py).

Idempotency:
  - Updates are skipped once the trip is confirmed and carries a ship name.
  - Under orphan_policy='skip_migrated' a charge with a trip whose
    migratedFromChargeId == charge.id is neither matched nor re-created, so
    it never confirms a second trip.  orphan_policy='at_least_once' keeps
    the legacy behaviour and may duplicate migrated trips on re-runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from portops_sync.batch_writer import WriteCheckpoint, WriteProgress, write_batches
from portops_sync.config import ORPHAN_POLICY_SKIP_MIGRATED, SyncConfig
from portops_sync.matching import TIER_SHIP_DATE, TIER_VISIT, match_charge
from portops_sync.normalize import document_value, is_known_trip_type, to_iso
from portops_sync.records import Charge, Trip
from portops_sync.store import (
    OP_CREATE,
    OP_UPDATE,
    DocumentStore,
    WriteOp,
    load_snapshot,
    new_document_id,
)
from portops_sync.trip_index import TripIndex, build_trip_index

log = logging.getLogger(__name__)

MIGRATION_SOURCE = "migration"
MIGRATION_SHIP_ID = "legacy_migration"
MIGRATION_RECORDED_BY = "system_migration"
NO_BOARDING_REASON = "No boarding time"


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class ReconcileCounters:
    total_charges: int = 0
    trips_updated: int = 0
    trips_created: int = 0
    already_synced: int = 0
    already_migrated: int = 0  # subset of already_synced
    by_visit_reference: int = 0
    by_ship_and_boarding: int = 0
    orphans: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    resumed_from_run_id: str | None = None
    write: WriteProgress = field(default_factory=WriteProgress)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_charges": self.total_charges,
            "trips_updated": self.trips_updated,
            "trips_created": self.trips_created,
            "already_synced": self.already_synced,
            "already_migrated": self.already_migrated,
            "by_visit_reference": self.by_visit_reference,
            "by_ship_and_boarding": self.by_ship_and_boarding,
            "orphans": len(self.orphans),
            "resumed_from_run_id": self.resumed_from_run_id,
            "write": self.write.to_dict(),
            "warnings": self.warnings[:50],
        }

    def to_result(self, dry_run: bool = False) -> dict[str, Any]:
        """Response shape of the Reconcile procedure."""
        if dry_run:
            message = (
                f"Dry run. Would update {self.trips_updated}, "
                f"create {self.trips_created} new trips."
            )
        else:
            message = (
                f"Migration successful. Updated {self.trips_updated}, "
                f"Created {self.trips_created} new trips."
            )
        return {
            "totalCharges": self.total_charges,
            "tripsUpdated": self.trips_updated,
            "tripsCreated": self.trips_created,
            "alreadySynced": self.already_synced,
            "alreadyMigrated": self.already_migrated,
            "matchBreakdown": {
                "byVisitReference": self.by_visit_reference,
                "byShipAndBoarding": self.by_ship_and_boarding,
            },
            "orphans": self.orphans,
            "message": message,
        }


# ---------------------------------------------------------------------------
# Operation builders
# ---------------------------------------------------------------------------

def _confirmation_fields(charge: Charge, now: datetime) -> dict[str, Any]:
    return {
        "confirmedBy": charge.created_by or None,
        "confirmedById": charge.created_by_id or None,
        "confirmedAt": document_value(charge.update_time) or to_iso(now),
        "isConfirmed": True,
    }


def build_update_op(charge: Charge, trip: Trip, now: datetime) -> WriteOp:
    # Notes stay with the trip: the pilot-entered ones take precedence.
    data = {
        "shipName": charge.ship,
        "gt": charge.gt,
        **_confirmation_fields(charge, now),
    }
    return WriteOp(kind=OP_UPDATE, trip_id=trip.id, data=data, charge_id=charge.id)


def build_create_op(charge: Charge, now: datetime) -> WriteOp:
    data = {
        "typeTrip": charge.type_trip,
        "boarding": document_value(charge.boarding_raw),
        "port": charge.port or None,
        "pilot": charge.pilot or None,
        "pilotNotes": charge.sailing_note or None,
        "extraChargesNotes": charge.extra or None,
        "shipName": charge.ship,
        "gt": charge.gt,
        **_confirmation_fields(charge, now),
        "source": MIGRATION_SOURCE,
        "migratedFromChargeId": charge.id,
        "visitId": None,
        "shipId": MIGRATION_SHIP_ID,
        "recordedAt": document_value(charge.boarding_raw) or to_iso(now),
        "recordedBy": MIGRATION_RECORDED_BY,
    }
    return WriteOp(kind=OP_CREATE, trip_id=new_document_id(), data=data, charge_id=charge.id)


def is_already_synced(trip: Trip) -> bool:
    return trip.is_confirmed and trip.has_ship_name


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

def plan_charge(
    charge: Charge,
    index: TripIndex,
    ctrs: ReconcileCounters,
    orphan_policy: str = ORPHAN_POLICY_SKIP_MIGRATED,
    now: datetime | None = None,
) -> WriteOp | None:
    """Classify one charge, update counters, and return its write (if any)."""
    now = now or datetime.now(timezone.utc)

    if charge.type_trip is not None and not is_known_trip_type(charge.type_trip):
        ctrs.warnings.append(f"charge {charge.id}: unknown typeTrip {charge.type_trip!r}")

    if charge.boarding is None:
        ctrs.orphans.append({
            "chargeId": charge.id,
            "ship": charge.ship,
            "typeTrip": charge.type_trip,
            "boarding": None,
            "reason": NO_BOARDING_REASON,
        })
        return None

    if orphan_policy == ORPHAN_POLICY_SKIP_MIGRATED and index.migrated_trips(charge.id):
        ctrs.already_synced += 1
        ctrs.already_migrated += 1
        return None

    result = match_charge(charge, index)
    if result.tier == TIER_VISIT:
        ctrs.by_visit_reference += 1
    elif result.tier == TIER_SHIP_DATE:
        ctrs.by_ship_and_boarding += 1

    if result.trip is not None:
        if is_already_synced(result.trip):
            ctrs.already_synced += 1
            return None
        ctrs.trips_updated += 1
        return build_update_op(charge, result.trip, now)

    ctrs.trips_created += 1
    return build_create_op(charge, now)


def plan_operations(
    charges: list[Charge],
    index: TripIndex,
    orphan_policy: str = ORPHAN_POLICY_SKIP_MIGRATED,
    now: datetime | None = None,
    ctrs: ReconcileCounters | None = None,
) -> tuple[list[WriteOp], ReconcileCounters]:
    ctrs = ctrs or ReconcileCounters()
    now = now or datetime.now(timezone.utc)
    ops: list[WriteOp] = []
    for charge in charges:
        ctrs.total_charges += 1
        op = plan_charge(charge, index, ctrs, orphan_policy=orphan_policy, now=now)
        if op is not None:
            ops.append(op)
    log.info(
        "Matching complete: %d to update, %d to create, %d already synced, %d orphans",
        ctrs.trips_updated,
        ctrs.trips_created,
        ctrs.already_synced,
        len(ctrs.orphans),
    )
    return ops, ctrs


# ---------------------------------------------------------------------------
# Top-level runner
# ---------------------------------------------------------------------------

def run_reconcile(
    store: DocumentStore,
    config: SyncConfig | None = None,
    run_id: str = "adhoc",
    dry_run: bool = False,
    resume: bool = False,
    now: datetime | None = None,
) -> ReconcileCounters:
    """Load, match, plan, and write.

    Args:
        store: Document store holding the charge and trip collections.
        config: Collections, batch size, orphan policy, checkpoint path.
        run_id: Recorded in the write checkpoint.
        dry_run: Plan only; nothing is written and no checkpoint is kept.
        resume: Continue a saved write checkpoint instead of re-planning.
            Falls through to a fresh run when no checkpoint exists.

    Returns:
        ReconcileCounters with run statistics.

    Raises:
        LoadError: a bulk read failed; nothing was written.
        BatchCommitError: a chunk failed; earlier chunks stay committed.
    """
    config = config or SyncConfig()
    checkpoint = WriteCheckpoint(config.checkpoint_path)

    if resume and not dry_run and checkpoint.load() and checkpoint.ops:
        ctrs = ReconcileCounters(resumed_from_run_id=checkpoint.run_id)
        ctrs.trips_updated = sum(1 for op in checkpoint.ops if op.kind == OP_UPDATE)
        ctrs.trips_created = sum(1 for op in checkpoint.ops if op.kind == OP_CREATE)
        log.info(
            "Resuming run %s at chunk %d (%d ops planned)",
            checkpoint.run_id, checkpoint.chunks_committed, len(checkpoint.ops),
        )
        ctrs.write = write_batches(
            store,
            config.trip_collection,
            checkpoint.ops,
            batch_size=checkpoint.batch_size,
            checkpoint=checkpoint,
            start_chunk=checkpoint.chunks_committed,
        )
        return ctrs

    snapshot = load_snapshot(store, config.charge_collection, config.trip_collection)
    index = build_trip_index(snapshot.trips)
    ops, ctrs = plan_operations(
        snapshot.charges, index, orphan_policy=config.orphan_policy, now=now
    )

    if dry_run:
        return ctrs

    checkpoint.start(run_id, ops, config.batch_size)
    ctrs.write = write_batches(
        store,
        config.trip_collection,
        ops,
        batch_size=config.batch_size,
        checkpoint=checkpoint,
    )
    return ctrs


def build_reconcile_report(ctrs: ReconcileCounters, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Charge → Trip Reconciliation Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  charges read:              {ctrs.total_charges}",
        f"  trips updated:             {ctrs.trips_updated}",
        f"  trips created:             {ctrs.trips_created}",
        f"  already synced:            {ctrs.already_synced}",
        f"    of which migrated:       {ctrs.already_migrated}",
        f"  matched by visit ref:      {ctrs.by_visit_reference}",
        f"  matched by ship+boarding:  {ctrs.by_ship_and_boarding}",
        f"  orphans (no boarding):     {len(ctrs.orphans)}",
        f"  chunks committed:          {ctrs.write.chunks_committed}/{ctrs.write.chunks_total}",
    ]
    if ctrs.resumed_from_run_id:
        lines.append(f"  resumed from run:          {ctrs.resumed_from_run_id}")
    if ctrs.warnings:
        lines.append(f"\nWarnings ({len(ctrs.warnings)}):")
        for w in ctrs.warnings[:20]:
            lines.append(f"  {w}")
        if len(ctrs.warnings) > 20:
            lines.append(f"  ... and {len(ctrs.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
