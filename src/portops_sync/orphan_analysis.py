"""portops_sync.orphan_analysis

Read-only orphan diagnostics (--mode analyze).

Runs the matcher's lookups (bucket presence only, no tie-break) over every
charge and reports the ones that match no trip, grouped by reason, year and
year-month.  Nothing is written and no charge is ever planned for creation.

A charge with a ship/type/date bucket on its date, the day before or the day
after is never an orphan, whatever its visit reference.  Reasons:
  No boarding date                   : boarding missing/unparseable
  Visit reference not found in trips : visit ref present, no trip under it
  No visit reference                 : no visit ref on the charge
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from portops_sync.config import SyncConfig
from portops_sync.matching import ship_date_keys
from portops_sync.normalize import to_iso
from portops_sync.records import Charge
from portops_sync.store import DocumentStore, load_snapshot
from portops_sync.trip_index import TripIndex, build_trip_index

log = logging.getLogger(__name__)

REASON_NO_BOARDING = "No boarding date"
REASON_NO_VISIT_REF = "No visit reference"
REASON_VISIT_NOT_FOUND = "Visit reference not found in trips"

DEFAULT_SAMPLE_SIZE = 20


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------

@dataclass
class OrphanAnalysis:
    total_charges: int = 0
    total_trips: int = 0
    total_orphans: int = 0
    oldest_orphan: datetime | None = None
    newest_orphan: datetime | None = None
    by_year: Counter = field(default_factory=Counter)
    by_month: Counter = field(default_factory=Counter)
    by_reason: Counter = field(default_factory=Counter)
    sample_orphans: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_charges": self.total_charges,
            "total_trips": self.total_trips,
            "total_orphans": self.total_orphans,
            "oldest_orphan": to_iso(self.oldest_orphan) if self.oldest_orphan else None,
            "newest_orphan": to_iso(self.newest_orphan) if self.newest_orphan else None,
            "by_reason": dict(self.by_reason),
        }

    def to_result(self) -> dict[str, Any]:
        """Response shape of the Analyze procedure."""
        return {
            "totalCharges": self.total_charges,
            "totalTrips": self.total_trips,
            "totalOrphans": self.total_orphans,
            "oldestOrphan": to_iso(self.oldest_orphan) if self.oldest_orphan else None,
            "newestOrphan": to_iso(self.newest_orphan) if self.newest_orphan else None,
            "yearlyBreakdown": [
                {"year": year, "count": count} for year, count in sorted(self.by_year.items())
            ],
            "monthlyBreakdown": [
                {"month": month, "count": count} for month, count in sorted(self.by_month.items())
            ],
            # most_common keeps first-seen order for equal counts
            "reasonBreakdown": [
                {"reason": reason, "count": count}
                for reason, count in self.by_reason.most_common()
            ],
            "sampleOrphans": self.sample_orphans,
        }


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _has_ship_date_match(charge: Charge, index: TripIndex) -> bool:
    ship_key = charge.ship_key
    if not ship_key:
        return False
    return any(
        index.ship_date_bucket(ship_key, charge.type_trip, day)
        for day in ship_date_keys(charge)
    )


def orphan_reason(charge: Charge, index: TripIndex) -> str | None:
    """Return why a charge matches no trip, or None when it matches one."""
    if charge.boarding is None:
        return REASON_NO_BOARDING
    if charge.visit_ref:
        if index.visit_bucket(charge.visit_ref, charge.type_trip):
            return None
        reason = REASON_VISIT_NOT_FOUND
    else:
        reason = REASON_NO_VISIT_REF
    if _has_ship_date_match(charge, index):
        return None
    return reason


def analyze_charges(
    charges: list[Charge],
    index: TripIndex,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> OrphanAnalysis:
    analysis = OrphanAnalysis(total_charges=len(charges), total_trips=index.trip_count)
    for charge in charges:
        reason = orphan_reason(charge, index)
        if reason is None:
            continue
        analysis.total_orphans += 1
        analysis.by_reason[reason] += 1
        boarding = charge.boarding
        if boarding is None:
            continue

        analysis.by_year[f"{boarding.year:04d}"] += 1
        analysis.by_month[f"{boarding.year:04d}-{boarding.month:02d}"] += 1
        if analysis.oldest_orphan is None or boarding < analysis.oldest_orphan:
            analysis.oldest_orphan = boarding
        if analysis.newest_orphan is None or boarding > analysis.newest_orphan:
            analysis.newest_orphan = boarding
        if len(analysis.sample_orphans) < sample_size:
            analysis.sample_orphans.append({
                "chargeId": charge.id,
                "ship": charge.ship,
                "typeTrip": charge.type_trip,
                "boarding": to_iso(boarding),
                "reason": reason,
            })
    return analysis


# ---------------------------------------------------------------------------
# Top-level runner
# ---------------------------------------------------------------------------

def run_analyze(store: DocumentStore, config: SyncConfig | None = None) -> OrphanAnalysis:
    config = config or SyncConfig()
    snapshot = load_snapshot(store, config.charge_collection, config.trip_collection)
    index = build_trip_index(snapshot.trips)
    analysis = analyze_charges(snapshot.charges, index, sample_size=config.sample_size)
    log.info(
        "Analysis complete: %d orphans of %d charges",
        analysis.total_orphans, analysis.total_charges,
    )
    return analysis


def build_analysis_report(analysis: OrphanAnalysis) -> str:
    lines = [
        "=" * 60,
        "Orphan Charge Analysis",
        "=" * 60,
        f"  charges:        {analysis.total_charges}",
        f"  trips:          {analysis.total_trips}",
        f"  orphans:        {analysis.total_orphans}",
        f"  oldest orphan:  {to_iso(analysis.oldest_orphan) if analysis.oldest_orphan else '-'}",
        f"  newest orphan:  {to_iso(analysis.newest_orphan) if analysis.newest_orphan else '-'}",
    ]
    if analysis.by_reason:
        lines.append("\nBy reason:")
        for reason, count in analysis.by_reason.most_common():
            lines.append(f"  {reason:<36} {count}")
    if analysis.by_year:
        lines.append("\nBy year:")
        for year, count in sorted(analysis.by_year.items()):
            lines.append(f"  {year}  {count}")
    lines.append("=" * 60)
    return "\n".join(lines)
