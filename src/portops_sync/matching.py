"""portops_sync.matching

Charge → trip matcher.

Tier 1: (visit_ref, type_trip) identity.
Tier 2: (ship_key, type_trip, date), then date − 1 day, then date + 1 day,
        stopping at the first non-empty bucket.

Within a non-empty bucket the tie-break is:
  1. a single candidate wins outright;
  2. a single unconfirmed candidate wins over confirmed siblings;
  3. otherwise the candidate nearest in boarding time wins, searched among
     the unconfirmed candidates when there are any, else the whole bucket.
     Candidates with no parseable boarding are skipped; equal distances keep
     the first encountered; if nothing compares, the pool's first element wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from portops_sync.normalize import iso_date, shift_iso_date
from portops_sync.records import Charge, Trip
from portops_sync.trip_index import TripIndex

TIER_NONE = 0
TIER_VISIT = 1
TIER_SHIP_DATE = 2

# Probed in order after the exact date misses.
DAY_OFFSETS = (-1, 1)


@dataclass
class MatchResult:
    trip: Trip | None
    tier: int

    @property
    def matched(self) -> bool:
        return self.trip is not None


def find_best_match(candidates: list[Trip], charge_boarding: datetime) -> Trip | None:
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    unconfirmed = [t for t in candidates if not t.is_confirmed]
    if len(unconfirmed) == 1:
        return unconfirmed[0]

    pool = unconfirmed or candidates
    best = pool[0]
    best_diff: float | None = None
    for trip in pool:
        if trip.boarding is None:
            continue
        diff = abs((trip.boarding - charge_boarding).total_seconds())
        if best_diff is None or diff < best_diff:
            best_diff = diff
            best = trip
    return best


def ship_date_keys(charge: Charge) -> list[str]:
    """Dates probed for tier 2, in lookup order."""
    if charge.boarding is None:
        return []
    day = iso_date(charge.boarding)
    return [day] + [shift_iso_date(day, offset) for offset in DAY_OFFSETS]


def match_charge(charge: Charge, index: TripIndex) -> MatchResult:
    """Match a charge with a parsed boarding time against the trip indexes.

    Charges without a parseable boarding must be filtered out by the caller.
    """
    if charge.boarding is None:
        raise ValueError(f"charge {charge.id} has no parseable boarding time")

    if charge.visit_ref:
        bucket = index.visit_bucket(charge.visit_ref, charge.type_trip)
        trip = find_best_match(bucket, charge.boarding)
        if trip is not None:
            return MatchResult(trip, TIER_VISIT)

    ship_key = charge.ship_key
    if ship_key:
        for day in ship_date_keys(charge):
            bucket = index.ship_date_bucket(ship_key, charge.type_trip, day)
            if bucket:
                return MatchResult(find_best_match(bucket, charge.boarding), TIER_SHIP_DATE)

    return MatchResult(None, TIER_NONE)
