"""portops_sync.trip_index

In-memory multi-map indexes over the loaded trips.

  by_visit        (visit_ref, type_trip)              → [Trip, ...]
  by_ship_date    (ship_key, type_trip, 'YYYY-MM-DD') → [Trip, ...]
  by_source_charge migrated_from_charge_id            → [Trip, ...]

Buckets preserve load order; several trips may legitimately share a key
(e.g. two inward trips of the same ship on the same day).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from portops_sync.normalize import iso_date
from portops_sync.records import Trip

log = logging.getLogger(__name__)

VisitKey = tuple[str, str | None]
ShipDateKey = tuple[str, str | None, str]


@dataclass
class TripIndex:
    by_visit: dict[VisitKey, list[Trip]] = field(default_factory=lambda: defaultdict(list))
    by_ship_date: dict[ShipDateKey, list[Trip]] = field(default_factory=lambda: defaultdict(list))
    by_source_charge: dict[str, list[Trip]] = field(default_factory=lambda: defaultdict(list))
    trip_count: int = 0

    def visit_bucket(self, visit_ref: str, type_trip: str | None) -> list[Trip]:
        return self.by_visit.get((visit_ref, type_trip), [])

    def ship_date_bucket(self, ship_key: str, type_trip: str | None, day: str) -> list[Trip]:
        return self.by_ship_date.get((ship_key, type_trip, day), [])

    def migrated_trips(self, charge_id: str) -> list[Trip]:
        return self.by_source_charge.get(charge_id, [])


def build_trip_index(trips: list[Trip]) -> TripIndex:
    index = TripIndex()
    for trip in trips:
        index.trip_count += 1
        if trip.visit_ref:
            index.by_visit[(trip.visit_ref, trip.type_trip)].append(trip)
        ship_key = trip.ship_key
        if ship_key and trip.boarding is not None:
            index.by_ship_date[(ship_key, trip.type_trip, iso_date(trip.boarding))].append(trip)
        if trip.migrated_from_charge_id:
            index.by_source_charge[trip.migrated_from_charge_id].append(trip)

    log.info(
        "Built indexes: visit+type=%d ship+type+date=%d migrated=%d",
        len(index.by_visit),
        len(index.by_ship_date),
        len(index.by_source_charge),
    )
    return index
