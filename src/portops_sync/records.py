"""portops_sync.records

Typed views over raw charge and trip documents.

Documents keep their wire (camelCase) field names; the record types expose
the handful of fields the reconciliation engine reads, plus the parsed
boarding time.  Charges also keep the raw boarding value so create
operations can copy it as stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from portops_sync.normalize import normalize_ship_name, parse_boarding, trim


@dataclass
class Charge:
    """Legacy billing record (collection `charge`)."""

    id: str
    ship: str | None
    gt: Any
    boarding_raw: Any
    boarding: datetime | None
    type_trip: str | None
    port: str | None
    pilot: str | None
    visit_ref: str | None
    created_by: str | None
    created_by_id: str | None
    update_time: Any
    sailing_note: str | None
    extra: str | None

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict[str, Any]) -> Charge:
        return cls(
            id=doc_id,
            ship=doc.get("ship"),
            gt=doc.get("gt"),
            boarding_raw=doc.get("boarding"),
            boarding=parse_boarding(doc.get("boarding")),
            type_trip=doc.get("typeTrip"),
            port=doc.get("port"),
            pilot=doc.get("pilot"),
            visit_ref=trim(doc.get("visitid")),
            created_by=doc.get("createdBy"),
            created_by_id=doc.get("createdById"),
            update_time=doc.get("updateTime"),
            sailing_note=doc.get("sailingNote"),
            extra=doc.get("extra"),
        )

    @property
    def ship_key(self) -> str | None:
        return normalize_ship_name(self.ship)


@dataclass
class Trip:
    """Normalized operational record (collection `trip`)."""

    id: str
    visit_ref: str | None
    type_trip: str | None
    boarding: datetime | None
    ship_name: str | None
    is_confirmed: bool
    migrated_from_charge_id: str | None

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict[str, Any]) -> Trip:
        return cls(
            id=doc_id,
            visit_ref=trim(doc.get("visitId")),
            type_trip=doc.get("typeTrip"),
            boarding=parse_boarding(doc.get("boarding")),
            ship_name=doc.get("shipName"),
            is_confirmed=bool(doc.get("isConfirmed")),
            migrated_from_charge_id=trim(doc.get("migratedFromChargeId")),
        )

    @property
    def ship_key(self) -> str | None:
        return normalize_ship_name(self.ship_name)

    @property
    def has_ship_name(self) -> bool:
        return trim(self.ship_name) is not None
