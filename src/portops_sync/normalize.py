"""Normalization functions for charge and trip documents.

All functions accept loosely-typed document values and return the
appropriate type or None.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

TRIP_TYPES = ("In", "Out", "Anchorage", "Shift", "Other")

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_ship_name  (index key for ship/type/date matching)
# ---------------------------------------------------------------------------

def normalize_ship_name(value: str | None) -> str | None:
    """Lowercase and trim a ship name.

    Internal whitespace is kept as-is so that "MV  Foo" and "MV Foo" stay
    distinct keys, matching how the trip store denormalizes names.
    """
    v = trim(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 3: parse_boarding
# ---------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_structured(value: Any) -> datetime | None:
    """Structured timestamp: a Firestore-style {seconds, nanoseconds} mapping
    or an object exposing to_datetime()/toDate()."""
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
            return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(
                microseconds=nanos // 1000
            )
        except (OverflowError, OSError, ValueError):
            return None
    for attr in ("to_datetime", "toDate"):
        converter = getattr(value, attr, None)
        if callable(converter):
            converted = converter()
            if isinstance(converted, datetime):
                return _as_utc(converted)
            return None
    return None


def parse_boarding(value: Any) -> datetime | None:
    """Parse a boarding value into a UTC-aware datetime.

    Accepted shapes:
      - structured timestamp (see _from_structured)
      - native datetime (naive → UTC) or date (midnight UTC)
      - ISO-8601 string ('Z' suffix allowed; date-only → midnight UTC)
      - epoch milliseconds (int/float, not bool)

    Anything else returns None ("unparseable"), never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        v = trim(value)
        if v is None:
            return None
        if v.endswith(("Z", "z")):
            v = v[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(v))
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return _from_structured(value)


# ---------------------------------------------------------------------------
# Rule 4: calendar-date helpers
# ---------------------------------------------------------------------------

def iso_date(value: datetime) -> str:
    """Return the UTC calendar date of a parsed boarding as 'YYYY-MM-DD'."""
    return _as_utc(value).date().isoformat()


def shift_iso_date(day: str, days: int) -> str:
    """Shift a 'YYYY-MM-DD' string by a whole number of days."""
    if not _ISO_DATE_RE.match(day):
        raise ValueError(f"not an ISO date: {day!r}")
    return (date.fromisoformat(day) + timedelta(days=days)).isoformat()


def to_iso(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with millisecond precision."""
    return _as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def document_value(value: Any) -> Any:
    """Render native date/datetime values as ISO strings for JSON documents.

    Anything else is returned unchanged.
    """
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Rule 5: trip type
# ---------------------------------------------------------------------------

def is_known_trip_type(value: str | None) -> bool:
    return value in TRIP_TYPES
