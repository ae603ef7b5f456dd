"""Unit tests for portops_sync.normalize."""

from datetime import date, datetime, timedelta, timezone

import pytest

from portops_sync.normalize import (
    document_value,
    is_known_trip_type,
    iso_date,
    normalize_ship_name,
    parse_boarding,
    shift_iso_date,
    to_iso,
    trim,
)

UTC = timezone.utc


# ---------------------------------------------------------------------------
# trim
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None


# ---------------------------------------------------------------------------
# normalize_ship_name
# ---------------------------------------------------------------------------

class TestNormalizeShipName:
    def test_lowercases_and_trims(self):
        assert normalize_ship_name("  MV Foo ") == "mv foo"

    def test_keeps_internal_spacing(self):
        assert normalize_ship_name("MV  Foo") == "mv  foo"

    def test_blank_is_none(self):
        assert normalize_ship_name("   ") is None

    def test_none(self):
        assert normalize_ship_name(None) is None


# ---------------------------------------------------------------------------
# parse_boarding
# ---------------------------------------------------------------------------

class _FakeTimestamp:
    def __init__(self, dt: datetime) -> None:
        self._dt = dt

    def to_datetime(self) -> datetime:
        return self._dt


class TestParseBoarding:
    def test_aware_datetime_converted_to_utc(self):
        tz = timezone(timedelta(hours=2))
        got = parse_boarding(datetime(2024, 3, 1, 10, 0, tzinfo=tz))
        assert got == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_naive_datetime_taken_as_utc(self):
        assert parse_boarding(datetime(2024, 3, 1, 8, 0)) == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_date_is_midnight_utc(self):
        assert parse_boarding(date(2024, 3, 5)) == datetime(2024, 3, 5, tzinfo=UTC)

    def test_iso_string_with_z(self):
        assert parse_boarding("2024-03-01T08:00:00.000Z") == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_iso_date_only_string(self):
        assert parse_boarding("2024-03-05") == datetime(2024, 3, 5, tzinfo=UTC)

    def test_iso_string_with_offset(self):
        got = parse_boarding("2024-03-01T00:30:00+01:00")
        assert got == datetime(2024, 2, 29, 23, 30, tzinfo=UTC)

    def test_epoch_millis(self):
        assert parse_boarding(1709280000000) == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_epoch_millis_float(self):
        assert parse_boarding(1709280000000.0) == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_structured_mapping(self):
        got = parse_boarding({"_seconds": 1709280000, "_nanoseconds": 500_000_000})
        assert got == datetime(2024, 3, 1, 8, 0, 0, 500_000, tzinfo=UTC)

    def test_structured_mapping_plain_keys(self):
        assert parse_boarding({"seconds": 1709280000}) == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_structured_object(self):
        ts = _FakeTimestamp(datetime(2024, 3, 1, 8, 0, tzinfo=UTC))
        assert parse_boarding(ts) == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    @pytest.mark.parametrize(
        "value",
        [None, "", "   ", "not a date", "2024-13-45", True, False, [], {"foo": 1},
         {"seconds": "x"}, object()],
    )
    def test_unparseable_returns_none(self, value):
        assert parse_boarding(value) is None

    def test_out_of_range_epoch_returns_none(self):
        assert parse_boarding(10**20) is None


# ---------------------------------------------------------------------------
# date helpers
# ---------------------------------------------------------------------------

class TestDateHelpers:
    def test_iso_date_uses_utc_day(self):
        tz = timezone(timedelta(hours=5))
        assert iso_date(datetime(2024, 3, 1, 2, 0, tzinfo=tz)) == "2024-02-29"

    def test_shift_back_across_month(self):
        assert shift_iso_date("2024-03-01", -1) == "2024-02-29"

    def test_shift_forward_across_year(self):
        assert shift_iso_date("2023-12-31", 1) == "2024-01-01"

    def test_shift_rejects_non_date(self):
        with pytest.raises(ValueError):
            shift_iso_date("2024-3-1", 1)

    def test_to_iso_millis_z(self):
        assert to_iso(datetime(2024, 3, 1, 8, 0, tzinfo=UTC)) == "2024-03-01T08:00:00.000Z"

    def test_document_value_datetime_is_iso_z(self):
        tz = timezone(timedelta(hours=2))
        got = document_value(datetime(2024, 3, 1, 10, 0, tzinfo=tz))
        assert got == "2024-03-01T08:00:00.000Z"

    def test_document_value_date(self):
        assert document_value(date(2024, 3, 5)) == "2024-03-05"

    @pytest.mark.parametrize(
        "value", ["2024-03-05", 1709280000000, None, {"seconds": 1709280000}]
    )
    def test_document_value_passes_json_values_through(self, value):
        assert document_value(value) == value


class TestTripType:
    @pytest.mark.parametrize("value", ["In", "Out", "Anchorage", "Shift", "Other"])
    def test_known(self, value):
        assert is_known_trip_type(value)

    def test_unknown(self):
        assert not is_known_trip_type("Inward")
