"""
tests/test_validation.py -- Cross-field validators in api/validation.py.

Plain functions returning ValidationResult, so no HTTP round trip needed.
"""

from __future__ import annotations

import pytest
from fastapi import HTTPException

from api.validation import (
    ValidationResult,
    ensure_valid,
    parse_datetime,
    validate_booking_dates,
    validate_geo_filter,
    validate_price_range,
    validate_region_comuna,
)


class TestBookingDates:
    def test_valid_range(self) -> None:
        assert validate_booking_dates("2026-01-10", "2026-01-12").ok

    def test_end_must_follow_start(self) -> None:
        result = validate_booking_dates("2026-01-12", "2026-01-12")
        assert not result.ok
        assert result.errors == ["dateTo: must be after dateFrom"]

    def test_unparseable(self) -> None:
        result = validate_booking_dates("tomorrow", "2026-01-12")
        assert result.errors == ["dateFrom: must be an ISO 8601 date"]

    def test_mixed_offsets_compared_in_utc(self) -> None:
        """10:00-03:00 is 13:00Z, so a 12:00Z end is before it."""
        assert not validate_booking_dates("2026-01-10T10:00:00-03:00", "2026-01-10T12:00:00Z").ok


def test_parse_datetime_naive_is_utc() -> None:
    assert parse_datetime("2026-01-10T10:00:00").utcoffset().total_seconds() == 0
    assert parse_datetime("not a date") is None


class TestSearchFilters:
    def test_price_range(self) -> None:
        assert validate_price_range(100, 200).ok
        assert validate_price_range(None, 200).ok
        assert not validate_price_range(300, 200).ok

    @pytest.mark.parametrize(
        "lat,lng,radius,sort,ok",
        [
            (None, None, None, "recent", True),
            (-33.4, -70.6, 5, "nearby", True),
            (-33.4, None, None, "recent", False),
            (None, None, 5, "recent", False),
            (None, None, None, "nearby", False),
        ],
    )
    def test_geo_filter(self, lat, lng, radius, sort, ok) -> None:
        assert validate_geo_filter(lat, lng, radius, sort).ok is ok


class TestRegionComuna:
    def test_matching(self) -> None:
        assert validate_region_comuna("r1", "c1", "r1").ok

    def test_comuna_without_region_is_fine(self) -> None:
        assert validate_region_comuna(None, "c1", "r1").ok

    def test_mismatch(self) -> None:
        assert validate_region_comuna("r2", "c1", "r1").errors == ["comunaId: does not belong to regionId"]

    def test_unknown_comuna(self) -> None:
        assert validate_region_comuna("r1", "nope", None).errors == ["comunaId: unknown comuna"]


def test_ensure_valid_raises_validation_error() -> None:
    with pytest.raises(HTTPException) as exc_info:
        ensure_valid(ValidationResult.of(["a: bad", "b: worse"]))
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == {"code": "VALIDATION_ERROR", "message": "a: bad", "details": ["a: bad", "b: worse"]}
