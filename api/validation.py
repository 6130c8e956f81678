"""
api/validation.py -- Cross-field request validation.

Pydantic models in api/models.py check field shapes (types, lengths, ranges).
Rules that relate two or more fields live here as plain functions returning a
ValidationResult, so they can be unit-tested without an HTTP round trip.

ensure_valid() turns a failed result into the same 400 VALIDATION_ERROR
envelope that RequestValidationError produces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from api.errors import api_error
from core.errors import ErrorCode


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def of(cls, errors: list[str]) -> "ValidationResult":
        return cls(ok=not errors, errors=errors)


def ensure_valid(result: ValidationResult) -> None:
    if not result.ok:
        raise api_error(ErrorCode.VALIDATION_ERROR, result.errors[0], details=result.errors)


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime. Naive values are taken as UTC. None if unparseable."""
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_booking_dates(date_from: str, date_to: str) -> ValidationResult:
    errors: list[str] = []
    start = parse_datetime(date_from)
    end = parse_datetime(date_to)
    if start is None:
        errors.append("dateFrom: must be an ISO 8601 date")
    if end is None:
        errors.append("dateTo: must be an ISO 8601 date")
    if start is not None and end is not None and end <= start:
        errors.append("dateTo: must be after dateFrom")
    return ValidationResult.of(errors)


def validate_price_range(price_min: Optional[float], price_max: Optional[float]) -> ValidationResult:
    if price_min is not None and price_max is not None and price_min > price_max:
        return ValidationResult.of(["priceMax: must be greater than or equal to priceMin"])
    return ValidationResult.of([])


def validate_geo_filter(
    lat: Optional[float], lng: Optional[float], radius_km: Optional[float], sort: Optional[str] = None
) -> ValidationResult:
    """lat and lng travel together; radiusKm and the nearby sort both need them."""
    errors: list[str] = []
    if (lat is None) != (lng is None):
        errors.append("lat: lat and lng must be provided together")
    if radius_km is not None and (lat is None or lng is None):
        errors.append("radiusKm: requires lat and lng")
    if sort == "nearby" and (lat is None or lng is None):
        errors.append("sort: nearby requires lat and lng")
    return ValidationResult.of(errors)


def validate_region_comuna(region_id: Optional[str], comuna_id: Optional[str], comuna_region_id: Optional[str]) -> ValidationResult:
    """A profile's comuna must belong to its region when both are given.

    comuna_region_id is the region the comuna actually belongs to (None when
    the comuna does not exist).
    """
    errors: list[str] = []
    if comuna_id and comuna_region_id is None:
        errors.append("comunaId: unknown comuna")
    elif comuna_id and region_id and comuna_region_id != region_id:
        errors.append("comunaId: does not belong to regionId")
    return ValidationResult.of(errors)
