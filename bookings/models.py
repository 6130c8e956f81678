"""
bookings/models.py -- Domain dataclass for booking requests.
"""

from dataclasses import dataclass
from typing import Optional

STATUS_PENDING = "PENDING"
STATUS_CONFIRMED = "CONFIRMED"
STATUS_CANCELLED = "CANCELLED"

STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED)


@dataclass
class Booking:
    """A renter's request for a date range on a listing.

    date_from / date_to are ISO 8601 strings as submitted (date or datetime).
    New bookings are PENDING; the renter may cancel while not CANCELLED.
    """

    property_id: str
    user_id: str
    date_from: str
    date_to: str
    id: Optional[str] = None
    note: Optional[str] = None
    status: str = STATUS_PENDING
    created_at: str = ""
    updated_at: str = ""
