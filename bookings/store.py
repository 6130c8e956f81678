"""
bookings/store.py -- SQLAlchemy Core persistence for Booking.

Pattern: Repository + Data Mapper, like listings/store.py.

Dates are stored as normalized ISO 8601 UTC strings, so ORDER BY date_from
is chronological.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, String, Table, Text, and_

from bookings.models import STATUS_CANCELLED, STATUS_PENDING, Booking
from core.db import Database, metadata, new_id, now_iso

bookings = Table(
    "bookings",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("property_id", String(36), nullable=False, index=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("date_from", String(32), nullable=False),
    Column("date_to", String(32), nullable=False),
    Column("note", Text),
    Column("status", String(20), nullable=False, server_default=STATUS_PENDING),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


class BookingStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(bookings)

    def create_booking(self, booking: Booking) -> Booking:
        """Insert a PENDING booking and return it with id and timestamps set."""
        booking.id = booking.id or new_id()
        booking.status = STATUS_PENDING
        booking.created_at = booking.updated_at = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                bookings.insert().values(
                    id=booking.id,
                    property_id=booking.property_id,
                    user_id=booking.user_id,
                    date_from=booking.date_from,
                    date_to=booking.date_to,
                    note=booking.note,
                    status=booking.status,
                    created_at=booking.created_at,
                    updated_at=booking.updated_at,
                )
            )
            conn.commit()
        return booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self.engine.connect() as conn:
            row = conn.execute(bookings.select().where(bookings.c.id == booking_id)).fetchone()
        return _row_to_booking(row) if row is not None else None

    def list_by_user(self, user_id: str, status: Optional[str] = None) -> list[Booking]:
        """The user's bookings, latest start date first, optionally filtered by status."""
        conditions = [bookings.c.user_id == user_id]
        if status:
            conditions.append(bookings.c.status == status)
        with self.engine.connect() as conn:
            rows = conn.execute(
                bookings.select().where(and_(*conditions)).order_by(bookings.c.date_from.desc())
            ).fetchall()
        return [_row_to_booking(r) for r in rows]

    def cancel(self, booking_id: str, user_id: str) -> bool:
        """Cancel the renter's own booking. Returns False if missing, foreign, or already cancelled."""
        with self.engine.connect() as conn:
            result = conn.execute(
                bookings.update()
                .where(
                    and_(
                        bookings.c.id == booking_id,
                        bookings.c.user_id == user_id,
                        bookings.c.status != STATUS_CANCELLED,
                    )
                )
                .values(status=STATUS_CANCELLED, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0


def _row_to_booking(row) -> Booking:
    return Booking(
        id=row.id,
        property_id=row.property_id,
        user_id=row.user_id,
        date_from=row.date_from,
        date_to=row.date_to,
        note=row.note,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
