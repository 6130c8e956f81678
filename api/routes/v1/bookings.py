"""
api/routes/v1/bookings.py -- Booking requests made by renters.

  POST /bookings              -- request a date range (PENDING), notify the owner
  GET  /bookings?status=      -- the caller's bookings, latest start first
  POST /bookings/{id}/cancel  -- renter cancels; 409 if already cancelled
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.errors import api_error, not_found
from api.models import BookingCreate, BookingResponse, BookingStatusEnum, ok
from api.validation import ensure_valid, validate_booking_dates
from auth.dependencies import get_client_info, require_terms_accepted
from auth.models import User
from bookings.models import Booking
from bookings.store import BookingStore
from core.errors import ErrorCode
from messaging.models import Notification

router = APIRouter()


@router.post("/bookings", status_code=201)
def create_booking(request: Request, body: BookingCreate, current_user: User = Depends(require_terms_accepted)) -> dict:
    ensure_valid(validate_booking_dates(body.date_from, body.date_to))
    prop = request.app.state.listing_store.get_property(body.property_id)
    if prop is None:
        not_found("Property not found.")

    booking = request.app.state.booking_store.create_booking(
        Booking(
            property_id=prop.id,
            user_id=current_user.id,
            date_from=body.date_from,
            date_to=body.date_to,
            note=body.note,
        )
    )
    request.app.state.audit_store.record(
        "CREATE",
        "Booking",
        entity_id=booking.id,
        user_id=current_user.id,
        after=asdict(booking),
        client=get_client_info(request),
    )
    if prop.user_id != current_user.id:
        request.app.state.messaging_store.notify(
            Notification(
                user_id=prop.user_id,
                type="NEW_BOOKING",
                title="New booking request",
                body=f"{current_user.full_name} requested {prop.title} from {booking.date_from} to {booking.date_to}.",
                data={"bookingId": booking.id, "propertyId": prop.id},
            )
        )
    return ok(BookingResponse.from_domain(booking, prop))


@router.get("/bookings")
def list_bookings(
    request: Request,
    status: Optional[BookingStatusEnum] = None,
    current_user: User = Depends(require_terms_accepted),
) -> dict:
    items = request.app.state.booking_store.list_by_user(current_user.id, status.value if status else None)
    props = request.app.state.listing_store.get_properties(b.property_id for b in items)
    return ok([BookingResponse.from_domain(b, props.get(b.property_id)) for b in items])


@router.post("/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: str, request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    store: BookingStore = request.app.state.booking_store
    before = store.get_booking(booking_id)
    if before is None or before.user_id != current_user.id:
        not_found("Booking not found.")
    if not store.cancel(booking_id, current_user.id):
        raise api_error(ErrorCode.INVALID_STATE, "Booking is already cancelled.")

    after = store.get_booking(booking_id)
    request.app.state.audit_store.record(
        "UPDATE",
        "Booking",
        entity_id=booking_id,
        user_id=current_user.id,
        before={"status": before.status},
        after={"status": after.status},
        client=get_client_info(request),
    )
    prop = request.app.state.listing_store.get_property(after.property_id)
    if prop is not None and prop.user_id != current_user.id:
        request.app.state.messaging_store.notify(
            Notification(
                user_id=prop.user_id,
                type="BOOKING_CANCELLED",
                title="Booking cancelled",
                body=f"{current_user.full_name} cancelled a booking for {prop.title}.",
                data={"bookingId": booking_id, "propertyId": prop.id},
            )
        )
    return ok(BookingResponse.from_domain(after, prop))
