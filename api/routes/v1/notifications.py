"""
api/routes/v1/notifications.py -- In-app notifications for the caller.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.errors import not_found
from api.models import NotificationResponse, ok
from auth.dependencies import require_terms_accepted
from auth.models import User

router = APIRouter()


@router.get("/notifications")
def list_notifications(
    request: Request, unread: Optional[str] = None, current_user: User = Depends(require_terms_accepted)
) -> dict:
    """Newest 100. ?unread=true or ?unread=1 limits to unread ones."""
    unread_only = (unread or "").strip().lower() in ("true", "1")
    items = request.app.state.messaging_store.list_notifications(current_user.id, unread_only=unread_only)
    return ok([NotificationResponse.from_domain(n) for n in items])


@router.post("/notifications/{notification_id}/read")
def mark_read(notification_id: str, request: Request, current_user: User = Depends(require_terms_accepted)) -> dict:
    notification = request.app.state.messaging_store.mark_read(notification_id, current_user.id)
    if notification is None:
        not_found("Notification not found.")
    return ok(NotificationResponse.from_domain(notification))
