"""
messaging/models.py -- Domain dataclasses for conversations, messages and notifications.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

MESSAGE_TYPES = ("text", "image")


@dataclass
class Conversation:
    """One thread per (property, renter). The owner is the listing's owner."""

    property_id: str
    owner_user_id: str
    renter_user_id: str
    id: Optional[str] = None
    created_at: str = ""

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.owner_user_id, self.renter_user_id)

    def other_participant(self, user_id: str) -> str:
        return self.renter_user_id if user_id == self.owner_user_id else self.owner_user_id


@dataclass
class Message:
    conversation_id: str
    sender_user_id: str
    body: str
    type: str = "text"
    id: Optional[str] = None
    created_at: str = ""
    read_at: Optional[str] = None


@dataclass
class Notification:
    """An in-app notice. data carries ids the client needs to deep-link."""

    user_id: str
    type: str  # NEW_MESSAGE, NEW_CONVERSATION, NEW_REVIEW, NEW_BOOKING or BOOKING_CANCELLED
    title: str
    id: Optional[str] = None
    body: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    read_at: Optional[str] = None
