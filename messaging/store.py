"""
messaging/store.py -- SQLAlchemy Core persistence for conversations, messages
and notifications.

Pattern: Repository + Data Mapper. Participant checks live in the queries
(owner_user_id = :u OR renter_user_id = :u) so a non-participant sees the same
None as a missing conversation.
"""

from __future__ import annotations

import json
from typing import Optional

from sqlalchemy import Column, String, Table, Text, UniqueConstraint, and_, or_

from core.db import Database, metadata, new_id, now_iso
from messaging.models import Conversation, Message, Notification

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

conversations = Table(
    "conversations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("property_id", String(36), nullable=False),
    Column("owner_user_id", String(36), nullable=False, index=True),
    Column("renter_user_id", String(36), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("property_id", "renter_user_id", name="uq_conversation_property_renter"),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("conversation_id", String(36), nullable=False, index=True),
    Column("sender_user_id", String(36), nullable=False),
    Column("body", Text, nullable=False),
    Column("type", String(10), nullable=False, server_default="text"),
    Column("created_at", String(32), nullable=False),
    Column("read_at", String(32)),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("type", String(40), nullable=False),
    Column("title", String(255), nullable=False),
    Column("body", Text),
    Column("data_json", Text),
    Column("created_at", String(32), nullable=False),
    Column("read_at", String(32)),
)

NOTIFICATION_PAGE = 100


def _is_participant(user_id: str):
    return or_(conversations.c.owner_user_id == user_id, conversations.c.renter_user_id == user_id)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MessagingStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(conversations, messages, notifications)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def find_or_create_conversation(
        self, property_id: str, owner_user_id: str, renter_user_id: str
    ) -> tuple[Conversation, bool]:
        """Return (conversation, created) for the (property, renter) pair."""
        existing = self._find(property_id, renter_user_id)
        if existing is not None:
            return existing, False
        conv = Conversation(
            id=new_id(),
            property_id=property_id,
            owner_user_id=owner_user_id,
            renter_user_id=renter_user_id,
            created_at=now_iso(),
        )
        with self.engine.connect() as conn:
            conn.execute(
                conversations.insert().values(
                    id=conv.id,
                    property_id=property_id,
                    owner_user_id=owner_user_id,
                    renter_user_id=renter_user_id,
                    created_at=conv.created_at,
                )
            )
            conn.commit()
        return conv, True

    def _find(self, property_id: str, renter_user_id: str) -> Optional[Conversation]:
        with self.engine.connect() as conn:
            row = conn.execute(
                conversations.select().where(
                    and_(conversations.c.property_id == property_id, conversations.c.renter_user_id == renter_user_id)
                )
            ).fetchone()
        return _row_to_conversation(row) if row is not None else None

    def get_for_participant(self, conversation_id: str, user_id: str) -> Optional[Conversation]:
        with self.engine.connect() as conn:
            row = conn.execute(
                conversations.select().where(and_(conversations.c.id == conversation_id, _is_participant(user_id)))
            ).fetchone()
        return _row_to_conversation(row) if row is not None else None

    def list_for_user(self, user_id: str) -> list[Conversation]:
        """Conversations where the user is owner or renter, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                conversations.select().where(_is_participant(user_id)).order_by(conversations.c.created_at.desc())
            ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def last_messages(self, conversation_ids) -> dict[str, Message]:
        """Return {conversation_id: newest message} for conversations that have any."""
        ids = list(set(conversation_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                messages.select()
                .where(messages.c.conversation_id.in_(ids))
                .order_by(messages.c.conversation_id, messages.c.created_at.desc())
            ).fetchall()
        latest: dict[str, Message] = {}
        for r in rows:
            if r.conversation_id not in latest:
                latest[r.conversation_id] = _row_to_message(r)
        return latest

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> Message:
        message.id = message.id or new_id()
        message.created_at = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                messages.insert().values(
                    id=message.id,
                    conversation_id=message.conversation_id,
                    sender_user_id=message.sender_user_id,
                    body=message.body,
                    type=message.type,
                    created_at=message.created_at,
                )
            )
            conn.commit()
        return message

    def list_messages(self, conversation_id: str) -> list[Message]:
        """Oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                messages.select()
                .where(messages.c.conversation_id == conversation_id)
                .order_by(messages.c.created_at.asc(), messages.c.id)
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(self, notification: Notification) -> Notification:
        notification.id = notification.id or new_id()
        notification.created_at = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                notifications.insert().values(
                    id=notification.id,
                    user_id=notification.user_id,
                    type=notification.type,
                    title=notification.title,
                    body=notification.body,
                    data_json=json.dumps(notification.data or {}),
                    created_at=notification.created_at,
                )
            )
            conn.commit()
        return notification

    def list_notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """Newest NOTIFICATION_PAGE notifications for the user."""
        conditions = [notifications.c.user_id == user_id]
        if unread_only:
            conditions.append(notifications.c.read_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(
                notifications.select()
                .where(and_(*conditions))
                .order_by(notifications.c.created_at.desc())
                .limit(NOTIFICATION_PAGE)
            ).fetchall()
        return [_row_to_notification(r) for r in rows]

    def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """Stamp read_at on the user's own notification. Returns None if not found or foreign.

        Marking an already-read notification keeps its original read_at.
        """
        with self.engine.connect() as conn:
            conn.execute(
                notifications.update()
                .where(
                    and_(
                        notifications.c.id == notification_id,
                        notifications.c.user_id == user_id,
                        notifications.c.read_at.is_(None),
                    )
                )
                .values(read_at=now_iso())
            )
            conn.commit()
            row = conn.execute(
                notifications.select().where(
                    and_(notifications.c.id == notification_id, notifications.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_notification(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row.id,
        property_id=row.property_id,
        owner_user_id=row.owner_user_id,
        renter_user_id=row.renter_user_id,
        created_at=row.created_at,
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        sender_user_id=row.sender_user_id,
        body=row.body,
        type=row.type,
        created_at=row.created_at,
        read_at=row.read_at,
    )


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        title=row.title,
        body=row.body,
        data=json.loads(row.data_json) if row.data_json else {},
        created_at=row.created_at,
        read_at=row.read_at,
    )
