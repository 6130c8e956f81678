"""
audit/store.py -- Append-only persistence for AuditEntry.

Pattern: Repository + Data Mapper, like auth/store.py. The store exposes
record() and list_entries() only; there is no update or delete path.

before_json / after_json are JSON serialized as text. Values that json cannot
encode natively (datetimes, decimals) are stringified with default=str.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy import Column, String, Table, Text, and_

from audit.models import ACTIONS, AuditEntry, ClientInfo
from core.db import Database, metadata, new_id, now_iso

logger = logging.getLogger("myassets.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("action", String(30), nullable=False),
    Column("entity", String(50), nullable=False),
    Column("entity_id", String(36), index=True),
    Column("user_id", String(36), index=True),
    Column("before_json", Text),
    Column("after_json", Text),
    Column("ip", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)


def _dump(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _load(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(audit_logs)

    def record(
        self,
        action: str,
        entity: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        before: Any = None,
        after: Any = None,
        client: Optional[ClientInfo] = None,
    ) -> str:
        """Append one audit entry and return its id. Unknown actions raise ValueError."""
        if action not in ACTIONS:
            raise ValueError(f"Unknown audit action: {action!r}")
        client = client or ClientInfo()
        entry_id = new_id()
        with self.engine.connect() as conn:
            conn.execute(
                audit_logs.insert().values(
                    id=entry_id,
                    action=action,
                    entity=entity,
                    entity_id=entity_id,
                    user_id=user_id,
                    before_json=_dump(before),
                    after_json=_dump(after),
                    ip=client.ip,
                    user_agent=client.user_agent,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        logger.debug("audit %s %s/%s by %s", action, entity, entity_id, user_id)
        return entry_id

    def list_entries(
        self,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Return entries newest first, optionally filtered."""
        conditions = []
        if entity:
            conditions.append(audit_logs.c.entity == entity)
        if entity_id:
            conditions.append(audit_logs.c.entity_id == entity_id)
        if user_id:
            conditions.append(audit_logs.c.user_id == user_id)
        stmt = audit_logs.select()
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(audit_logs.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        action=row.action,
        entity=row.entity,
        entity_id=row.entity_id,
        user_id=row.user_id,
        before=_load(row.before_json),
        after=_load(row.after_json),
        ip=row.ip,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
