"""
core/db.py -- Shared SQLAlchemy engine handle and schema registry.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in each package's
models.py remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: one Database per process, constructed in the API lifespan and handed
to every store explicitly. Stores never build their own engine and never reach
for a module-level global, so tests can wire isolated databases per module.

Every store registers its tables on the shared `metadata` and creates only
those tables on construction (metadata.create_all(engine, tables=[...])).
Cross-store joins work because all tables live in the same database.

Usage:
    db = Database("sqlite:///./myassets.db")
    users = UserStore(db)
    db.ping()
    db.close()
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy.engine import Engine

metadata = MetaData()


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    # Fixed width so stored timestamps sort lexicographically.
    return utcnow().isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string. Naive values are treated as UTC."""
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class Database:
    """Process-wide engine handle with an explicit open/close lifecycle."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync routes on a threadpool; the same pooled
            # connection may be used from different threads.
            connect_args["check_same_thread"] = False
        self.url = db_url
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    def create_tables(self, *tables) -> None:
        metadata.create_all(self.engine, tables=list(tables))

    def ping(self) -> bool:
        """Run a trivial query. Driver errors propagate to the caller."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()
