"""
terms/store.py -- SQLAlchemy Core persistence for terms and acceptances.

The newest active term (by created_at) is "the active term". Older versions
stay readable so an acceptance can always be traced to the text accepted.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, Integer, String, Table, Text

from audit.models import ClientInfo
from core.db import Database, metadata, new_id, now_iso
from terms.models import Term, TermsAcceptance

terms = Table(
    "terms",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("version", String(20), nullable=False, unique=True),
    Column("title", String(255), nullable=False),
    Column("content", Text, nullable=False),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

terms_acceptances = Table(
    "terms_acceptances",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("term_id", String(36), nullable=False),
    Column("term_version", String(20), nullable=False),
    Column("accepted_at", String(32), nullable=False),
    Column("ip", String(64)),
    Column("user_agent", Text),
)


class TermStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(terms, terms_acceptances)

    def get_active(self) -> Optional[Term]:
        with self.engine.connect() as conn:
            row = conn.execute(
                terms.select().where(terms.c.active == 1).order_by(terms.c.created_at.desc()).limit(1)
            ).fetchone()
        return _row_to_term(row) if row is not None else None

    def get_by_id(self, term_id: str) -> Optional[Term]:
        with self.engine.connect() as conn:
            row = conn.execute(terms.select().where(terms.c.id == term_id)).fetchone()
        return _row_to_term(row) if row is not None else None

    def get_by_version(self, version: str) -> Optional[Term]:
        with self.engine.connect() as conn:
            row = conn.execute(terms.select().where(terms.c.version == version)).fetchone()
        return _row_to_term(row) if row is not None else None

    def upsert(self, version: str, title: str, content: str, active: bool = True) -> Term:
        """Create the version or update its title/content/active flag. Used by the seed command."""
        existing = self.get_by_version(version)
        with self.engine.connect() as conn:
            if existing is None:
                conn.execute(
                    terms.insert().values(
                        id=new_id(),
                        version=version,
                        title=title,
                        content=content,
                        active=1 if active else 0,
                        created_at=now_iso(),
                    )
                )
            else:
                conn.execute(
                    terms.update()
                    .where(terms.c.id == existing.id)
                    .values(title=title, content=content, active=1 if active else 0)
                )
            conn.commit()
        return self.get_by_version(version)

    def record_acceptance(self, user_id: str, term: Term, client: Optional[ClientInfo] = None) -> TermsAcceptance:
        client = client or ClientInfo()
        acceptance = TermsAcceptance(
            id=new_id(),
            user_id=user_id,
            term_id=term.id,
            term_version=term.version,
            accepted_at=now_iso(),
            ip=client.ip,
            user_agent=client.user_agent,
        )
        with self.engine.connect() as conn:
            conn.execute(
                terms_acceptances.insert().values(
                    id=acceptance.id,
                    user_id=acceptance.user_id,
                    term_id=acceptance.term_id,
                    term_version=acceptance.term_version,
                    accepted_at=acceptance.accepted_at,
                    ip=acceptance.ip,
                    user_agent=acceptance.user_agent,
                )
            )
            conn.commit()
        return acceptance

    def list_acceptances(self, user_id: str) -> list[TermsAcceptance]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                terms_acceptances.select()
                .where(terms_acceptances.c.user_id == user_id)
                .order_by(terms_acceptances.c.accepted_at.desc())
            ).fetchall()
        return [
            TermsAcceptance(
                id=r.id,
                user_id=r.user_id,
                term_id=r.term_id,
                term_version=r.term_version,
                accepted_at=r.accepted_at,
                ip=r.ip,
                user_agent=r.user_agent,
            )
            for r in rows
        ]


def _row_to_term(row) -> Term:
    return Term(
        id=row.id,
        version=row.version,
        title=row.title,
        content=row.content,
        active=bool(row.active),
        created_at=row.created_at,
    )
