"""
terms/service.py -- Terms resolution and acceptance.

accept() resolves the term by id, else by version, else the newest active
one, then records the acceptance with the caller's network identity, stamps
users.terms_accepted_at and writes an ACCEPT_TERMS audit entry.
"""

from __future__ import annotations

from typing import Optional

from audit.models import ClientInfo
from audit.store import AuditStore
from auth.store import UserStore
from core.db import now_iso
from core.errors import ErrorCode, ServiceResult
from terms.store import TermStore

DEFAULT_TERMS_VERSION = "1.0"
DEFAULT_TERMS_TITLE = "Terms and Conditions of Use"
DEFAULT_TERMS_CONTENT = """Terms and conditions of use of the My Assets application.

By using this service you accept these terms. Use of the platform implies
acceptance of the current version published in the application."""


class TermsService:
    def __init__(self, terms: TermStore, users: UserStore, audit: AuditStore) -> None:
        self.terms = terms
        self.users = users
        self.audit = audit

    def active(self) -> ServiceResult:
        term = self.terms.get_active()
        if term is None:
            return ServiceResult.failure(ErrorCode.NO_ACTIVE_TERMS, "No active terms are published.")
        return ServiceResult.success(term)

    def accept(
        self,
        user_id: str,
        term_id: Optional[str] = None,
        version: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> ServiceResult:
        if term_id:
            term = self.terms.get_by_id(term_id)
        elif version:
            term = self.terms.get_by_version(version)
        else:
            term = self.terms.get_active()
        if term is None:
            return ServiceResult.failure(ErrorCode.TERM_NOT_FOUND, "Terms not found.")

        self.terms.record_acceptance(user_id, term, client)
        self.users.update_user(user_id, terms_accepted_at=now_iso())
        self.audit.record(
            "ACCEPT_TERMS",
            "Term",
            entity_id=term.id,
            user_id=user_id,
            after={"term_id": term.id, "term_version": term.version},
            client=client,
        )
        return ServiceResult.success({"term_id": term.id, "term_version": term.version})


def seed_default_terms(store: TermStore):
    return store.upsert(DEFAULT_TERMS_VERSION, DEFAULT_TERMS_TITLE, DEFAULT_TERMS_CONTENT, active=True)
