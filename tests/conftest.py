"""
tests/conftest.py -- Shared test fixtures for My Assets integration tests.

This module provides:
  - FakeMailer: a Mailer whose transport records messages instead of
    opening an SMTP socket (templates are still rendered)
  - make_db(): isolated named shared-memory SQLite databases
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api: module-scoped Harness around a TestClient with helpers for
    registering, logging in and reading the outbox
  - service_env: AuthService/TermsService over a fresh database with an
    injectable Clock, for expiry tests that must not sleep

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI shares one in-memory instance across all connections
in the same process.

DEBUG and RATE_LIMIT_ENABLED must be set before any app import so
get_settings() auto-generates signing keys and the limiter starts disabled.
"""

from __future__ import annotations

import os
import re
import tempfile
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from types import SimpleNamespace
from typing import Optional

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="myassets-uploads-"))

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from audit.store import AuditStore
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from core.db import Database
from core.errors import MailDeliveryError
from core.mailer import Mailer
from listings.regions import seed_chile
from terms.service import TermsService, seed_default_terms
from terms.store import TermStore

PASSWORD = "correct-horse-9"

_TOKEN_RE = re.compile(r"token=([0-9a-f]+)")
_CODE_RE = re.compile(r"code is: (\d{6})")


# ---------------------------------------------------------------------------
# Mail capture
# ---------------------------------------------------------------------------


class FakeMailer(Mailer):
    """Records every outgoing message. Set fail=True to simulate an SMTP outage."""

    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.outbox: list[EmailMessage] = []
        self.fail = False

    def _deliver(self, msg: EmailMessage) -> None:
        if self.fail:
            raise MailDeliveryError("simulated SMTP outage")
        self.outbox.append(msg)

    def last_to(self, email: str) -> EmailMessage:
        for msg in reversed(self.outbox):
            if msg["To"] == email:
                return msg
        raise AssertionError(f"No mail sent to {email}")

    @staticmethod
    def text_of(msg: EmailMessage) -> str:
        return msg.get_body(preferencelist=("plain",)).get_content()

    def token_for(self, email: str) -> str:
        match = _TOKEN_RE.search(self.text_of(self.last_to(email)))
        assert match, "mail carries no token link"
        return match.group(1)

    def code_for(self, email: str) -> str:
        match = _CODE_RE.search(self.text_of(self.last_to(email)))
        assert match, "mail carries no code"
        return match.group(1)


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


def make_db(suffix: str) -> Database:
    """Create an isolated named shared-memory SQLite database.

    Args:
        suffix: Unique string appended to the DB name so test modules don't
                share state.
    """
    return Database(f"sqlite:///file:test_{suffix}_{uuid.uuid4().hex[:8]}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(db: Database, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the same stores and services as production, over the test database
    and the recording mailer, and seeds regions plus the active terms.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, db, get_settings(), mailer)
        seed_chile(app.state.region_store)
        seed_default_terms(app.state.term_store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class Harness:
    """A TestClient plus the shortcuts most tests need."""

    prefix = get_settings().api_prefix

    def __init__(self, client: TestClient, mailer: FakeMailer) -> None:
        self.client = client
        self.mailer = mailer

    @property
    def state(self):
        return self.client.app.state

    def url(self, path: str) -> str:
        return f"{self.prefix}{path}"

    def get(self, path: str, token: Optional[str] = None, **kwargs):
        return self.client.get(self.url(path), headers=self.auth(token), **kwargs)

    def post(self, path: str, token: Optional[str] = None, **kwargs):
        return self.client.post(self.url(path), headers=self.auth(token), **kwargs)

    def put(self, path: str, token: Optional[str] = None, **kwargs):
        return self.client.put(self.url(path), headers=self.auth(token), **kwargs)

    def patch(self, path: str, token: Optional[str] = None, **kwargs):
        return self.client.patch(self.url(path), headers=self.auth(token), **kwargs)

    def delete(self, path: str, token: Optional[str] = None, **kwargs):
        return self.client.delete(self.url(path), headers=self.auth(token), **kwargs)

    @staticmethod
    def auth(token: Optional[str]) -> dict:
        return {"Authorization": f"Bearer {token}"} if token else {}

    @staticmethod
    def unique_email(tag: str = "user") -> str:
        return f"{tag}-{uuid.uuid4().hex[:10]}@example.cl"

    def register(self, email: Optional[str] = None, **overrides) -> str:
        email = email or self.unique_email()
        body = {
            "email": email,
            "password": PASSWORD,
            "firstName": "Ana",
            "lastName": "Rojas",
            "gender": "FEMALE",
            "birthDate": "1990-05-17",
            "acceptTerms": True,
        }
        body.update(overrides)
        resp = self.post("/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        return email

    def login(self, email: str, password: str = PASSWORD) -> dict:
        resp = self.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]

    def session(self, tag: str = "user") -> tuple[str, str]:
        """Register and log in a fresh account. Returns (user_id, access_token)."""
        data = self.login(self.register(self.unique_email(tag)))
        return data["user"]["id"], data["accessToken"]

    def strip_terms(self, user_id: str) -> None:
        self.state.user_store.update_user(user_id, terms_accepted_at=None)

    def make_admin(self, user_id: str) -> None:
        self.state.user_store.set_role(user_id, "ADMIN")

    def published_property(self, token: str, **overrides) -> dict:
        body = {
            "title": "Depto centro",
            "description": "Luminoso, cerca del metro",
            "address": "Av. Providencia 1234",
            "city": "Providencia",
            "region": "Región Metropolitana de Santiago",
            "latitude": -33.43,
            "longitude": -70.61,
            "facilities": ["wifi", "parking"],
            "bedrooms": 2,
            "bathrooms": 1,
            "price": 450000,
            "currency": "CLP",
            "type": "rent",
        }
        body.update(overrides)
        created = self.post("/properties", token, json=body)
        assert created.status_code == 201, created.text
        prop_id = created.json()["data"]["id"]
        published = self.post(f"/properties/{prop_id}/publish", token)
        assert published.status_code == 200, published.text
        return published.json()["data"]


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api(request) -> Generator[Harness, None, None]:
    """Yield a Harness over the real app with an isolated database.

    raise_server_exceptions=True surfaces unexpected 500s as test failures
    with the original traceback.
    """
    db = make_db(request.module.__name__.rsplit(".", 1)[-1])
    mailer = FakeMailer(get_settings())
    app.router.lifespan_context = _patch_lifespan(db, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client, mailer)

    db.close()


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


class Clock:
    """Controllable replacement for core.db.utcnow."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def service_env(request):
    """AuthService and TermsService over a fresh database, a recording mailer and a Clock."""
    db = make_db(re.sub(r"\W", "_", request.node.name)[:40])
    settings = get_settings()
    users = UserStore(db)
    audit = AuditStore(db)
    terms = TermStore(db)
    mailer = FakeMailer(settings)
    clock = Clock()
    env = SimpleNamespace(
        db=db,
        settings=settings,
        users=users,
        audit=audit,
        terms=terms,
        mailer=mailer,
        clock=clock,
        auth=AuthService(users, audit, mailer, settings, clock=clock),
        terms_service=TermsService(terms, users, audit),
    )
    yield env
    db.close()


@pytest.fixture
def db(request):
    """A fresh, empty Database for store-level tests."""
    database = make_db(re.sub(r"\W", "_", request.node.name)[:40])
    yield database
    database.close()
