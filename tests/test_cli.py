"""
tests/test_cli.py -- The myassets command line (main.py).

seed runs against a throwaway SQLite file so its effects can be inspected
after the command closes its own connection.
"""

from __future__ import annotations

import pytest

import main
from auth.store import UserStore
from auth.tokens import verify_password
from core.config import get_settings
from core.db import Database
from core.errors import MailDeliveryError
from listings.regions import RegionStore
from terms.store import TermStore


@pytest.fixture
def seed_db(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'seed.db'}"
    settings = get_settings().model_copy(update={"database_url": url})
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    return url


def test_seed_loads_reference_data(seed_db) -> None:
    assert main.main(["seed"]) == 0
    assert main.main(["seed"]) == 0

    db = Database(seed_db)
    try:
        assert len(RegionStore(db).list_regions()) == 16
        assert TermStore(db).get_active() is not None
    finally:
        db.close()


def test_seed_creates_then_promotes_admin(seed_db) -> None:
    assert main.main(["seed", "--admin-email", "Root@Example.cl", "--admin-password", "S3cret-pass"]) == 0

    db = Database(seed_db)
    try:
        admin = UserStore(db).get_active_by_email("root@example.cl")
        assert admin.role == "ADMIN"
        assert admin.email_verified_at and admin.terms_accepted_at
        assert verify_password("S3cret-pass", admin.password_hash)
    finally:
        db.close()

    assert main.main(["seed", "--admin-email", "root@example.cl", "--admin-password", "other-pass"]) == 0


@pytest.mark.parametrize(
    "argv",
    [
        ["seed", "--admin-email", "root@example.cl"],
        ["seed", "--admin-email", "root@example.cl", "--admin-password", "short"],
    ],
)
def test_seed_rejects_bad_admin_arguments(seed_db, argv) -> None:
    assert main.main(argv) == 2


def test_send_test_email_failure_exit_code(monkeypatch) -> None:
    def fail(self, to):
        raise MailDeliveryError("no route to host")

    monkeypatch.setattr(main.Mailer, "send_test", fail)
    assert main.main(["send-test-email", "ana@example.cl"]) == 1


def test_command_required() -> None:
    with pytest.raises(SystemExit):
        main.main([])
