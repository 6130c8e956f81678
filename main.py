#!/usr/bin/env python3
"""
My Assets -- rental marketplace API.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py seed
  python main.py seed --admin-email admin@example.cl --admin-password 'S3cret-pass'
  python main.py send-test-email someone@example.cl

Configuration comes from environment variables or .env (see core/config.py).
DEBUG=true auto-generates signing keys for local development.
"""

import argparse
import sys

from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.db import Database, now_iso
from core.errors import MailDeliveryError
from core.mailer import Mailer
from listings.regions import RegionStore, seed_chile
from terms.service import seed_default_terms
from terms.store import TermStore


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _seed_admin(users: UserStore, email: str, password: str) -> None:
    existing = users.get_active_by_email(email)
    if existing is not None:
        users.set_role(existing.id, ROLE_ADMIN)
        print(f"  {email} already exists, promoted to ADMIN")
        return
    now = now_iso()
    users.create_user(
        User(
            email=email,
            password_hash=hash_password(password),
            first_name="Admin",
            last_name="",
            role=ROLE_ADMIN,
            email_verified_at=now,
            terms_accepted_at=now,
        )
    )
    print(f"  Created ADMIN {email}")


def _seed(args: argparse.Namespace) -> int:
    if bool(args.admin_email) != bool(args.admin_password):
        print("  [!] --admin-email and --admin-password must be given together.")
        return 2
    if args.admin_password and len(args.admin_password) < 8:
        print("  [!] --admin-password must be at least 8 characters.")
        return 2

    db = Database(get_settings().database_url)
    try:
        regions_added, comunas_added = seed_chile(RegionStore(db))
        print(f"  Regions: {regions_added} added, comunas: {comunas_added} added")
        term = seed_default_terms(TermStore(db))
        print(f"  Active terms: version {term.version}")
        if args.admin_email:
            _seed_admin(UserStore(db), args.admin_email.strip().lower(), args.admin_password)
    finally:
        db.close()
    return 0


def _send_test_email(args: argparse.Namespace) -> int:
    try:
        Mailer(get_settings()).send_test(args.to)
    except MailDeliveryError as e:
        print(f"  [!] Could not send: {e}")
        return 1
    print(f"  Test email sent to {args.to}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="myassets",
        description="My Assets rental marketplace API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_serve)

    seed = sub.add_parser("seed", help="Load regions, comunas and the default terms")
    seed.add_argument("--admin-email", metavar="EMAIL", help="Also create (or promote) an ADMIN account")
    seed.add_argument("--admin-password", metavar="PASSWORD")
    seed.set_defaults(func=_seed)

    test_mail = sub.add_parser("send-test-email", help="Send a test message through the configured SMTP server")
    test_mail.add_argument("to", metavar="EMAIL")
    test_mail.set_defaults(func=_send_test_email)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
