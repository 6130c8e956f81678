"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_token / _row_to_otp /
_row_to_refresh are the mappers. Services and dependencies never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Only HMAC digests of tokens and OTP codes reach these tables. The raw value
  is handed to the user once (by email or in the login response) and is never
  persisted.

  Single-use consumption is a conditional UPDATE (used_at IS NULL, revoked = 0)
  whose rowcount decides the winner, so two concurrent requests presenting the
  same token cannot both succeed.

  Email uniqueness is enforced in code (get_active_by_email) rather than SQL:
  a soft-deleted account keeps its row and its email, and the address may be
  registered again.

Layer rule: may import from core/ and auth.models only.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, String, Table, Text, and_

from auth.models import OtpCode, RefreshToken, SingleUseToken, User
from core.db import Database, metadata, new_id, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, index=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="USER"),
    Column("first_name", String(120), nullable=False),
    Column("last_name", String(120), nullable=False),
    Column("gender", String(10)),
    Column("birth_date", String(10)),
    Column("address", String(255)),
    Column("region_id", String(36)),
    Column("comuna_id", String(36)),
    Column("email_verified_at", String(32)),
    Column("terms_accepted_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)


def _single_use_token_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", String(36), primary_key=True),
        Column("user_id", String(36), nullable=False, index=True),
        Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
        Column("expires_at", String(32), nullable=False),
        Column("used_at", String(32)),
        Column("created_at", String(32), nullable=False),
    )


email_verification_tokens = _single_use_token_table("email_verification_tokens")
password_reset_tokens = _single_use_token_table("password_reset_tokens")

otp_codes = Table(
    "otp_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("code_hash", String(64), nullable=False),
    Column("purpose", String(20), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

# Columns a caller may change through update_user(). Guarding here keeps a
# route from ever writing password_hash or role through a profile update.
_PROFILE_FIELDS = {
    "first_name",
    "last_name",
    "gender",
    "birth_date",
    "address",
    "region_id",
    "comuna_id",
    "terms_accepted_at",
    "email_verified_at",
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users and their credential artifacts.

    Usage:
        store = UserStore(Database("sqlite:///./myassets.db"))
        user_id = store.create_user(User(email="a@b.cl", password_hash=hash_password("secret123"), ...))
        user = store.get_active_by_email("a@b.cl")
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.engine = db.engine
        db.create_tables(users, email_verification_tokens, password_reset_tokens, otp_codes, refresh_tokens)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id. The email is lower-cased."""
        user_id = user.id or new_id()
        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=user.email.lower(),
                    password_hash=user.password_hash,
                    role=user.role,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    gender=user.gender,
                    birth_date=user.birth_date,
                    address=user.address,
                    region_id=user.region_id,
                    comuna_id=user.comuna_id,
                    email_verified_at=user.email_verified_at,
                    terms_accepted_at=user.terms_accepted_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by id, soft-deleted rows included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_active_by_email(self, email: str) -> User | None:
        """Look up a non-deleted user by email (case-insensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select().where(and_(users.c.email == email.lower(), users.c.deleted_at.is_(None)))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_many(self, user_ids) -> dict[str, User]:
        """Return {id: User} for the given ids. Missing ids are simply absent."""
        ids = list(set(user_ids))
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().where(users.c.id.in_(ids))).fetchall()
        return {r.id: _row_to_user(r) for r in rows}

    def update_user(self, user_id: str, **fields) -> bool:
        """Update profile fields on a non-deleted user.

        Unknown field names raise ValueError. Returns True if a row was updated.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update().where(and_(users.c.id == user_id, users.c.deleted_at.is_(None))).values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_role(self, user_id: str, role: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(role=role, updated_at=now_iso()))
            conn.commit()
        return result.rowcount > 0

    def soft_delete_user(self, user_id: str) -> bool:
        """Stamp deleted_at and revoke every refresh token of the user in one transaction."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(and_(users.c.id == user_id, users.c.deleted_at.is_(None)))
                .values(deleted_at=now, updated_at=now)
            )
            if result.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(refresh_tokens.update().where(refresh_tokens.c.user_id == user_id).values(revoked=1))
            conn.commit()
        return True

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def create_verification_token(self, user_id: str, token_hash: str, expires_at: str) -> str:
        return self._insert_single_use(email_verification_tokens, user_id, token_hash, expires_at)

    def get_verification_token(self, token_hash: str) -> SingleUseToken | None:
        return self._get_single_use(email_verification_tokens, token_hash)

    def consume_verification_token(self, token_id: str, user_id: str, now: str) -> bool:
        """Mark the token used and stamp the user's email_verified_at atomically.

        Returns False if another request consumed the token first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                email_verification_tokens.update()
                .where(and_(email_verification_tokens.c.id == token_id, email_verification_tokens.c.used_at.is_(None)))
                .values(used_at=now)
            )
            if result.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(users.update().where(users.c.id == user_id).values(email_verified_at=now, updated_at=now))
            conn.commit()
        return True

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, user_id: str, token_hash: str, expires_at: str) -> str:
        return self._insert_single_use(password_reset_tokens, user_id, token_hash, expires_at)

    def get_reset_token(self, token_hash: str) -> SingleUseToken | None:
        return self._get_single_use(password_reset_tokens, token_hash)

    def consume_reset_token(self, token_id: str, user_id: str, password_hash: str, now: str) -> bool:
        """Mark the token used, replace the password hash and revoke all sessions atomically.

        Returns False if another request consumed the token first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                password_reset_tokens.update()
                .where(and_(password_reset_tokens.c.id == token_id, password_reset_tokens.c.used_at.is_(None)))
                .values(used_at=now)
            )
            if result.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(users.update().where(users.c.id == user_id).values(password_hash=password_hash, updated_at=now))
            conn.execute(
                refresh_tokens.update()
                .where(and_(refresh_tokens.c.user_id == user_id, refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            conn.commit()
        return True

    def _insert_single_use(self, table: Table, user_id: str, token_hash: str, expires_at: str) -> str:
        token_id = new_id()
        with self.engine.connect() as conn:
            conn.execute(
                table.insert().values(
                    id=token_id,
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return token_id

    def _get_single_use(self, table: Table, token_hash: str) -> SingleUseToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    # ------------------------------------------------------------------
    # OTP codes
    # ------------------------------------------------------------------

    def replace_otp(self, email: str, purpose: str, code_hash: str, expires_at: str) -> str:
        """Delete any prior code for (email, purpose) and insert the new one."""
        otp_id = new_id()
        email = email.lower()
        with self.engine.connect() as conn:
            conn.execute(otp_codes.delete().where(and_(otp_codes.c.email == email, otp_codes.c.purpose == purpose)))
            conn.execute(
                otp_codes.insert().values(
                    id=otp_id,
                    email=email,
                    code_hash=code_hash,
                    purpose=purpose,
                    expires_at=expires_at,
                    attempts=0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return otp_id

    def get_latest_otp(self, email: str, purpose: str) -> OtpCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                otp_codes.select()
                .where(and_(otp_codes.c.email == email.lower(), otp_codes.c.purpose == purpose))
                .order_by(otp_codes.c.created_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def increment_otp_attempts(self, otp_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                otp_codes.update().where(otp_codes.c.id == otp_id).values(attempts=otp_codes.c.attempts + 1)
            )
            conn.commit()

    def delete_otp(self, otp_id: str) -> bool:
        """Delete a code. Returns False if it was already gone (consumed concurrently)."""
        with self.engine.connect() as conn:
            result = conn.execute(otp_codes.delete().where(otp_codes.c.id == otp_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: str, token_hash: str, expires_at: str) -> str:
        token_id = new_id()
        with self.engine.connect() as conn:
            conn.execute(
                refresh_tokens.insert().values(
                    id=token_id,
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    revoked=0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return token_id

    def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def rotate_refresh_token(self, old_id: str, user_id: str, new_hash: str, expires_at: str) -> bool:
        """Revoke old_id and insert its replacement in one transaction.

        Returns False (and inserts nothing) if old_id was already revoked.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where(and_(refresh_tokens.c.id == old_id, refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            if result.rowcount == 0:
                conn.rollback()
                return False
            conn.execute(
                refresh_tokens.insert().values(
                    id=new_id(),
                    user_id=user_id,
                    token_hash=new_hash,
                    expires_at=expires_at,
                    revoked=0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return True

    def revoke_refresh_token(self, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                refresh_tokens.update().where(refresh_tokens.c.token_hash == token_hash).values(revoked=1)
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        first_name=row.first_name,
        last_name=row.last_name,
        gender=row.gender,
        birth_date=row.birth_date,
        address=row.address,
        region_id=row.region_id,
        comuna_id=row.comuna_id,
        email_verified_at=row.email_verified_at,
        terms_accepted_at=row.terms_accepted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_token(row) -> SingleUseToken:
    return SingleUseToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        used_at=row.used_at,
        created_at=row.created_at,
    )


def _row_to_otp(row) -> OtpCode:
    return OtpCode(
        id=row.id,
        email=row.email,
        code_hash=row.code_hash,
        purpose=row.purpose,
        expires_at=row.expires_at,
        attempts=row.attempts,
        created_at=row.created_at,
    )


def _row_to_refresh(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )
