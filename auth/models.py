"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores build these from
rows; services and routes read them. Raw secrets never live on these objects:
token_hash / code_hash hold HMAC-SHA256 digests only.

Layer rule: no imports from api/, listings/, bookings/, messaging/ or terms/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

GENDERS = ("MALE", "FEMALE", "OTHER")

OTP_PURPOSES = ("LOGIN", "EMAIL_VERIFY", "PASSWORD_RESET")


@dataclass
class User:
    """A marketplace account.

    email is stored lower-cased and unique among non-deleted users.
    email_verified_at / terms_accepted_at are ISO 8601 UTC strings or None.
    deleted_at marks a soft-deleted account; such users cannot authenticate.
    """

    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: str = ROLE_USER
    id: str | None = None
    gender: str | None = None
    birth_date: str | None = None  # YYYY-MM-DD
    address: str | None = None
    region_id: str | None = None
    comuna_id: str | None = None
    email_verified_at: str | None = None
    terms_accepted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class SingleUseToken:
    """An email verification or password reset token row."""

    user_id: str
    token_hash: str
    expires_at: str
    id: str | None = None
    used_at: str | None = None
    created_at: str | None = None


@dataclass
class OtpCode:
    """A hashed one-time code. At most one live row per (email, purpose)."""

    email: str
    code_hash: str
    purpose: str
    expires_at: str
    id: str | None = None
    attempts: int = 0
    created_at: str | None = None


@dataclass
class RefreshToken:
    user_id: str
    token_hash: str
    expires_at: str
    id: str | None = None
    revoked: bool = False
    created_at: str | None = None
