"""
auth/tokens.py -- JWT, password hashing, and one-time secret utilities.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY and
       carry sub (user id), email, role, type="access" and expiry. Refresh
       tokens are signed with REFRESH_SECRET_KEY, carry type="refresh" and a
       random jti so two tokens minted in the same second never collide on the
       token_hash UNIQUE index. Verification returns None on any failure --
       the dependency layer turns that into a 401.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

  One-time secrets (verification links, reset links, OTP codes, refresh
       tokens): stored as HMAC-SHA256(SECRET_KEY, raw). Deterministic, so the
       store looks them up by hash; keyed, so a leaked table cannot be
       brute-forced offline for 6-digit codes without SECRET_KEY as well.

Layer rule: may import from core/ and auth/ only.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("myassets.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API caps passwords at 100
    characters, and 4.x raises on overlong input, so we truncate explicitly.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("myassets_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Soft-deleted accounts are never returned by the store lookup.
    Returns the User on success, None on any failure.
    """
    user = store.get_active_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, email: str, role: str, expires_delta: timedelta | None = None) -> str:
    """Encode a signed access JWT.

    expires_delta defaults to Settings.access_token_expire_seconds. Tests pass
    a negative delta to mint an already-expired token.
    """
    if expires_delta is None:
        expires_delta = timedelta(seconds=_settings.access_token_expire_seconds)
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "type": TOKEN_TYPE_ACCESS,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access JWT. Returns the payload dict or None on any failure.

    A refresh token presented as a bearer token fails twice over: it is signed
    with the other key, and its type claim is not "access".
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != TOKEN_TYPE_ACCESS or not payload.get("sub"):
        return None
    return payload


def create_refresh_token(user_id: str) -> str:
    """Encode a signed refresh JWT. Revocation is tracked in the database, not the token."""
    payload = {
        "sub": user_id,
        "type": TOKEN_TYPE_REFRESH,
        "jti": secrets.token_hex(16),
        "exp": datetime.now(timezone.utc) + timedelta(seconds=_settings.refresh_token_expire_seconds),
    }
    return jwt.encode(payload, _settings.refresh_secret_key, algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# One-time secrets
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return 32 random bytes as 64 hex characters, used for emailed links."""
    return secrets.token_hex(32)


def generate_otp(length: int = 6) -> str:
    """Return a numeric code drawn uniformly from the CSPRNG."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_token(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()


def token_matches(raw: str, stored_hash: str) -> bool:
    """Constant-time comparison of a raw secret against its stored hash."""
    return hmac.compare_digest(hash_token(raw), stored_hash)
