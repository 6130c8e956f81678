"""
auth/service.py -- Account, credential and session lifecycle.

AuthService owns every flow that mints, checks or consumes a secret:
registration + email verification, password login, OTP issuance and
verification, refresh-token rotation, logout, password recovery and reset,
and the self-service profile endpoints.

Contract:
  Expected failures come back as ServiceResult.failure(code, message). The
  route layer maps the code to an HTTP status.
  Infrastructure failures propagate: MailDeliveryError from the mailer,
  SQLAlchemy errors from the store.

Time:
  All expiry decisions go through self.now(), injected at construction.
  Production passes core.db.utcnow; tests pass a controllable clock so
  "one second past expiry" is exact rather than a sleep. A secret expires
  strictly after its stored instant: now > expires_at.

Single use:
  Consumption relies on the store's conditional UPDATE/DELETE. When a
  concurrent request wins the race the loser gets the same error a
  sequential replay would (TOKEN_ALREADY_USED, TOKEN_REVOKED, INVALID_OTP).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from audit.models import ClientInfo
from audit.store import AuditStore
from auth.models import OTP_PURPOSES, User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    generate_otp,
    generate_token,
    hash_password,
    hash_token,
    token_matches,
)
from core.config import Settings
from core.db import parse_iso, utcnow
from core.errors import ErrorCode, ServiceResult
from core.mailer import Mailer

logger = logging.getLogger("myassets.auth.service")

EMAIL_VERIFY_TTL = timedelta(hours=24)
PASSWORD_RESET_TTL = timedelta(hours=1)
OTP_TTL = timedelta(minutes=10)
OTP_MAX_ATTEMPTS = 5

RECOVERY_MESSAGE = "If the email is registered you will receive a link to reset your password."


def user_public(user: User) -> dict:
    """Profile snapshot safe to return to clients and to write to the audit log."""
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "gender": user.gender,
        "birth_date": user.birth_date,
        "address": user.address,
        "region_id": user.region_id,
        "comuna_id": user.comuna_id,
        "email_verified_at": user.email_verified_at,
        "terms_accepted_at": user.terms_accepted_at,
        "created_at": user.created_at,
    }


class AuthService:
    def __init__(
        self,
        users: UserStore,
        audit: AuditStore,
        mailer: Mailer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.users = users
        self.audit = audit
        self.mailer = mailer
        self.settings = settings
        self.now = clock

    def _now_iso(self) -> str:
        return self.now().isoformat()

    def _expired(self, expires_at: str) -> bool:
        return self.now() > parse_iso(expires_at)

    def _link(self, path: str, token: str) -> str:
        base = self.settings.app_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}{path}?token={token}"

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        accept_terms: bool,
        gender: Optional[str] = None,
        birth_date: Optional[str] = None,
        address: Optional[str] = None,
        region_id: Optional[str] = None,
        comuna_id: Optional[str] = None,
    ) -> ServiceResult:
        email = email.lower()
        if self.users.get_active_by_email(email) is not None:
            return ServiceResult.failure(ErrorCode.EMAIL_IN_USE, "Email is already registered.")
        if not accept_terms:
            return ServiceResult.failure(ErrorCode.TERMS_REQUIRED, "You must accept the terms and conditions.")

        user_id = self.users.create_user(
            User(
                email=email,
                password_hash=hash_password(password),
                first_name=first_name,
                last_name=last_name,
                gender=gender,
                birth_date=birth_date,
                address=address,
                region_id=region_id,
                comuna_id=comuna_id,
                terms_accepted_at=self._now_iso(),
            )
        )

        raw = generate_token()
        self.users.create_verification_token(
            user_id, hash_token(raw), (self.now() + EMAIL_VERIFY_TTL).isoformat()
        )
        self.mailer.send_verification(email, first_name, self._link("/auth/verify-email", raw))
        logger.info("Registered user %s", user_id)

        return ServiceResult.success(
            {
                "user_id": user_id,
                "email": email,
                "message": "Registration successful. Check your email to verify your account.",
            }
        )

    def verify_email(self, token: str) -> ServiceResult:
        record = self.users.get_verification_token(hash_token(token))
        if record is None:
            return ServiceResult.failure(ErrorCode.INVALID_TOKEN, "Invalid verification token.")
        if record.used_at:
            return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used.")
        if self._expired(record.expires_at):
            return ServiceResult.failure(ErrorCode.TOKEN_EXPIRED, "The verification link has expired.")
        if not self.users.consume_verification_token(record.id, record.user_id, self._now_iso()):
            return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used.")
        return ServiceResult.success({"message": "Email verified successfully."})

    # ------------------------------------------------------------------
    # Login and OTP
    # ------------------------------------------------------------------

    def login(self, email: str, password: Optional[str], client: Optional[ClientInfo] = None) -> ServiceResult:
        """Password login, or OTP issuance when no password is given."""
        if not password:
            return self.send_otp(email, "LOGIN")
        user = authenticate_user(self.users, email, password)
        if user is None:
            return ServiceResult.failure(ErrorCode.INVALID_CREDENTIALS, "Incorrect email or password.")
        return ServiceResult.success(self._issue_session(user, client))

    def send_otp(self, email: str, purpose: str = "LOGIN") -> ServiceResult:
        if purpose not in OTP_PURPOSES:
            raise ValueError(f"Unknown OTP purpose: {purpose!r}")
        user = self.users.get_active_by_email(email)
        if user is None:
            return ServiceResult.failure(ErrorCode.USER_NOT_FOUND, "No account exists with that email.")
        code = generate_otp(6)
        self.users.replace_otp(user.email, purpose, hash_token(code), (self.now() + OTP_TTL).isoformat())
        self.mailer.send_otp(user.email, user.first_name, code, purpose)
        return ServiceResult.success({"message": "Code sent to your email."})

    def verify_otp(
        self,
        email: str,
        code: str,
        purpose: str = "LOGIN",
        client: Optional[ClientInfo] = None,
    ) -> ServiceResult:
        record = self.users.get_latest_otp(email, purpose)
        if record is None:
            return ServiceResult.failure(ErrorCode.INVALID_OTP, "Incorrect or expired code.")
        if record.attempts >= OTP_MAX_ATTEMPTS:
            return ServiceResult.failure(ErrorCode.OTP_MAX_ATTEMPTS, "Too many attempts. Request a new code.")
        if self._expired(record.expires_at):
            return ServiceResult.failure(ErrorCode.OTP_EXPIRED, "The code has expired.")
        if not token_matches(code, record.code_hash):
            self.users.increment_otp_attempts(record.id)
            return ServiceResult.failure(ErrorCode.INVALID_OTP, "Incorrect code.")
        if not self.users.delete_otp(record.id):
            return ServiceResult.failure(ErrorCode.INVALID_OTP, "Incorrect or expired code.")

        if purpose == "LOGIN":
            user = self.users.get_active_by_email(email)
            if user is None:
                return ServiceResult.failure(ErrorCode.USER_NOT_FOUND, "User not found.")
            return ServiceResult.success(self._issue_session(user, client))

        if purpose == "EMAIL_VERIFY":
            user = self.users.get_active_by_email(email)
            if user is not None:
                self.users.update_user(user.id, email_verified_at=self._now_iso())
            return ServiceResult.success({"message": "Email verified successfully."})

        return ServiceResult.success({"message": "Code verified successfully."})

    def _issue_session(self, user: User, client: Optional[ClientInfo]) -> dict:
        refresh = create_refresh_token(user.id)
        expires_at = self.now() + timedelta(seconds=self.settings.refresh_token_expire_seconds)
        self.users.create_refresh_token(user.id, hash_token(refresh), expires_at.isoformat())
        self.audit.record("LOGIN", "User", entity_id=user.id, user_id=user.id, client=client)
        return {
            "access_token": create_access_token(user.id, user.email, user.role),
            "refresh_token": refresh,
            "expires_in": self.settings.access_token_expire_seconds,
            "user": {
                "id": user.id,
                "email": user.email,
                "role": user.role,
                "first_name": user.first_name,
                "last_name": user.last_name,
            },
        }

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> ServiceResult:
        token_hash = hash_token(refresh_token)
        record = self.users.get_refresh_token(token_hash)
        user = self.users.get_by_id(record.user_id) if record is not None else None
        if record is None or user is None or user.deleted_at:
            return ServiceResult.failure(ErrorCode.INVALID_REFRESH_TOKEN, "Invalid or expired token.")
        if record.revoked:
            return ServiceResult.failure(ErrorCode.TOKEN_REVOKED, "Session has been closed.")
        if self._expired(record.expires_at):
            return ServiceResult.failure(ErrorCode.TOKEN_EXPIRED, "Refresh token has expired.")

        new_refresh = create_refresh_token(user.id)
        expires_at = self.now() + timedelta(seconds=self.settings.refresh_token_expire_seconds)
        if not self.users.rotate_refresh_token(record.id, user.id, hash_token(new_refresh), expires_at.isoformat()):
            return ServiceResult.failure(ErrorCode.TOKEN_REVOKED, "Session has been closed.")
        return ServiceResult.success(
            {
                "access_token": create_access_token(user.id, user.email, user.role),
                "refresh_token": new_refresh,
                "expires_in": self.settings.access_token_expire_seconds,
            }
        )

    def logout(self, refresh_token: str) -> ServiceResult:
        self.users.revoke_refresh_token(hash_token(refresh_token))
        return ServiceResult.success({"message": "Logged out successfully."})

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def password_recovery(self, email: str) -> ServiceResult:
        """Issue a reset link when the account exists. The result never reveals which case applied."""
        user = self.users.get_active_by_email(email)
        if user is not None:
            raw = generate_token()
            self.users.create_reset_token(user.id, hash_token(raw), (self.now() + PASSWORD_RESET_TTL).isoformat())
            self.mailer.send_password_reset(user.email, user.first_name, self._link("/auth/password-reset", raw))
        return ServiceResult.success({"message": RECOVERY_MESSAGE})

    def password_reset(self, token: str, new_password: str) -> ServiceResult:
        record = self.users.get_reset_token(hash_token(token))
        if record is None:
            return ServiceResult.failure(ErrorCode.INVALID_TOKEN, "Invalid or expired link.")
        if record.used_at:
            return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used.")
        if self._expired(record.expires_at):
            return ServiceResult.failure(ErrorCode.TOKEN_EXPIRED, "The link has expired.")
        if not self.users.consume_reset_token(record.id, record.user_id, hash_password(new_password), self._now_iso()):
            return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used.")
        return ServiceResult.success({"message": "Password updated successfully."})

    # ------------------------------------------------------------------
    # Self-service profile
    # ------------------------------------------------------------------

    def update_profile(self, user: User, fields: dict, client: Optional[ClientInfo] = None) -> ServiceResult:
        before = user_public(user)
        if fields:
            self.users.update_user(user.id, **fields)
        updated = self.users.get_by_id(user.id)
        after = user_public(updated)
        self.audit.record("UPDATE", "User", entity_id=user.id, user_id=user.id, before=before, after=after, client=client)
        return ServiceResult.success(after)

    def delete_account(self, user: User, client: Optional[ClientInfo] = None) -> ServiceResult:
        if not self.users.soft_delete_user(user.id):
            return ServiceResult.failure(ErrorCode.USER_NOT_FOUND, "User not found.")
        self.audit.record("DELETE", "User", entity_id=user.id, user_id=user.id, before=user_public(user), client=client)
        return ServiceResult.success({"message": "Account deleted."})
