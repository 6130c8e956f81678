"""
core/errors.py -- Error codes and the service result type.

Services never raise for expected business failures (bad token, email taken,
expired OTP). They return a ServiceResult carrying a tagged string code and a
human-readable message; the API layer maps the code to an HTTP status via
api.errors.status_for(). Exceptions are reserved for infrastructure failures
(database down, SMTP unreachable).

Layer rule: core/ is the kernel -- no imports from other project packages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class ErrorCode:
    """Tagged error codes returned in the `error` field of the envelope."""

    # Auth / accounts
    EMAIL_IN_USE = "EMAIL_IN_USE"
    TERMS_REQUIRED = "TERMS_REQUIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_TOKEN = "INVALID_TOKEN"
    MISSING_TOKEN = "MISSING_TOKEN"
    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    INVALID_OTP = "INVALID_OTP"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_MAX_ATTEMPTS = "OTP_MAX_ATTEMPTS"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    TERMS_NOT_ACCEPTED = "TERMS_NOT_ACCEPTED"

    # Terms
    TERM_NOT_FOUND = "TERM_NOT_FOUND"
    NO_ACTIVE_TERMS = "NO_ACTIVE_TERMS"

    # Marketplace
    NOT_FOUND = "NOT_FOUND"
    OWN_PROPERTY = "OWN_PROPERTY"
    MISSING_IMAGE = "MISSING_IMAGE"
    UPLOAD_ERROR = "UPLOAD_ERROR"
    MISSING_REGION_ID = "MISSING_REGION_ID"
    INVALID_STATE = "INVALID_STATE"

    # Infrastructure
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MAIL_DELIVERY_FAILED = "MAIL_DELIVERY_FAILED"
    DB_UNAVAILABLE = "DB_UNAVAILABLE"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class MailDeliveryError(Exception):
    """Raised by the mailer when a message could not be handed to SMTP."""


@dataclass(frozen=True)
class ServiceResult:
    """Outcome of a service call: either data or an (error, message) pair."""

    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any = None) -> "ServiceResult":
        return cls(data=data)

    @classmethod
    def failure(cls, error: str, message: str) -> "ServiceResult":
        return cls(error=error, message=message)
