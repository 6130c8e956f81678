"""
api/errors.py -- Error code to HTTP status mapping.

Services return ServiceResult.failure(code, message); route handlers call
raise_for_result() which raises HTTPException(status, detail=ErrorDetail).
The HTTPException handler in api/main.py renders the envelope.

One table, so a code always maps to the same status wherever it surfaces.
"""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import HTTPException

from api.models import ErrorDetail
from core.errors import ErrorCode, ServiceResult

_STATUS: dict[str, int] = {
    ErrorCode.EMAIL_IN_USE: 409,
    ErrorCode.TERMS_REQUIRED: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.INVALID_TOKEN: 400,
    ErrorCode.MISSING_TOKEN: 400,
    ErrorCode.TOKEN_ALREADY_USED: 400,
    ErrorCode.TOKEN_EXPIRED: 400,
    ErrorCode.TOKEN_REVOKED: 401,
    ErrorCode.INVALID_REFRESH_TOKEN: 401,
    ErrorCode.INVALID_OTP: 400,
    ErrorCode.OTP_EXPIRED: 400,
    ErrorCode.OTP_MAX_ATTEMPTS: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.TERMS_NOT_ACCEPTED: 403,
    ErrorCode.TERM_NOT_FOUND: 404,
    ErrorCode.NO_ACTIVE_TERMS: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.OWN_PROPERTY: 400,
    ErrorCode.MISSING_IMAGE: 400,
    ErrorCode.UPLOAD_ERROR: 400,
    ErrorCode.MISSING_REGION_ID: 400,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.MAIL_DELIVERY_FAILED: 503,
    ErrorCode.DB_UNAVAILABLE: 503,
    ErrorCode.TOO_MANY_REQUESTS: 429,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: str) -> int:
    return _STATUS.get(code, 400)


def api_error(code: str, message: str, status: Optional[int] = None, details: Optional[list[str]] = None) -> HTTPException:
    return HTTPException(
        status_code=status or status_for(code),
        detail=ErrorDetail(code=code, message=message, details=details).model_dump(exclude_none=True),
    )


def raise_for_result(result: ServiceResult, status: Optional[int] = None) -> None:
    """Raise the mapped HTTPException if result is a failure. status overrides the table."""
    if not result.ok:
        raise api_error(result.error, result.message or result.error, status)


def not_found(message: str = "Resource not found.") -> NoReturn:
    raise api_error(ErrorCode.NOT_FOUND, message)
