"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: Authorization: Bearer <access JWT>. Refresh
tokens travel in request bodies and are never accepted here.

get_current_user() raises HTTP 401 if unauthenticated.
require_terms_accepted() wraps get_current_user() and raises HTTP 403 when
    the account has not accepted the terms. Every marketplace route outside
    the public reads uses it.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

get_client_info() extracts the caller IP and user agent for audit entries.

Layer rule: auth/dependencies.py may import from fastapi because this module is
part of the FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from audit.models import ClientInfo
from auth.models import User
from auth.tokens import decode_access_token
from core.errors import ErrorCode

_BEARER = "Bearer "


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith(_BEARER):
        return auth_header[len(_BEARER):].strip() or None
    return None


def _load_user(request: Request, token: str) -> User | None:
    payload = decode_access_token(token)
    if payload is None:
        return None
    user = request.app.state.user_store.get_by_id(payload["sub"])
    if user is None or user.deleted_at:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require a valid access token.

    401 UNAUTHORIZED when no bearer token is present, 401 INVALID_TOKEN when it
    is malformed, expired, of the wrong type, or names a deleted account.
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": ErrorCode.UNAUTHORIZED, "message": "Access token required."},
        )
    user = _load_user(request, token)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": ErrorCode.INVALID_TOKEN, "message": "Invalid or expired token."},
        )
    return user


def require_terms_accepted(user: User = Depends(get_current_user)) -> User:
    """Require authentication and accepted terms. Raises HTTP 403 TERMS_NOT_ACCEPTED otherwise."""
    if not user.terms_accepted_at:
        raise HTTPException(
            status_code=403,
            detail={
                "code": ErrorCode.TERMS_NOT_ACCEPTED,
                "message": "You must accept the terms and conditions to continue.",
            },
        )
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": ErrorCode.FORBIDDEN, "message": "Admin access required."},
        )
    return user


def get_client_info(request: Request) -> ClientInfo:
    """First X-Forwarded-For hop if present, else the socket peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else None
    if not ip and request.client is not None:
        ip = request.client.host
    return ClientInfo(ip=ip or None, user_agent=request.headers.get("user-agent"))
