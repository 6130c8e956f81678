"""
api/routes/v1/auth.py -- Account, credential and session endpoints.

Routes:
  POST   /auth/register          -- create account, email verification link
  POST   /auth/verify-email      -- consume verification token (body)
  GET    /auth/verify-email      -- consume verification token (?token=, emailed link)
  POST   /auth/login             -- password login, or LOGIN code when password omitted
  POST   /auth/send-login-otp    -- email a LOGIN code
  POST   /auth/send-otp          -- email a code for any purpose
  POST   /auth/verify-otp        -- check a code; LOGIN issues a session
  POST   /auth/refresh           -- rotate refresh token
  POST   /auth/logout            -- revoke refresh token (always 200)
  POST   /auth/password-recovery -- email a reset link (identical body either way)
  POST   /auth/password-reset    -- consume reset token, set new password
  GET    /auth/me                -- current profile
  PATCH  /auth/me                -- update profile
  DELETE /auth/me                -- soft-delete account

Security:
  Credential endpoints carry the tighter LOGIN_LIMIT instead of the default.
  @limiter.limit sits above @router so FastAPI registers the undecorated
  handler; SlowAPIMiddleware applies the limit by handler name.
  Session responses are sent with Cache-Control: no-store.
  authenticate_user() inside AuthService.login provides timing equalization.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.errors import api_error, raise_for_result
from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PasswordResetRequest,
    ProfileResponse,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    SendOtpRequest,
    SessionResponse,
    TokenRequest,
    VerifyOtpRequest,
    ok,
)
from api.validation import ensure_valid, validate_region_comuna
from auth.dependencies import get_client_info, get_current_user
from auth.models import User
from auth.service import AuthService, user_public
from core.errors import ErrorCode
from listings.regions import RegionStore

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _check_region_comuna(request: Request, region_id: Optional[str], comuna_id: Optional[str]) -> None:
    if not comuna_id:
        return
    regions: RegionStore = request.app.state.region_store
    comuna = regions.get_comuna(comuna_id)
    ensure_valid(validate_region_comuna(region_id, comuna_id, comuna.region_id if comuna else None))


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> dict:
    """Create an account and email a 24-hour verification link."""
    _check_region_comuna(request, body.region_id, body.comuna_id)
    result = _service(request).register(**body.model_dump(mode="json"))
    raise_for_result(result)
    return ok(RegisterResponse(**result.data))


@router.post("/auth/verify-email")
def verify_email(request: Request, body: TokenRequest) -> dict:
    result = _service(request).verify_email(body.token)
    raise_for_result(result)
    return ok(MessageResponse(**result.data))


@router.get("/auth/verify-email")
def verify_email_link(request: Request, token: Optional[str] = None) -> dict:
    """Target of the emailed link. A missing token is MISSING_TOKEN rather than a validation error."""
    if not token or not token.strip():
        raise api_error(ErrorCode.MISSING_TOKEN, "Query parameter token is required.")
    result = _service(request).verify_email(token.strip())
    raise_for_result(result)
    return ok(MessageResponse(**result.data))


# ---------------------------------------------------------------------------
# Login and OTP
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/login")
def login(request: Request, response: Response, body: LoginRequest) -> dict:
    """Password login. Without a password, a LOGIN code is emailed instead."""
    result = _service(request).login(body.email, body.password, get_client_info(request))
    raise_for_result(result)
    response.headers["Cache-Control"] = "no-store"
    if "access_token" in result.data:
        return ok(SessionResponse(**result.data))
    return ok(MessageResponse(**result.data))


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/send-login-otp")
def send_login_otp(request: Request, body: EmailRequest) -> dict:
    result = _service(request).send_otp(body.email, "LOGIN")
    raise_for_result(result)
    return ok(MessageResponse(**result.data))


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/send-otp")
def send_otp(request: Request, body: SendOtpRequest) -> dict:
    result = _service(request).send_otp(body.email, body.purpose.value)
    raise_for_result(result)
    return ok(MessageResponse(**result.data))


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/verify-otp")
def verify_otp(request: Request, response: Response, body: VerifyOtpRequest) -> dict:
    """Check a code. Every failure is a 400, whatever its code."""
    result = _service(request).verify_otp(body.email, body.code, body.purpose.value, get_client_info(request))
    raise_for_result(result, status=400)
    if "access_token" in result.data:
        response.headers["Cache-Control"] = "no-store"
        return ok(SessionResponse(**result.data))
    return ok(MessageResponse(**result.data))


# ---------------------------------------------------------------------------
# Refresh and logout
# ---------------------------------------------------------------------------


@router.post("/auth/refresh")
def refresh(request: Request, response: Response, body: RefreshRequest) -> dict:
    result = _service(request).refresh(body.refresh_token)
    raise_for_result(result, status=401)
    response.headers["Cache-Control"] = "no-store"
    return ok(SessionResponse(**result.data))


@router.post("/auth/logout")
def logout(request: Request, body: RefreshRequest) -> dict:
    result = _service(request).logout(body.refresh_token)
    return ok(MessageResponse(**result.data))


# ---------------------------------------------------------------------------
# Password recovery
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/password-recovery")
def password_recovery(request: Request, body: EmailRequest) -> dict:
    """Same response whether or not the email is registered."""
    result = _service(request).password_recovery(body.email)
    return ok(MessageResponse(**result.data))


@limiter.limit(LOGIN_LIMIT)
@router.post("/auth/password-reset")
def password_reset(request: Request, body: PasswordResetRequest) -> dict:
    result = _service(request).password_reset(body.token, body.new_password)
    raise_for_result(result)
    return ok(MessageResponse(**result.data))


# ---------------------------------------------------------------------------
# Current account
# ---------------------------------------------------------------------------


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    return ok(ProfileResponse(**user_public(current_user)))


@router.patch("/auth/me")
def update_me(request: Request, body: ProfileUpdate, current_user: User = Depends(get_current_user)) -> dict:
    fields = body.model_dump(mode="json", exclude_unset=True)
    # Names are required columns; an explicit null leaves them unchanged.
    for name in ("first_name", "last_name"):
        if name in fields and fields[name] is None:
            fields.pop(name)
    _check_region_comuna(
        request,
        fields.get("region_id", current_user.region_id),
        fields.get("comuna_id"),
    )
    result = _service(request).update_profile(current_user, fields, get_client_info(request))
    raise_for_result(result)
    return ok(ProfileResponse(**result.data))


@router.delete("/auth/me")
def delete_me(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    result = _service(request).delete_account(current_user, get_client_info(request))
    raise_for_result(result)
    return ok(MessageResponse(**result.data))
