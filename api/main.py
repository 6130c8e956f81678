"""
api/main.py -- FastAPI application entry point for the My Assets API.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- default limit everywhere, tighter limit on credential routes
  3. log_requests       -- method, path, status, latency, client IP

Lifespan opens the database once, wires every store and service onto
app.state, and disposes the engine on shutdown. init_state() is split out so
the test suite can wire the same objects against its own database and mailer.

Every response body uses one envelope:
    {"success": true,  "data": ..., "message"?: ...}
    {"success": false, "error": CODE, "message": ..., "details"?: [...]}
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import api_error
from api.limiter import limiter
from api.models import ApiInfo, HealthData, ok
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.bookings import router as bookings_router
from api.routes.v1.conversations import router as conversations_router
from api.routes.v1.favorites import router as favorites_router
from api.routes.v1.notifications import router as notifications_router
from api.routes.v1.properties import router as properties_router
from api.routes.v1.regions import router as regions_router
from api.routes.v1.terms import router as terms_router
from audit.store import AuditStore
from auth.service import AuthService
from auth.store import UserStore
from bookings.store import BookingStore
from core.config import Settings, get_settings
from core.db import Database, now_iso
from core.errors import ErrorCode, MailDeliveryError
from core.mailer import Mailer
from listings.regions import RegionStore
from listings.store import ListingStore
from messaging.store import MessagingStore
from terms.service import TermsService
from terms.store import TermStore

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("myassets.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, db: Database, app_settings: Settings, mailer: Optional[Mailer] = None) -> None:
    """Build every store and service on app.state over one Database handle."""
    app.state.settings = app_settings
    app.state.db = db
    app.state.user_store = UserStore(db)
    app.state.audit_store = AuditStore(db)
    app.state.listing_store = ListingStore(db)
    app.state.region_store = RegionStore(db)
    app.state.booking_store = BookingStore(db)
    app.state.messaging_store = MessagingStore(db)
    app.state.term_store = TermStore(db)
    app.state.mailer = mailer or Mailer(app_settings)
    app.state.auth_service = AuthService(app.state.user_store, app.state.audit_store, app.state.mailer, app_settings)
    app.state.terms_service = TermsService(app.state.term_store, app.state.user_store, app.state.audit_store)
    Path(app_settings.upload_dir, "properties").mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    logger.info("%s API starting up", settings.app_name)
    db = Database(settings.database_url)
    init_state(app, db, settings)
    logger.info("Database ready (%s)", db.url)

    yield

    db.close()
    logger.info("%s API shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{settings.app_name} API",
    description="Rental marketplace: listings, reviews, favorites, messaging and bookings.",
    version=settings.app_version,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    if response.status_code >= 500:
        level = logging.ERROR
    elif response.status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(
        level,
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_response(status: int, code: str, message: str, details: Optional[list] = None) -> JSONResponse:
    body = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status, content=body)


_DEFAULT_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.TOO_MANY_REQUESTS,
}


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After so clients know how long to back off."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, ErrorCode.TOO_MANY_REQUESTS, "Too many requests. Try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """400 VALIDATION_ERROR. message is the first problem, details lists them all as "field: message"."""
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        details.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    message = details[0] if details else "Invalid request."
    return _error_response(400, ErrorCode.VALIDATION_ERROR, message, details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException(detail={"code", "message", "details"?}) into the envelope.

    Framework-raised exceptions (unknown route, wrong method) carry a string
    detail and get a code derived from the status.
    """
    if isinstance(exc.detail, dict):
        response = _error_response(
            exc.status_code,
            exc.detail.get("code", ErrorCode.INTERNAL_ERROR),
            exc.detail.get("message", ""),
            exc.detail.get("details"),
        )
    else:
        code = _DEFAULT_CODES.get(exc.status_code, f"HTTP_{exc.status_code}")
        message = "Route not found." if exc.status_code == 404 else str(exc.detail)
        response = _error_response(exc.status_code, code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(MailDeliveryError)
async def mail_error_handler(request: Request, exc: MailDeliveryError) -> JSONResponse:
    logger.error("Mail delivery failed on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(503, ErrorCode.MAIL_DELIVERY_FAILED, "Email could not be sent. Try again later.")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback is always logged. The exception text reaches the client only
    when DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    message = str(exc) if settings.debug else "An unexpected error occurred."
    return _error_response(500, ErrorCode.INTERNAL_ERROR, message)


# ---------------------------------------------------------------------------
# Health, info and readiness
#
# Defined directly in main.py so they are reachable regardless of router
# registration. Health checks must not be throttled.
# ---------------------------------------------------------------------------


@limiter.exempt
@app.get("/health", tags=["Health"])
async def health() -> dict:
    """Liveness only. Does not touch the database."""
    return ok(HealthData(status="ok", timestamp=now_iso()))


@app.get(f"{settings.api_prefix}/", tags=["Health"])
async def api_info() -> dict:
    return ok(ApiInfo(name=f"{settings.app_name} API", version=settings.app_version, prefix=settings.api_prefix))


@limiter.exempt
@app.get(f"{settings.api_prefix}/ready", tags=["Health"])
def ready(request: Request) -> dict:
    """Readiness: 503 DB_UNAVAILABLE when the database does not answer."""
    try:
        request.app.state.db.ping()
    except SQLAlchemyError as exc:
        logger.error("Readiness check failed: %s", exc)
        raise api_error(ErrorCode.DB_UNAVAILABLE, "Database unavailable.")
    return ok(HealthData(status="ready", timestamp=now_iso()))


# ---------------------------------------------------------------------------
# Router registration and static uploads
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
app.include_router(properties_router, prefix=settings.api_prefix, tags=["Properties"])
app.include_router(favorites_router, prefix=settings.api_prefix, tags=["Favorites"])
app.include_router(conversations_router, prefix=settings.api_prefix, tags=["Conversations"])
app.include_router(notifications_router, prefix=settings.api_prefix, tags=["Notifications"])
app.include_router(bookings_router, prefix=settings.api_prefix, tags=["Bookings"])
app.include_router(terms_router, prefix=settings.api_prefix, tags=["Terms"])
app.include_router(regions_router, prefix=settings.api_prefix, tags=["Lookups"])
app.include_router(audit_router, prefix=settings.api_prefix, tags=["Audit"])

app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
