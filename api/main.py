"""
api/main.py -- FastAPI application entry point for the catalog identity API.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  plus two function middlewares: request logging and security headers.

Lifespan handles startup (settings, store, identity service wiring, admin
seed) and shutdown (close DB connection) symmetrically.

Error mapping: every IdentityError is turned into the ErrorResponse envelope
by a single handler keyed on ErrorKind (_STATUS_BY_KIND). Storage and other
unexpected exceptions fall through to the generic 500 handler, which never
leaks details to the client.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.identity import router as identity_router
from auth.mailer import LoggingVerificationSender, SmtpVerificationSender
from auth.otp import RandomDigitsGenerator
from auth.store import SqlUserStore
from auth.tokens import BcryptPasswordHasher, JwtTokenIssuer
from core.config import Settings, get_settings
from identity.errors import ErrorKind, IdentityError
from identity.models import AdminSeedInput
from identity.passwords import PasswordPolicy
from identity.ports import VerificationSender
from identity.service import IdentityService

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("catalog.api")

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_verification_sender(settings: Settings) -> VerificationSender:
    """SMTP when configured, otherwise the logging no-op sender."""
    if settings.smtp_enabled:
        return SmtpVerificationSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.smtp_from,
            starttls=settings.smtp_starttls,
            timeout=settings.smtp_timeout_seconds,
        )
    logger.warning("SMTP not configured; verification codes will not be emailed")
    return LoggingVerificationSender()


def build_identity_service(
    settings: Settings,
    store: SqlUserStore,
    token_issuer: JwtTokenIssuer,
    sender: VerificationSender | None = None,
) -> IdentityService:
    """Assemble IdentityService from settings. The store serves as both UserStore and RoleStore."""
    return IdentityService(
        user_store=store,
        role_store=store,
        password_hasher=BcryptPasswordHasher(rounds=settings.bcrypt_rounds),
        token_issuer=token_issuer,
        code_generator=RandomDigitsGenerator(length=settings.verification_code_length),
        verification_sender=sender if sender is not None else build_verification_sender(settings),
        password_policy=PasswordPolicy(min_length=settings.password_min_length),
        code_ttl=timedelta(seconds=settings.verification_code_ttl_seconds),
    )


def seed_admin_from_settings(service: IdentityService, settings: Settings) -> None:
    """Run the idempotent admin seed. A bad seed is logged, never fatal."""
    try:
        service.seed_admin(
            AdminSeedInput(
                email=settings.admin_email,
                password=settings.admin_password,
                full_name=settings.admin_full_name,
            )
        )
    except IdentityError as exc:
        logger.warning("Admin seed skipped: %s", exc.message)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. A ConfigurationError from IdentityService aborts startup --
    a half-wired identity service must never serve requests.
    """
    logger.info("Catalog identity API starting up")
    settings = get_settings()
    app.state.user_store = SqlUserStore(settings.database_url)
    app.state.token_issuer = JwtTokenIssuer(
        secret_key=settings.secret_key,
        issuer=settings.jwt_issuer,
        ttl_seconds=settings.token_expire_seconds,
    )
    app.state.identity_service = build_identity_service(settings, app.state.user_store, app.state.token_issuer)
    seed_admin_from_settings(app.state.identity_service, settings)
    logger.info("Identity service initialized (smtp=%s)", settings.smtp_enabled)

    yield

    app.state.user_store.close()
    logger.info("Catalog identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Catalog Identity API",
    description="Registration, email verification, login and role management for the catalog service.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() calls are applied outermost-first from the caller's
# perspective. Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Latency is measured around call_next. Bodies are never logged --
# they carry passwords and verification codes.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Security headers
#
# Set on every response, errors included. HSTS only takes effect when the API
# is served over HTTPS; browsers ignore it on plain HTTP.
# ---------------------------------------------------------------------------

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
}


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(identity_router, prefix="/api/v1", tags=["Identity"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.CREDENTIALS: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INFRASTRUCTURE: 502,
    ErrorKind.CONFIGURATION: 500,
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    envelope = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Map an identity core error to its HTTP status by kind.

    Credentials errors carry no context, so every login or verification
    failure produces a byte-identical body.
    """
    if exc.kind in (ErrorKind.INFRASTRUCTURE, ErrorKind.CONFIGURATION):
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    detail = ", ".join(f"{key}={value}" for key, value in exc.context.items()) or None
    return _error_response(_STATUS_BY_KIND[exc.kind], exc.code, exc.message, detail)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After. Every hit is logged with the client address."""
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path params. Input values are left out of the detail (they may be passwords)."""
    fields = sorted({".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()})
    return _error_response(422, "validation_error", "Request validation failed.", ", ".join(fields) or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes and auth dependencies raise HTTPException with a {"code", "message"} dict; pass it through."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for storage, hashing and signing failures.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
