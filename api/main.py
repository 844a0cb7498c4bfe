"""
api/main.py -- FastAPI application entry point for the DNSHost API.

Run with:      uvicorn api.main:app --reload
Admin CLI:     python main.py --help

Middleware stack (innermost to outermost, i.e. registration order;
Starlette wraps each newly added middleware around the previous ones):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. auth_echo_headers     -- copies the auth pipeline's echo values onto the response
  5. log_requests          -- one access-log line per request

Lifespan handles startup (credential store, session store, auth pipeline,
session purge task) and shutdown (cancel purge task, close DB engines)
symmetrically.

Error mapping (AuthError kinds -> status):
  authentication_required / invalid_credential  401 (+ WWW-Authenticate)
  access_denied / account_suspended             403
  permission_denied                             403
  target_not_found                              400
Router 404 and 405 are reported as unknown_method / unsupported_method.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.domains import router as domains_router
from api.routes.v1.session import router as session_router
from api.routes.v1.users import router as users_router
from auth.context import (
    ECHO_DEVICE_ID,
    ECHO_DEVICE_NAME,
    ECHO_IMPERSONATING,
    ECHO_IMPERSONATOR,
    ECHO_LOGIN_ERROR,
    HEADER_2FA_CODE,
    HEADER_2FA_DEVICE_ID,
    HEADER_2FA_SAVE_DEVICE,
    HEADER_API_KEY,
    HEADER_API_USER,
    HEADER_AUTHORIZATION,
    HEADER_DOMAIN,
    HEADER_DOMAIN_KEY,
    HEADER_IMPERSONATE,
    HEADER_IMPERSONATE_ID,
    HEADER_SESSION_ID,
)
from auth.errors import AuthError, ErrorKind
from auth.pipeline import AuthPipeline
from auth.sessions import SessionStore
from auth.store import CredentialStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("dnshost.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every SESSION_PURGE_INTERVAL_SECONDS.

    get() already ignores expired rows; this only keeps the table small.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_settings.session_purge_interval_seconds)
        try:
            removed = app.state.sessions.purge_expired()
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores and the auth pipeline; tear them down on shutdown.

    Startup order matters: the pipeline holds references to both stores, and
    the purge task references app.state.sessions.
    """
    logger.info("DNSHost API starting up")
    app.state.store = CredentialStore(_settings.database_url)
    app.state.sessions = SessionStore(_settings.database_url, ttl=_settings.session_ttl_seconds)
    app.state.auth_pipeline = AuthPipeline.build(app.state.store, app.state.sessions, _settings)
    if not app.state.store.has_users():
        logger.warning("No users exist yet -- create one with: python main.py user <email>")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.sessions.close()
    app.state.store.close()
    logger.info("DNSHost API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="DNSHost API",
    description="Account, key and domain access for the DNS hosting service.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the last one registered sees
# the request first.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=[
        "Content-Type",
        HEADER_AUTHORIZATION,
        HEADER_SESSION_ID,
        HEADER_API_USER,
        HEADER_API_KEY,
        HEADER_DOMAIN,
        HEADER_DOMAIN_KEY,
        HEADER_2FA_CODE,
        HEADER_2FA_SAVE_DEVICE,
        HEADER_2FA_DEVICE_ID,
        HEADER_IMPERSONATE,
        HEADER_IMPERSONATE_ID,
    ],
    expose_headers=[ECHO_LOGIN_ERROR, ECHO_DEVICE_ID, ECHO_DEVICE_NAME, ECHO_IMPERSONATOR, ECHO_IMPERSONATING],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Auth echo headers
#
# The auth pipeline records response headers (X-Login-Error, X-2FA-Device-ID,
# X-Impersonator, ...) on the request's AuthContext. They must reach the
# client on error responses too, which a route-level Response parameter
# cannot do, so they are applied here after the response is built.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def auth_echo_headers(request: Request, call_next):
    response = await call_next(request)
    ctx = getattr(request.state, "auth", None)
    if ctx is not None:
        for name, value in ctx.response_headers.items():
            response.headers[name] = value
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(session_router, prefix="/api/v1", tags=["Session"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(domains_router, prefix="/api/v1", tags=["Domains"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_AUTH_STATUS: dict[ErrorKind, int] = {
    ErrorKind.AUTHENTICATION_REQUIRED: 401,
    ErrorKind.INVALID_CREDENTIAL: 401,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.ACCOUNT_SUSPENDED: 403,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.TARGET_NOT_FOUND: 400,
    ErrorKind.INTERNAL: 500,
}


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError with the status code for its kind.

    401 responses carry a Basic challenge so browsers and curl prompt for
    credentials.
    """
    status_code = _AUTH_STATUS.get(exc.kind, 500)
    response = _error_response(
        status_code,
        exc.kind.value,
        exc.message,
        "; ".join(exc.detail) if exc.detail else None,
    )
    if status_code == 401:
        response.headers["WWW-Authenticate"] = 'Basic realm="API"'
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly. Router-level 404/405 (no dict detail) become
    unknown_method / unsupported_method.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    if exc.status_code == 404:
        return _error_response(404, "unknown_method", f"Unknown method requested ({request.url.path}).")
    if exc.status_code == 405:
        return _error_response(
            405, "unsupported_method", f"Unsupported HTTP method {request.method} for {request.url.path}."
        )
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit, no auth.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    components = {"app": "ok", "database": "ok"}
    try:
        request.app.state.store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
