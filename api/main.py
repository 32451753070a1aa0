"""
api/main.py -- FastAPI application entry point for the BookMarket auth service.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests        -- one log line per request with latency
  2. CORSMiddleware      -- CORS headers; answers preflight before the gate sees it
  3. SlowAPIMiddleware   -- per-route rate limits from api.limiter
  4. auth_gate           -- bearer token + live session, claims -> request.state

Lifespan handles startup (stores, metrics sink, auth service, sweep task) and
shutdown (cancel sweep task, close stores) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse, ReadinessResponse
from api.routes.admin import router as admin_router
from api.routes.api_keys import router as api_keys_router
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.errors import AuthError, from_store_error
from auth.gate import Reject, evaluate, is_public
from auth.metrics import InMemoryMetrics
from auth.service import AuthenticationService
from auth.sessions import SessionStore
from auth.store import UserStore
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
logger = logging.getLogger("bookmarket.api")

# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired sessions every `interval` seconds.

    Out of band with respect to requests: handlers never wait on it, and a
    missed run only delays reclamation because liveness is checked against
    expires_at on every lookup. CancelledError from task.cancel() during
    shutdown propagates out of asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(app.state.auth_service.sweep_expired_sessions)
        except AuthError:
            logger.exception("Session sweep failed; next attempt in %ds", interval)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth stack on startup and tear it down on shutdown.

    The metrics sink is created here and injected into the service, so its
    lifetime is exactly the application's.
    """
    settings = get_settings()
    logger.info("Auth service starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.sessions = SessionStore(
        settings.database_url,
        access_ttl=settings.jwt_expiration,
        refresh_ttl=settings.refresh_token_expiration,
    )
    app.state.metrics = InMemoryMetrics()
    app.state.auth_service = AuthenticationService(
        app.state.user_store, app.state.sessions, settings, app.state.metrics
    )
    app.state.sweep_task = None
    if settings.session_sweep_interval > 0:
        app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval))
    logger.info("Auth initialized (access_ttl=%ds, refresh_ttl=%ds)", settings.jwt_expiration, settings.refresh_token_expiration)

    yield

    if app.state.sweep_task is not None:
        app.state.sweep_task.cancel()
    app.state.sessions.close()
    app.state.user_store.close()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="BookMarket Auth Service",
    description="Registration, login, bearer tokens and server-side sessions for BookMarket.",
    version=VERSION,
    lifespan=lifespan,
    # Schema browsing sits behind the gate like every other non-public path.
    docs_url=None,
    redoc_url=None,
)


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware so the LAST registered is the OUTERMOST. The
# registrations below therefore run innermost-first: gate, SlowAPI, CORS,
# request log.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def auth_gate(request: Request, call_next):
    """Reject any non-public request without a valid token on a live session.

    Every rejection is the same 401 "unauthorized"; the specific reason goes
    to the log only. The session lookup is a blocking store call, so the
    decision runs in the threadpool.

    A store failure during the lookup is rendered as the generic 500 from the
    error taxonomy.
    """
    if is_public(request.url.path) or request.method == "OPTIONS":
        return await call_next(request)
    try:
        decision = await run_in_threadpool(
            evaluate,
            request.headers.get("Authorization"),
            request.app.state.settings.jwt_secret,
            request.app.state.sessions,
        )
    except SQLAlchemyError as exc:
        return await auth_error_handler(request, from_store_error(exc))
    if isinstance(decision, Reject):
        logger.info("Gate rejected %s %s: %s", request.method, request.url.path, decision.reason)
        return _error_response(401, "unauthorized", "Authentication required.")
    request.state.claims = decision.claims
    return await call_next(request)


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
app.include_router(api_keys_router, tags=["API Keys"])
app.include_router(admin_router, tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth taxonomy. 5xx messages are already generic."""
    if exc.status_code >= 500:
        logger.error("Internal failure on %s %s", request.method, request.url.path, exc_info=exc)
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Must stay synchronous: SlowAPIMiddleware calls the registered handler
    without awaiting it when the limited route is a plain def.
    """
    retry_after = int(getattr(exc, "retry_after", get_settings().rate_limit_window))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception is logged server-side only, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health, readiness, metrics
#
# Public (see auth/gate.py PUBLIC_PATHS) and not rate limited -- probes from
# load balancers and scrapers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Liveness: the process is up."""
    return HealthResponse(version=VERSION)


@app.get("/ready", tags=["Health"])
def ready(request: Request) -> JSONResponse:
    """Readiness: both stores answer a trivial query."""
    checks = {}
    for name, store in (("users", request.app.state.user_store), ("sessions", request.app.state.sessions)):
        try:
            store.ping()
            checks[name] = "healthy"
        except SQLAlchemyError as exc:
            logger.warning("Readiness check failed for %s: %s", name, exc)
            checks[name] = "unhealthy"
    is_ready = all(v == "healthy" for v in checks.values())
    body = ReadinessResponse(status="ready" if is_ready else "not_ready", checks=checks)
    return JSONResponse(status_code=200 if is_ready else 503, content=body.model_dump())


@app.get("/metrics", tags=["Health"], response_class=PlainTextResponse)
def metrics(request: Request) -> PlainTextResponse:
    """Prometheus text exposition of the injected metrics sink."""
    request.app.state.auth_service.active_session_count()
    return PlainTextResponse(request.app.state.metrics.render(), media_type="text/plain; version=0.0.4")
