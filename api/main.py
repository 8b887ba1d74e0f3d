"""
api/main.py -- FastAPI application entry point for the billing admin API.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- credentialed CORS for the admin frontend origin
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (engine, schema, stores, default roles, session
sweep task) and shutdown (cancel sweep task, dispose engine) symmetrically.

Errors: every failure leaves the API as ErrorResponse
{success: false, message, timestamp}. Stores and dependencies raise
core.errors types; the handlers at the bottom of this module are the only
place those become HTTP responses.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.clients import router as clients_router
from api.routes.dashboard import router as dashboard_router
from api.routes.invoices import router as invoices_router
from api.routes.reports import router as reports_router
from api.routes.roles import router as roles_router
from api.routes.users import router as users_router
from audit.recorder import AuditRecorder
from auth.dependencies import require_auth
from auth.models import AuthContext
from auth.sessions import SessionStore
from auth.store import RoleStore, UserStore
from billing.reports import ReportStore
from billing.store import ClientStore, InvoiceStore
from core.config import get_settings
from core.errors import AppError, DatabaseError
from db.executor import Database

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("billing.api")

# ---------------------------------------------------------------------------
# App state wiring
# ---------------------------------------------------------------------------


def init_app_state(app: FastAPI, db: Database) -> None:
    """Attach the database and every store built on it to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    objects under the same names.
    """
    app.state.db = db
    app.state.user_store = UserStore(db)
    app.state.role_store = RoleStore(db)
    app.state.session_store = SessionStore(db, timeout_seconds=settings.session_timeout_seconds)
    app.state.audit = AuditRecorder(db)
    app.state.client_store = ClientStore(db)
    app.state.invoice_store = InvoiceStore(db, prefix=settings.invoice_prefix, gst_rate=settings.gst_rate)
    app.state.report_store = ReportStore(db, gst_rate=settings.gst_rate)


# ---------------------------------------------------------------------------
# Background session sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Deactivate expired sessions every `interval` seconds.

    validate_session() already ignores expired rows, so the sweep only keeps
    the active-session views and the sessions table tidy. A failed sweep is
    logged and retried on the next tick. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await app.state.session_store.clean_expired_sessions()
        except DatabaseError as exc:
            logger.warning("Session sweep failed: %s", exc.message)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- every store needs it.
      2. Schema and default roles -- best effort. An unreachable database is
         logged, not fatal: /health reports it and requests answer 503 until
         the server comes back.
      3. Sweep task last -- references app.state.session_store.
    """
    # Startup
    logger.info("Billing API starting up (version %s)", settings.app_version)
    db = Database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )
    init_app_state(app, db)
    try:
        await db.create_schema()
        created = await app.state.role_store.ensure_default_roles()
        if created:
            logger.info("Seeded %d default role(s)", created)
        logger.info("Database ready")
    except DatabaseError as exc:
        logger.error("Database unavailable at startup: %s", exc.message)
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval_seconds))

    yield

    # Shutdown
    app.state.sweep_task.cancel()
    await db.dispose()
    logger.info("Billing API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Billing Admin API",
    description="Session-authenticated administration of users, roles, clients and invoices, with dashboards and billing reports.",
    version=settings.app_version,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette (FastAPI's foundation) wraps middleware in reverse registration
# order at the ASGI level, but add_middleware() calls are applied outermost-
# first from the caller's perspective. Register in the order you want the
# request to encounter them: TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.trusted_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # The session cookie must travel with cross-origin XHR from the frontend.
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "X-Session-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Every request passes through
# this coroutine before reaching any route handler. We capture wall-clock time
# before and after call_next so we can report latency on every response.
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

app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(roles_router, prefix="/api", tags=["Roles"])
app.include_router(clients_router, prefix="/api", tags=["Clients"])
app.include_router(invoices_router, prefix="/api", tags=["Invoices"])
app.include_router(dashboard_router, prefix="/api", tags=["Dashboard"])
app.include_router(reports_router, prefix="/api", tags=["Reports"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
#
# /docs and /redoc are disabled on the FastAPI() constructor (docs_url=None,
# redoc_url=None) and replaced here with routes that require a valid session.
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(auth: AuthContext = Depends(require_auth)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Billing Admin API")


@app.get("/redoc", include_in_schema=False)
async def redoc(auth: AuthContext = Depends(require_auth)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Billing Admin API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(message=message, timestamp=datetime.now(timezone.utc).isoformat())
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Translate the core.errors hierarchy. The status code travels on the exception."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests, please try again later")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first field that failed validation."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", message)
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap FastAPI/Starlette HTTP exceptions (404 route not found, 405, ...) in the envelope."""
    response = _error(exc.status_code, str(exc.detail))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error occurred")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# load balancers and monitoring must not be throttled or challenged.
# ---------------------------------------------------------------------------


@app.get("/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers SELECT 1."""
    db_ok = await request.app.state.db.ping()
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=settings.app_version,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
