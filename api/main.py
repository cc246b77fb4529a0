"""
api/main.py -- FastAPI application entry point for the PKM Prototype.

Run with:      uvicorn asgi:app --reload

Requests pass TrustedHost (Host header check), then CORS, then SlowAPI
(the POST /login limit) before reaching a route.

Lifespan is the composition root: it builds the credential store, bounds its
initialization with INIT_TIMEOUT_SECONDS, and disposes it at shutdown. A
disabled, slow or unreachable backend never stops the process from starting;
routes that need the store answer 503 instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.responses import describe_validation_errors, error_response
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.errors import AuthError
from auth.store import UserStore
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pkm.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Credential store startup
# ---------------------------------------------------------------------------


async def open_user_store(settings: Settings) -> Optional[UserStore]:
    """Build and initialize the credential store, or return None.

    None means "backend unavailable": BACKEND_ENABLED=false, initialization
    failed, or it did not finish within INIT_TIMEOUT_SECONDS. Initialization
    runs in a worker thread; on timeout that thread is abandoned, not awaited,
    so a hung connect delays startup by at most the timeout.
    """
    if not settings.backend_enabled:
        logger.warning("Credential backend disabled (BACKEND_ENABLED=false) -- auth routes will answer 503")
        return None

    store: Optional[UserStore] = None
    try:
        store = UserStore(settings.database_url, connect_timeout=settings.init_timeout_seconds)
        await asyncio.wait_for(asyncio.to_thread(store.initialize), timeout=settings.init_timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(
            "Credential store initialization timed out after %.1fs -- auth routes will answer 503",
            settings.init_timeout_seconds,
        )
    except (AuthError, SQLAlchemyError, ImportError) as exc:
        # ImportError: the configured database driver is not installed.
        logger.error("Credential store initialization failed: %s", getattr(exc, "detail", None) or exc)
    else:
        return store
    if store is not None:
        store.close()
    return None


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the credential store for the full server lifetime."""
    logger.info("PKM Prototype starting up")
    app.state.user_store = await open_user_store(_settings)
    logger.info("Auth initialized (backend_available=%s)", app.state.user_store is not None)

    yield

    if app.state.user_store is not None:
        app.state.user_store.close()
    logger.info("PKM Prototype shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PKM Prototype",
    description="Role-based login, menu and user management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

# Starlette makes the LAST added middleware the outermost, so registration
# runs innermost-first: SlowAPI -> CORS -> TrustedHost.

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access line per request. user= is set once the Auth Gate resolved a caller."""
    started = time.perf_counter()
    response = await call_next(request)
    identity = getattr(request.state, "user", None)
    logger.info(
        "%s %s -> %d (%.1fms) client=%s user=%s",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
        request.client.host if request.client else "-",
        identity.id if identity is not None else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All JSON errors use the ErrorResponse envelope:
#   {"success": false, "error": <code>, "message": ...}
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Render the auth core's error taxonomy. 401/403 are content negotiated."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail or exc.message)
    return error_response(request, exc)


# Sync on purpose: SlowAPIMiddleware calls this handler directly.
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(error="rate_limited", message="Too many requests.").model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first validation problem as the message."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="validation_error",
            message=describe_validation_errors(list(exc.errors())),
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 route, 405 method) in the same envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=f"http_{exc.status_code}", message=str(exc.detail)).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The client gets a generic message,
    plus the exception text when DEBUG=true.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred.",
            detail=str(exc) if _settings.debug else None,
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No auth and no rate limit: load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and credential store reachability."""
    store: Optional[UserStore] = getattr(request.app.state, "user_store", None)
    if not _settings.backend_enabled:
        database = "disabled"
    elif store is None:
        database = "unavailable"
    else:
        database = "ok" if await run_in_threadpool(store.ping) else "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
