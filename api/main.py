"""
api/main.py -- FastAPI application entry point for permgate.

Exposes the auth core over HTTP: one login operation, a session inspection
route, a health check, and the authorization gate middleware that protects
every route listed in ROUTE_PERMISSIONS.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests            -- method, path, status, latency
  2. session_gate_middleware -- route -> permission check against the session cookie

Lifespan builds the CredentialStore and the services on top of it from
Settings and disposes of the store on shutdown. Tests replace the lifespan
and call init_auth_state() with their own store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import session_gate_middleware
from auth.gate import AuthorizationGate
from auth.identity import IdentityManager
from auth.sessions import SessionAuthority
from auth.store import CredentialStore, build_db_url
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("permgate.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def init_auth_state(app: FastAPI, store: CredentialStore, settings: Settings) -> None:
    """Build the auth services on top of store and hang them off app.state.

    app.state.store       CredentialStore
    app.state.identity    IdentityManager
    app.state.authority   SessionAuthority
    app.state.gate        AuthorizationGate
    app.state.cookie_name session cookie name read by the gate middleware
    """
    app.state.store = store
    app.state.identity = IdentityManager(store, bcrypt_rounds=settings.bcrypt_rounds)
    app.state.authority = SessionAuthority(
        store,
        token_length=settings.session_token_length,
        bcrypt_rounds=settings.bcrypt_rounds,
        cookie_name=settings.cookie_name,
        cookie_expire_days=settings.cookie_expire_days,
        secure_cookies=settings.secure_cookies,
    )
    app.state.gate = AuthorizationGate(app.state.authority, settings.route_permissions)
    app.state.cookie_name = settings.cookie_name


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store on startup and dispose of it on shutdown."""
    settings = get_settings()
    logging.getLogger("permgate").setLevel(settings.log_level.upper())
    logger.info("permgate API starting up (db_driver=%s)", settings.db_driver)
    store = CredentialStore(build_db_url(settings.db_driver, settings.db_url))
    init_auth_state(app, store, settings)
    logger.info("Auth initialized (%d protected routes)", len(settings.route_permissions))

    yield

    app.state.store.close()
    logger.info("permgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="permgate API",
    description="Password authentication, opaque sessions and group/permission authorization.",
    version=VERSION,
    lifespan=lifespan,
)

# Registered first so it sits inside log_requests: denied requests are logged too.
app.middleware("http")(session_gate_middleware)


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors, storage failures included.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version, and database reachability.

    Plain def: store.ping() blocks, so FastAPI runs this in its threadpool.
    """
    store: CredentialStore | None = getattr(request.app.state, "store", None)
    database = "ok" if store is not None and store.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
