"""
api/main.py -- FastAPI application entry point for Deal Room auth.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. log_requests          -- one log line per request
  3. realm_access          -- two-stage page gate (auth/routing.py)
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. SessionMiddleware     -- authlib OAuth state for the Google flow

Lifespan creates the single AuthDatabase and wires every auth component to
it on startup, and disposes it on shutdown. Components reach shared state
only through app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.oauth import router as oauth_router
from api.routes.two_factor import router as two_factor_router
from auth.errors import AuthError, TransientStoreError
from auth.gate import SecondFactorGate
from auth.identity import build_providers
from auth.ledger import TokenLedger
from auth.magic_link import MagicLinkAuth
from auth.mailer import Mailer, build_mailer
from auth.oauth import oauth as oauth_client
from auth.routing import evaluate_request
from auth.store import AuthDatabase, TwoFactorSecretStore
from auth.tokens import delete_auth_cookie
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("dealroom.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def attach_auth_services(app: FastAPI, db: AuthDatabase, mailer: Mailer) -> None:
    """Wire every auth component onto app.state around one database handle.

    Called by the lifespan at startup and by tests with an in-memory
    database and a recording mailer.
    """
    settings = get_settings()
    providers = build_providers(db)
    ledger = TokenLedger(db)
    app.state.auth_db = db
    app.state.providers = providers
    app.state.magic_link = MagicLinkAuth(
        providers,
        ledger,
        mailer,
        base_url=settings.base_url,
        app_name=settings.app_name,
        token_ttl=timedelta(seconds=settings.verification_token_max_age_seconds),
    )
    app.state.gate = SecondFactorGate(providers, TwoFactorSecretStore(db), app_name=settings.app_name)
    app.state.oauth = oauth_client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize the auth store once at process start; dispose it at shutdown."""
    logger.info("Deal Room auth starting up")
    db = AuthDatabase()
    attach_auth_services(app, db, build_mailer())
    logger.info("Auth store initialized")

    yield

    app.state.auth_db.close()
    logger.info("Deal Room auth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Deal Room Auth",
    description="Magic-link sign-in and TOTP second factor for end users, platform admins, and supervisors.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the last
# add_middleware() call is the outermost layer. @app.middleware("http")
# functions are added the same way, so log_requests also sees realm_access
# redirects. TrustedHostMiddleware is registered after both and runs first.
# ---------------------------------------------------------------------------

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Realm access middleware
#
# Runs on every request before any route handler. The decision is a pure
# function of path + cookies (auth/routing.py); nothing is cached between
# requests. /api/ and /static/ pass straight through.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def realm_access(request: Request, call_next):
    decision = evaluate_request(request.url.path, request.cookies)
    if decision.allowed:
        return await call_next(request)
    resp = RedirectResponse(decision.redirect_to, status_code=302)
    for name in decision.clear_cookies:
        delete_auth_cookie(resp, name)
    return resp


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


app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(oauth_router, prefix="/api", tags=["Auth"])
app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(two_factor_router, prefix="/api", tags=["Two-Factor"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth taxonomy onto status codes. Messages are already user-safe."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if isinstance(exc, TransientStoreError):
        response.headers["Retry-After"] = "5"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


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
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
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
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability."""
    db: AuthDatabase = request.app.state.auth_db
    return HealthResponse(
        version=__version__,
        components={"app": "ok", "database": "ok" if db.ping() else "error"},
    )
