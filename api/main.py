"""
api/main.py -- FastAPI application entry point for CredGate.

Exposes the Credential & Session Authority over HTTP. The routes are glue;
every decision is made by auth.authority.CredentialAuthority.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- credentials allowed for the configured origins only
  2. SessionMiddleware  -- holds the OAuth state between redirect and callback
  3. log_requests       -- one access-log line per request

Lifespan builds the store, the authority and the OAuth registry on startup
and disposes the DB engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.authority import CredentialAuthority
from auth.errors import InternalError
from auth.linker import OAuthIdentityLinker
from auth.notifier import Notifier, SmtpNotifier
from auth.oauth import build_oauth
from auth.passwords import SecretHasher
from auth.reset import ResetTokenManager
from auth.store import UserStore
from auth.tokens import TokenIssuer
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
logger = logging.getLogger("credgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_notifier(settings: Settings) -> Notifier:
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout,
        from_email=settings.mail_from,
    )


def build_authority(settings: Settings, store: UserStore, notifier: Notifier | None = None) -> CredentialAuthority:
    """Wire the leaf components into a CredentialAuthority from settings.

    The signing key goes straight into the TokenIssuer; nothing else holds it.
    """
    hasher = SecretHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(
        settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=settings.refresh_token_expire_seconds,
    )
    return CredentialAuthority(
        store=store,
        hasher=hasher,
        issuer=issuer,
        resets=ResetTokenManager(store, hasher, ttl_seconds=settings.reset_token_expire_seconds),
        linker=OAuthIdentityLinker(store),
        notifier=notifier or build_notifier(settings),
        base_url=settings.public_base_url or "http://localhost:5000",
    )


def warn_incomplete_mail_settings(settings: Settings) -> None:
    """Log what keeps password reset emails from working end to end."""
    if not settings.smtp_host:
        logger.warning("SMTP_HOST is not set -- password reset emails cannot be delivered")
    if not settings.public_base_url:
        # This API serves no /resetpassword/<token> page; the frontend must.
        logger.warning(
            "PUBLIC_BASE_URL is not set -- reset links will point at this API host, "
            "which has no /resetpassword page"
        )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store, authority and OAuth registry; dispose them on shutdown."""
    logger.info("CredGate API starting up")
    app.state.settings = _settings
    app.state.user_store = UserStore(_settings.database_url)
    app.state.authority = build_authority(_settings, app.state.user_store)
    app.state.oauth = build_oauth(_settings)
    warn_incomplete_mail_settings(_settings)
    logger.info("Auth initialized")

    yield

    app.state.user_store.close()
    logger.info("CredGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CredGate API",
    description="Password, OAuth and password-reset authentication with signed session tokens.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback (CSRF protection for
# the authorization code flow).
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Path only: reset tokens travel in the path of /auth/reset-password/{token}.
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    path = request.url.path
    if path.startswith("/api/v1/auth/reset-password/"):
        path = "/api/v1/auth/reset-password/<redacted>"
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
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


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation.

    The offending input values are left out; they may be passwords.
    """
    fields = ", ".join(".".join(str(part) for part in err.get("loc", ())) for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields or None,
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
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(),
    )


@app.exception_handler(InternalError)
async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
    """CredentialAuthority already logged the cause with traceback; stay opaque."""
    return _internal_error_response()


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _internal_error_response()


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    return HealthResponse(version=__version__, components=components)
