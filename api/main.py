"""
api/main.py -- FastAPI application entry point for AdminHub.

Exposes the admin backend over HTTP: user accounts, the permission graph
(modules, permissions, roles, profiles) and the audit log, all behind the
authorization gate and the audit recorder.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Request pipeline for a protected route:
  gate dependency (auth/dependencies.py) -> @audited wrapper
  (audit/recorder.py) -> handler -> @audited wrapper -> exception handlers
Requests rejected by validation skip the wrapper; their audit entry comes
from the RequestValidationError handler.

Lifespan builds the stores and services onto app.state at startup and
closes the stores at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auditoria import router as auditoria_router
from api.routes.auth import router as auth_router
from api.routes.rbac import router as rbac_router
from api.routes.usuarios import router as usuarios_router
from audit.recorder import record_rejected_request
from audit.store import AuditStore
from auth.identity import IdentityResolver
from auth.store import UserStore
from auth.tokens import CredentialVerifier
from core.config import Settings, get_settings
from core.errors import AppError, UnexpectedFailure
from rbac.graph import PermissionGraph
from rbac.store import RbacStore

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adminhub.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def attach_services(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    rbac_store: RbacStore,
    audit_store: AuditStore,
) -> None:
    """Place the stores and the pipeline services on app.state.

    The verifier receives the secret here, once; nothing reads it again at
    verification time. Tests call this with in-memory stores.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.rbac_store = rbac_store
    app.state.audit_store = audit_store
    app.state.identity_resolver = IdentityResolver(CredentialVerifier(settings.jwt_secret), user_store)
    app.state.permission_graph = PermissionGraph(user_store, rbac_store)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the stores at startup and close them at shutdown.

    Startup order: settings first (fails fast on a bad JWT_SECRET), then
    the stores, then the default modules and Administrador profile so the
    gate has something to grant on a fresh database.
    """
    logger.info("AdminHub API starting up")
    settings = get_settings()
    user_store = UserStore(settings.database_url)
    rbac_store = RbacStore(settings.database_url)
    audit_store = AuditStore(settings.database_url)
    admin_profile = rbac_store.ensure_defaults()
    logger.info("Permission defaults ready (admin profile id=%d)", admin_profile.id)
    attach_services(app, settings, user_store, rbac_store, audit_store)

    yield

    user_store.close()
    rbac_store.close()
    audit_store.close()
    logger.info("AdminHub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AdminHub API",
    description="Multi-tenant admin backend: users, role-based access control and audit trail.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them: CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
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
app.include_router(usuarios_router, tags=["Usuarios"])
app.include_router(rbac_router, tags=["RBAC"])
app.include_router(auditoria_router, tags=["Auditoria"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is the same envelope: {"error": "<message>"}.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render the domain error taxonomy from core/errors.py.

    UnexpectedFailure keeps its cause chained; the cause goes to the log and
    only the generic context message reaches the client.
    """
    if isinstance(exc, UnexpectedFailure):
        logger.error(
            "Unexpected failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.message,
            exc_info=exc,
        )
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Muitas tentativas. Tente novamente mais tarde.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with the first failing field's message.

    The endpoint never ran, so its @audited wrapper did not either; the
    failure entry for audited routes is written from here.
    """
    errors = exc.errors()
    message = _first_error_message(errors[0]) if errors else "Dados inválidos."
    record_rejected_request(request, message)
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Erro interno do servidor: erro inesperado")


def _first_error_message(error: dict) -> str:
    """Turn one pydantic error dict into a user-facing message.

    Validators in api/models.py raise ValueError with the final message, which
    pydantic keeps under ctx["error"]. Anything else is rendered generically.
    """
    ctx = error.get("ctx") or {}
    if error.get("type") == "value_error" and "error" in ctx:
        return str(ctx["error"])
    field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
    if error.get("type") == "missing":
        return f"Campo obrigatório ausente: {field or 'corpo da requisição'}"
    message = error.get("msg", "valor inválido")
    return f"{field}: {message}" if field else message


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied: health checks from load balancers must not be
# throttled.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
