"""
api/routes/auth.py -- Token issuance and validation endpoints.

Routes:
  POST /auth/login     -- email/password login; returns a bearer token
  POST /auth/validate  -- full token introspection with the failure reason
  POST /auth/check     -- yes/no token check for health-check style callers

All three are public: they are how a client obtains or inspects credentials,
so they sit outside the authorization gate.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response carrying or describing a token.
  /check never says WHY a token failed; its body is always exactly {valid}.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    CheckResponse,
    LoginRequest,
    LoginResponse,
    TokenInfo,
    ValidatedUser,
    ValidateFailure,
    ValidateResponse,
)
from auth.identity import IdentityResolver
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token
from core.config import Settings, get_settings
from core.errors import Unauthenticated

router = APIRouter()

_DISPLAY_FORMAT = "%d/%m/%Y, %H:%M:%S"


def format_timestamp(moment: datetime, tz_name: str) -> str:
    """Render a timestamp as day/month/year with a 24-hour clock in ``tz_name``."""
    return moment.astimezone(ZoneInfo(tz_name)).strftime(_DISPLAY_FORMAT)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(lambda: get_settings().login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token.

    Unknown email, wrong password and inactive account all produce the same
    401 so the endpoint cannot be used to enumerate accounts.
    """
    user_store: UserStore = request.app.state.user_store
    settings: Settings = request.app.state.settings

    user = authenticate_user(user_store, body.email, body.senha)
    if user is None:
        resp = JSONResponse(status_code=401, content={"error": "Email ou senha inválidos."})
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(settings.jwt_secret, user, settings.token_expire_seconds)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/validate", response_model=ValidateResponse, responses={401: {"model": ValidateFailure}})
async def validate(request: Request) -> JSONResponse:
    """Introspect the bearer token and report the account it belongs to.

    The user block reflects the current user record, not the token's
    issuance-time snapshot. On failure the body carries the specific reason.
    """
    resolver: IdentityResolver = request.app.state.identity_resolver
    settings: Settings = request.app.state.settings
    try:
        identity = resolver.resolve(request.headers.get("Authorization"))
    except Unauthenticated as exc:
        resp = JSONResponse(status_code=401, content=ValidateFailure(error=exc.message).model_dump())
        resp.headers["Cache-Control"] = "no-store"
        return resp

    body = ValidateResponse(
        user=ValidatedUser(id=identity.user_id, email=identity.email, is_active=identity.is_active),
        token_info=TokenInfo(
            issued_at=format_timestamp(identity.issued_at, settings.display_timezone),
            expires_at=format_timestamp(identity.expires_at, settings.display_timezone),
            expires_in_seconds=identity.remaining_seconds,
        ),
    )
    resp = JSONResponse(status_code=200, content=body.model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/check", response_model=CheckResponse)
async def check(request: Request) -> CheckResponse:
    """Answer whether the bearer token is currently usable. Always 200."""
    resolver: IdentityResolver = request.app.state.identity_resolver
    return CheckResponse(valid=resolver.check_only(request.headers.get("Authorization")))
