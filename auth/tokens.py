"""
auth/tokens.py -- JWT issuance/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), email, is_active,
       iat and exp. CredentialVerifier raises a specific Unauthenticated
       subclass on failure so the gate and /auth/validate can report the
       exact reason. Any parse, signature or algorithm problem is
       "malformed"; "invalid" is left for well-signed tokens whose claims are
       unusable ("Token malformado", "Token inválido", "Token expirado").

       Expiry is checked here against an injectable clock rather than by
       jose, because a token is expired AT its exp instant, while jose only
       rejects it once exp is in the past. The injectable clock also keeps
       expiry tests deterministic.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered.

  Secret: CredentialVerifier receives the verification secret at
       construction. The app lifespan passes Settings.jwt_secret; tests pass
       their own. Nothing in this module reads configuration at call time.

Layer rule: no imports from api/, rbac/, or audit/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Claims
from core.errors import ExpiredToken, InvalidToken, MalformedToken

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("adminhub.auth")

ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The API layer caps passwords at
    72 characters (Pydantic field) so the truncation never applies silently
    to ASCII passwords.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("adminhub_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure (including inactive).
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        logger.info("Login refused for inactive user_id=%d", user.id)
        return None
    return user


# ---------------------------------------------------------------------------
# JWT issuance
# ---------------------------------------------------------------------------


def create_access_token(
    secret: str,
    user: User,
    expire_seconds: int,
    now: datetime | None = None,
) -> str:
    """Encode a signed JWT for ``user`` valid for ``expire_seconds``.

    ``now`` overrides the issuance instant; tests use it to mint tokens that
    are already expired or about to expire.
    """
    issued = (now or utcnow()).replace(microsecond=0)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "is_active": user.is_active,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=expire_seconds)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


# ---------------------------------------------------------------------------
# Credential Verifier
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Validates a bearer token's structure, signature and expiry.

    Pure function of (token, secret, clock) -- no I/O. Construct once at
    startup with the process-wide secret:

        verifier = CredentialVerifier(settings.jwt_secret)
        claims = verifier.verify(token)
    """

    def __init__(self, secret: str, algorithm: str = ALGORITHM, clock: Clock = utcnow) -> None:
        if not secret:
            raise ValueError("CredentialVerifier requires a non-empty secret.")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def verify(self, token: str) -> Claims:
        """Return the token's claims or raise.

        Raises:
            MalformedToken: the token cannot be parsed, its signature does not
                            match, or it names an unexpected algorithm.
            InvalidToken:   the signature holds but sub, iat or exp is
                            missing or ill-typed.
            ExpiredToken:   the clock is at or past exp.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedToken() from exc
        if header.get("alg") != self._algorithm:
            raise MalformedToken()

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise InvalidToken() from exc
        except JWTError as exc:
            raise MalformedToken() from exc

        claims = self._to_claims(payload)
        if self._clock() >= claims.expires_at:
            raise ExpiredToken()
        return claims

    @staticmethod
    def _to_claims(payload: dict) -> Claims:
        try:
            subject_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
            raise InvalidToken() from exc
        is_active = payload.get("is_active")
        return Claims(
            subject_id=subject_id,
            email=payload.get("email"),
            is_active=bool(is_active) if is_active is not None else None,
            issued_at=issued_at,
            expires_at=expires_at,
        )
