"""
auth/identity.py -- Turn an Authorization header into a live, active identity.

Claims embedded in the token (email, is_active) are issuance-time snapshots.
IdentityResolver always re-reads the user record, so a deactivated account is
locked out on its very next request even while its token is still valid.

Layer rule: no imports from api/, rbac/, or audit/.
"""

from __future__ import annotations

import logging
import math

from auth.models import AuthenticatedIdentity
from auth.store import UserStore
from auth.tokens import Clock, CredentialVerifier, utcnow
from core.errors import ExpiredToken, InactiveSubject, MissingCredential, UnknownSubject, Unauthenticated

logger = logging.getLogger("adminhub.auth")

BEARER_PREFIX = "Bearer "


class IdentityResolver:
    """Resolve bearer credentials to an AuthenticatedIdentity.

    resolve() raises a specific Unauthenticated subclass per failure reason.
    check_only() runs the same pipeline but only answers yes/no.
    """

    def __init__(self, verifier: CredentialVerifier, user_store: UserStore, clock: Clock = utcnow) -> None:
        self._verifier = verifier
        self._users = user_store
        self._clock = clock

    def resolve(self, authorization: str | None) -> AuthenticatedIdentity:
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise MissingCredential()
        token = authorization[len(BEARER_PREFIX) :].strip()
        if not token:
            raise MissingCredential()

        claims = self._verifier.verify(token)

        user = self._users.get_by_id(claims.subject_id)
        if user is None:
            raise UnknownSubject()
        if not user.is_active:
            raise InactiveSubject()

        # Whole seconds from the current second to exp: at least 1 for any
        # token the verifier accepted. A token can cross exp between
        # verification and here; report that as expired too.
        remaining = int(claims.expires_at.timestamp()) - math.floor(self._clock().timestamp())
        if remaining <= 0:
            raise ExpiredToken()

        return AuthenticatedIdentity(
            user_id=user.id,
            email=user.email,
            is_active=user.is_active,
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
            remaining_seconds=remaining,
        )

    def check_only(self, authorization: str | None) -> bool:
        """Return True iff resolve() would succeed. Never exposes the reason."""
        try:
            self.resolve(authorization)
        except Unauthenticated as exc:
            logger.debug("Credential check failed: %s", exc.message)
            return False
        return True
