"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in rbac/models.py and audit/models.py -- dataclasses own domain shape; stores,
services and routes do the work.

Layer rule: no imports from api/, rbac/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account that can authenticate against AdminHub.

    email is stored lower-cased; UserStore compares it case-insensitively so
    "Ana@Example.com" and "ana@example.com" are the same account.

    profile_id points at the single Profile assigned to the user. None means
    no profile: the permission graph denies every action for such a user.
    """

    name: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    profile_id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """Claims extracted from a verified access token.

    email and is_active are snapshots taken at issuance. They are advisory
    only -- IdentityResolver re-reads the user record on every request.
    """

    subject_id: int
    email: str | None
    is_active: bool | None
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """The identity attached to a request once the gate has accepted it.

    user_id, email and is_active come from the user record, not the token.
    remaining_seconds is exp minus the current whole second at resolution
    time and is always positive -- a non-positive value is reported as an expired token.
    """

    user_id: int
    email: str
    is_active: bool
    issued_at: datetime
    expires_at: datetime
    remaining_seconds: int
