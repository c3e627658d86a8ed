"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as rbac/store.py and audit/store.py).
UserStore is the repository; _row_to_user is the mapper. Route, resolver and
graph code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalised (strip + lower) on every write and lookup, and the
  column carries a UNIQUE constraint, so uniqueness is case-insensitive
  without relying on a collation that SQLite and PostgreSQL disagree on.

Layer rule: no imports from api/, rbac/, or audit/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import User
from core.db import make_engine

logger = logging.getLogger("adminhub.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # always lower-case
    Column("hashed_password", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("profile_id", Integer),  # NULL = no profile, every check denied
    Column("created_at", String(32), nullable=False),
)

# Columns a caller may change through update_user(). Anything else is a
# programming error and raises ValueError before any SQL runs.
_UPDATABLE = {"name", "email", "hashed_password", "is_active", "profile_id"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///adminhub.db")
        uid = store.create_user(User(name="Ana", email="ana@example.com", hashed_password=hash_password("s3cret!")))
        user = store.get_by_email("ANA@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        The route layer turns that into 409 -- the pre-insert lookup it also
        does can race with a concurrent signup, the constraint cannot.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=normalize_email(user.email),
                    hashed_password=user.hashed_password,
                    is_active=1 if user.is_active else 0,
                    profile_id=user.profile_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case and surrounding whitespace."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, hashed_password, is_active, profile_id.
        is_active must be passed as bool; this method converts to int.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError if a new email collides with another account.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Audit entries that reference the user keep their user_id; the audit
        log is never rewritten.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def clear_profile(self, profile_id: int) -> int:
        """Unassign ``profile_id`` from every user holding it. Returns rows changed.

        Called when a profile is deleted so no user keeps pointing at it.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.profile_id == profile_id).values(profile_id=None))
            conn.commit()
        if result.rowcount:
            logger.info("Cleared profile_id=%d from %d user(s)", profile_id, result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        is_active=bool(row.is_active),
        profile_id=row.profile_id,
        created_at=row.created_at,
    )
