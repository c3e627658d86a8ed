"""
tests/conftest.py -- Shared test fixtures for AdminHub tests.

This module provides:
  - make_stores(): isolated in-memory stores (users, RBAC, audit) per suffix
  - grant_profile(): build a profile holding exactly the given grants
  - make_user(): insert an active user with a known password
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_env: module-scoped ApiEnv (client, stores, admin token) for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates JWT_SECRET in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate JWT_SECRET in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_services
from audit.store import AuditStore
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import Settings, get_settings
from rbac.models import Action, Module, Permission, Profile, Role
from rbac.store import RbacStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"

# bcrypt is slow on purpose; hash the shared test password once.
DEFAULT_PASSWORD = "senha-segura-1"
_DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(db_suffix: str) -> str:
    return f"sqlite:///file:test_adminhub_{db_suffix}?mode=memory&cache=shared&uri=true"


def make_stores(db_suffix: str) -> tuple[UserStore, RbacStore, AuditStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    All three stores share one in-memory database, as they share one
    DATABASE_URL in production.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'usuarios', 'rbac').
    """
    url = memory_url(db_suffix)
    return UserStore(url), RbacStore(url), AuditStore(url)


def grant_profile(rbac_store: RbacStore, name: str, grants: Iterable[tuple[str, Action]]) -> int:
    """Create a role + profile granting exactly ``grants``. Returns the profile id.

    Modules and permissions are looked up by name and reused; missing ones are
    created so tests can grant modules outside the seeded defaults.
    """
    modules = {m.name: m.id for m in rbac_store.list_modules()}
    permissions = {(p.module_id, Action(p.action)): p.id for p in rbac_store.list_permissions()}
    permission_ids: set[int] = set()
    for module_name, action in grants:
        module_id = modules.get(module_name)
        if module_id is None:
            module_id = modules[module_name] = rbac_store.create_module(Module(name=module_name))
        perm_id = permissions.get((module_id, Action(action)))
        if perm_id is None:
            perm_id = permissions[(module_id, Action(action))] = rbac_store.create_permission(
                Permission(module_id=module_id, action=Action(action))
            )
        permission_ids.add(perm_id)
    role_id = rbac_store.create_role(Role(name=f"{name} role", permission_ids=permission_ids))
    return rbac_store.create_profile(Profile(name=name, role_ids={role_id}))


def make_user(
    user_store: UserStore,
    email: str | None = None,
    profile_id: int | None = None,
    is_active: bool = True,
    name: str = "Usuario Teste",
) -> User:
    """Insert a user with DEFAULT_PASSWORD and return it as stored."""
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    user_id = user_store.create_user(
        User(
            name=name,
            email=email,
            hashed_password=_DEFAULT_HASH,
            is_active=is_active,
            profile_id=profile_id,
        )
    )
    return user_store.get_by_id(user_id)


def _patch_lifespan(settings: Settings, user_store: UserStore, rbac_store: RbacStore, audit_store: AuditStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state through the same
    attach_services() the real lifespan uses, so routes see isolated test DBs.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, settings, user_store, rbac_store, audit_store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    settings: Settings
    user_store: UserStore
    rbac_store: RbacStore
    audit_store: AuditStore
    admin: User
    admin_token: str

    def token_for(self, user: User) -> str:
        return create_access_token(self.settings.jwt_secret, user, self.settings.token_expire_seconds)

    def auth(self, user: User | None = None) -> dict[str, str]:
        token = self.admin_token if user is None else self.token_for(user)
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Start every test with empty rate-limit counters."""
    limiter.reset()


@pytest.fixture(scope="module")
def api_env(request: pytest.FixtureRequest) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv wired to a fresh database for the requesting test module.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, the real gate and the real recorder. The seeded
    Administrador profile is assigned to an admin user whose token is ready
    for Authorization headers.
    """
    settings = get_settings()
    user_store, rbac_store, audit_store = make_stores(f"{request.module.__name__}_{uuid.uuid4().hex[:6]}")
    admin_profile = rbac_store.ensure_defaults()
    admin_id = user_store.create_user(
        User(
            name="Administrador Teste",
            email=ADMIN_EMAIL,
            hashed_password=hash_password(ADMIN_PASSWORD),
            profile_id=admin_profile.id,
        )
    )
    admin = user_store.get_by_id(admin_id)
    token = create_access_token(settings.jwt_secret, admin, settings.token_expire_seconds)

    app.router.lifespan_context = _patch_lifespan(settings, user_store, rbac_store, audit_store)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiEnv(
            client=client,
            settings=settings,
            user_store=user_store,
            rbac_store=rbac_store,
            audit_store=audit_store,
            admin=admin,
            admin_token=token,
        )

    user_store.close()
    rbac_store.close()
    audit_store.close()


@pytest.fixture
def stores() -> Generator[tuple[UserStore, RbacStore, AuditStore], None, None]:
    """Function-scoped stores on a database no other test touches."""
    user_store, rbac_store, audit_store = make_stores(uuid.uuid4().hex)
    yield user_store, rbac_store, audit_store
    user_store.close()
    rbac_store.close()
    audit_store.close()
