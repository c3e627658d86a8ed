"""
rbac/store.py -- SQLAlchemy Core persistence for modules, permissions, roles
and profiles.

Pattern: Repository + Data Mapper (same as auth/store.py). RbacStore is the
repository; the _row_to_* functions are the mappers.

Graph consistency:
  Link tables (role_permissions, profile_roles) carry no foreign keys --
  SQLite does not enforce them unless PRAGMA foreign_keys is on per
  connection, and the permission graph must tolerate dangling ids anyway.
  Deletes clean up their own link rows in the same transaction; anything that
  slips through is read by PermissionGraph as "not granted".

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = RbacStore("sqlite:///adminhub.db")
    store.ensure_defaults()
    mod_id = store.create_module(Module(name="relatorios"))
    perm_id = store.create_permission(Permission(module_id=mod_id, action=Action.read))
    role_id = store.create_role(Role(name="Leitor", permission_ids={perm_id}))
    store.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Column, Integer, MetaData, PrimaryKeyConstraint, String, Table, UniqueConstraint, select
from sqlalchemy.engine import Connection, Engine

from core.db import make_engine
from rbac.models import Action, Module, Permission, Profile, Role

logger = logging.getLogger("adminhub.rbac")

# Module names every installation needs: one per gated resource.
DEFAULT_MODULES: tuple[str, ...] = ("usuarios", "modulos", "permissoes", "roles", "perfis", "auditoria")
ADMIN_ROLE = "Administrador"
ADMIN_PROFILE = "Administrador"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_modules = Table(
    "modules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("module_id", Integer, nullable=False),
    Column("action", String(10), nullable=False),
    UniqueConstraint("module_id", "action", name="uq_module_action"),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, nullable=False),
    Column("permission_id", Integer, nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
)

_profiles = Table(
    "profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
)

_profile_roles = Table(
    "profile_roles",
    metadata,
    Column("profile_id", Integer, nullable=False),
    Column("role_id", Integer, nullable=False),
    PrimaryKeyConstraint("profile_id", "role_id"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RbacStore:
    """Repository for Module, Permission, Role and Profile entities.

    Name/pair uniqueness is enforced by the schema; violations surface as
    sqlalchemy.exc.IntegrityError for the route layer to map to 409.
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def create_module(self, module: Module) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_modules.insert().values(name=module.name))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_module(self, module_id: int) -> Module | None:
        with self.engine.connect() as conn:
            row = conn.execute(_modules.select().where(_modules.c.id == module_id)).fetchone()
        return _row_to_module(row) if row is not None else None

    def get_modules(self, module_ids: Iterable[int]) -> dict[int, Module]:
        """Bulk lookup. Ids with no row are simply absent from the result."""
        ids = set(module_ids)
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_modules.select().where(_modules.c.id.in_(ids))).fetchall()
        return {r.id: _row_to_module(r) for r in rows}

    def list_modules(self) -> list[Module]:
        with self.engine.connect() as conn:
            rows = conn.execute(_modules.select().order_by(_modules.c.id)).fetchall()
        return [_row_to_module(r) for r in rows]

    def update_module(self, module_id: int, name: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_modules.update().where(_modules.c.id == module_id).values(name=name))
            conn.commit()
        return result.rowcount > 0

    def delete_module(self, module_id: int) -> bool:
        """Delete a module together with its permissions and their role links."""
        with self.engine.connect() as conn:
            perm_ids = [
                r.id for r in conn.execute(select(_permissions.c.id).where(_permissions.c.module_id == module_id))
            ]
            if perm_ids:
                conn.execute(_role_permissions.delete().where(_role_permissions.c.permission_id.in_(perm_ids)))
                conn.execute(_permissions.delete().where(_permissions.c.id.in_(perm_ids)))
            result = conn.execute(_modules.delete().where(_modules.c.id == module_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, permission: Permission) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(module_id=permission.module_id, action=Action(permission.action).value)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permissions(self, permission_ids: Iterable[int]) -> dict[int, Permission]:
        """Bulk lookup. Ids with no row are simply absent from the result."""
        ids = set(permission_ids)
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().where(_permissions.c.id.in_(ids))).fetchall()
        return {r.id: _row_to_permission(r) for r in rows}

    def list_permissions(self, module_id: int | None = None) -> list[Permission]:
        query = _permissions.select().order_by(_permissions.c.id)
        if module_id is not None:
            query = query.where(_permissions.c.module_id == module_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: int, module_id: int, action: Action) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.update()
                .where(_permissions.c.id == permission_id)
                .values(module_id=module_id, action=Action(action).value)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_permission(self, permission_id: int) -> bool:
        with self.engine.connect() as conn:
            conn.execute(_role_permissions.delete().where(_role_permissions.c.permission_id == permission_id))
            result = conn.execute(_permissions.delete().where(_permissions.c.id == permission_id))
            conn.commit()
        return result.rowcount > 0

    def missing_permission_ids(self, permission_ids: Iterable[int]) -> set[int]:
        ids = set(permission_ids)
        return ids - set(self.get_permissions(ids))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role and its permission links in one transaction."""
        with self.engine.connect() as conn:
            result = conn.execute(_roles.insert().values(name=role.name))
            role_id = result.inserted_primary_key[0]
            _replace_links(conn, _role_permissions, "role_id", role_id, "permission_id", role.permission_ids)
            conn.commit()
            return role_id

    def get_role(self, role_id: int) -> Role | None:
        return self.get_roles([role_id]).get(role_id)

    def get_roles(self, role_ids: Iterable[int]) -> dict[int, Role]:
        """Bulk lookup with permission ids attached. Unknown ids are absent."""
        ids = set(role_ids)
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().where(_roles.c.id.in_(ids))).fetchall()
            links = conn.execute(
                _role_permissions.select().where(_role_permissions.c.role_id.in_(ids))
            ).fetchall()
        roles = {r.id: Role(id=r.id, name=r.name) for r in rows}
        for link in links:
            if link.role_id in roles:
                roles[link.role_id].permission_ids.add(link.permission_id)
        return roles

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            ids = [r.id for r in conn.execute(select(_roles.c.id).order_by(_roles.c.id))]
        roles = self.get_roles(ids)
        return [roles[i] for i in ids if i in roles]

    def update_role(self, role_id: int, name: str | None = None, permission_ids: set[int] | None = None) -> bool:
        """Rename and/or replace the permission set. Returns False if role_id is unknown."""
        with self.engine.connect() as conn:
            exists = conn.execute(select(_roles.c.id).where(_roles.c.id == role_id)).fetchone()
            if exists is None:
                return False
            if name is not None:
                conn.execute(_roles.update().where(_roles.c.id == role_id).values(name=name))
            if permission_ids is not None:
                _replace_links(conn, _role_permissions, "role_id", role_id, "permission_id", permission_ids)
            conn.commit()
        return True

    def delete_role(self, role_id: int) -> bool:
        with self.engine.connect() as conn:
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            conn.execute(_profile_roles.delete().where(_profile_roles.c.role_id == role_id))
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def missing_role_ids(self, role_ids: Iterable[int]) -> set[int]:
        ids = set(role_ids)
        return ids - set(self.get_roles(ids))

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def create_profile(self, profile: Profile) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.insert().values(name=profile.name))
            profile_id = result.inserted_primary_key[0]
            _replace_links(conn, _profile_roles, "profile_id", profile_id, "role_id", profile.role_ids)
            conn.commit()
            return profile_id

    def get_profile(self, profile_id: int) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.id == profile_id)).fetchone()
            if row is None:
                return None
            links = conn.execute(
                select(_profile_roles.c.role_id).where(_profile_roles.c.profile_id == profile_id)
            ).fetchall()
        return Profile(id=row.id, name=row.name, role_ids={link.role_id for link in links})

    def get_profile_by_name(self, name: str) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_profiles.c.id).where(_profiles.c.name == name)).fetchone()
        return self.get_profile(row.id) if row is not None else None

    def list_profiles(self) -> list[Profile]:
        with self.engine.connect() as conn:
            rows = conn.execute(_profiles.select().order_by(_profiles.c.id)).fetchall()
            links = conn.execute(_profile_roles.select()).fetchall()
        profiles = {r.id: Profile(id=r.id, name=r.name) for r in rows}
        for link in links:
            if link.profile_id in profiles:
                profiles[link.profile_id].role_ids.add(link.role_id)
        return list(profiles.values())

    def update_profile(self, profile_id: int, name: str | None = None, role_ids: set[int] | None = None) -> bool:
        with self.engine.connect() as conn:
            exists = conn.execute(select(_profiles.c.id).where(_profiles.c.id == profile_id)).fetchone()
            if exists is None:
                return False
            if name is not None:
                conn.execute(_profiles.update().where(_profiles.c.id == profile_id).values(name=name))
            if role_ids is not None:
                _replace_links(conn, _profile_roles, "profile_id", profile_id, "role_id", role_ids)
            conn.commit()
        return True

    def delete_profile(self, profile_id: int) -> bool:
        """Delete a profile and its role links.

        Users still pointing at the profile are the caller's concern -- see
        UserStore.clear_profile(). Until cleared they are simply denied.
        """
        with self.engine.connect() as conn:
            conn.execute(_profile_roles.delete().where(_profile_roles.c.profile_id == profile_id))
            result = conn.execute(_profiles.delete().where(_profiles.c.id == profile_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def ensure_defaults(self) -> Profile:
        """Idempotently seed the built-in modules and the Administrador profile.

        Creates every DEFAULT_MODULES entry, its four CRUD permissions, an
        Administrador role holding all of them and an Administrador profile
        holding that role. Existing rows are reused, never duplicated; the
        admin role is topped up with any permission it is missing.

        Returns the Administrador profile.
        """
        existing_modules = {m.name: m.id for m in self.list_modules()}
        for name in DEFAULT_MODULES:
            if name not in existing_modules:
                existing_modules[name] = self.create_module(Module(name=name))
                logger.info("Seeded module %r", name)

        pairs = {(p.module_id, Action(p.action)): p.id for p in self.list_permissions()}
        admin_perm_ids: set[int] = set()
        for name in DEFAULT_MODULES:
            module_id = existing_modules[name]
            for action in Action:
                perm_id = pairs.get((module_id, action))
                if perm_id is None:
                    perm_id = self.create_permission(Permission(module_id=module_id, action=action))
                admin_perm_ids.add(perm_id)

        role = next((r for r in self.list_roles() if r.name == ADMIN_ROLE), None)
        if role is None:
            role_id = self.create_role(Role(name=ADMIN_ROLE, permission_ids=admin_perm_ids))
            logger.info("Seeded role %r", ADMIN_ROLE)
        else:
            role_id = role.id
            if not admin_perm_ids <= role.permission_ids:
                self.update_role(role_id, permission_ids=role.permission_ids | admin_perm_ids)

        profile = self.get_profile_by_name(ADMIN_PROFILE)
        if profile is None:
            self.create_profile(Profile(name=ADMIN_PROFILE, role_ids={role_id}))
            logger.info("Seeded profile %r", ADMIN_PROFILE)
        elif role_id not in profile.role_ids:
            self.update_profile(profile.id, role_ids=profile.role_ids | {role_id})
        return self.get_profile_by_name(ADMIN_PROFILE)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _replace_links(
    conn: Connection,
    table: Table,
    owner_col: str,
    owner_id: int,
    target_col: str,
    target_ids: Iterable[int],
) -> None:
    """Replace every (owner_id, *) row in a link table with ``target_ids``."""
    conn.execute(table.delete().where(table.c[owner_col] == owner_id))
    rows = [{owner_col: owner_id, target_col: t} for t in sorted(set(target_ids))]
    if rows:
        conn.execute(table.insert(), rows)


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_module(row) -> Module:
    return Module(id=row.id, name=row.name)


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, module_id=row.module_id, action=Action(row.action))
