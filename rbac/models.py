"""
rbac/models.py -- Domain dataclasses for the role/permission/module graph.

Shape of the graph:
    User --(profile_id)--> Profile --(*)--> Role --(*)--> Permission --(1)--> Module

These are pure data containers. rbac/store.py persists them and
rbac/graph.py answers "may user X do action A on module M?".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Action(str, Enum):
    create = "create"
    read = "read"
    update = "update"
    delete = "delete"


@dataclass
class Module:
    """A named capability domain, e.g. "usuarios" or "auditoria"."""

    name: str
    id: int | None = None


@dataclass
class Permission:
    """One allowed action on one module. Unique per (module_id, action)."""

    module_id: int
    action: Action
    id: int | None = None


@dataclass
class Role:
    name: str
    permission_ids: set[int] = field(default_factory=set)
    id: int | None = None


@dataclass
class Profile:
    name: str
    role_ids: set[int] = field(default_factory=set)
    id: int | None = None
