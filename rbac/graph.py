"""
rbac/graph.py -- Effective-permission resolution over the RBAC graph.

Algorithm (recomputed on every call, no cache):
  1. Fetch the user's profile (users.profile_id).
  2. Collect the permission ids of every role in that profile.
  3. Map each permission to (module name, action).
  4. A (module, action) pair is allowed iff it appears in that set.

Deny by default: a missing user, a user with no profile, a profile that no
longer exists, and role / permission / module ids that point at deleted rows
all contribute nothing. None of them raise. There is no wildcard and no
hierarchy -- every pair must be granted explicitly.

Because nothing is cached, a change to any role, profile or permission is
visible to the very next check; no invalidation rule is needed.
"""

from __future__ import annotations

import logging

from auth.store import UserStore
from rbac.models import Action
from rbac.store import RbacStore

logger = logging.getLogger("adminhub.rbac")

Grant = tuple[str, Action]


class PermissionGraph:
    """Read model answering "can user X perform action A on module M?"."""

    def __init__(self, user_store: UserStore, rbac_store: RbacStore) -> None:
        self._users = user_store
        self._rbac = rbac_store

    def effective_permissions(self, user_id: int) -> frozenset[Grant]:
        user = self._users.get_by_id(user_id)
        if user is None or user.profile_id is None:
            return frozenset()

        profile = self._rbac.get_profile(user.profile_id)
        if profile is None:
            logger.warning("User %d references missing profile %d", user_id, user.profile_id)
            return frozenset()

        roles = self._rbac.get_roles(profile.role_ids)
        permission_ids: set[int] = set()
        for role in roles.values():
            permission_ids |= role.permission_ids

        permissions = self._rbac.get_permissions(permission_ids)
        modules = self._rbac.get_modules(p.module_id for p in permissions.values())

        grants: set[Grant] = set()
        for perm in permissions.values():
            module = modules.get(perm.module_id)
            if module is not None:
                grants.add((module.name, Action(perm.action)))
        return frozenset(grants)

    def is_allowed(self, user_id: int, module: str, action: Action | str) -> bool:
        try:
            wanted = Action(action)
        except ValueError:
            return False
        return (module, wanted) in self.effective_permissions(user_id)
