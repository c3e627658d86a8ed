"""
auth/dependencies.py -- FastAPI Depends() helpers: the authorization gate.

The gate is opt-in per route. A route is protected by listing

    dependencies=[Depends(require_permission("usuarios", Action.read))]

on its decorator; routes without it (POST /usuarios, /auth/*, /health) are
public.

Stages, in order:
  1. IdentityResolver.resolve(Authorization header). Any Unauthenticated
     subclass propagates and api/main.py renders it as 401 with its stable
     reason string ("Token expirado", "Usuário inativo", ...).
  2. PermissionGraph.is_allowed(user, module, action). False -> Forbidden (403).
  3. The identity is stored on request.state.identity for the endpoint and
     for audit/recorder.py, and returned to callers that declare it.

Both failures short-circuit before the endpoint (and its audit wrapper) run.

Layer rule: auth/dependencies.py may import from fastapi and from rbac/
(for the graph type only); it never imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request

from auth.identity import IdentityResolver
from auth.models import AuthenticatedIdentity
from core.errors import Forbidden, Unauthenticated
from rbac.graph import PermissionGraph
from rbac.models import Action

logger = logging.getLogger("adminhub.auth")


def get_current_identity(request: Request) -> AuthenticatedIdentity:
    """Require authentication only. Raises an Unauthenticated subclass on failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: AuthenticatedIdentity = Depends(get_current_identity)): ...
    """
    resolver: IdentityResolver = request.app.state.identity_resolver
    try:
        identity = resolver.resolve(request.headers.get("Authorization"))
    except Unauthenticated as exc:
        logger.info("401 %s %s: %s", request.method, request.url.path, exc.message)
        raise
    request.state.identity = identity
    return identity


def require_permission(module: str, action: Action) -> Callable[[Request], AuthenticatedIdentity]:
    """Build the gate dependency for one (module, action) pair.

    Raises 401 if unauthenticated, 403 if the user's profile does not grant
    the pair. Deny by default: no profile means no grants.
    """
    action = Action(action)

    def gate(request: Request) -> AuthenticatedIdentity:
        identity = get_current_identity(request)
        graph: PermissionGraph = request.app.state.permission_graph
        if not graph.is_allowed(identity.user_id, module, action):
            logger.info(
                "403 %s %s: user_id=%d lacks %s:%s",
                request.method,
                request.url.path,
                identity.user_id,
                module,
                action.value,
            )
            raise Forbidden()
        return identity

    gate.__name__ = f"require_{module}_{action.value}"
    # Marks the dependency as a gate for audit.recorder.record_rejected_request.
    gate.permission = (module, action)
    return gate
