"""
audit/recorder.py -- Per-route audit interceptor.

Usage (below the router decorator, next to the gate dependency):

    @router.get(
        "/usuarios/{user_id}",
        dependencies=[Depends(require_permission("usuarios", Action.read))],
    )
    @audited("usuarios", Action.read, id_param="user_id")
    async def get_usuario(request: Request, user_id: int): ...

Pipeline order per request:
    gate dependency  ->  audited wrapper  ->  endpoint  ->  audited wrapper

Rules:
  - One entry per request, always written AFTER the endpoint returns or
    raises. The outcome is the endpoint's real result, never assumed.
  - The endpoint's exception is re-raised untouched after the entry is
    written, so exception handlers still shape the response.
  - Writing the entry can never change the response. A failed write is
    logged on "adminhub.audit" at ERROR with traceback and then dropped.
  - Gate failures (401/403) happen before the wrapper runs and produce no
    entry.
  - A request FastAPI rejects before the endpoint runs (bad body, path or
    query value) still gets its failure entry: the RequestValidationError
    handler calls record_rejected_request(). On a gated route that entry is
    written only for a caller the gate admits.

The decorated endpoint must accept ``request: Request`` -- the wrapper reads
the audit store from request.app.state and the identity (if any) from
request.state.identity.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from starlette.concurrency import run_in_threadpool

from audit.models import AuditEntry, Outcome
from auth.tokens import utcnow
from core.errors import AppError
from rbac.models import Action

logger = logging.getLogger("adminhub.audit")


def audited(resource: str, action: Action, id_param: str | None = None) -> Callable:
    """Wrap an endpoint so exactly one AuditEntry is written per call.

    Args:
        resource: module name recorded on the entry (e.g. "usuarios").
        action:   CRUD action recorded on the entry.
        id_param: name of the path parameter holding the target id. When
                  absent or not supplied, a successful result's ``id`` is
                  used instead (the create case).
    """
    action = Action(action)

    def decorator(endpoint: Callable) -> Callable:
        if "request" not in inspect.signature(endpoint).parameters:
            raise TypeError(f"@audited endpoint {endpoint.__name__} must accept a 'request: Request' parameter")
        is_async = inspect.iscoroutinefunction(endpoint)

        @functools.wraps(endpoint)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request = kwargs["request"]
            path_id = kwargs.get(id_param) if id_param else None
            try:
                if is_async:
                    result = await endpoint(*args, **kwargs)
                else:
                    result = await run_in_threadpool(endpoint, *args, **kwargs)
            except Exception as exc:
                _write(request, resource, action, Outcome.failure, path_id, _describe(exc))
                raise
            # Written before response_model serialization. Handlers return
            # response models built (and so validated) inside this scope.
            resource_id = path_id if path_id is not None else _result_id(result)
            _write(request, resource, action, Outcome.success, resource_id, None)
            return result

        wrapper.audit_target = (resource, action, id_param)
        return wrapper

    return decorator


def record_rejected_request(request: Request, detail: str) -> None:
    """Write the failure entry for a request rejected before its endpoint ran.

    Does nothing for routes without @audited. When the route's gate has not
    run yet (an unparseable body is rejected ahead of dependencies), the
    gate is consulted here and a caller it refuses gets no entry.
    """
    target = getattr(request.scope.get("endpoint"), "audit_target", None)
    if target is None:
        return
    if getattr(request.state, "identity", None) is None and not _admitted(request):
        return
    resource, action, id_param = target
    path_id = request.path_params.get(id_param) if id_param else None
    _write(request, resource, action, Outcome.failure, path_id, detail)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(
    request: Request,
    resource: str,
    action: Action,
    outcome: Outcome,
    resource_id: Any,
    detail: str | None,
) -> None:
    identity = getattr(request.state, "identity", None)
    entry = AuditEntry(
        user_id=identity.user_id if identity is not None else None,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        timestamp=utcnow().isoformat(),
        outcome=outcome,
        detail=detail,
    )
    try:
        request.app.state.audit_store.record(entry)
    except Exception:
        # Audit is a side channel: report it here, never through the response.
        logger.error(
            "Audit write failed: %s %s resource=%s resource_id=%s user_id=%s outcome=%s",
            request.method,
            request.url.path,
            entry.resource,
            entry.resource_id,
            entry.user_id,
            entry.outcome.value,
            exc_info=True,
        )


def _admitted(request: Request) -> bool:
    route = request.scope.get("route")
    for dependency in getattr(route, "dependencies", ()):
        if getattr(dependency.dependency, "permission", None) is None:
            continue
        try:
            dependency.dependency(request)
        except AppError:
            return False
    return True


def _describe(exc: Exception) -> str:
    if isinstance(exc, AppError):
        return exc.message
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return f"{type(exc).__name__}: {exc}"


def _result_id(result: Any) -> Any:
    if isinstance(result, dict):
        return result.get("id")
    return getattr(result, "id", None)
