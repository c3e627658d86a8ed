"""
api/routes/auditoria.py -- Read-only view of the audit log.

  GET /auditoria -- gate auditoria:read, audited read

The log is append-only: there is no route that edits or removes entries.
Reading the log is itself recorded, so every look at it leaves a trace.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse
from audit.models import Outcome
from audit.recorder import audited
from audit.store import AuditStore
from auth.dependencies import require_permission
from core.db import store_errors
from rbac.models import Action

router = APIRouter()


@router.get(
    "/auditoria",
    response_model=list[AuditEntryResponse],
    dependencies=[Depends(require_permission("auditoria", Action.read))],
)
@audited("auditoria", Action.read)
def list_auditoria(
    request: Request,
    user_id: Optional[int] = None,
    resource: Optional[str] = Query(default=None, max_length=100),
    action: Optional[Action] = None,
    outcome: Optional[Outcome] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[AuditEntryResponse]:
    """Return audit entries newest first, optionally filtered."""
    audit_store: AuditStore = request.app.state.audit_store
    with store_errors("Erro ao buscar auditoria"):
        entries = audit_store.list_entries(
            user_id=user_id,
            resource=resource,
            action=action,
            outcome=outcome,
            limit=limit,
            offset=offset,
        )
    return [AuditEntryResponse.from_entry(e) for e in entries]
