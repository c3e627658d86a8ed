"""
audit/models.py -- The audit trail's single entity.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from rbac.models import Action


class Outcome(str, Enum):
    success = "success"
    failure = "failure"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of who did what, to what, when, with what outcome.

    Entries are only ever inserted -- AuditStore has no update or delete.

    user_id is None when the audited route is public (e.g. signup).
    resource_id is None for list operations and for failed creates.
    timestamp is ISO 8601 UTC; set by the recorder, not the database, so the
    entry reflects when the handler finished rather than when the write landed.
    """

    action: Action
    resource: str
    outcome: Outcome
    timestamp: str
    user_id: int | None = None
    resource_id: str | None = None
    detail: str | None = None
    id: int | None = None
