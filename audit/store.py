"""
audit/store.py -- Append-only SQLAlchemy Core store for audit entries.

Pattern: Repository + Data Mapper (same as auth/store.py). The repository
exposes record() and list_entries() only: there is no update or
delete path, so the application cannot rewrite history.

Failure contract: any database error while writing is re-raised as
AuditWriteFailure. The caller (audit/recorder.py) logs it and carries on.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditEntry, Outcome
from core.db import make_engine
from core.errors import AuditWriteFailure
from rbac.models import Action

_MAX_DETAIL = 1000

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_entries = Table(
    "audit_entries",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for public routes
    Column("action", String(10), nullable=False),
    Column("resource", String(100), nullable=False),
    Column("resource_id", String(64)),
    Column("timestamp", String(32), nullable=False),
    Column("outcome", String(10), nullable=False),
    Column("detail", Text),
)


class AuditStore:
    """Append-only repository for AuditEntry records."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def record(self, entry: AuditEntry) -> int:
        """Insert one entry and return its id.

        Raises AuditWriteFailure if the database rejects the write.
        """
        detail = entry.detail[:_MAX_DETAIL] if entry.detail else entry.detail
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _audit_entries.insert().values(
                        user_id=entry.user_id,
                        action=Action(entry.action).value,
                        resource=entry.resource,
                        resource_id=entry.resource_id,
                        timestamp=entry.timestamp,
                        outcome=Outcome(entry.outcome).value,
                        detail=detail,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except SQLAlchemyError as exc:
            raise AuditWriteFailure(f"Failed to record audit entry: {exc}") from exc

    def list_entries(
        self,
        *,
        user_id: int | None = None,
        resource: str | None = None,
        action: Action | None = None,
        outcome: Outcome | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Return entries newest first, optionally filtered."""
        query = _audit_entries.select()
        if user_id is not None:
            query = query.where(_audit_entries.c.user_id == user_id)
        if resource is not None:
            query = query.where(_audit_entries.c.resource == resource)
        if action is not None:
            query = query.where(_audit_entries.c.action == Action(action).value)
        if outcome is not None:
            query = query.where(_audit_entries.c.outcome == Outcome(outcome).value)
        query = query.order_by(_audit_entries.c.id.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        action=Action(row.action),
        resource=row.resource,
        resource_id=row.resource_id,
        timestamp=row.timestamp,
        outcome=Outcome(row.outcome),
        detail=row.detail,
    )
