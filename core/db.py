"""
core/db.py -- Engine factory shared by every SQLAlchemy-backed store.

Each store (auth/store.py, rbac/store.py, audit/store.py) owns its tables and
builds its own engine from the same DATABASE_URL. This module holds the
connection-level tweaks they all need and the route-boundary translation of
database errors into the core/errors.py taxonomy.

Layer rule: core/ is the kernel. No imports from api/, auth/, rbac/, or audit/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import Conflict, UnexpectedFailure


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while the audit log is being appended to. Set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine, applying the SQLite-only settings when relevant.

    check_same_thread=False: FastAPI runs sync work in a thread pool, so a
    pooled SQLite connection may be used from a thread other than its creator.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def store_errors(context: str, conflict: str | None = None) -> Iterator[None]:
    """Translate database errors raised inside the block at a route boundary.

    IntegrityError -> Conflict(conflict) when a conflict message is given.
    Any other SQLAlchemyError -> UnexpectedFailure(context); the client sees
    only the context, the original error stays chained for the log.

        with store_errors("Erro ao criar usuário", conflict="Email já está em uso."):
            user_id = store.create_user(user)
    """
    try:
        yield
    except IntegrityError as exc:
        if conflict is not None:
            raise Conflict(conflict) from exc
        raise UnexpectedFailure(context) from exc
    except SQLAlchemyError as exc:
        raise UnexpectedFailure(context) from exc
