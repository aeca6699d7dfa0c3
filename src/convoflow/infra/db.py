"""Database access layer using psycopg2.

Push handlers, pull-subscriber callbacks and the background memory updater
all run on threads, so short transactions borrow connections from one
process-wide ThreadedConnectionPool (DB_POOL_MIN / DB_POOL_MAX).
"""

import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.pool import ThreadedConnectionPool

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

# JSONB parameters are passed as psycopg2.extras.Json
Json = psycopg2.extras.Json

DEFAULT_POOL_MIN = 1
DEFAULT_POOL_MAX = 10

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _database_url() -> str:
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return dsn


def get_conn() -> PgConnection:
    """Open a dedicated connection (caller closes it).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    return psycopg2.connect(_database_url())


def _get_pool() -> ThreadedConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            minconn = int(os.environ.get("DB_POOL_MIN", DEFAULT_POOL_MIN))
            maxconn = int(os.environ.get("DB_POOL_MAX", DEFAULT_POOL_MAX))
            _pool = ThreadedConnectionPool(minconn, maxconn, _database_url())
            logger.info(
                "database pool created",
                extra={"extra_fields": safe_log_context(minconn=minconn, maxconn=maxconn)},
            )
        return _pool


def close_pool() -> None:
    """Close every pooled connection (shutdown)."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short transaction.

    Without `conn`, a pooled connection is borrowed and returned on exit;
    connections left broken by the driver are discarded instead of reused.
    Commits on successful exit, rolls back on exception.

    Example:
        with txn() as cur:
            cur.execute("UPDATE messages SET status = %s WHERE id = %s", (1, mid))
    """
    pool = _get_pool() if conn is None else None
    if pool is not None:
        conn = pool.getconn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        if not conn.closed:
            conn.rollback()
        raise
    finally:
        if pool is not None:
            pool.putconn(conn, close=bool(conn.closed))


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row (None if no results)."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Execute query and fetch all rows."""
    cur.execute(query, params)
    return cur.fetchall()
