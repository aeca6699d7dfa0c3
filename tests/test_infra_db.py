"""Tests for database layer."""

import os
from unittest.mock import MagicMock, patch

import pytest

_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB tests",
)


class TestGetConnConfig:
    """Tests for get_conn() configuration - no real DB needed."""

    def test_connects_with_database_url(self):
        from convoflow.infra.db import get_conn

        env = {"DATABASE_URL": "dbname=db user=u host=h port=5432"}
        with patch.dict(os.environ, env, clear=True), patch(
            "convoflow.infra.db.psycopg2.connect", return_value=MagicMock()
        ) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("dbname=db user=u host=h port=5432")

    def test_raises_without_database_url(self, monkeypatch):
        from convoflow.infra.db import get_conn

        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            get_conn()


class TestPool:
    """Pool sizing and lifecycle - no real DB needed."""

    def test_pool_sized_from_env_and_reused(self, monkeypatch):
        from convoflow.infra import db

        monkeypatch.setenv("DATABASE_URL", "postgresql://u@h/db")
        monkeypatch.setenv("DB_POOL_MIN", "2")
        monkeypatch.setenv("DB_POOL_MAX", "4")
        with patch("convoflow.infra.db.ThreadedConnectionPool") as pool_cls:
            try:
                first = db._get_pool()
                second = db._get_pool()
            finally:
                db.close_pool()

        pool_cls.assert_called_once_with(2, 4, "postgresql://u@h/db")
        assert first is second
        first.closeall.assert_called_once()

    def test_close_pool_without_pool(self):
        from convoflow.infra import db

        db.close_pool()
        db.close_pool()


class TestTxnMocked:
    """txn() commit/rollback semantics against a mock connection."""

    def test_commits_on_success(self):
        from convoflow.infra.db import txn

        conn = MagicMock()
        with txn(conn) as cur:
            cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_not_called()

    def test_rollback_on_exception(self):
        from convoflow.infra.db import txn

        conn = MagicMock()
        conn.closed = 0
        with pytest.raises(ValueError):
            with txn(conn):
                raise ValueError("rollback test")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_pooled_connection_returned(self):
        from convoflow.infra.db import txn

        conn = MagicMock()
        conn.closed = 0
        pool = MagicMock()
        pool.getconn.return_value = conn
        with patch("convoflow.infra.db._get_pool", return_value=pool):
            with txn() as cur:
                cur.execute("SELECT 1")

        conn.commit.assert_called_once()
        pool.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_discarded(self):
        from convoflow.infra.db import txn

        conn = MagicMock()
        conn.closed = 2
        conn.cursor.side_effect = RuntimeError("connection lost")
        pool = MagicMock()
        pool.getconn.return_value = conn
        with patch("convoflow.infra.db._get_pool", return_value=pool):
            with pytest.raises(RuntimeError):
                with txn():
                    pass

        conn.rollback.assert_not_called()
        pool.putconn.assert_called_once_with(conn, close=True)


@_skip_no_db
class TestTxn:
    """Tests for txn() against a real database."""

    def test_rollback_on_exception(self):
        from convoflow.infra.db import get_conn, txn

        conn = get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute("CREATE TEMP TABLE test_rollback (id serial, val text)")
            conn.commit()

            with pytest.raises(ValueError):
                with txn(conn) as cur:
                    cur.execute("INSERT INTO test_rollback (val) VALUES (%s)", ("bad",))
                    raise ValueError("rollback test")

            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM test_rollback")
                assert cur.fetchone()[0] == 0
        finally:
            conn.close()

    def test_fetch_helpers(self):
        from convoflow.infra.db import fetchall, fetchone, txn

        with txn() as cur:
            assert fetchone(cur, "SELECT %s::text", ("hello",))[0] == "hello"
            rows = fetchall(cur, "SELECT generate_series(1, 3)")
            assert [r[0] for r in rows] == [1, 2, 3]
