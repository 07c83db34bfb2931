"""Postgres repositories against a recording fake pool (no database required)."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, List, Optional

import psycopg
import pytest

from organizer.auth.models import UpstreamProfile
from organizer.errors import StorageError
from organizer.storage.base import NOTES
from organizer.storage.postgres import (
    PostgresRecordRepository,
    PostgresSessionRepository,
    PostgresUserRepository,
    init_schema,
)
from organizer.storage.schema import SCHEMA_LOCK_KEY, SCHEMA_STATEMENTS

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _Cursor:
    def __init__(self, rows: List[Any], rowcount: int = 0) -> None:
        self._rows = rows
        self.rowcount = rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class _Conn:
    def __init__(self, pool: "_Pool") -> None:
        self._pool = pool

    def execute(self, sql: str, params: Optional[tuple] = None) -> _Cursor:
        self._pool.executed.append((" ".join(sql.split()), params))
        if self._pool.error is not None:
            raise self._pool.error
        rows = self._pool.results.pop(0) if self._pool.results else []
        return _Cursor(rows, rowcount=len(rows) or self._pool.rowcount)

    @contextmanager
    def transaction(self):
        self._pool.executed.append(("BEGIN", None))
        yield
        self._pool.executed.append(("COMMIT", None))


class _Pool:
    def __init__(self) -> None:
        self.executed: List[tuple] = []
        self.results: List[List[Any]] = []
        self.rowcount = 0
        self.error: Optional[Exception] = None

    @contextmanager
    def connection(self):
        yield _Conn(self)


def _user_row(**overrides: Any) -> dict:
    row = {
        "id": 7,
        "upstream_subject_id": "g-123",
        "display_name": "Ana",
        "email": "ana@x.com",
        "photo_url": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


@pytest.fixture
def pool() -> _Pool:
    return _Pool()


def test_insert_if_absent_uses_on_conflict(pool) -> None:
    pool.results.append([_user_row()])
    user = PostgresUserRepository(pool).insert_if_absent(UpstreamProfile(subject="g-123", name="Ana"))
    assert user is not None and user.id == 7
    sql, params = pool.executed[0]
    assert "ON CONFLICT (upstream_subject_id) DO NOTHING" in sql
    assert params == ("g-123", "Ana", None, None)


def test_conflicting_insert_returns_none(pool) -> None:
    assert PostgresUserRepository(pool).insert_if_absent(UpstreamProfile(subject="g-123", name="Ana")) is None


def test_get_by_subject_maps_row(pool) -> None:
    pool.results.append([_user_row(display_name="Ana R.")])
    user = PostgresUserRepository(pool).get_by_subject("g-123")
    assert user.display_name == "Ana R."
    assert user.upstream_subject_id == "g-123"
    assert pool.executed[0][1] == ("g-123",)


def test_driver_errors_become_storage_errors(pool) -> None:
    pool.error = psycopg.OperationalError("connection refused")
    with pytest.raises(StorageError) as ei:
        PostgresUserRepository(pool).get_by_subject("g-123")
    assert ei.value.message == "Database error: OperationalError"


def test_session_lookup_filters_expired(pool) -> None:
    repo = PostgresSessionRepository(pool)
    assert repo.get_user_id("sid", NOW) is None
    pool.results.append([{"user_id": 7}])
    assert repo.get_user_id("sid", NOW) == 7
    sql, params = pool.executed[-1]
    assert "expires_at > %s" in sql
    assert params == ("sid", NOW)


def test_record_queries_are_scoped_to_user(pool) -> None:
    repo = PostgresRecordRepository(pool, NOTES)
    pool.results.append([{"id": 1, "user_id": 7, "title": "t", "content": "", "created_at": NOW, "updated_at": NOW}])
    row = repo.create(7, {"title": "t", "user_id": 99, "id": 5})
    assert row["user_id"] == 7
    sql, params = pool.executed[-1]
    assert sql.startswith("INSERT INTO notes (user_id, content, title)")
    assert params == (7, "", "t")

    assert repo.get(8, 1) is None
    assert pool.executed[-1][1] == (1, 8)

    assert repo.update(8, 1, {"title": "x"}) is None
    sql, params = pool.executed[-1]
    assert "WHERE id = %s AND user_id = %s" in sql
    assert params == ("x", 1, 8)

    assert repo.delete(8, 1) is False


def test_init_schema_holds_advisory_lock(pool) -> None:
    assert init_schema(pool) == len(SCHEMA_STATEMENTS)
    assert pool.executed[0] == ("SELECT pg_advisory_lock(%s);", (SCHEMA_LOCK_KEY,))
    assert pool.executed[-1] == ("SELECT pg_advisory_unlock(%s);", (SCHEMA_LOCK_KEY,))
    assert any("CREATE TABLE IF NOT EXISTS users" in sql for sql, _ in pool.executed)
