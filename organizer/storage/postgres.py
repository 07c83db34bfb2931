"""
Postgres repositories over a process-wide psycopg connection pool.

Each method checks out a connection for a single statement; the pool runs in autocommit
mode so nothing is held open across requests.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from organizer.auth.models import LocalUser, UpstreamProfile
from organizer.config import DatabaseConfig
from organizer.errors import StorageError
from organizer.storage.base import RECORD_TABLES, Record, RecordTable
from organizer.storage.schema import ensure_schema

logger = logging.getLogger(__name__)

USER_COLUMNS = "id, upstream_subject_id, display_name, email, photo_url, created_at, updated_at"


def open_pool(cfg: DatabaseConfig) -> ConnectionPool:
    statement_timeout_ms = int(cfg.timeout_seconds * 1000)
    pool = ConnectionPool(
        conninfo=cfg.dsn or "",
        min_size=cfg.pool_min_size,
        max_size=cfg.pool_max_size,
        timeout=cfg.timeout_seconds,
        kwargs={
            "autocommit": True,
            "row_factory": dict_row,
            "options": f"-c statement_timeout={statement_timeout_ms}",
        },
        open=False,
    )
    pool.open(wait=True, timeout=cfg.timeout_seconds)
    return pool


class _PoolRepository:
    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        # PoolTimeout/PoolClosed subclass psycopg.OperationalError.
        try:
            with self._pool.connection() as conn:
                yield conn
        except psycopg.Error as e:
            raise StorageError(f"Database error: {type(e).__name__}") from e


def _user(row) -> Optional[LocalUser]:
    if not row:
        return None
    return LocalUser(
        id=int(row["id"]),
        upstream_subject_id=str(row["upstream_subject_id"]),
        display_name=str(row["display_name"]),
        email=row["email"],
        photo_url=row["photo_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresUserRepository(_PoolRepository):
    def get_by_subject(self, subject_id: str) -> Optional[LocalUser]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE upstream_subject_id = %s;",
                (subject_id,),
            ).fetchone()
        return _user(row)

    def get_by_id(self, user_id: int) -> Optional[LocalUser]:
        with self._connection() as conn:
            row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s;", (user_id,)).fetchone()
        return _user(row)

    def insert_if_absent(self, profile: UpstreamProfile) -> Optional[LocalUser]:
        # The unique constraint decides the race; a conflicting insert returns no row.
        with self._connection() as conn:
            row = conn.execute(
                f"""
                INSERT INTO users (upstream_subject_id, display_name, email, photo_url)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (upstream_subject_id) DO NOTHING
                RETURNING {USER_COLUMNS};
                """,
                (profile.subject, profile.name, profile.email, profile.picture),
            ).fetchone()
        return _user(row)

    def update_profile(
        self,
        user_id: int,
        *,
        display_name: str,
        email: Optional[str],
        photo_url: Optional[str],
    ) -> Optional[LocalUser]:
        with self._connection() as conn:
            row = conn.execute(
                f"""
                UPDATE users
                SET display_name = %s, email = %s, photo_url = %s, updated_at = now()
                WHERE id = %s
                RETURNING {USER_COLUMNS};
                """,
                (display_name, email, photo_url, user_id),
            ).fetchone()
        return _user(row)

    def delete(self, user_id: int) -> bool:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM users WHERE id = %s;", (user_id,))
            return cur.rowcount > 0


class PostgresSessionRepository(_PoolRepository):
    def create(self, session_id: str, user_id: int, expires_at: datetime) -> None:
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO sessions (id, user_id, expires_at) VALUES (%s, %s, %s);",
                (session_id, user_id, expires_at),
            )

    def get_user_id(self, session_id: str, now: datetime) -> Optional[int]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT user_id FROM sessions WHERE id = %s AND expires_at > %s;",
                (session_id, now),
            ).fetchone()
        return int(row["user_id"]) if row else None

    def delete(self, session_id: str) -> None:
        with self._connection() as conn:
            conn.execute("DELETE FROM sessions WHERE id = %s;", (session_id,))

    def delete_expired(self, now: datetime) -> int:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= %s;", (now,))
            return cur.rowcount


class PostgresRecordRepository(_PoolRepository):
    """CRUD over one per-user table. Identifiers come from RecordTable constants, never from input."""

    def __init__(self, pool: ConnectionPool, table: RecordTable) -> None:
        super().__init__(pool)
        self.table = table
        self._returning = ", ".join(("id", "user_id", *table.columns, "created_at", "updated_at"))

    def _filter(self, values: Record) -> Record:
        return {k: v for k, v in values.items() if k in self.table.columns}

    def list(self, user_id: int) -> List[Record]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {self._returning} FROM {self.table.name} WHERE user_id = %s ORDER BY id DESC;",
                (user_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get(self, user_id: int, record_id: int) -> Optional[Record]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {self._returning} FROM {self.table.name} WHERE id = %s AND user_id = %s;",
                (record_id, user_id),
            ).fetchone()
        return dict(row) if row else None

    def create(self, user_id: int, values: Record) -> Record:
        data = self.table.default_values()
        data.update(self._filter(values))
        cols = ["user_id", *data.keys()]
        placeholders = ", ".join(["%s"] * len(cols))
        with self._connection() as conn:
            row = conn.execute(
                f"INSERT INTO {self.table.name} ({', '.join(cols)}) VALUES ({placeholders}) "
                f"RETURNING {self._returning};",
                (user_id, *data.values()),
            ).fetchone()
        if not row:
            raise StorageError(f"Failed to create {self.table.name} row")
        return dict(row)

    def update(self, user_id: int, record_id: int, values: Record) -> Optional[Record]:
        data = self._filter(values)
        if not data:
            return self.get(user_id, record_id)
        assignments = ", ".join(f"{k} = %s" for k in data)
        with self._connection() as conn:
            row = conn.execute(
                f"UPDATE {self.table.name} SET {assignments}, updated_at = now() "
                f"WHERE id = %s AND user_id = %s RETURNING {self._returning};",
                (*data.values(), record_id, user_id),
            ).fetchone()
        return dict(row) if row else None

    def delete(self, user_id: int, record_id: int) -> bool:
        with self._connection() as conn:
            cur = conn.execute(
                f"DELETE FROM {self.table.name} WHERE id = %s AND user_id = %s;",
                (record_id, user_id),
            )
            return cur.rowcount > 0


def init_schema(pool: ConnectionPool) -> int:
    try:
        with pool.connection() as conn:
            return ensure_schema(conn)
    except psycopg.Error as e:
        raise StorageError(f"Schema setup failed: {type(e).__name__}") from e


def open_postgres_backends(cfg: DatabaseConfig):
    from organizer.storage import Backends

    try:
        pool = open_pool(cfg)
    except psycopg.Error as e:
        raise StorageError(f"Could not connect to Postgres: {type(e).__name__}") from e
    try:
        init_schema(pool)
    except StorageError:
        pool.close()
        raise
    logger.info("Postgres pool open (min=%d max=%d)", cfg.pool_min_size, cfg.pool_max_size)
    return Backends(
        users=PostgresUserRepository(pool),
        sessions=PostgresSessionRepository(pool),
        records={name: PostgresRecordRepository(pool, table) for name, table in RECORD_TABLES.items()},
        closer=pool.close,
    )
