from __future__ import annotations

import logging
from typing import List

logger = logging.getLogger(__name__)

# Stable advisory lock key so concurrent replicas don't race on DDL (arbitrary constant, but consistent).
SCHEMA_LOCK_KEY = 731902281166  # bigint

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
      id bigserial PRIMARY KEY,
      upstream_subject_id text NOT NULL UNIQUE,
      display_name text NOT NULL,
      email text,
      photo_url text,
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
      id text PRIMARY KEY,
      user_id bigint NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      created_at timestamptz NOT NULL DEFAULT now(),
      expires_at timestamptz NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS sessions_expires_at_idx ON sessions (expires_at);",
    """
    CREATE TABLE IF NOT EXISTS notes (
      id bigserial PRIMARY KEY,
      user_id bigint NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      title text NOT NULL,
      content text NOT NULL DEFAULT '',
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
      id bigserial PRIMARY KEY,
      user_id bigint NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      title text NOT NULL,
      notes text,
      due_at timestamptz,
      completed boolean NOT NULL DEFAULT false,
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS contacts (
      id bigserial PRIMARY KEY,
      user_id bigint NOT NULL REFERENCES users(id) ON DELETE CASCADE,
      name text NOT NULL,
      email text,
      phone text,
      notes text,
      created_at timestamptz NOT NULL DEFAULT now(),
      updated_at timestamptz NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS notes_user_id_idx ON notes (user_id);",
    "CREATE INDEX IF NOT EXISTS reminders_user_id_idx ON reminders (user_id);",
    "CREATE INDEX IF NOT EXISTS contacts_user_id_idx ON contacts (user_id);",
]


def ensure_schema(conn) -> int:
    """
    Create tables if absent. Idempotent; not a migration system.

    Returns the number of statements executed.
    """
    conn.execute("SELECT pg_advisory_lock(%s);", (SCHEMA_LOCK_KEY,))
    try:
        with conn.transaction():
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s);", (SCHEMA_LOCK_KEY,))
    logger.info("Schema ensured (%d statements)", len(SCHEMA_STATEMENTS))
    return len(SCHEMA_STATEMENTS)
