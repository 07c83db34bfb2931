"""Relational storage: users, sessions and per-user records.

Postgres drivers are imported lazily inside `open_backends` so the in-memory backends and the
unit tests can run without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from organizer.storage.base import RecordRepository, SessionRepository, UserRepository


@dataclass
class Backends:
    users: UserRepository
    sessions: SessionRepository
    records: Dict[str, RecordRepository]
    closer: Optional[Callable[[], Any]] = field(default=None, repr=False)

    def close(self) -> None:
        if self.closer is not None:
            self.closer()


def open_backends(settings) -> Backends:
    """
    Build repositories for the configured store.

    Postgres: opens the process-wide connection pool and ensures the schema exists.
    In-memory: development only (`ORGANIZER_IN_MEMORY_BACKENDS=1`).
    """
    if settings.database.in_memory:
        from organizer.storage.memory import open_memory_backends

        return open_memory_backends()

    from organizer.storage.postgres import open_postgres_backends

    return open_postgres_backends(settings.database)
