"""
In-memory repositories for development and tests.

All tables share one lock, so the unique constraint on `upstream_subject_id` and the
ON DELETE CASCADE behaviour match the Postgres schema.
"""
from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from organizer.auth.models import LocalUser, UpstreamProfile
from organizer.errors import StorageError
from organizer.storage.base import RECORD_TABLES, Record, RecordTable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDatabase:
    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users: Dict[int, LocalUser] = {}
        self.sessions: Dict[str, Tuple[int, datetime]] = {}
        self.records: Dict[str, Dict[int, Record]] = {name: {} for name in RECORD_TABLES}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self.lock:
            self.users.clear()
            self.sessions.clear()
            for rows in self.records.values():
                rows.clear()


class InMemoryUserRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def _find(self, subject_id: str) -> Optional[LocalUser]:
        for user in self._db.users.values():
            if user.upstream_subject_id == subject_id:
                return user
        return None

    def get_by_subject(self, subject_id: str) -> Optional[LocalUser]:
        with self._db.lock:
            return self._find(subject_id)

    def get_by_id(self, user_id: int) -> Optional[LocalUser]:
        with self._db.lock:
            return self._db.users.get(user_id)

    def insert_if_absent(self, profile: UpstreamProfile) -> Optional[LocalUser]:
        with self._db.lock:
            if self._find(profile.subject) is not None:
                return None
            now = _utcnow()
            user = LocalUser(
                id=self._db.next_id(),
                upstream_subject_id=profile.subject,
                display_name=profile.name,
                email=profile.email,
                photo_url=profile.picture,
                created_at=now,
                updated_at=now,
            )
            self._db.users[user.id] = user
            return user

    def update_profile(
        self,
        user_id: int,
        *,
        display_name: str,
        email: Optional[str],
        photo_url: Optional[str],
    ) -> Optional[LocalUser]:
        with self._db.lock:
            user = self._db.users.get(user_id)
            if user is None:
                return None
            updated = LocalUser(
                id=user.id,
                upstream_subject_id=user.upstream_subject_id,
                display_name=display_name,
                email=email,
                photo_url=photo_url,
                created_at=user.created_at,
                updated_at=_utcnow(),
            )
            self._db.users[user_id] = updated
            return updated

    def delete(self, user_id: int) -> bool:
        with self._db.lock:
            if self._db.users.pop(user_id, None) is None:
                return False
            for sid in [sid for sid, (uid, _) in self._db.sessions.items() if uid == user_id]:
                del self._db.sessions[sid]
            for rows in self._db.records.values():
                for rid in [rid for rid, row in rows.items() if row["user_id"] == user_id]:
                    del rows[rid]
            return True


class InMemorySessionRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def create(self, session_id: str, user_id: int, expires_at: datetime) -> None:
        with self._db.lock:
            if user_id not in self._db.users:
                raise StorageError(f"user {user_id} does not exist")
            self._db.sessions[session_id] = (user_id, expires_at)

    def get_user_id(self, session_id: str, now: datetime) -> Optional[int]:
        with self._db.lock:
            entry = self._db.sessions.get(session_id)
        if entry is None or entry[1] <= now:
            return None
        return entry[0]

    def delete(self, session_id: str) -> None:
        with self._db.lock:
            self._db.sessions.pop(session_id, None)

    def delete_expired(self, now: datetime) -> int:
        with self._db.lock:
            stale = [sid for sid, (_, exp) in self._db.sessions.items() if exp <= now]
            for sid in stale:
                del self._db.sessions[sid]
            return len(stale)


class InMemoryRecordRepository:
    def __init__(self, db: InMemoryDatabase, table: RecordTable) -> None:
        self._db = db
        self.table = table

    @property
    def _rows(self) -> Dict[int, Record]:
        return self._db.records[self.table.name]

    def list(self, user_id: int) -> List[Record]:
        with self._db.lock:
            rows = [dict(r) for r in self._rows.values() if r["user_id"] == user_id]
        return sorted(rows, key=lambda r: r["id"], reverse=True)

    def get(self, user_id: int, record_id: int) -> Optional[Record]:
        with self._db.lock:
            row = self._rows.get(record_id)
            if row is None or row["user_id"] != user_id:
                return None
            return dict(row)

    def create(self, user_id: int, values: Record) -> Record:
        now = _utcnow()
        with self._db.lock:
            if user_id not in self._db.users:
                raise StorageError(f"user {user_id} does not exist")
            row: Record = {c: None for c in self.table.columns}
            row.update(self.table.default_values())
            row.update({k: v for k, v in values.items() if k in self.table.columns})
            row.update({"id": self._db.next_id(), "user_id": user_id, "created_at": now, "updated_at": now})
            self._rows[row["id"]] = row
            return dict(row)

    def update(self, user_id: int, record_id: int, values: Record) -> Optional[Record]:
        with self._db.lock:
            row = self._rows.get(record_id)
            if row is None or row["user_id"] != user_id:
                return None
            row.update({k: v for k, v in values.items() if k in self.table.columns})
            row["updated_at"] = _utcnow()
            return dict(row)

    def delete(self, user_id: int, record_id: int) -> bool:
        with self._db.lock:
            row = self._rows.get(record_id)
            if row is None or row["user_id"] != user_id:
                return False
            del self._rows[record_id]
            return True


def open_memory_backends(db: Optional[InMemoryDatabase] = None):
    from organizer.storage import Backends

    db = db or InMemoryDatabase()
    return Backends(
        users=InMemoryUserRepository(db),
        sessions=InMemorySessionRepository(db),
        records={name: InMemoryRecordRepository(db, table) for name, table in RECORD_TABLES.items()},
    )
