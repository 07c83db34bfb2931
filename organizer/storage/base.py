from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from organizer.auth.models import LocalUser, UpstreamProfile

Record = Dict[str, Any]


@dataclass(frozen=True)
class RecordTable:
    """A per-user collaborator table (notes, reminders, contacts)."""

    name: str
    columns: Tuple[str, ...]
    required: Tuple[str, ...] = ()
    defaults: Tuple[Tuple[str, Any], ...] = ()

    def default_values(self) -> Record:
        return dict(self.defaults)

    @property
    def not_null(self) -> Tuple[str, ...]:
        """Columns declared NOT NULL: the required ones plus those with a default."""
        return self.required + tuple(name for name, _ in self.defaults if name not in self.required)


NOTES = RecordTable(name="notes", columns=("title", "content"), required=("title",), defaults=(("content", ""),))
REMINDERS = RecordTable(
    name="reminders",
    columns=("title", "notes", "due_at", "completed"),
    required=("title",),
    defaults=(("completed", False),),
)
CONTACTS = RecordTable(name="contacts", columns=("name", "email", "phone", "notes"), required=("name",))

RECORD_TABLES: Dict[str, RecordTable] = {t.name: t for t in (NOTES, REMINDERS, CONTACTS)}


class UserRepository(Protocol):
    def get_by_subject(self, subject_id: str) -> Optional[LocalUser]:
        ...

    def get_by_id(self, user_id: int) -> Optional[LocalUser]:
        ...

    def insert_if_absent(self, profile: UpstreamProfile) -> Optional[LocalUser]:
        """
        Insert a user for `profile.subject`.

        Returns None when a row for that subject already exists (unique-constraint conflict).
        """

    def update_profile(
        self,
        user_id: int,
        *,
        display_name: str,
        email: Optional[str],
        photo_url: Optional[str],
    ) -> Optional[LocalUser]:
        ...

    def delete(self, user_id: int) -> bool:
        """Delete a user; sessions and records cascade."""


class SessionRepository(Protocol):
    def create(self, session_id: str, user_id: int, expires_at: datetime) -> None:
        ...

    def get_user_id(self, session_id: str, now: datetime) -> Optional[int]:
        """User id for an unexpired session, else None."""

    def delete(self, session_id: str) -> None:
        ...

    def delete_expired(self, now: datetime) -> int:
        ...


class RecordRepository(Protocol):
    table: RecordTable

    def list(self, user_id: int) -> List[Record]:
        ...

    def get(self, user_id: int, record_id: int) -> Optional[Record]:
        ...

    def create(self, user_id: int, values: Record) -> Record:
        ...

    def update(self, user_id: int, record_id: int, values: Record) -> Optional[Record]:
        ...

    def delete(self, user_id: int, record_id: int) -> bool:
        ...
