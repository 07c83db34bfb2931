from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from organizer.auth.models import SessionReference, UpstreamProfile
from organizer.auth.session import (
    SessionStore,
    clear_session_cookie_kwargs,
    decode_session,
    encode_session,
    session_cookie_kwargs,
    session_cookie_name,
)
from organizer.config import load_settings
from organizer.errors import SessionError, StorageError
from organizer.storage.memory import InMemorySessionRepository, InMemoryUserRepository

from conftest import base_env


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _store(db, clock=None, ttl: int = 3600) -> SessionStore:
    kwargs = {"clock": clock} if clock is not None else {}
    return SessionStore(InMemorySessionRepository(db), InMemoryUserRepository(db), ttl_seconds=ttl, **kwargs)


def _user(db, subject: str = "g-123"):
    return InMemoryUserRepository(db).insert_if_absent(UpstreamProfile(subject=subject, name="Ana", email="ana@x.com"))


def test_serialize_then_deserialize_returns_the_user(db) -> None:
    user = _user(db)
    store = _store(db)
    ref = store.serialize(user)
    assert ref.user_id == user.id
    assert store.deserialize(ref.session_id) == user


def test_deserialize_unknown_or_missing_session(db) -> None:
    store = _store(db)
    assert store.deserialize(None) is None
    assert store.deserialize("") is None
    assert store.deserialize("never-issued") is None


def test_deleted_user_yields_no_principal(db) -> None:
    user = _user(db)
    store = _store(db)
    ref = store.serialize(user)
    InMemoryUserRepository(db).delete(user.id)
    assert store.deserialize(ref.session_id) is None


def test_expired_session_yields_no_principal(db) -> None:
    clock = _Clock()
    user = _user(db)
    store = _store(db, clock=clock, ttl=60)
    ref = store.serialize(user)
    assert ref.expires_at == clock.now + timedelta(seconds=60)

    clock.now += timedelta(seconds=59)
    assert store.deserialize(ref.session_id) == user
    clock.now += timedelta(seconds=1)
    assert store.deserialize(ref.session_id) is None
    assert store.purge_expired() == 1
    assert db.sessions == {}


def test_destroy_removes_the_session(db) -> None:
    store = _store(db)
    ref = store.serialize(_user(db))
    store.destroy(ref.session_id)
    assert store.deserialize(ref.session_id) is None
    store.destroy(None)


class _BrokenSessions(InMemorySessionRepository):
    def get_user_id(self, session_id, now):
        raise StorageError("Database error: OperationalError")

    def create(self, session_id, user_id, expires_at):
        raise StorageError("Database error: OperationalError")


def test_storage_failures_become_session_errors(db) -> None:
    user = _user(db)
    store = SessionStore(_BrokenSessions(db), InMemoryUserRepository(db), ttl_seconds=60)
    with pytest.raises(SessionError):
        store.serialize(user)
    with pytest.raises(SessionError):
        store.deserialize("some-session")


def test_cookie_value_is_signed(settings) -> None:
    ref = SessionReference(session_id="sid-1", user_id=1, expires_at=datetime.now(timezone.utc))
    value = encode_session(settings, ref)
    assert "sid-1" != value
    assert decode_session(settings, value) == "sid-1"

    assert decode_session(settings, value[:-2] + "xx") is None
    assert decode_session(settings, "garbage") is None
    assert decode_session(settings, None) is None

    other = load_settings(base_env(SESSION_SECRET="a-different-secret"))
    assert decode_session(other, value) is None


def test_cookie_attributes_follow_environment(settings) -> None:
    kwargs = session_cookie_kwargs(settings, "v")
    assert kwargs["httponly"] is True
    assert kwargs["secure"] is False
    assert kwargs["samesite"] == "lax"
    assert kwargs["path"] == "/"
    assert kwargs["key"] == "organizer_session"
    assert clear_session_cookie_kwargs(settings)["max_age"] == 0

    env = base_env(APP_ENV="production", DATABASE_URL="postgresql://db/organizer")
    env.pop("ORGANIZER_IN_MEMORY_BACKENDS")
    prod = load_settings(env)
    assert session_cookie_name(prod) == "__Host-organizer_session"
    assert session_cookie_kwargs(prod, "v")["secure"] is True
    assert session_cookie_kwargs(prod, "v")["samesite"] == "strict"
