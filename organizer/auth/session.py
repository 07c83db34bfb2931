from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from organizer.auth.models import LocalUser, SessionReference
from organizer.auth.util import random_token
from organizer.config import Settings
from organizer.errors import SessionError, StorageError
from organizer.storage.base import SessionRepository, UserRepository

logger = logging.getLogger(__name__)

SESSION_SALT = "organizer-session-v1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    Server-side sessions: the session row holds only the local user id.

    The user row is re-read on every request so profile changes and account deletion take
    effect immediately.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        users: UserRepository,
        *,
        ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = sessions
        self._users = users
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def serialize(self, user: LocalUser) -> SessionReference:
        ref = SessionReference(session_id=random_token(32), user_id=user.id, expires_at=self._clock() + self._ttl)
        try:
            self._sessions.create(ref.session_id, ref.user_id, ref.expires_at)
        except StorageError as e:
            raise SessionError(f"Could not store session: {e.message}") from e
        logger.debug("Session created for user id=%s", user.id)
        return ref

    def deserialize(self, session_id: Optional[str]) -> Optional[LocalUser]:
        if not session_id:
            return None
        try:
            user_id = self._sessions.get_user_id(session_id, self._clock())
            if user_id is None:
                return None
            return self._users.get_by_id(user_id)
        except StorageError as e:
            raise SessionError(f"Could not read session: {e.message}") from e

    def destroy(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        try:
            self._sessions.delete(session_id)
        except StorageError as e:
            raise SessionError(f"Could not delete session: {e.message}") from e

    def purge_expired(self) -> int:
        try:
            return self._sessions.delete_expired(self._clock())
        except StorageError as e:
            raise SessionError(f"Could not purge sessions: {e.message}") from e


def session_cookie_name(cfg: Settings) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers reject it on plain HTTP.
    return "__Host-organizer_session" if cfg.cookie_secure else "organizer_session"


def _serializer(cfg: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def encode_session(cfg: Settings, ref: SessionReference) -> str:
    return _serializer(cfg).dumps(ref.session_id)


def decode_session(cfg: Settings, value: Optional[str]) -> Optional[str]:
    """Return the session id carried by a cookie, or None if absent, tampered or expired."""
    if not value:
        return None
    try:
        session_id = _serializer(cfg).loads(value, max_age=cfg.session_ttl_seconds)
    except BadSignature:
        # BadTimeSignature/SignatureExpired subclass BadSignature.
        return None
    if not isinstance(session_id, str) or not session_id:
        return None
    return session_id


def session_cookie_kwargs(cfg: Settings, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": cfg.cookie_samesite,
        "path": "/",
    }


def clear_session_cookie_kwargs(cfg: Settings) -> dict:
    return {**session_cookie_kwargs(cfg, ""), "max_age": 0}
