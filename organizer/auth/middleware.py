from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from organizer.auth.models import Principal, RequestContext
from organizer.auth.session import SessionStore, decode_session, session_cookie_name
from organizer.config import Settings
from organizer.errors import SessionError

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Resolve the principal for every request and attach a RequestContext to `request.state.context`.

    Never rejects a request: gating is done by route dependencies.
    """

    def __init__(self, app: ASGIApp, *, settings: Settings, sessions: SessionStore) -> None:
        super().__init__(app)
        self._settings = settings
        self._sessions = sessions

    async def resolve_principal(self, request: Request) -> Principal | None:
        session_id = decode_session(self._settings, request.cookies.get(session_cookie_name(self._settings)))
        if session_id is None:
            return None
        try:
            user = await run_in_threadpool(self._sessions.deserialize, session_id)
        except SessionError as e:
            logger.warning("Session lookup failed, treating request as unauthenticated: %s", e.message)
            return None
        return Principal.from_user(user) if user is not None else None

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        principal = await self.resolve_principal(request)
        request.state.context = RequestContext(
            principal=principal,
            app_id=self._settings.app_id,
            signing_secret=self._settings.session_secret,
        )
        return await call_next(request)
