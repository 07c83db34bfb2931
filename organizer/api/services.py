from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from organizer.auth.provider import IdentityProvider, build_identity_provider
from organizer.auth.resolver import PrincipalResolver
from organizer.auth.session import SessionStore
from organizer.config import Settings
from organizer.storage import Backends
from organizer.storage.base import RecordRepository


@dataclass
class Services:
    """Process-wide collaborators, built once per app."""

    settings: Settings
    backends: Backends
    provider: IdentityProvider
    resolver: PrincipalResolver
    sessions: SessionStore

    def records(self, kind: str) -> RecordRepository:
        return self.backends.records[kind]


def build_services(settings: Settings, backends: Backends, provider: IdentityProvider | None = None) -> Services:
    return Services(
        settings=settings,
        backends=backends,
        provider=provider if provider is not None else build_identity_provider(settings),
        resolver=PrincipalResolver(backends.users),
        sessions=SessionStore(backends.sessions, backends.users, ttl_seconds=settings.session_ttl_seconds),
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=500, detail="Application not initialised")
    return services
