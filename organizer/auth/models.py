from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UpstreamProfile:
    """Identity returned by the upstream provider for one login. Never persisted verbatim."""

    subject: str
    name: str
    email: Optional[str] = None
    picture: Optional[str] = None
    access_token: str = field(default="", repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class LocalUser:
    """User row in the relational store; one per upstream subject id."""

    id: int
    upstream_subject_id: str
    display_name: str
    email: Optional[str]
    photo_url: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "email": self.email,
            "photoUrl": self.photo_url,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to a single request."""

    user_id: int
    display_name: str
    email: Optional[str] = None
    photo_url: Optional[str] = None

    @classmethod
    def from_user(cls, user: LocalUser) -> "Principal":
        return cls(user_id=user.id, display_name=user.display_name, email=user.email, photo_url=user.photo_url)


@dataclass(frozen=True)
class SessionReference:
    session_id: str = field(repr=False)
    user_id: int
    expires_at: datetime


@dataclass(frozen=True)
class RequestContext:
    """Per-request context. `principal` is None for unauthenticated requests."""

    principal: Optional[Principal]
    app_id: str
    signing_secret: str = field(repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None
