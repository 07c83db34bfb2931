from __future__ import annotations

from typing import Union

from organizer.auth.firebase import FirebaseTokenVerifier
from organizer.auth.oidc import GoogleOAuthProvider
from organizer.config import OAuthClientCredentials, ServiceAccountCredentials, Settings
from organizer.errors import ConfigError

IdentityProvider = Union[GoogleOAuthProvider, FirebaseTokenVerifier]


def build_identity_provider(settings: Settings) -> IdentityProvider:
    """Pick the identity provider adapter for the configured credential variant."""
    creds = settings.credentials
    if isinstance(creds, OAuthClientCredentials):
        return GoogleOAuthProvider(creds, timeout=settings.http_timeout_seconds)
    if isinstance(creds, ServiceAccountCredentials):
        return FirebaseTokenVerifier(creds, app_name=settings.app_id, timeout=settings.http_timeout_seconds)
    raise ConfigError("No identity provider credentials configured")
