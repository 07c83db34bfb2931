"""
Pytest config.

Local imports like `import organizer` rely on the repo root being on sys.path. When invoking a
global `pytest` entrypoint without an editable install that doesn't happen reliably during
collection, so we pin it here.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from organizer.auth.models import UpstreamProfile  # noqa: E402
from organizer.auth.oidc import GoogleOAuthProvider  # noqa: E402
from organizer.config import load_settings  # noqa: E402
from organizer.errors import AuthProviderError  # noqa: E402
from organizer.storage.memory import InMemoryDatabase, open_memory_backends  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-purposes-only"

_SERVICE_ACCOUNT_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def service_account_info(**overrides: str) -> Dict[str, str]:
    """A structurally valid service-account document with a freshly generated key."""
    pem = _SERVICE_ACCOUNT_KEY.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    info = {
        "type": "service_account",
        "project_id": "organizer-dev",
        "private_key_id": "abc",
        "private_key": pem,
        "client_email": "admin@organizer-dev.iam.gserviceaccount.com",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    info.update(overrides)
    return info


def base_env(**overrides: str) -> Dict[str, str]:
    env = {
        "APP_ENV": "test",
        "FRONTEND_URL": "http://localhost:3000",
        "APP_ID": "organizer-test",
        "SESSION_SECRET": TEST_SECRET,
        "GOOGLE_CLIENT_ID": "test-client-id",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
        "GOOGLE_REDIRECT_URI": "http://testserver/auth/google/callback",
        "ORGANIZER_IN_MEMORY_BACKENDS": "1",
    }
    env.update(overrides)
    return env


class FakeGoogleProvider(GoogleOAuthProvider):
    """Google provider with the network steps replaced: authorization codes map to canned profiles."""

    def __init__(self, settings) -> None:
        super().__init__(settings.credentials)
        self.profiles: Dict[str, UpstreamProfile] = {}
        self.exchanged: list = []

    def authorization_url(self, *, state: str, nonce: str, code_verifier: str) -> str:
        return "https://accounts.example.test/o/oauth2/auth?" + urlencode({"state": state, "nonce": nonce})

    def exchange(self, *, code: str, code_verifier: str, nonce: str) -> UpstreamProfile:
        self.exchanged.append(code)
        profile = self.profiles.get(code)
        if profile is None:
            raise AuthProviderError("Token exchange failed (status=400)")
        return profile


@pytest.fixture
def settings():
    return load_settings(base_env())


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def backends(db):
    return open_memory_backends(db)


@pytest.fixture
def provider(settings) -> FakeGoogleProvider:
    return FakeGoogleProvider(settings)


@pytest.fixture
def client(settings, backends, provider):
    from fastapi.testclient import TestClient

    from organizer.api.app import create_app

    app = create_app(settings, backends=backends, provider=provider)
    with TestClient(app) as c:
        yield c


def google_login(client, provider: FakeGoogleProvider, profile: Optional[UpstreamProfile], *, code: str = "code-1"):
    """Drive /auth/google -> /auth/google/callback; returns the callback response."""
    if profile is not None:
        provider.profiles[code] = profile
    r = client.get("/auth/google", follow_redirects=False)
    assert r.status_code == 302
    state = parse_qs(urlparse(r.headers["location"]).query)["state"][0]
    return client.get("/auth/google/callback", params={"code": code, "state": state}, follow_redirects=False)


@pytest.fixture
def login(client, provider):
    def _login(profile: Optional[UpstreamProfile], *, code: str = "code-1"):
        return google_login(client, provider, profile, code=code)

    return _login
