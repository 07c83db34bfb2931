from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from urllib.parse import urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(secrets.token_bytes(nbytes))


def pkce_challenge(verifier: str) -> str:
    """PKCE S256 challenge (RFC 7636) for a verifier."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


@dataclass(frozen=True)
class LoginFlow:
    """Per-attempt secrets for one authorization-code round trip."""

    state: str = field(default_factory=random_token)
    nonce: str = field(default_factory=random_token)
    # 32 random bytes -> 43 base64url chars, inside PKCE's 43..128 range.
    code_verifier: str = field(default_factory=random_token, repr=False)


def sanitize_next_path(next_path: str | None) -> str:
    """
    Post-login redirect target: a same-origin path like `/notes?tab=open`, else `/`.
    """
    p = (next_path or "").strip().replace("\r", "").replace("\n", "")
    # `//host` and `/\host` are scheme-relative to browsers.
    if not p.startswith("/") or p[1:2] in ("/", "\\"):
        return "/"
    parts = urlsplit(p)
    if parts.scheme or parts.netloc:
        return "/"
    return p
