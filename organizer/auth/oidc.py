from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from organizer.auth.models import UpstreamProfile
from organizer.auth.util import pkce_challenge
from organizer.config import OAuthClientCredentials
from organizer.errors import AuthProviderError

logger = logging.getLogger(__name__)

SCOPES = "openid email profile"
_DOCUMENT_TTL_SECONDS = 3600


class GoogleOAuthProvider:
    """
    OAuth2 authorization-code flow (with PKCE) against Google's OpenID Connect endpoints.

    Discovery and JWKS documents are cached per instance for one hour.
    """

    name = "google"

    def __init__(self, credentials: OAuthClientCredentials, *, timeout: float = 10.0) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._lock = threading.Lock()
        self._documents: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    @property
    def redirect_uri(self) -> str:
        return self._credentials.redirect_uri

    def _get_document(self, url: str, *, refresh: bool = False) -> Dict[str, Any]:
        now = time.time()
        with self._lock:
            cached = self._documents.get(url)
            if not refresh and cached is not None and now - cached[0] < _DOCUMENT_TTL_SECONDS:
                return cached[1]
        try:
            r = requests.get(url, timeout=self._timeout)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise AuthProviderError(f"Failed to fetch provider document: {type(e).__name__}") from e
        if not isinstance(data, dict):
            raise AuthProviderError("Invalid provider document")
        with self._lock:
            self._documents[url] = (now, data)
        return data

    def _discovery(self) -> Dict[str, Any]:
        return self._get_document(self._credentials.discovery_url)

    def _endpoint(self, key: str) -> str:
        value = str(self._discovery().get(key) or "")
        if not value:
            raise AuthProviderError(f"OIDC discovery missing {key}")
        return value

    def authorization_url(self, *, state: str, nonce: str, code_verifier: str) -> str:
        params = {
            "client_id": self._credentials.client_id,
            "redirect_uri": self._credentials.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "nonce": nonce,
            "code_challenge": pkce_challenge(code_verifier),
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "select_account",
        }
        return f"{self._endpoint('authorization_endpoint')}?{urlencode(params)}"

    def exchange_code_for_tokens(self, *, code: str, code_verifier: str) -> Dict[str, Any]:
        payload = {
            "client_id": self._credentials.client_id,
            "client_secret": self._credentials.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._credentials.redirect_uri,
            "code_verifier": code_verifier,
        }
        try:
            r = requests.post(self._endpoint("token_endpoint"), data=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise AuthProviderError(f"Token exchange failed: {type(e).__name__}") from e
        if r.status_code >= 400:
            # Avoid leaking sensitive info; include minimal context.
            raise AuthProviderError(f"Token exchange failed (status={r.status_code})")
        try:
            data = r.json()
        except ValueError as e:
            raise AuthProviderError("Invalid token response") from e
        if not isinstance(data, dict) or not data.get("access_token") or not data.get("id_token"):
            raise AuthProviderError("Token response missing access_token/id_token")
        return data

    def _find_jwk(self, jwks_uri: str, kid: str, *, refresh: bool = False) -> Optional[Dict[str, Any]]:
        keys = self._get_document(jwks_uri, refresh=refresh).get("keys")
        if not isinstance(keys, list):
            raise AuthProviderError("Invalid JWKS keys")
        return next((k for k in keys if isinstance(k, dict) and str(k.get("kid") or "") == kid), None)

    def validate_id_token(self, *, id_token: str, expected_nonce: str) -> Dict[str, Any]:
        """
        Verify the ID token signature against the provider's JWKS and check issuer, audience,
        expiry and nonce.
        """
        disc = self._discovery()
        issuer = str(disc.get("issuer") or "")
        jwks_uri = str(disc.get("jwks_uri") or "")
        if not issuer or not jwks_uri:
            raise AuthProviderError("OIDC discovery missing issuer/jwks_uri")

        try:
            kid = str(jwt.get_unverified_header(id_token).get("kid") or "")
        except jwt.PyJWTError as e:
            raise AuthProviderError("Malformed ID token") from e
        if not kid:
            raise AuthProviderError("ID token missing kid")

        jwk = self._find_jwk(jwks_uri, kid)
        if jwk is None:
            # Keys rotate; a cached JWKS may predate the token.
            logger.info("Unknown kid in ID token, refreshing JWKS")
            jwk = self._find_jwk(jwks_uri, kid, refresh=True)
        if jwk is None:
            raise AuthProviderError("Unknown signing key (kid)")

        try:
            key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))
            claims = jwt.decode(
                id_token,
                key=key,
                algorithms=["RS256"],
                audience=self._credentials.client_id,
                issuer=issuer,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as e:
            raise AuthProviderError(f"ID token rejected: {type(e).__name__}") from e

        nonce = str(claims.get("nonce") or "")
        if not nonce or nonce != expected_nonce:
            raise AuthProviderError("Nonce mismatch")
        return claims

    def fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        try:
            r = requests.get(
                self._endpoint("userinfo_endpoint"),
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise AuthProviderError(f"Userinfo request failed: {type(e).__name__}") from e
        if r.status_code >= 400:
            raise AuthProviderError(f"Userinfo request failed (status={r.status_code})")
        try:
            data = r.json()
        except ValueError as e:
            raise AuthProviderError("Invalid userinfo response") from e
        if not isinstance(data, dict):
            raise AuthProviderError("Invalid userinfo response")
        return data

    def exchange(self, *, code: str, code_verifier: str, nonce: str) -> UpstreamProfile:
        """Complete the callback: code -> tokens -> verified claims + userinfo -> UpstreamProfile."""
        if not code:
            raise AuthProviderError("Missing authorization code")
        tokens = self.exchange_code_for_tokens(code=code, code_verifier=code_verifier)
        claims = self.validate_id_token(id_token=str(tokens["id_token"]), expected_nonce=nonce)
        access_token = str(tokens["access_token"])
        info = self.fetch_userinfo(access_token)

        subject = str(claims.get("sub") or "")
        if str(info.get("sub") or "") != subject:
            raise AuthProviderError("Userinfo subject does not match ID token")

        # Some providers may not include email_verified; treat as optional.
        email_verified = info.get("email_verified", claims.get("email_verified"))
        email: Optional[str] = str(info.get("email") or claims.get("email") or "").strip().lower() or None
        if email and email_verified is False:
            email = None

        name = str(info.get("name") or claims.get("name") or "").strip() or (email or subject)
        picture = str(info.get("picture") or claims.get("picture") or "").strip() or None
        refresh_token = str(tokens.get("refresh_token") or "").strip() or None
        logger.debug("OAuth exchange completed for subject=%s", subject)
        return UpstreamProfile(
            subject=subject,
            name=name,
            email=email,
            picture=picture,
            access_token=access_token,
            refresh_token=refresh_token,
        )
