from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from organizer.api.schemas import FirebaseLoginRequest
from organizer.api.services import Services, get_services
from organizer.auth.deps import require_principal
from organizer.auth.firebase import FirebaseTokenVerifier
from organizer.auth.models import LocalUser, Principal
from organizer.auth.oidc import GoogleOAuthProvider
from organizer.auth.session import (
    clear_session_cookie_kwargs,
    decode_session,
    encode_session,
    session_cookie_kwargs,
    session_cookie_name,
)
from organizer.auth.util import LoginFlow, sanitize_next_path
from organizer.config import Settings
from organizer.errors import AuthProviderError, PrincipalResolutionError, SessionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_OAUTH_COOKIE_PATH = "/auth"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_COOKIES = ("organizer_oauth_state", "organizer_oauth_nonce", "organizer_oauth_verifier", "organizer_oauth_next")


def _oauth_cookie_kwargs(cfg: Settings, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        # Lax in every environment: these must ride the top-level redirect back from Google.
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _clear_oauth_cookies(cfg: Settings, resp) -> None:
    for key in _OAUTH_COOKIES:
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value="", max_age=0))


def _failure_url(cfg: Settings, code: str) -> str:
    return f"{cfg.frontend_url}/login?{urlencode({'error': code})}"


def _google(services: Services) -> GoogleOAuthProvider:
    if not isinstance(services.provider, GoogleOAuthProvider):
        raise HTTPException(status_code=404, detail="Google OAuth login is not enabled")
    return services.provider


def _start_session(services: Services, user: LocalUser, resp) -> None:
    ref = services.sessions.serialize(user)
    resp.set_cookie(**session_cookie_kwargs(services.settings, encode_session(services.settings, ref)))


@router.get("/mode")
def auth_mode(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Expose the configured login variant so the UI can render the right button. Returns no secrets."""
    mode = services.settings.auth_mode
    result: Dict[str, Any] = {"ok": True, "mode": mode}
    if mode == "oauth2":
        result["loginUrl"] = "/auth/google"
    else:
        result["loginUrl"] = "/auth/firebase"
    return result


@router.get("/google")
def auth_google(next_path: str = Query("/", alias="next"), services: Services = Depends(get_services)):
    """Initiate the Google authorization-code flow (PKCE)."""
    provider = _google(services)
    cfg = services.settings

    flow = LoginFlow()
    try:
        url = provider.authorization_url(state=flow.state, nonce=flow.nonce, code_verifier=flow.code_verifier)
    except AuthProviderError as e:
        logger.warning("Google login could not start: %s", e.message)
        return RedirectResponse(url=_failure_url(cfg, e.code), status_code=302)

    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    values = (flow.state, flow.nonce, flow.code_verifier, sanitize_next_path(next_path))
    for key, value in zip(_OAUTH_COOKIES, values):
        resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=key, value=value, max_age=_OAUTH_TTL_SECONDS))
    return resp


@router.get("/google/callback")
def auth_google_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """
    Complete login: code exchange -> principal resolution -> session write, strictly in order.

    Any failure redirects to the frontend failure page without a session cookie.
    """
    provider = _google(services)
    cfg = services.settings

    cookie_state = (request.cookies.get("organizer_oauth_state") or "").strip()
    cookie_nonce = (request.cookies.get("organizer_oauth_nonce") or "").strip()
    cookie_verifier = (request.cookies.get("organizer_oauth_verifier") or "").strip()
    cookie_next = sanitize_next_path(request.cookies.get("organizer_oauth_next"))

    try:
        if error:
            raise AuthProviderError(f"Provider returned error={error}")
        if not cookie_state or cookie_state != (state or "").strip():
            raise AuthProviderError("Invalid OAuth state")
        if not cookie_nonce or not cookie_verifier:
            raise AuthProviderError("Missing OAuth verifier/nonce")

        profile = provider.exchange(code=(code or "").strip(), code_verifier=cookie_verifier, nonce=cookie_nonce)
        user = services.resolver.resolve(profile)
        ref = services.sessions.serialize(user)
    except (AuthProviderError, PrincipalResolutionError, SessionError) as e:
        logger.warning("Google login failed (%s): %s", e.code, e.message)
        resp = RedirectResponse(url=_failure_url(cfg, e.code), status_code=302)
        resp.headers["Cache-Control"] = "no-store"
        _clear_oauth_cookies(cfg, resp)
        return resp

    logger.info("User id=%s signed in via Google", user.id)
    resp = RedirectResponse(url=f"{cfg.frontend_url}{cookie_next}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**session_cookie_kwargs(cfg, encode_session(cfg, ref)))
    _clear_oauth_cookies(cfg, resp)
    return resp


@router.post("/firebase")
def auth_firebase(body: FirebaseLoginRequest, services: Services = Depends(get_services)) -> JSONResponse:
    """Sign in with a Firebase ID token obtained by the frontend."""
    if not isinstance(services.provider, FirebaseTokenVerifier):
        raise HTTPException(status_code=404, detail="Firebase login is not enabled")

    profile = services.provider.verify(body.id_token)
    user = services.resolver.resolve(profile)

    resp = JSONResponse(content={"ok": True, "user": user.to_public_dict()})
    resp.headers["Cache-Control"] = "no-store"
    _start_session(services, user, resp)
    logger.info("User id=%s signed in via Firebase", user.id)
    return resp


@router.post("/logout")
def auth_logout(request: Request, services: Services = Depends(get_services)) -> JSONResponse:
    cfg = services.settings
    session_id = decode_session(cfg, request.cookies.get(session_cookie_name(cfg)))
    try:
        services.sessions.destroy(session_id)
    except SessionError as e:
        # The cookie is still cleared; the orphaned row expires on its own.
        logger.warning("Session delete failed during logout: %s", e.message)

    resp = JSONResponse(content={"ok": True})
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**clear_session_cookie_kwargs(cfg))
    return resp


@router.get("/me")
def auth_me(principal: Principal = Depends(require_principal)) -> Dict[str, Any]:
    return {
        "ok": True,
        "user": {
            "id": principal.user_id,
            "displayName": principal.display_name,
            "email": principal.email,
            "photoUrl": principal.photo_url,
        },
    }
