from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import firebase_admin
from firebase_admin import auth, credentials, exceptions

from organizer.auth.models import UpstreamProfile
from organizer.config import ServiceAccountCredentials
from organizer.errors import AuthProviderError

logger = logging.getLogger(__name__)


class FirebaseTokenVerifier:
    """
    Delegates identity verification to the Firebase Admin SDK.

    The frontend signs in with Google through Firebase and posts the resulting ID token; this
    verifier checks it and turns the decoded claims into an UpstreamProfile.
    """

    name = "firebase"

    def __init__(self, service_account: ServiceAccountCredentials, *, app_name: str, timeout: float = 10.0) -> None:
        self._service_account = service_account
        self._app_name = app_name
        self._timeout = timeout
        self._lock = threading.Lock()
        self._app: Optional[Any] = None

    def _get_app(self):
        with self._lock:
            if self._app is None:
                try:
                    self._app = firebase_admin.get_app(self._app_name)
                except ValueError:
                    self._app = firebase_admin.initialize_app(
                        self._service_account.certificate or credentials.Certificate(self._service_account.info),
                        options={"projectId": self._service_account.project_id, "httpTimeout": self._timeout},
                        name=self._app_name,
                    )
                logger.info("Firebase Admin initialised for project %s", self._service_account.project_id)
            return self._app

    def verify(self, id_token: str) -> UpstreamProfile:
        token = (id_token or "").strip()
        if not token:
            raise AuthProviderError("Missing ID token")
        try:
            claims = auth.verify_id_token(token, app=self._get_app())
        except (ValueError, exceptions.FirebaseError) as e:
            raise AuthProviderError(f"ID token rejected: {type(e).__name__}") from e

        subject = str(claims.get("uid") or claims.get("sub") or "")
        if not subject:
            raise AuthProviderError("ID token missing subject")
        email = str(claims.get("email") or "").strip().lower() or None
        if email and claims.get("email_verified") is False:
            email = None
        name = str(claims.get("name") or "").strip() or (email or subject)
        picture = str(claims.get("picture") or "").strip() or None
        return UpstreamProfile(subject=subject, name=name, email=email, picture=picture, access_token=token)
