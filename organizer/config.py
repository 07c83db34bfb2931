"""
Process configuration, loaded once at startup.

Every required value is validated here so the server refuses to start with a partial
configuration. Secret values never appear in `repr()` and are never logged.
"""
from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from firebase_admin import credentials as firebase_credentials

from organizer.errors import ConfigError

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"

AUTH_MODE_OAUTH2 = "oauth2"
AUTH_MODE_FIREBASE = "firebase"

_SERVICE_ACCOUNT_REQUIRED_KEYS = ("project_id", "private_key", "client_email")


@dataclass(frozen=True)
class OAuthClientCredentials:
    """Direct OAuth2 authorization-code flow against Google."""

    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    discovery_url: str = GOOGLE_DISCOVERY_URL

    @property
    def kind(self) -> str:
        return AUTH_MODE_OAUTH2


@dataclass(frozen=True)
class ServiceAccountCredentials:
    """Firebase Admin service account; verifies ID tokens issued to the frontend."""

    project_id: str
    client_email: str
    info: Dict[str, Any] = field(repr=False)
    # firebase_admin.credentials.Certificate built at load time.
    certificate: Any = field(default=None, repr=False, compare=False)

    @property
    def kind(self) -> str:
        return AUTH_MODE_FIREBASE


Credentials = Union[OAuthClientCredentials, ServiceAccountCredentials]


@dataclass(frozen=True)
class DatabaseConfig:
    dsn: Optional[str] = field(repr=False)
    in_memory: bool = False
    pool_min_size: int = 1
    pool_max_size: int = 10
    timeout_seconds: float = 5.0


@dataclass(frozen=True)
class Settings:
    app_env: str
    frontend_url: str
    app_id: str
    session_secret: str = field(repr=False)
    credentials: Credentials
    database: DatabaseConfig
    session_ttl_seconds: int = 86400
    http_timeout_seconds: float = 10.0
    static_dir: Optional[str] = None

    @property
    def production(self) -> bool:
        return self.app_env == "production"

    @property
    def cookie_secure(self) -> bool:
        return self.production

    @property
    def cookie_samesite(self) -> str:
        # Strict in production; Lax elsewhere (SameSite=None would need Secure on plain-HTTP dev).
        return "strict" if self.production else "lax"

    @property
    def auth_mode(self) -> str:
        return self.credentials.kind


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    return (env.get(name) or "").strip() or None


def _require(env: Mapping[str, str], name: str, hint: str = "") -> str:
    value = _get(env, name)
    if not value:
        suffix = f" ({hint})" if hint else ""
        raise ConfigError(f"{name} environment variable is not set{suffix}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = (env.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_number(env: Mapping[str, str], name: str, default: float, *, minimum: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number") from None
    return max(value, minimum)


def parse_service_account(raw: str, *, encoded: bool, source: str) -> ServiceAccountCredentials:
    """
    Parse a service-account JSON blob delivered either as raw JSON or base64-encoded JSON.

    Error messages name the variable only; the blob contains a private key.
    """
    text = raw
    if encoded:
        try:
            text = base64.b64decode(raw, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise ConfigError(f"{source} is not valid base64-encoded JSON") from None
    try:
        info = json.loads(text)
    except json.JSONDecodeError:
        raise ConfigError(f"Failed to parse {source} as JSON") from None
    if not isinstance(info, dict):
        raise ConfigError(f"{source} must be a JSON object")
    if info.get("type") != "service_account":
        raise ConfigError(f"{source} is not a service account credential")
    missing = [k for k in _SERVICE_ACCOUNT_REQUIRED_KEYS if not str(info.get(k) or "").strip()]
    if missing:
        raise ConfigError(f"{source} is missing required field(s): {', '.join(missing)}")
    try:
        certificate = firebase_credentials.Certificate(info)
    except ValueError:
        # The SDK message can quote the key material.
        raise ConfigError(f"{source} is not a usable service account (check private_key and token_uri)") from None
    return ServiceAccountCredentials(
        project_id=str(info["project_id"]),
        client_email=str(info["client_email"]),
        info=info,
        certificate=certificate,
    )


def _load_credentials(env: Mapping[str, str]) -> Credentials:
    mode = (_get(env, "AUTH_MODE") or AUTH_MODE_OAUTH2).lower()
    if mode == AUTH_MODE_OAUTH2:
        return OAuthClientCredentials(
            client_id=_require(env, "GOOGLE_CLIENT_ID"),
            client_secret=_require(env, "GOOGLE_CLIENT_SECRET"),
            redirect_uri=_require(env, "GOOGLE_REDIRECT_URI"),
            discovery_url=_get(env, "GOOGLE_DISCOVERY_URL") or GOOGLE_DISCOVERY_URL,
        )
    if mode == AUTH_MODE_FIREBASE:
        raw = _get(env, "FIREBASE_CONFIG")
        if raw:
            return parse_service_account(raw, encoded=False, source="FIREBASE_CONFIG")
        encoded = _get(env, "FIREBASE_CONFIG_BASE64")
        if encoded:
            return parse_service_account(encoded, encoded=True, source="FIREBASE_CONFIG_BASE64")
        raise ConfigError("FIREBASE_CONFIG or FIREBASE_CONFIG_BASE64 environment variable is not set")
    raise ConfigError(f"AUTH_MODE must be '{AUTH_MODE_OAUTH2}' or '{AUTH_MODE_FIREBASE}'")


def build_postgres_dsn(env: Mapping[str, str]) -> Optional[str]:
    dsn = _get(env, "DATABASE_URL")
    if dsn:
        return dsn
    host = _get(env, "POSTGRES_HOST")
    db = _get(env, "POSTGRES_DB")
    user = _get(env, "POSTGRES_USER")
    password = _get(env, "POSTGRES_PASSWORD")
    if not (host and db and user and password):
        return None
    port_raw = _get(env, "POSTGRES_PORT") or "5432"
    try:
        port = int(port_raw)
    except ValueError:
        raise ConfigError("POSTGRES_PORT must be an integer") from None
    # make_conninfo quotes/escapes special characters (spaces, quotes) in passwords.
    from psycopg.conninfo import make_conninfo

    return make_conninfo(host=host, port=port, dbname=db, user=user, password=password)


def _load_database(env: Mapping[str, str], *, production: bool) -> DatabaseConfig:
    timeout = _env_number(env, "DB_TIMEOUT_SECONDS", 5.0, minimum=0.1)
    min_size = int(_env_number(env, "DB_POOL_MIN_SIZE", 1, minimum=1))
    max_size = int(_env_number(env, "DB_POOL_MAX_SIZE", 10, minimum=1))
    if _env_bool(env, "ORGANIZER_IN_MEMORY_BACKENDS"):
        if production:
            raise ConfigError("ORGANIZER_IN_MEMORY_BACKENDS is not allowed when APP_ENV=production")
        return DatabaseConfig(dsn=None, in_memory=True, timeout_seconds=timeout)
    dsn = build_postgres_dsn(env)
    if not dsn:
        raise ConfigError("DATABASE_URL (or POSTGRES_HOST/POSTGRES_DB/POSTGRES_USER/POSTGRES_PASSWORD) is not set")
    return DatabaseConfig(
        dsn=dsn,
        in_memory=False,
        pool_min_size=min_size,
        pool_max_size=max(min_size, max_size),
        timeout_seconds=timeout,
    )


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load and validate configuration from environment variables.

    Raises ConfigError on the first missing or malformed required value.
    """
    env = os.environ if env is None else env

    app_env = (_get(env, "APP_ENV") or "production").lower()
    if app_env not in ("production", "development", "test"):
        raise ConfigError("APP_ENV must be one of: production, development, test")
    production = app_env == "production"

    frontend_url = _require(env, "FRONTEND_URL").rstrip("/")
    if not frontend_url.startswith(("http://", "https://")):
        raise ConfigError("FRONTEND_URL must be an absolute http(s) URL")

    return Settings(
        app_env=app_env,
        frontend_url=frontend_url,
        app_id=_require(env, "APP_ID", "tenant/application id"),
        session_secret=_require(env, "SESSION_SECRET", "used to sign session cookies"),
        session_ttl_seconds=int(_env_number(env, "SESSION_TTL_SECONDS", 86400, minimum=60)),
        credentials=_load_credentials(env),
        database=_load_database(env, production=production),
        http_timeout_seconds=_env_number(env, "AUTH_HTTP_TIMEOUT_SECONDS", 10.0, minimum=1.0),
        static_dir=_get(env, "STATIC_DIR"),
    )
