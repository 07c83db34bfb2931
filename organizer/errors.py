"""
Error taxonomy.

- ConfigError: startup only, fatal.
- AuthProviderError: the upstream identity provider rejected or failed the login.
- PrincipalResolutionError: storage failed while linking/creating the local user.
- SessionError: session storage unavailable.
- StorageError: raised by repositories; wrapped into one of the above by the auth pipeline.
"""
from __future__ import annotations


class OrganizerError(Exception):
    """Base error. `code` is a stable machine-readable identifier for API responses."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(OrganizerError):
    code = "config_error"


class AuthProviderError(OrganizerError):
    code = "auth_provider_error"
    status_code = 401


class PrincipalResolutionError(OrganizerError):
    code = "principal_resolution_error"
    status_code = 503


class SessionError(OrganizerError):
    code = "session_error"
    status_code = 503


class StorageError(OrganizerError):
    code = "storage_error"
    status_code = 503
