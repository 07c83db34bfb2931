from __future__ import annotations

import logging

from organizer.auth.models import LocalUser, UpstreamProfile
from organizer.errors import PrincipalResolutionError, StorageError
from organizer.storage.base import UserRepository

logger = logging.getLogger(__name__)


class PrincipalResolver:
    """
    Map an upstream profile to exactly one local user.

    Concurrent first logins for the same subject are settled by the unique constraint on
    `upstream_subject_id`: the losing insert returns nothing and re-reads the winner's row.
    Display fields are re-synced from upstream on every login.
    """

    def __init__(self, users: UserRepository) -> None:
        self._users = users

    def resolve(self, profile: UpstreamProfile) -> LocalUser:
        if not profile.subject:
            raise PrincipalResolutionError("Upstream profile has no subject id")
        try:
            user = self._users.get_by_subject(profile.subject)
            if user is None:
                created = self._users.insert_if_absent(profile)
                if created is not None:
                    logger.info("Created local user id=%s for new upstream subject", created.id)
                    return created
                user = self._users.get_by_subject(profile.subject)
                if user is None:
                    raise PrincipalResolutionError("User row disappeared during first login")
            return self._sync(user, profile)
        except StorageError as e:
            raise PrincipalResolutionError(f"Could not resolve local user: {e.message}") from e

    def _sync(self, user: LocalUser, profile: UpstreamProfile) -> LocalUser:
        if (user.display_name, user.email, user.photo_url) == (profile.name, profile.email, profile.picture):
            return user
        updated = self._users.update_profile(
            user.id,
            display_name=profile.name,
            email=profile.email,
            photo_url=profile.picture,
        )
        if updated is None:
            raise PrincipalResolutionError("User row disappeared during login")
        logger.debug("Re-synced profile fields for user id=%s", user.id)
        return updated
