"""Profile reconciliation: exactly one profile row per identity, created lazily."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from ..errors import AuthError, ProfileLoadError
from ..profiles.base import ProfileStore
from .constants import PROVIDER_EMAIL
from .models import Identity, Profile

logger = logging.getLogger(__name__)


def derive_username(identity: Identity) -> str:
    """Username for a first-time profile.

    Provider hint first; otherwise the email handle for OAuth providers.
    Email sign-ups carry the validated username in their metadata, so an
    email identity without one stays empty.
    """
    hint = identity.username_hint
    if hint:
        return hint
    if identity.provider != PROVIDER_EMAIL and identity.email:
        return identity.email.split("@", 1)[0]
    return ""


def profile_from_identity(identity: Identity) -> Profile:
    return Profile(
        id=identity.id,
        email=identity.email,
        username=derive_username(identity) or None,
        name=identity.display_name,
        avatar_url=identity.avatar_url,
        provider=identity.provider,
        updated_at=datetime.now(UTC),
    )


class ProfileReconciler:
    def __init__(self, profiles: ProfileStore):
        self.profiles = profiles

    async def reconcile(self, identity: Identity) -> Profile:
        """Fetch the identity's profile, creating it on first sight.

        Raises ProfileLoadError when the profile cannot be fetched or created.
        """
        try:
            profile = await self.profiles.fetch_by_id(identity.id)
            if profile is not None:
                return profile

            new_profile = profile_from_identity(identity)
            logger.info(
                "profile_create",
                extra={
                    "meta": {
                        "user_id": identity.id,
                        "provider": new_profile.provider,
                        "has_username": bool(new_profile.username),
                    }
                },
            )
            # On id conflict the existing row wins, so a concurrent
            # reconciliation of the same identity is harmless.
            await self.profiles.insert_if_absent(new_profile)
            profile = await self.profiles.fetch_by_id(identity.id)
        except AuthError as exc:
            logger.warning(
                "profile_reconcile_failed",
                extra={"meta": {"user_id": identity.id, "code": exc.code, "error": exc.reason}},
            )
            raise ProfileLoadError("Failed to load user profile", extra={"cause": exc.code}) from exc

        if profile is None:
            logger.warning("profile_missing_after_insert", extra={"meta": {"user_id": identity.id}})
            raise ProfileLoadError("Failed to load user profile", extra={"cause": "missing_after_insert"})
        return profile
