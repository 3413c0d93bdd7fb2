"""
Protocols for the row stores behind profiles and meditation activity.

Both the REST store (hosted backend) and the SQL store implement these,
and so does the fake used in tests.

Usage:
    from serene.profiles.base import ProfileStore

    def build_reconciler(store: ProfileStore) -> ProfileReconciler: ...

    assert isinstance(store, ProfileStore)
"""

from typing import Any, Protocol, runtime_checkable

from ..auth.models import Profile
from ..stats.models import MeditationSession, UserAchievement

# Columns the application may change on an existing profile
UPDATABLE_FIELDS = frozenset({"username", "name", "avatar_url", "email"})


@runtime_checkable
class ProfileStore(Protocol):
    """Keyed record store for profiles.

    Implementations raise ``serene.errors.AuthError`` subclasses on failure
    and return None for "not found".
    """

    async def fetch_by_id(self, profile_id: str) -> Profile | None:
        ...

    async def fetch_by_username(self, username: str) -> Profile | None:
        ...

    async def fetch_by_email(self, email: str) -> Profile | None:
        ...

    async def insert_if_absent(self, profile: Profile) -> None:
        """Insert keyed by id; an existing row with the same id wins."""
        ...

    async def update(self, profile_id: str, fields: dict[str, Any]) -> None:
        ...


@runtime_checkable
class ActivityStore(Protocol):
    async def list_sessions(self, user_id: str) -> list[MeditationSession]:
        """Sessions for ``user_id``, most recent ``completed_at`` first."""
        ...

    async def list_achievements(self, user_id: str) -> list[UserAchievement]:
        ...
