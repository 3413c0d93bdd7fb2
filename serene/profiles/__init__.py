"""Row stores for profiles and meditation activity."""

from .base import ActivityStore, ProfileStore

__all__ = ["ActivityStore", "ProfileStore"]
