"""Identity, session and profile models shared by the session core."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .constants import PROVIDER_EMAIL

_USERNAME_HINTS = ("username", "user_name", "preferred_username")


class Identity(BaseModel):
    """Read-only cached copy of the auth service's user record."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    email: str | None = None
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: datetime | None = None

    @property
    def provider(self) -> str:
        return self.app_metadata.get("provider") or PROVIDER_EMAIL

    @property
    def display_name(self) -> str:
        return self.user_metadata.get("name") or self.user_metadata.get("full_name") or ""

    @property
    def avatar_url(self) -> str:
        return self.user_metadata.get("avatar_url") or self.user_metadata.get("picture") or ""

    @property
    def username_hint(self) -> str:
        for key in _USERNAME_HINTS:
            value = self.user_metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""


class AuthSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    provider_token: str | None = None
    user: Identity

    def model_post_init(self, __context: Any) -> None:
        if self.expires_at is None and self.expires_in is not None:
            self.expires_at = int(time.time()) + int(self.expires_in)

    def expires_soon(self, margin_s: int = 0, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - margin_s <= (now if now is not None else time.time())


class AuthResponse(BaseModel):
    """Result of sign-up / sign-in; ``session`` is None until the email is confirmed."""

    user: Identity | None = None
    session: AuthSession | None = None


class Profile(BaseModel):
    """Local profile row keyed 1:1 by identity id."""

    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str
    email: str | None = None
    username: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    provider: str = PROVIDER_EMAIL
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SessionState:
    identity: Identity | None = None
    profile: Profile | None = None
    loading: bool = True
    last_error: str | None = None
    error_code: str | None = field(default=None, compare=False)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def degraded(self) -> bool:
        """Authenticated but without a usable profile."""
        return self.identity is not None and self.profile is None and not self.loading

    def evolve(self, **changes: Any) -> SessionState:
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity.model_dump(mode="json") if self.identity else None,
            "profile": self.profile.model_dump(mode="json") if self.profile else None,
            "loading": self.loading,
            "last_error": self.last_error,
            "error_code": self.error_code,
        }


INITIAL_STATE = SessionState()
SIGNED_OUT_STATE = SessionState(loading=False)
