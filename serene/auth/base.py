"""
Protocol for the auth service client.

``AuthClient`` talks to the hosted service; tests use ``FakeAuthClient``
from ``tests/helpers/fakes.py``. Both implement this interface.
"""

from typing import Any, Protocol, runtime_checkable

from .models import AuthResponse, AuthSession


@runtime_checkable
class AuthService(Protocol):
    """Operations the session store needs from the auth service."""

    def on_auth_state_change(self, listener) -> Any:
        """Subscribe to ``(event, session | None)``; returns an object with ``unsubscribe()``."""
        ...

    async def get_session(self) -> AuthSession | None:
        ...

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        data: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> AuthResponse:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        ...

    def authorize_url(
        self,
        provider: str,
        *,
        redirect_to: str,
        scopes: list[str] | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str:
        ...

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        ...

    async def set_session(
        self,
        access_token: str,
        refresh_token: str = "",
        *,
        expires_in: int | None = None,
        provider_token: str | None = None,
    ) -> AuthSession:
        ...

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None:
        ...

    async def update_user(self, *, password: str | None = None, data: dict[str, Any] | None = None) -> Any:
        ...

    async def sign_out(self, scope: str = "global") -> None:
        ...
