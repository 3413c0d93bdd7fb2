"""Async client for the hosted auth service.

Wraps the service's REST contract (sign-up, password and PKCE token grants,
user fetch/update, recovery, logout), persists the current session in a
``SessionStorage`` and fans out ``(event, session)`` notifications to
subscribers, the way the browser SDK does.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from urllib.parse import urlencode

import httpx
import jwt
import pydantic

from ..errors import (
    AuthError,
    InvalidCredentialsError,
    NetworkError,
    OAuthRedirectError,
    error_from_response,
    error_from_transport,
)
from ..http_client import build_async_httpx_client, service_headers
from ..settings import Settings
from .constants import PROVIDER_EMAIL, AuthEvent
from .models import AuthResponse, AuthSession, Identity
from .pkce import code_challenge, make_code_verifier
from .storage import SessionStorage

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, AuthSession | None], Awaitable[None] | None]

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def _parse(model: type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        logger.warning(
            "auth_response_invalid",
            extra={"meta": {"model": model.__name__, "errors": exc.error_count()}},
        )
        raise NetworkError(
            "Unexpected response from auth service", extra={"model": model.__name__}
        ) from exc


class Subscription:
    def __init__(self, client: AuthClient, listener: AuthListener):
        self._client = client
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._client._listeners.discard(self)


class AuthClient:
    def __init__(
        self,
        settings: Settings,
        storage: SessionStorage,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self._own_http = http is None
        self._http = http or build_async_httpx_client(settings.HTTP_CLIENT_TIMEOUT)
        self._listeners: set[Subscription] = set()

    @property
    def _verifier_key(self) -> str:
        return f"{self.settings.STORAGE_KEY}-code-verifier"

    def _url(self, path: str) -> str:
        return f"{self.settings.SERVICE_URL.rstrip('/')}/auth/v1/{path.lstrip('/')}"

    async def aclose(self) -> None:
        if self._own_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any] | None:
        try:
            r = await self._http.request(
                method,
                self._url(path),
                params=params,
                json=body,
                headers=service_headers(self.settings.ANON_KEY, access_token),
            )
        except httpx.RequestError as exc:
            logger.warning(
                "auth_request_failed: network",
                extra={"meta": {"path": path, "error": str(exc)}},
            )
            raise error_from_transport(exc) from exc

        if r.status_code >= 400:
            err = error_from_response(r)
            logger.warning(
                "auth_request_rejected",
                extra={"meta": {"path": path, "status": r.status_code, "code": err.code}},
            )
            raise err

        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError as exc:
            logger.warning(
                "auth_response_undecodable",
                extra={"meta": {"path": path, "status": r.status_code}},
            )
            raise NetworkError(
                "Unexpected response from auth service", extra={"status": r.status_code}
            ) from exc

    # ------------------------------------------------------------------
    # Session persistence
    # ------------------------------------------------------------------

    def _load_session(self) -> AuthSession | None:
        raw = self.storage.get_item(self.settings.STORAGE_KEY)
        if not raw:
            return None
        try:
            return AuthSession.model_validate_json(raw)
        except ValueError:
            logger.warning("stored_session_invalid; discarding")
            self.storage.remove_item(self.settings.STORAGE_KEY)
            return None

    def _save_session(self, session: AuthSession) -> None:
        self.storage.set_item(self.settings.STORAGE_KEY, session.model_dump_json())

    def _remove_session(self) -> None:
        self.storage.remove_item(self.settings.STORAGE_KEY)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        sub = Subscription(self, listener)
        self._listeners.add(sub)
        return sub

    async def _notify(self, event: AuthEvent, session: AuthSession | None) -> None:
        logger.debug(
            "auth_event",
            extra={"meta": {"event": event.value, "user_id": session.user.id if session else None}},
        )
        for sub in list(self._listeners):
            if not sub.active:
                continue
            try:
                result = sub.listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # One failing subscriber must not break the auth call that emitted
                logger.exception("auth_listener_failed", extra={"meta": {"event": event.value}})

    # ------------------------------------------------------------------
    # Session query
    # ------------------------------------------------------------------

    async def get_session(self) -> AuthSession | None:
        """Return the persisted session, refreshing it when it is about to expire."""
        session = self._load_session()
        if session is None:
            return None
        if not session.expires_soon(self.settings.REFRESH_MARGIN_S):
            return session
        if not session.refresh_token:
            self._remove_session()
            return None
        try:
            return await self.refresh_session(session.refresh_token)
        except InvalidCredentialsError:
            logger.info("refresh_token_rejected; signing out locally")
            self._remove_session()
            await self._notify(AuthEvent.SIGNED_OUT, None)
            return None

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        data = await self._request(
            "POST",
            "token",
            params={"grant_type": "refresh_token"},
            body={"refresh_token": refresh_token},
        )
        session = _parse(AuthSession, data)
        self._save_session(session)
        await self._notify(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def get_user(self, access_token: str) -> Identity:
        data = await self._request("GET", "user", access_token=access_token)
        return _parse(Identity, data)

    async def access_token(self) -> str | None:
        session = await self.get_session()
        return session.access_token if session else None

    # ------------------------------------------------------------------
    # Email / password
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        data: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> AuthResponse:
        params = {"redirect_to": redirect_to} if redirect_to else None
        body = await self._request(
            "POST",
            "signup",
            params=params,
            body={"email": email, "password": password, "data": data or {}},
        ) or {}
        if not isinstance(body, dict):
            raise NetworkError("Unexpected response from auth service", extra={"path": "signup"})

        if body.get("access_token"):
            session = _parse(AuthSession, body)
            self._save_session(session)
            await self._notify(AuthEvent.SIGNED_IN, session)
            return AuthResponse(user=session.user, session=session)

        # Email confirmation pending: the service returns the bare user
        user_data = body.get("user") or (body if body.get("id") else None)
        user = _parse(Identity, user_data) if user_data else None
        return AuthResponse(user=user, session=None)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        data = await self._request(
            "POST",
            "token",
            params={"grant_type": "password"},
            body={"email": email, "password": password},
        )
        session = _parse(AuthSession, data)
        self._save_session(session)
        await self._notify(AuthEvent.SIGNED_IN, session)
        return AuthResponse(user=session.user, session=session)

    async def reset_password_for_email(self, email: str, *, redirect_to: str | None = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "recover", params=params, body={"email": email})

    async def update_user(self, *, password: str | None = None, data: dict[str, Any] | None = None) -> Identity:
        session = await self.get_session()
        if session is None:
            raise AuthError("Auth session missing", code="session_missing")
        body: dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if data is not None:
            body["data"] = data
        payload = await self._request("PUT", "user", body=body, access_token=session.access_token)
        user = _parse(Identity, payload)
        session = session.model_copy(update={"user": user})
        self._save_session(session)
        await self._notify(AuthEvent.USER_UPDATED, session)
        return user

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorize_url(
        self,
        provider: str,
        *,
        redirect_to: str,
        scopes: list[str] | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str:
        """Build the provider redirect URL; in PKCE mode the verifier is stored locally."""
        if not provider or provider == PROVIDER_EMAIL:
            raise OAuthRedirectError(f"Unsupported OAuth provider: {provider!r}")
        params: dict[str, str] = {"provider": provider, "redirect_to": redirect_to}
        if scopes:
            params["scopes"] = " ".join(scopes)
        if self.settings.OAUTH_FLOW == "pkce":
            verifier = make_code_verifier()
            self.storage.set_item(self._verifier_key, verifier)
            params["code_challenge"] = code_challenge(verifier)
            params["code_challenge_method"] = "s256"
        params.update(query_params or {})
        return f"{self._url('authorize')}?{urlencode(params)}"

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        verifier = self.storage.get_item(self._verifier_key)
        if not verifier:
            raise OAuthRedirectError("PKCE code verifier not found in storage")
        data = await self._request(
            "POST",
            "token",
            params={"grant_type": "pkce"},
            body={"auth_code": auth_code, "code_verifier": verifier},
        )
        self.storage.remove_item(self._verifier_key)
        session = _parse(AuthSession, data)
        self._save_session(session)
        await self._notify(AuthEvent.SIGNED_IN, session)
        return session

    async def set_session(
        self,
        access_token: str,
        refresh_token: str = "",
        *,
        expires_in: int | None = None,
        provider_token: str | None = None,
    ) -> AuthSession:
        """Adopt tokens delivered in an implicit-flow redirect fragment."""
        claims = _unverified_claims(access_token)
        user = await self.get_user(access_token)
        session = AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            expires_at=claims.get("exp") if expires_in is None else None,
            provider_token=provider_token,
            user=user,
        )
        self._save_session(session)
        await self._notify(AuthEvent.SIGNED_IN, session)
        return session

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    async def sign_out(self, scope: str = "global") -> None:
        """Revoke remotely, then drop the local session whatever the outcome."""
        session = self._load_session()
        try:
            if session is not None:
                await self._request(
                    "POST", "logout", params={"scope": scope}, access_token=session.access_token
                )
        finally:
            self._remove_session()
            self.storage.remove_item(self._verifier_key)
            await self._notify(AuthEvent.SIGNED_OUT, None)


def _unverified_claims(token: str) -> dict[str, Any]:
    """Read JWT claims without verifying the signature; the service verifies on use."""
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_aud": False})
    except jwt.PyJWTError:
        return {}
