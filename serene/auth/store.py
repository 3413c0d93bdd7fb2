"""
Session store: the single authoritative record of who is signed in.

State is an immutable ``SessionState`` snapshot replaced on every transition
and pushed to subscribers. Every asynchronous operation runs under a child
of the store's root ``CancellationToken``; once ``teardown()`` cancels the
root (or ``sign_out()`` cancels the in-flight operations) a late
continuation can no longer write state.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from ..errors import (
    AuthError,
    OAuthRedirectError,
    ProfileLoadError,
    UsernameNotFoundError,
    UsernameTakenError,
    ValidationError,
)
from ..logging_config import op_id_var
from ..profiles.base import UPDATABLE_FIELDS, ProfileStore
from ..settings import Settings, get_settings
from .base import AuthService
from .callback import CallbackParams
from .cancellation import CancellationToken
from .constants import RECONCILE_EVENTS, AuthEvent
from .models import INITIAL_STATE, SIGNED_OUT_STATE, AuthResponse, AuthSession, Identity, Profile, SessionState
from .reconciler import ProfileReconciler
from .storage import SessionStorage, clear_auth_items
from .validation import looks_like_email, validate_email, validate_password, validate_username

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]
Navigator = Callable[[str], Awaitable[None] | None]


class SessionStore:
    def __init__(
        self,
        auth: AuthService,
        profiles: ProfileStore,
        *,
        settings: Settings | None = None,
        reconciler: ProfileReconciler | None = None,
        storage: SessionStorage | None = None,
        navigator: Navigator | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._auth = auth
        self._profiles = profiles
        self._reconciler = reconciler or ProfileReconciler(profiles)
        self._storage = storage
        self._navigator = navigator
        self._state = INITIAL_STATE
        self._listeners: list[StateListener] = []
        self._lifetime = CancellationToken()
        self._inflight: set[CancellationToken] = set()
        self._subscription: Any = None

    async def __aenter__(self) -> SessionStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.teardown()

    # ------------------------------------------------------------------
    # State publication
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def alive(self) -> bool:
        return not self._lifetime.cancelled

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every new snapshot; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, token: CancellationToken, **changes: Any) -> bool:
        if token.cancelled:
            logger.debug(
                "state_write_skipped",
                extra={"meta": {"reason": token.reason or self._lifetime.reason, "fields": sorted(changes)}},
            )
            return False
        new_state = self._state.evolve(**changes)
        if new_state == self._state and new_state.error_code == self._state.error_code:
            return True
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("state_listener_failed")
        return True

    def _record_error(self, token: CancellationToken, exc: AuthError) -> None:
        self._commit(token, last_error=exc.reason, error_code=exc.code)

    def _still_current(self, identity: Identity) -> bool:
        current = self._state.identity
        return current is not None and current.id == identity.id

    @contextmanager
    def _operation(self, name: str, *, loading: bool = True) -> Iterator[CancellationToken]:
        token = self._lifetime.child()
        self._inflight.add(token)
        ctx = op_id_var.set(f"{name}-{uuid.uuid4().hex[:8]}")
        try:
            if loading:
                self._commit(token, loading=True, last_error=None, error_code=None)
            try:
                yield token
            except AuthError as exc:
                logger.info(
                    "session_op_failed",
                    extra={"meta": {"op": name, "code": exc.code, "error": exc.reason}},
                )
                self._record_error(token, exc)
                raise
        finally:
            if loading:
                self._commit(token, loading=False)
            self._inflight.discard(token)
            op_id_var.reset(ctx)

    async def _reconcile(
        self,
        token: CancellationToken,
        identity: Identity,
        *,
        raise_errors: bool = False,
    ) -> Profile | None:
        try:
            profile = await self._reconciler.reconcile(identity)
        except ProfileLoadError as exc:
            if self._still_current(identity):
                self._commit(token, profile=None, last_error=exc.reason, error_code=exc.code)
            if raise_errors:
                raise
            return None
        # A different identity may have signed in while this was in flight
        if self._still_current(identity):
            self._commit(token, profile=profile)
        return profile

    def _adopt(self, token: CancellationToken, identity: Identity) -> None:
        changes: dict[str, Any] = {"identity": identity}
        if not self._still_current(identity):
            changes["profile"] = None
        self._commit(token, **changes)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> SessionState:
        """Load any persisted session and subscribe to auth events. Never raises."""
        if self._subscription is None:
            self._subscription = self._auth.on_auth_state_change(self.on_auth_event)

        with self._operation("initialize") as token:
            try:
                session = await self._auth.get_session()
            except Exception as exc:
                # Fail open to signed-out
                logger.warning(
                    "session_init_failed",
                    extra={"meta": {"error_type": type(exc).__name__, "error": str(exc)}},
                )
                self._commit(token, identity=None, profile=None)
                return self._state

            if session is None:
                logger.info("session_init", extra={"meta": {"authenticated": False}})
                self._commit(token, identity=None, profile=None)
            else:
                logger.info(
                    "session_init",
                    extra={"meta": {"authenticated": True, "user_id": session.user.id}},
                )
                self._adopt(token, session.user)
                try:
                    await self._reconcile(token, session.user)
                except Exception:
                    logger.exception("session_init_reconcile_crashed", extra={"meta": {"user_id": session.user.id}})
                    if self._still_current(session.user):
                        failure = ProfileLoadError("Failed to load user profile")
                        self._commit(token, profile=None, last_error=failure.reason, error_code=failure.code)
        return self._state

    def teardown(self) -> None:
        """Cancel every in-flight continuation and stop listening for events."""
        if not self.alive:
            return
        self._lifetime.cancel("teardown")
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()
        logger.debug("session_store_teardown")

    async def on_auth_event(self, event: AuthEvent | str, session: AuthSession | None) -> None:
        if not self.alive:
            logger.debug("auth_event_ignored", extra={"meta": {"event": str(event), "reason": "teardown"}})
            return
        kind = getattr(event, "value", event)
        try:
            event = AuthEvent(kind)
        except ValueError:
            # Unknown kinds still carry the current session; they never reconcile
            logger.debug("auth_event_unrecognized", extra={"meta": {"event": kind}})
        with self._operation(f"event-{str(kind).lower()}", loading=False) as token:
            if session is None:
                self._commit(token, identity=None, profile=None)
                return
            self._adopt(token, session.user)
            if event in RECONCILE_EVENTS:
                # Unconditional, to pick up provider metadata changes
                await self._reconcile(token, session.user)

    # ------------------------------------------------------------------
    # Email / password
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str,
        *,
        confirm_password: str | None = None,
    ) -> AuthResponse:
        with self._operation("sign_up") as token:
            password = validate_password(
                password,
                min_length=self.settings.MIN_PASSWORD_LENGTH,
                confirm_password=confirm_password,
            )
            username = validate_username(username, min_length=self.settings.MIN_USERNAME_LENGTH)
            email = validate_email(email)

            if await self._profiles.fetch_by_username(username) is not None:
                raise UsernameTakenError("Username already taken")

            response = await self._auth.sign_up(
                email,
                password,
                data={"username": username},
                redirect_to=self.settings.auth_redirect_url,
            )
            logger.info(
                "sign_up_ok",
                extra={
                    "meta": {
                        "user_id": response.user.id if response.user else None,
                        "confirmation_pending": response.session is None,
                    }
                },
            )
            # Without a session the profile waits for the first SIGNED_IN
            if response.session is not None:
                self._adopt(token, response.session.user)
                await self._reconcile(token, response.session.user)
            return response

    async def sign_in(
        self,
        *,
        password: str,
        email: str | None = None,
        username: str | None = None,
    ) -> AuthResponse:
        with self._operation("sign_in") as token:
            if not email and not username:
                raise ValidationError("Email or username is required")
            if not password:
                raise ValidationError("Password is required")

            # A single login field may hold either an email or a username
            if not email and looks_like_email(username):
                email, username = username.strip(), None

            if not email:
                profile = await self._profiles.fetch_by_username(username.strip())
                if profile is None or not profile.email:
                    raise UsernameNotFoundError("Username not found")
                email = profile.email

            response = await self._auth.sign_in_with_password(email, password)
            identity = response.user or (response.session.user if response.session else None)
            if identity is None:
                raise ProfileLoadError("Sign-in returned no user")
            self._adopt(token, identity)
            await self._reconcile(token, identity, raise_errors=True)
            logger.info("sign_in_ok", extra={"meta": {"user_id": identity.id, "by_username": bool(username)}})
            return response

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def sign_in_with_oauth(self, provider: str = "google") -> str:
        """Build the provider redirect and hand it to the navigator; returns the URL."""
        with self._operation("sign_in_with_oauth"):
            url = self._auth.authorize_url(
                provider,
                redirect_to=self.settings.oauth_callback_url,
                scopes=self.settings.oauth_scopes() if provider == "google" else None,
                query_params=self.settings.oauth_query_params(),
            )
            logger.info("oauth_redirect", extra={"meta": {"provider": provider}})
            if self._navigator is not None:
                result = self._navigator(url)
                if inspect.isawaitable(result):
                    await result
            return url

    async def complete_oauth_callback(self, params: CallbackParams | Mapping[str, str] | str) -> SessionState:
        with self._operation("oauth_callback") as token:
            params = CallbackParams.coerce(params)
            if params.error:
                raise OAuthRedirectError(
                    params.error_message,
                    extra={"error": params.error, "error_code": params.error_code},
                )

            if not params.has_auth_data:
                session = await self._auth.get_session()
                if session is None:
                    raise OAuthRedirectError("No session found after OAuth redirect")
            elif params.code:
                session = await self._auth.exchange_code_for_session(params.code)
            else:
                session = await self._auth.set_session(
                    params.access_token,
                    params.refresh_token or "",
                    expires_in=params.expires_in,
                    provider_token=params.provider_token,
                )

            self._adopt(token, session.user)
            await self._reconcile(token, session.user, raise_errors=True)
            logger.info("oauth_callback_ok", extra={"meta": {"user_id": session.user.id}})
        return self._state

    # ------------------------------------------------------------------
    # Sign-out
    # ------------------------------------------------------------------

    async def sign_out(self) -> SessionState:
        """Revoke remotely and always end signed out locally."""
        for pending in list(self._inflight):
            pending.cancel("sign_out")

        token = self._lifetime.child()
        ctx = op_id_var.set(f"sign_out-{uuid.uuid4().hex[:8]}")
        try:
            self._commit(token, loading=True)
            try:
                await self._auth.sign_out()
            except AuthError as exc:
                logger.warning(
                    "sign_out_remote_failed",
                    extra={"meta": {"code": exc.code, "error": exc.reason}},
                )
            self._clear_local_storage()
            self._commit(
                token,
                identity=SIGNED_OUT_STATE.identity,
                profile=SIGNED_OUT_STATE.profile,
                loading=SIGNED_OUT_STATE.loading,
                last_error=SIGNED_OUT_STATE.last_error,
                error_code=None,
            )
        finally:
            op_id_var.reset(ctx)
        return self._state

    def _clear_local_storage(self) -> None:
        if self._storage is None:
            return
        try:
            removed = clear_auth_items(self._storage)
        except OSError as exc:
            logger.warning("local_storage_clear_failed", extra={"meta": {"error": str(exc)}})
            return
        if removed:
            logger.debug("local_storage_cleared", extra={"meta": {"keys": removed}})

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def reset_password(self, email: str) -> None:
        with self._operation("reset_password"):
            email = validate_email(email)
            await self._auth.reset_password_for_email(email, redirect_to=self.settings.reset_password_url)
            logger.info("password_reset_requested")

    async def update_password(self, new_password: str, confirm_password: str | None = None) -> None:
        with self._operation("update_password"):
            password = validate_password(
                new_password,
                min_length=self.settings.MIN_PASSWORD_LENGTH,
                confirm_password=confirm_password,
            )
            await self._auth.update_user(password=password)
            logger.info("password_updated")

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def update_profile(self, **fields: Any) -> Profile:
        with self._operation("update_profile") as token:
            identity = self._state.identity
            if identity is None:
                raise ValidationError("User not authenticated")
            unknown = set(fields) - UPDATABLE_FIELDS
            if unknown:
                raise ValidationError(f"Cannot update profile fields: {', '.join(sorted(unknown))}")

            if "username" in fields:
                username = validate_username(fields["username"], min_length=self.settings.MIN_USERNAME_LENGTH)
                owner = await self._profiles.fetch_by_username(username)
                if owner is not None and owner.id != identity.id:
                    raise UsernameTakenError("Username already taken")
                fields["username"] = username
            if "email" in fields:
                fields["email"] = validate_email(fields["email"])

            await self._profiles.update(identity.id, fields)
            profile = await self._profiles.fetch_by_id(identity.id)
            if profile is None:
                raise ProfileLoadError("Failed to load user profile")
            if self._still_current(identity):
                self._commit(token, profile=profile)
            logger.info("profile_updated", extra={"meta": {"user_id": identity.id, "fields": sorted(fields)}})
            return profile

    async def check_username_available(self, username: str) -> bool:
        """Live-typing check; lookup failures count as available."""
        username = (username or "").strip()
        if len(username) < self.settings.MIN_USERNAME_LENGTH:
            return False
        try:
            return await self._profiles.fetch_by_username(username) is None
        except AuthError as exc:
            logger.info("username_check_failed", extra={"meta": {"code": exc.code}})
            return True

    async def check_email_available(self, email: str) -> bool:
        email = (email or "").strip()
        if "@" not in email:
            return False
        try:
            return await self._profiles.fetch_by_email(email) is None
        except AuthError as exc:
            logger.info("email_check_failed", extra={"meta": {"code": exc.code}})
            return True

    def clear_error(self) -> None:
        self._commit(self._lifetime, last_error=None, error_code=None)
