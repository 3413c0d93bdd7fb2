"""Error kinds raised by the session core and their classification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from .auth.constants import (
    ERR_EMAIL_TAKEN,
    ERR_EMAIL_UNCONFIRMED,
    ERR_INVALID_CREDENTIALS,
    ERR_NETWORK,
    ERR_OAUTH_REDIRECT,
    ERR_PROFILE_LOAD,
    ERR_USERNAME_NOT_FOUND,
    ERR_USERNAME_TAKEN,
    ERR_VALIDATION,
    SERVICE_ERROR_CODES,
    SERVICE_ERROR_MESSAGES,
)


@dataclass
class AuthError(Exception):
    reason: str
    code: str = ERR_NETWORK
    extra: dict | None = None

    def __str__(self) -> str:
        return self.reason


@dataclass
class ValidationError(AuthError):
    code: str = ERR_VALIDATION


@dataclass
class UsernameTakenError(AuthError):
    code: str = ERR_USERNAME_TAKEN


@dataclass
class EmailTakenError(AuthError):
    code: str = ERR_EMAIL_TAKEN


@dataclass
class UsernameNotFoundError(AuthError):
    code: str = ERR_USERNAME_NOT_FOUND


@dataclass
class InvalidCredentialsError(AuthError):
    code: str = ERR_INVALID_CREDENTIALS


@dataclass
class EmailUnconfirmedError(AuthError):
    code: str = ERR_EMAIL_UNCONFIRMED


@dataclass
class ProfileLoadError(AuthError):
    code: str = ERR_PROFILE_LOAD


@dataclass
class OAuthRedirectError(AuthError):
    code: str = ERR_OAUTH_REDIRECT


@dataclass
class NetworkError(AuthError):
    """Catch-all for transport failures and unrecognized service errors."""

    code: str = ERR_NETWORK


_BY_CODE: dict[str, type[AuthError]] = {
    ERR_INVALID_CREDENTIALS: InvalidCredentialsError,
    ERR_EMAIL_UNCONFIRMED: EmailUnconfirmedError,
    ERR_EMAIL_TAKEN: EmailTakenError,
    ERR_OAUTH_REDIRECT: OAuthRedirectError,
}


def _message_of(body: dict[str, Any]) -> str:
    for key in ("msg", "message", "error_description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def classify_service_error(
    status: int | None, body: dict[str, Any] | None, *, default: str = "Request failed"
) -> AuthError:
    """Map a service error payload onto a local error kind.

    Structured codes win; message matching is only a fallback for
    services that report plain text.
    """
    body = body if isinstance(body, dict) else {}
    message = _message_of(body) or default
    extra = {"status": status} if status is not None else None

    for key in ("error_code", "code", "error"):
        raw = body.get(key)
        if isinstance(raw, str) and raw.lower() in SERVICE_ERROR_CODES:
            cls = _BY_CODE[SERVICE_ERROR_CODES[raw.lower()]]
            return cls(message, extra=extra)

    lowered = message.lower()
    for fragment, code in SERVICE_ERROR_MESSAGES:
        if fragment in lowered:
            return _BY_CODE[code](message, extra=extra)

    return NetworkError(message, extra=extra)


def error_from_response(response: httpx.Response) -> AuthError:
    try:
        body = response.json()
    except ValueError:
        body = {"message": response.text.strip()} if response.text else {}
    return classify_service_error(
        response.status_code, body, default=f"HTTP {response.status_code}"
    )


def error_from_transport(exc: httpx.RequestError) -> NetworkError:
    return NetworkError(str(exc) or type(exc).__name__, extra={"transport": type(exc).__name__})
