"""Authentication error code and event constants.

These constants prevent typos in error codes and make it easy for grep to find all usages.
"""

from __future__ import annotations

from enum import Enum

# Validation errors (raised before any network call)
ERR_VALIDATION = "validation_error"
ERR_USERNAME_TAKEN = "username_taken"
ERR_EMAIL_TAKEN = "email_taken"
ERR_USERNAME_NOT_FOUND = "username_not_found"

# Service-reported errors
ERR_INVALID_CREDENTIALS = "invalid_credentials"
ERR_EMAIL_UNCONFIRMED = "email_unconfirmed"
ERR_PROFILE_LOAD = "profile_load_failed"
ERR_OAUTH_REDIRECT = "oauth_redirect_failed"
ERR_NETWORK = "network_error"

# Structured codes reported by the auth service, mapped to local codes
SERVICE_ERROR_CODES = {
    "invalid_credentials": ERR_INVALID_CREDENTIALS,
    "invalid_grant": ERR_INVALID_CREDENTIALS,
    "email_not_confirmed": ERR_EMAIL_UNCONFIRMED,
    "user_already_exists": ERR_EMAIL_TAKEN,
    "email_exists": ERR_EMAIL_TAKEN,
    "bad_oauth_callback": ERR_OAUTH_REDIRECT,
    "bad_oauth_state": ERR_OAUTH_REDIRECT,
    "flow_state_not_found": ERR_OAUTH_REDIRECT,
    "flow_state_expired": ERR_OAUTH_REDIRECT,
}

# Fallback message fragments for services that only send text
SERVICE_ERROR_MESSAGES = (
    ("invalid login credentials", ERR_INVALID_CREDENTIALS),
    ("email not confirmed", ERR_EMAIL_UNCONFIRMED),
    ("already registered", ERR_EMAIL_TAKEN),
)

PROVIDER_EMAIL = "email"


class AuthEvent(str, Enum):
    """Kinds emitted on the auth change-notification stream."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


# Events that re-run profile reconciliation
RECONCILE_EVENTS = frozenset({AuthEvent.SIGNED_IN, AuthEvent.USER_UPDATED})
