"""Local form validation, run before any network call."""

from __future__ import annotations

from ..errors import ValidationError


def validate_email(email: str | None) -> str:
    email = (email or "").strip()
    if not email or "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("A valid email address is required")
    return email


def validate_username(username: str | None, *, min_length: int) -> str:
    username = (username or "").strip()
    if len(username) < min_length:
        raise ValidationError(f"Username must be at least {min_length} characters")
    if "@" in username:
        raise ValidationError("Username cannot contain '@'")
    return username


def validate_password(
    password: str | None,
    *,
    min_length: int,
    confirm_password: str | None = None,
) -> str:
    password = password or ""
    if confirm_password is not None and password != confirm_password:
        raise ValidationError("Passwords do not match")
    if len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters")
    return password


def looks_like_email(login: str) -> bool:
    """Sign-in forms accept either; anything with '@' is treated as an email."""
    return "@" in (login or "")
