"""Parsing of OAuth redirect parameters (query string and fragment)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from urllib.parse import parse_qsl, urlsplit


@dataclass(frozen=True)
class CallbackParams:
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    provider_token: str | None = None
    code: str | None = None
    error: str | None = None
    error_code: str | None = None
    error_description: str | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> CallbackParams:
        known = {f.name for f in fields(cls)}
        data: dict = {k: v for k, v in values.items() if k in known and v}
        if "expires_in" in data:
            try:
                data["expires_in"] = int(data["expires_in"])
            except (TypeError, ValueError):
                data.pop("expires_in")
        return cls(**data)

    @classmethod
    def from_url(cls, url: str) -> CallbackParams:
        """Merge query and fragment parameters; fragment values win."""
        parts = urlsplit(url)
        merged = dict(parse_qsl(parts.query))
        merged.update(parse_qsl(parts.fragment))
        return cls.from_mapping(merged)

    @classmethod
    def coerce(cls, value: CallbackParams | Mapping[str, str] | str) -> CallbackParams:
        if isinstance(value, CallbackParams):
            return value
        if isinstance(value, str):
            return cls.from_url(value)
        return cls.from_mapping(value)

    @property
    def has_auth_data(self) -> bool:
        return bool(self.access_token or self.code or self.error)

    @property
    def error_message(self) -> str:
        return f"Authentication error: {self.error_description or self.error}"
