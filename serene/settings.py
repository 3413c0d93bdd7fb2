import logging
from collections.abc import Iterable
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _split_csv(raw: str | None, default: Iterable[str]) -> list[str]:
    raw = (raw or "").strip()
    if not raw:
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


class Settings(BaseSettings):
    # Hosted backend (auth + rows)
    SERVICE_URL: str = "http://localhost:54321"
    ANON_KEY: str = ""

    # Where the app is served; redirect targets are built from it
    SITE_URL: str = "http://localhost:5173"
    AUTH_REDIRECT_PATH: str = "/auth"
    OAUTH_CALLBACK_PATH: str = "/auth/callback"
    RESET_PASSWORD_PATH: str = "/reset-password"
    DEFAULT_REDIRECT_PATH: str = "/meditation"

    # Default HTTP client timeout in seconds
    HTTP_CLIENT_TIMEOUT: float = 10.0

    # Persisted session token
    STORAGE_BACKEND: Literal["memory", "file"] = "memory"
    STORAGE_PATH: str = ".serene/auth.json"
    STORAGE_KEY: str = "serene.auth.token"

    # Row store used for profiles and activity
    PROFILE_BACKEND: Literal["rest", "sql"] = "rest"
    DATABASE_URL: str = "sqlite+aiosqlite:///./serene.db"

    # Sign-up validation
    MIN_PASSWORD_LENGTH: int = Field(default=6, ge=1)
    MIN_USERNAME_LENGTH: int = Field(default=3, ge=1)

    # OAuth
    OAUTH_FLOW: Literal["pkce", "implicit"] = "pkce"
    GOOGLE_SCOPES: str = (
        "https://www.googleapis.com/auth/userinfo.email "
        "https://www.googleapis.com/auth/userinfo.profile"
    )
    OAUTH_ACCESS_TYPE: str = "offline"
    OAUTH_PROMPT: str = "consent"

    # Refresh tokens this many seconds before they expire
    REFRESH_MARGIN_S: int = 30

    LOG_LEVEL: str = "INFO"
    DEBUG_BANNERS: bool = False

    model_config = SettingsConfigDict(
        env_prefix="SERENE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def site_path(self, path: str) -> str:
        return self.SITE_URL.rstrip("/") + "/" + path.lstrip("/")

    @property
    def auth_redirect_url(self) -> str:
        return self.site_path(self.AUTH_REDIRECT_PATH)

    @property
    def oauth_callback_url(self) -> str:
        return self.site_path(self.OAUTH_CALLBACK_PATH)

    @property
    def reset_password_url(self) -> str:
        return self.site_path(self.RESET_PASSWORD_PATH)

    def oauth_scopes(self) -> list[str]:
        return _split_csv(self.GOOGLE_SCOPES, ["email", "profile"])

    def oauth_query_params(self) -> dict[str, str]:
        params = {}
        if self.OAUTH_ACCESS_TYPE:
            params["access_type"] = self.OAUTH_ACCESS_TYPE
        if self.OAUTH_PROMPT:
            params["prompt"] = self.OAUTH_PROMPT
        return params


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    if not settings.ANON_KEY:
        logger.debug("SERENE_ANON_KEY not configured; service calls will be anonymous")
    return settings
