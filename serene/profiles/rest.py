"""Row store backed by the hosted REST (PostgREST-style) API."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
import pydantic

from ..auth.models import Profile
from ..errors import NetworkError, error_from_response, error_from_transport
from ..http_client import build_async_httpx_client, service_headers
from ..settings import Settings
from ..stats.models import MeditationSession, UserAchievement
from .base import UPDATABLE_FIELDS, ActivityStore, ProfileStore

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]

PROFILES = "profiles"
SESSIONS = "meditation_sessions"
USER_ACHIEVEMENTS = "user_achievements"

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def _rows_as(model: type[ModelT], table: str, rows: list[dict[str, Any]]) -> list[ModelT]:
    try:
        return [model.model_validate(row) for row in rows]
    except pydantic.ValidationError as exc:
        logger.warning(
            "rest_row_invalid",
            extra={"meta": {"table": table, "errors": exc.error_count()}},
        )
        raise NetworkError(f"Unexpected row shape in {table}", extra={"table": table}) from exc


class RestClient:
    """Minimal table client: select / insert / update with eq filters."""

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self.settings = settings
        self._own_http = http is None
        self._http = http or build_async_httpx_client(settings.HTTP_CLIENT_TIMEOUT)
        self._token_provider = token_provider

    async def aclose(self) -> None:
        if self._own_http:
            await self._http.aclose()

    def _url(self, table: str) -> str:
        return f"{self.settings.SERVICE_URL.rstrip('/')}/rest/v1/{table}"

    async def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = await self._token_provider() if self._token_provider else None
        headers = service_headers(self.settings.ANON_KEY, token)
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(self, method: str, table: str, *, params: dict[str, str], **kwargs) -> httpx.Response:
        try:
            r = await self._http.request(method, self._url(table), params=params, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("rest_request_failed: network", extra={"meta": {"table": table, "error": str(exc)}})
            raise error_from_transport(exc) from exc
        if r.status_code >= 400:
            err = error_from_response(r)
            logger.warning(
                "rest_request_rejected",
                extra={"meta": {"table": table, "method": method, "status": r.status_code}},
            )
            raise err
        return r

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        eq: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params = {"select": columns}
        for column, value in (eq or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        r = await self._send("GET", table, params=params, headers=await self._headers())
        try:
            rows = r.json()
        except ValueError as exc:
            logger.warning(
                "rest_response_undecodable",
                extra={"meta": {"table": table, "status": r.status_code}},
            )
            raise NetworkError(f"Unexpected response for {table}", extra={"status": r.status_code}) from exc
        if not isinstance(rows, list):
            raise NetworkError(f"Unexpected response for {table}", extra={"status": r.status_code})
        return rows

    async def insert(self, table: str, row: dict[str, Any], *, on_conflict: str | None = None) -> None:
        params = {}
        prefer = "return=minimal"
        if on_conflict:
            params["on_conflict"] = on_conflict
            prefer = "resolution=ignore-duplicates,return=minimal"
        await self._send("POST", table, params=params, json=row, headers=await self._headers(prefer))

    async def update(self, table: str, values: dict[str, Any], *, eq: dict[str, str]) -> None:
        params = {column: f"eq.{value}" for column, value in eq.items()}
        await self._send("PATCH", table, params=params, json=values, headers=await self._headers("return=minimal"))


class RestProfileStore(ProfileStore):
    def __init__(self, client: RestClient):
        self._client = client

    async def _one(self, **eq: str) -> Profile | None:
        rows = await self._client.select(PROFILES, eq=eq, limit=1)
        return _rows_as(Profile, PROFILES, rows[:1])[0] if rows else None

    async def fetch_by_id(self, profile_id: str) -> Profile | None:
        return await self._one(id=profile_id)

    async def fetch_by_username(self, username: str) -> Profile | None:
        return await self._one(username=username)

    async def fetch_by_email(self, email: str) -> Profile | None:
        return await self._one(email=email)

    async def insert_if_absent(self, profile: Profile) -> None:
        row = profile.model_dump(mode="json")
        row["updated_at"] = row.get("updated_at") or datetime.now(UTC).isoformat()
        await self._client.insert(PROFILES, row, on_conflict="id")

    async def update(self, profile_id: str, fields: dict[str, Any]) -> None:
        values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        values["updated_at"] = datetime.now(UTC).isoformat()
        await self._client.update(PROFILES, values, eq={"id": profile_id})


class RestActivityStore(ActivityStore):
    def __init__(self, client: RestClient):
        self._client = client

    async def list_sessions(self, user_id: str) -> list[MeditationSession]:
        rows = await self._client.select(
            SESSIONS, eq={"user_id": user_id}, order="completed_at.desc"
        )
        return _rows_as(MeditationSession, SESSIONS, rows)

    async def list_achievements(self, user_id: str) -> list[UserAchievement]:
        rows = await self._client.select(
            USER_ACHIEVEMENTS,
            columns="*,achievement:achievements(*)",
            eq={"user_id": user_id},
        )
        return _rows_as(UserAchievement, USER_ACHIEVEMENTS, rows)
