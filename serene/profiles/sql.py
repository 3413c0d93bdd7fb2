"""
SQL-backed row store.

Profile creation uses ``INSERT ... ON CONFLICT (id) DO NOTHING`` so that
concurrent reconciliations of the same identity converge on one row.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..auth.models import Profile
from ..db.core import build_session_factory, get_async_session
from ..db.models import MeditationSessionRow, ProfileRow, UserAchievementRow
from ..errors import NetworkError
from ..stats.models import MeditationSession, UserAchievement
from .base import UPDATABLE_FIELDS, ActivityStore, ProfileStore

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _store_error(op: str, exc: SQLAlchemyError) -> NetworkError:
    logger.warning("sql_store_failed", extra={"meta": {"op": op, "error_type": type(exc).__name__}})
    return NetworkError(str(exc.orig if getattr(exc, "orig", None) else exc), extra={"op": op})


class SqlProfileStore(ProfileStore):
    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._factory = build_session_factory(engine)
        try:
            self._insert = _INSERT_BY_DIALECT[engine.dialect.name]
        except KeyError:
            raise RuntimeError(
                f"Unsupported dialect for profile upsert: {engine.dialect.name}"
            ) from None

    async def _one(self, *criteria) -> Profile | None:
        try:
            async with get_async_session(self._factory) as session:
                row = (await session.execute(select(ProfileRow).where(*criteria))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise _store_error("fetch_profile", exc) from exc
        return Profile.model_validate(row) if row else None

    async def fetch_by_id(self, profile_id: str) -> Profile | None:
        return await self._one(ProfileRow.id == profile_id)

    async def fetch_by_username(self, username: str) -> Profile | None:
        return await self._one(ProfileRow.username == username)

    async def fetch_by_email(self, email: str) -> Profile | None:
        return await self._one(ProfileRow.email == email)

    async def insert_if_absent(self, profile: Profile) -> None:
        values = profile.model_dump()
        values["updated_at"] = values.get("updated_at") or datetime.now(UTC)
        stmt = self._insert(ProfileRow).values(**values).on_conflict_do_nothing(index_elements=["id"])
        try:
            async with get_async_session(self._factory) as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise _store_error("insert_profile", exc) from exc

    async def update(self, profile_id: str, fields: dict[str, Any]) -> None:
        values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        values["updated_at"] = datetime.now(UTC)
        stmt = update(ProfileRow).where(ProfileRow.id == profile_id).values(**values)
        try:
            async with get_async_session(self._factory) as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise _store_error("update_profile", exc) from exc


class SqlActivityStore(ActivityStore):
    def __init__(self, engine: AsyncEngine):
        self._factory = build_session_factory(engine)

    async def list_sessions(self, user_id: str) -> list[MeditationSession]:
        stmt = (
            select(MeditationSessionRow)
            .where(MeditationSessionRow.user_id == user_id)
            .order_by(MeditationSessionRow.completed_at.desc().nulls_last())
        )
        try:
            async with get_async_session(self._factory) as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise _store_error("list_sessions", exc) from exc
        return [MeditationSession.model_validate(row) for row in rows]

    async def list_achievements(self, user_id: str) -> list[UserAchievement]:
        stmt = select(UserAchievementRow).where(UserAchievementRow.user_id == user_id)
        try:
            async with get_async_session(self._factory) as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [UserAchievement.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            raise _store_error("list_achievements", exc) from exc
