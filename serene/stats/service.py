from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo

from ..profiles.base import ActivityStore
from .aggregator import summarize
from .models import UserStats

logger = logging.getLogger(__name__)


class StatsService:
    """Fetches a user's activity rows and summarizes them."""

    def __init__(self, activity: ActivityStore, *, tz: tzinfo | None = None):
        self.activity = activity
        self.tz = tz

    async def load(
        self,
        user_id: str,
        *,
        today: date | None = None,
        now: datetime | None = None,
    ) -> UserStats:
        sessions = await self.activity.list_sessions(user_id)
        achievements = await self.activity.list_achievements(user_id)
        stats = summarize(sessions, achievements, today=today, now=now, tz=self.tz)
        logger.debug(
            "stats_loaded",
            extra={
                "meta": {
                    "user_id": user_id,
                    "sessions": len(sessions),
                    "streak_days": stats.streak_days,
                }
            },
        )
        return stats
