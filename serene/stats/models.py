"""Meditation activity models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class MeditationSession(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str | None = None
    user_id: str | None = None
    title: str | None = None
    duration_minutes: int = Field(default=0, ge=0)
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _none_is_zero(cls, v):
        return 0 if v is None else v


class Achievement(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id: str | None = None
    title: str | None = None
    description: str | None = None
    icon: str | None = None


class UserAchievement(BaseModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    achievement_id: str | None = None
    progress: int = 0
    achievement: Achievement | None = None


class DayBucket(BaseModel):
    day: str
    minutes: int = 0


class Activity(BaseModel):
    type: str
    title: str
    duration: str
    date: str
    icon: str = "🧘"


class AchievementCard(BaseModel):
    title: str
    description: str
    progress: int = 0
    icon: str = "✨"


class UserStats(BaseModel):
    """Aggregated statistics for the profile page."""

    total_minutes: int = Field(default=0, ge=0)
    meditation_time: str = "0m"
    sessions_completed: int = Field(default=0, ge=0)
    streak_days: int = Field(default=0, ge=0)
    achievements: int = Field(default=0, ge=0)
    weekly: list[DayBucket] = Field(default_factory=list)
    recent: list[Activity] = Field(default_factory=list)
    achievement_cards: list[AchievementCard] = Field(default_factory=list)
