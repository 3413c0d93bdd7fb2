"""
Pure statistics over already-fetched meditation session rows.

Calendar grouping happens in a local timezone (the process's by default);
``today``/``now``/``tz`` are injectable for deterministic tests. Naive
timestamps are taken to be UTC, which is how the row stores persist them.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, timedelta, tzinfo

from .models import (
    WEEKDAY_LABELS,
    AchievementCard,
    Activity,
    DayBucket,
    MeditationSession,
    UserAchievement,
    UserStats,
)

RECENT_LIMIT = 5
SESSION_ICON = "🧘‍♀️"
FIRST_ACHIEVEMENT = AchievementCard(
    title="First Meditation",
    description="Complete your first meditation session",
    progress=0,
    icon="🌱",
)
NO_ACTIVITY = Activity(
    type="info",
    title="No activities yet",
    duration="Start meditating",
    date="Just now",
    icon=SESSION_ICON,
)


def _local_tz() -> tzinfo:
    return datetime.now().astimezone().tzinfo


def _to_local(ts: datetime, tz: tzinfo | None) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(tz or _local_tz())


def _local_date(ts: datetime, tz: tzinfo | None) -> date:
    return _to_local(ts, tz).date()


def _today(today: date | None, tz: tzinfo | None) -> date:
    return today if today is not None else datetime.now(tz or _local_tz()).date()


def total_minutes(sessions: Iterable[MeditationSession]) -> int:
    return sum(s.duration_minutes or 0 for s in sessions)


def completed_count(sessions: Iterable[MeditationSession]) -> int:
    return sum(1 for s in sessions if s.completed)


def streak_days(
    sessions: Iterable[MeditationSession],
    *,
    today: date | None = None,
    tz: tzinfo | None = None,
) -> int:
    """Consecutive active days ending today or yesterday.

    A most recent active day older than yesterday means the streak is broken.
    """
    days = sorted(
        {_local_date(s.completed_at, tz) for s in sessions if s.completed_at is not None},
        reverse=True,
    )
    if not days:
        return 0

    yesterday = _today(today, tz) - timedelta(days=1)
    if days[0] < yesterday:
        return 0

    streak = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days != 1:
            break
        streak += 1
    return streak


def week_start(today: date) -> date:
    """Monday of the week containing ``today``."""
    return today - timedelta(days=today.weekday())


def weekly_progress(
    sessions: Iterable[MeditationSession],
    *,
    today: date | None = None,
    tz: tzinfo | None = None,
) -> list[DayBucket]:
    """Minutes per weekday for the current Monday-Sunday week."""
    monday = week_start(_today(today, tz))
    minutes = [0] * 7
    for s in sessions:
        if s.completed_at is None:
            continue
        offset = (_local_date(s.completed_at, tz) - monday).days
        if 0 <= offset < 7:
            minutes[offset] += s.duration_minutes or 0
    return [DayBucket(day=label, minutes=m) for label, m in zip(WEEKDAY_LABELS, minutes)]


def format_meditation_time(total: int) -> str:
    if total < 60:
        return f"{total}m"
    hours, minutes = divmod(total, 60)
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def relative_time(ts: datetime, *, now: datetime | None = None, tz: tzinfo | None = None) -> str:
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)

    seconds = int((current - ts).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 30:
        return _local_date(ts, tz).isoformat()
    if days > 0:
        return "Yesterday" if days == 1 else f"{days} days ago"
    if hours > 0:
        return "1 hour ago" if hours == 1 else f"{hours} hours ago"
    if minutes > 0:
        return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
    return "Just now"


def recent_activities(
    sessions: Sequence[MeditationSession],
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    limit: int = RECENT_LIMIT,
) -> list[Activity]:
    """The ``limit`` most recent sessions; expects newest-first input."""
    if not sessions:
        return [NO_ACTIVITY]

    activities = []
    for s in sessions[:limit]:
        ts = s.completed_at or s.created_at
        activities.append(
            Activity(
                type="meditation",
                title=s.title or "Meditation Session",
                duration=f"{s.duration_minutes} minutes",
                date=relative_time(ts, now=now, tz=tz) if ts else "",
                icon=SESSION_ICON,
            )
        )
    return activities


def achievement_cards(user_achievements: Sequence[UserAchievement]) -> list[AchievementCard]:
    if not user_achievements:
        return [FIRST_ACHIEVEMENT]

    cards = []
    for item in user_achievements:
        achievement = item.achievement
        cards.append(
            AchievementCard(
                title=(achievement and achievement.title) or "Achievement",
                description=(achievement and achievement.description) or "",
                progress=item.progress or 0,
                icon=(achievement and achievement.icon) or "✨",
            )
        )
    return cards


def summarize(
    sessions: Sequence[MeditationSession],
    user_achievements: Sequence[UserAchievement] = (),
    *,
    today: date | None = None,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> UserStats:
    minutes = total_minutes(sessions)
    return UserStats(
        total_minutes=minutes,
        meditation_time=format_meditation_time(minutes),
        sessions_completed=completed_count(sessions),
        streak_days=streak_days(sessions, today=today, tz=tz),
        achievements=len(user_achievements),
        weekly=weekly_progress(sessions, today=today, tz=tz),
        recent=recent_activities(sessions, now=now, tz=tz),
        achievement_cards=achievement_cards(user_achievements),
    )
