"""Mission streaks: consecutive calendar days with at least one completed mission."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.models import StudentStreak
from classquest.errors import InvalidInputError, NotFoundError
from classquest.progression.day_utils import days_between

logger = logging.getLogger(__name__)

STREAK_MILESTONES: list[dict] = [
    {"days": 3, "xp": 10, "gp": 0},
    {"days": 7, "xp": 25, "gp": 10},
    {"days": 14, "xp": 50, "gp": 25},
    {"days": 30, "xp": 100, "gp": 50},
    {"days": 60, "xp": 200, "gp": 100},
]


def get_streak_milestone(days: int) -> dict | None:
    for milestone in STREAK_MILESTONES:
        if milestone["days"] == days:
            return milestone
    return None


async def get_student_streak(db: AsyncSession, student_id: int, classroom_id: int) -> StudentStreak | None:
    result = await db.execute(
        select(StudentStreak).where(
            StudentStreak.student_id == student_id,
            StudentStreak.classroom_id == classroom_id,
        )
    )
    return result.scalar_one_or_none()


def advance_streak(streak: StudentStreak, now: datetime) -> bool:
    """Record a completion at ``now``. Returns False if one was already recorded that day.

    Yesterday's completion extends the streak; anything older (or none)
    restarts it at 1.
    """
    last = streak.last_completed_at
    if last is not None:
        gap = days_between(last, now)
        if gap <= 0:
            return False
        if gap == 1:
            streak.current_streak += 1
        else:
            streak.current_streak = 1
            streak.streak_started_at = now
    else:
        streak.current_streak = 1
        streak.streak_started_at = now

    streak.longest_streak = max(streak.longest_streak, streak.current_streak)
    streak.last_completed_at = now
    streak.updated_at = now
    return True


async def update_streak(
    db: AsyncSession,
    student_id: int,
    classroom_id: int,
    now: datetime | None = None,
) -> StudentStreak:
    """Register a mission completion for the student's daily streak. Idempotent per day."""
    if now is None:
        now = datetime.now(timezone.utc)

    streak = await get_student_streak(db, student_id, classroom_id)
    if streak is None:
        streak = StudentStreak(
            student_id=student_id,
            classroom_id=classroom_id,
            current_streak=0,
            longest_streak=0,
            claimed_milestones=[],
            created_at=now,
            updated_at=now,
        )
        db.add(streak)

    if advance_streak(streak, now):
        await db.flush()
        logger.debug("Streak for student %s is now %s", student_id, streak.current_streak)

    return streak


async def mark_streak_milestone_claimed(
    db: AsyncSession,
    student_id: int,
    classroom_id: int,
    days: int,
    now: datetime | None = None,
) -> dict:
    """Validate and record a streak milestone claim. Returns the milestone reward.

    The caller grants the reward.
    """
    milestone = get_streak_milestone(days)
    if milestone is None:
        msg = f"{days} is not a streak milestone"
        raise InvalidInputError(msg)

    streak = await get_student_streak(db, student_id, classroom_id)
    if streak is None:
        msg = "Student has no streak in this classroom"
        raise NotFoundError(msg)

    if streak.current_streak < days:
        msg = f"A {days}-day streak is required to claim this reward"
        raise InvalidInputError(msg)

    claimed = list(streak.claimed_milestones or [])
    if days in claimed:
        msg = "Streak reward already claimed"
        raise InvalidInputError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    # Reassign so the JSON column is marked dirty.
    streak.claimed_milestones = [*claimed, days]
    streak.updated_at = now
    await db.flush()

    return milestone
