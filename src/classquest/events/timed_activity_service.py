"""Timed activity results: time-based point multipliers and bomb penalties."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.config import get_settings
from classquest.db.enums import TimedActivityMode
from classquest.db.models import Behavior, Classroom, StudentProfile, TimedActivity, TimedActivityResult
from classquest.errors import InvalidInputError, NotFoundError
from classquest.progression.effects import Effect
from classquest.progression.engine import ProgressionEngine
from classquest.progression.points import PointDelta
from classquest.progression.schemas import TimedActivityOutcome

logger = structlog.get_logger()

DEFAULT_MULTIPLIER_50 = 200
DEFAULT_MULTIPLIER_75 = 150


def compute_multiplier(activity: TimedActivity, elapsed_seconds: int) -> int:
    """Percent multiplier for finishing in ``elapsed_seconds``.

    Within half the time limit earns ``multiplier_50``, within three quarters
    ``multiplier_75``, anything slower 100.
    """
    if not activity.use_multipliers or not activity.time_limit_seconds:
        return 100

    percent_used = elapsed_seconds / activity.time_limit_seconds * 100
    if percent_used <= 50:
        return activity.multiplier_50 or DEFAULT_MULTIPLIER_50
    if percent_used <= 75:
        return activity.multiplier_75 or DEFAULT_MULTIPLIER_75
    return 100


def _magnitude(delta: PointDelta) -> int:
    return abs(delta.xp) + abs(delta.hp) + abs(delta.gp)


async def _load(
    db: AsyncSession,
    activity_id: int,
    student_id: int,
) -> tuple[TimedActivity, StudentProfile, Classroom]:
    activity = await db.get(TimedActivity, activity_id)
    if activity is None:
        msg = f"Timed activity {activity_id} not found"
        raise NotFoundError(msg)

    student = await db.get(StudentProfile, student_id)
    if student is None or student.classroom_id != activity.classroom_id:
        msg = f"Student {student_id} not found in the activity's classroom"
        raise NotFoundError(msg)

    classroom = await db.get(Classroom, activity.classroom_id)
    if classroom is None:
        msg = f"Classroom {activity.classroom_id} not found"
        raise NotFoundError(msg)

    return activity, student, classroom


async def _get_or_create_result(
    db: AsyncSession,
    activity_id: int,
    student_id: int,
    now: datetime,
) -> TimedActivityResult:
    result = await db.execute(
        select(TimedActivityResult).where(
            TimedActivityResult.activity_id == activity_id,
            TimedActivityResult.student_id == student_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = TimedActivityResult(activity_id=activity_id, student_id=student_id, created_at=now)
        db.add(row)
    return row


async def _load_behavior(db: AsyncSession, behavior_id: int | None) -> Behavior | None:
    if behavior_id is None:
        return None
    return await db.get(Behavior, behavior_id)


async def mark_student_complete(
    db: AsyncSession,
    activity_id: int,
    student_id: int,
    elapsed_seconds: int,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> TimedActivityOutcome:
    """Record a student finishing the activity and award the scaled points."""
    if elapsed_seconds < 0:
        msg = "elapsed_seconds cannot be negative"
        raise InvalidInputError(msg)

    activity, student, classroom = await _load(db, activity_id, student_id)
    if now is None:
        now = datetime.now(timezone.utc)

    multiplier = compute_multiplier(activity, elapsed_seconds)

    behavior = await _load_behavior(db, activity.behavior_id)
    if behavior is not None:
        base = PointDelta.from_behavior(behavior)
    else:
        base_points = activity.base_points or get_settings().timed_activity_default_points
        base = PointDelta.single(activity.point_type, base_points)
    delta = base.scaled(multiplier)

    row = await _get_or_create_result(db, activity.id, student.id, now)
    row.completed_at = now
    row.elapsed_seconds = elapsed_seconds
    row.multiplier_applied = multiplier
    row.points_awarded = _magnitude(delta)
    await db.flush()

    grant = await ProgressionEngine(db, classroom, effects=effects, now=now).grant(
        student,
        delta,
        activity.name,
        behavior=behavior,
        badge_event="BEHAVIOR_APPLIED" if behavior is not None else "POINTS_ADDED",
    )
    await db.commit()

    logger.info(
        "timed_activity_completed",
        activity_id=activity.id,
        student_id=student.id,
        multiplier=multiplier,
        **delta.as_dict(),
    )
    return TimedActivityOutcome(
        activity_id=activity.id,
        student_id=student.id,
        elapsed_seconds=elapsed_seconds,
        multiplier=multiplier,
        points=delta.as_dict(),
        leveled_up=grant.leveled_up,
    )


async def mark_student_exploded(
    db: AsyncSession,
    activity_id: int,
    student_id: int,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> TimedActivityOutcome:
    """Apply the bomb penalty to a student. Only for BOMB activities."""
    activity, student, classroom = await _load(db, activity_id, student_id)
    if activity.mode not in TimedActivityMode.BOMB_MODES:
        msg = "This activity is not in bomb mode"
        raise InvalidInputError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    behavior = await _load_behavior(db, activity.negative_behavior_id)
    if behavior is not None:
        from_behavior = PointDelta.from_behavior(behavior)
        penalty = PointDelta(xp=-abs(from_behavior.xp), hp=-abs(from_behavior.hp), gp=-abs(from_behavior.gp))
    else:
        penalty_points = activity.bomb_penalty_points or get_settings().timed_activity_default_penalty
        penalty = PointDelta.single(activity.bomb_penalty_type, -abs(penalty_points))

    row = await _get_or_create_result(db, activity.id, student.id, now)
    row.was_exploded = True
    row.penalty_applied = _magnitude(penalty)
    await db.flush()

    await ProgressionEngine(db, classroom, effects=effects, now=now).grant(
        student,
        penalty,
        f"Bomb - {activity.name}",
        behavior=behavior,
        badge_event="BEHAVIOR_APPLIED" if behavior is not None else "POINTS_ADDED",
    )
    await db.commit()

    logger.info("timed_activity_exploded", activity_id=activity.id, student_id=student.id, **penalty.as_dict())
    return TimedActivityOutcome(
        activity_id=activity.id,
        student_id=student.id,
        points=penalty.as_dict(),
        was_exploded=True,
    )
