"""Daily login streak claims with milestone rewards."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.models import Classroom, LoginStreak, StudentProfile
from classquest.errors import InvalidInputError, NotFoundError
from classquest.progression.day_utils import days_between
from classquest.progression.engine import ProgressionEngine
from classquest.progression.notification_service import build_streak_milestone_notification
from classquest.progression.points import PointDelta
from classquest.progression.schemas import (
    LoginMilestone,
    LoginRewards,
    LoginStreakConfig,
    LoginStreakResult,
    LoginStreakStatus,
    NextMilestone,
    StreakState,
)

logger = structlog.get_logger()


def parse_login_streak_config(raw: dict | None) -> LoginStreakConfig:
    """Classroom streak config, or the defaults when unset or invalid."""
    if not raw:
        return LoginStreakConfig()
    try:
        return LoginStreakConfig.model_validate(raw)
    except ValidationError:
        logger.warning("invalid_login_streak_config", config=raw)
        return LoginStreakConfig()


def get_next_milestone(current_streak: int, config: LoginStreakConfig) -> NextMilestone | None:
    upcoming = sorted((m for m in config.milestones if m.day > current_streak), key=lambda m: m.day)
    if not upcoming:
        return None
    milestone = upcoming[0]
    return NextMilestone(
        day=milestone.day,
        xp=milestone.xp,
        gp=milestone.gp,
        random_item=milestone.random_item,
        days_remaining=milestone.day - current_streak,
    )


def compute_next_streak(
    current_streak: int,
    grace_days_used: int,
    gap_days: int | None,
    config: LoginStreakConfig,
) -> tuple[int, int]:
    """(new streak, grace days used) for a login ``gap_days`` after the previous one.

    ``gap_days`` is None for a first login. Missed days are covered by
    unused grace days; otherwise the streak restarts when ``reset_on_miss``
    is set and carries on when it is not.
    """
    if gap_days is None:
        return 1, 0
    if gap_days == 1:
        return current_streak + 1, 0

    missed = gap_days - 1
    if config.grace_days > 0 and missed <= config.grace_days - grace_days_used:
        return current_streak + 1, grace_days_used + missed
    if config.reset_on_miss:
        return 1, 0
    return current_streak + 1, grace_days_used


def _state(streak: LoginStreak, current_streak: int | None = None) -> StreakState:
    return StreakState(
        current_streak=streak.current_streak if current_streak is None else current_streak,
        longest_streak=streak.longest_streak,
        total_logins=streak.total_logins,
        last_login_at=streak.last_login_at,
        claimed_milestones=list(streak.claimed_milestones or []),
    )


async def _get_streak(db: AsyncSession, student_id: int, classroom_id: int) -> LoginStreak | None:
    result = await db.execute(
        select(LoginStreak).where(
            LoginStreak.student_id == student_id,
            LoginStreak.classroom_id == classroom_id,
        )
    )
    return result.scalar_one_or_none()


async def record_login(
    db: AsyncSession,
    student_id: int,
    classroom_id: int,
    now: datetime | None = None,
) -> LoginStreakResult:
    """Claim today's login. A second claim on the same calendar day changes nothing."""
    if now is None:
        now = datetime.now(timezone.utc)

    classroom = await db.get(Classroom, classroom_id)
    if classroom is None:
        msg = f"Classroom {classroom_id} not found"
        raise NotFoundError(msg)
    if not classroom.login_streak_enabled:
        msg = "Login streak is not enabled for this classroom"
        raise InvalidInputError(msg)

    student = await db.get(StudentProfile, student_id)
    if student is None or student.classroom_id != classroom.id:
        msg = f"Student {student_id} not found in classroom {classroom_id}"
        raise NotFoundError(msg)

    config = parse_login_streak_config(classroom.login_streak_config)

    streak = await _get_streak(db, student.id, classroom.id)
    if streak is None:
        streak = LoginStreak(
            student_id=student.id,
            classroom_id=classroom.id,
            current_streak=0,
            longest_streak=0,
            total_logins=0,
            claimed_milestones=[],
            grace_days_used=0,
            created_at=now,
            updated_at=now,
        )
        db.add(streak)
        await db.flush()

    gap = days_between(streak.last_login_at, now) if streak.last_login_at is not None else None
    if gap is not None and gap <= 0:
        return LoginStreakResult(
            streak=_state(streak),
            rewards=None,
            is_new_login=False,
            next_milestone=get_next_milestone(streak.current_streak, config),
        )

    new_streak, grace_used = compute_next_streak(streak.current_streak, streak.grace_days_used, gap, config)
    streak.current_streak = new_streak
    streak.longest_streak = max(streak.longest_streak, new_streak)
    streak.grace_days_used = grace_used
    streak.total_logins += 1
    streak.last_login_at = now
    streak.updated_at = now

    rewards = LoginRewards(daily_xp=max(config.daily_xp, 0))
    claimed = list(streak.claimed_milestones or [])
    milestone: LoginMilestone | None = next(
        (m for m in config.milestones if m.day == new_streak and m.day not in claimed),
        None,
    )
    if milestone is not None:
        rewards.milestone_reached = milestone.day
        rewards.milestone_xp = milestone.xp
        rewards.milestone_gp = milestone.gp
        # Shop items are granted by the shop; only the entitlement is reported.
        rewards.random_item = milestone.random_item
        streak.claimed_milestones = [*claimed, milestone.day]

        notification = build_streak_milestone_notification(
            student, classroom, milestone.day, milestone.xp, milestone.gp, milestone.random_item, now=now
        )
        if notification is not None:
            db.add(notification)

    await db.flush()

    delta = PointDelta(xp=rewards.daily_xp + rewards.milestone_xp, gp=rewards.milestone_gp)
    leveled_up = False
    if not delta.is_zero:
        reason = "Daily login streak"
        if milestone is not None:
            reason = f"Login streak milestone: {milestone.day} days"
        grant = await ProgressionEngine(db, classroom, now=now).grant(student, delta, reason)
        leveled_up = grant.leveled_up

    await db.commit()

    logger.info(
        "login_recorded",
        student_id=student.id,
        classroom_id=classroom.id,
        streak=new_streak,
        milestone=rewards.milestone_reached,
    )
    return LoginStreakResult(
        streak=_state(streak),
        rewards=rewards,
        is_new_login=True,
        next_milestone=get_next_milestone(new_streak, config),
        leveled_up=leveled_up,
    )


async def get_streak_status(
    db: AsyncSession,
    student_id: int,
    classroom_id: int,
    now: datetime | None = None,
) -> LoginStreakStatus:
    """Current streak as the student would see it today, without claiming."""
    classroom = await db.get(Classroom, classroom_id)
    if classroom is None:
        msg = f"Classroom {classroom_id} not found"
        raise NotFoundError(msg)
    if not classroom.login_streak_enabled:
        return LoginStreakStatus(enabled=False)

    if now is None:
        now = datetime.now(timezone.utc)

    config = parse_login_streak_config(classroom.login_streak_config)
    streak = await _get_streak(db, student_id, classroom_id)

    if streak is None or streak.last_login_at is None:
        return LoginStreakStatus(
            enabled=True,
            streak=StreakState(current_streak=0, longest_streak=0, total_logins=0),
            daily_xp=config.daily_xp,
            milestones=config.milestones,
            next_milestone=get_next_milestone(0, config),
            can_claim_today=True,
        )

    gap = days_between(streak.last_login_at, now)
    can_claim_today = gap > 0

    current = streak.current_streak
    if can_claim_today and config.reset_on_miss and gap > 1 + config.grace_days - streak.grace_days_used:
        current = 0

    return LoginStreakStatus(
        enabled=True,
        streak=_state(streak, current),
        daily_xp=config.daily_xp,
        milestones=config.milestones,
        next_milestone=get_next_milestone(current, config),
        can_claim_today=can_claim_today,
    )
