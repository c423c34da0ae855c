"""Post-grant effects: clan, missions, badges, notifications.

Effects run in order, per student, after the point ledger has been written.
Each one runs inside its own SAVEPOINT; a failure rolls back only that
effect's writes, is logged and recorded on the grant, and the pipeline moves
on. The point grant itself is never undone by an effect.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.database import refresh_if_expired
from classquest.db.enums import ObjectiveType
from classquest.db.models import Behavior, Classroom, PointLog, StudentMission, StudentProfile
from classquest.progression.badge_service import BadgeAward, check_and_award_badges
from classquest.progression.clan_service import contribute_xp_to_clan
from classquest.progression.mission_service import update_mission_progress
from classquest.progression.notification_service import (
    NotificationBatch,
    build_level_up_notifications,
    build_points_notification,
)
from classquest.progression.points import PointDelta
from classquest.progression.schemas import BadgeEvent

logger = structlog.get_logger()


@dataclass
class StudentGrant:
    """One student's share of a grant operation, and what it led to."""

    student: StudentProfile
    classroom: Classroom
    delta: PointDelta
    reason: str | None
    now: datetime
    notifications: NotificationBatch
    behavior: Behavior | None = None
    given_by: int | None = None
    badge_event: str = "POINTS_ADDED"
    logs: list[PointLog] = field(default_factory=list)
    level_up: tuple[int, int] | None = None
    clan_contribution: int = 0
    completed_missions: list[StudentMission] = field(default_factory=list)
    badges: list[BadgeAward] = field(default_factory=list)
    failed_effects: list[str] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.level_up is not None


EffectFn = Callable[[AsyncSession, StudentGrant], Awaitable[None]]


@dataclass(frozen=True)
class Effect:
    name: str
    run: EffectFn


async def clan_effect(db: AsyncSession, grant: StudentGrant) -> None:
    if grant.delta.xp <= 0:
        return
    grant.clan_contribution = await contribute_xp_to_clan(
        db, grant.student, grant.classroom, grant.delta.xp, grant.reason, now=grant.now
    )


async def mission_effect(db: AsyncSession, grant: StudentGrant) -> None:
    config = {"behavior_id": grant.behavior.id} if grant.behavior is not None else None

    counters: list[tuple[str, int]] = []
    if grant.delta.xp > 0:
        counters.append((ObjectiveType.EARN_XP, grant.delta.xp))
    if grant.delta.gp > 0:
        counters.append((ObjectiveType.EARN_GP, grant.delta.gp))
    if grant.behavior is not None and grant.behavior.is_positive:
        counters.append((ObjectiveType.RECEIVE_BEHAVIOR, 1))

    completed: list[StudentMission] = []
    for objective_type, amount in counters:
        result = await update_mission_progress(
            db,
            grant.student,
            objective_type,
            amount,
            config=config,
            notifications=grant.notifications,
            now=grant.now,
        )
        completed.extend(result.completed)
    grant.completed_missions = completed


async def badge_effect(db: AsyncSession, grant: StudentGrant) -> None:
    behavior_type = None
    if grant.behavior is not None:
        behavior_type = "positive" if grant.behavior.is_positive else "negative"

    event = BadgeEvent(
        type=grant.badge_event,
        student_id=grant.student.id,
        classroom_id=grant.classroom.id,
        behavior_id=grant.behavior.id if grant.behavior is not None else None,
        behavior_type=behavior_type,
    )
    grant.badges = await check_and_award_badges(
        db, grant.student, grant.classroom, event, notifications=grant.notifications, now=grant.now
    )


async def notification_effect(db: AsyncSession, grant: StudentGrant) -> None:
    """Points and level-up notifications. Mission and badge rows are staged by their effects."""
    grant.notifications.add(
        build_points_notification(grant.student, grant.classroom, grant.delta, grant.reason, now=grant.now)
    )
    if grant.level_up is not None:
        grant.notifications.extend(
            build_level_up_notifications(grant.student, grant.classroom, *grant.level_up, now=grant.now)
        )


DEFAULT_EFFECTS: list[Effect] = [
    Effect("clan", clan_effect),
    Effect("missions", mission_effect),
    Effect("badges", badge_effect),
    Effect("notifications", notification_effect),
]


async def run_effects(db: AsyncSession, grant: StudentGrant, effects: list[Effect]) -> None:
    """Run each effect behind its own error boundary.

    A SAVEPOINT rollback expires the rows the effect touched, so the student
    is refreshed before anything reads it again.
    """
    student_id = grant.student.id
    for effect in effects:
        mark = grant.notifications.mark()
        try:
            async with db.begin_nested():
                await effect.run(db, grant)
        except Exception:
            grant.notifications.rollback_to(mark)
            grant.failed_effects.append(effect.name)
            logger.warning(
                "progression_effect_failed",
                effect=effect.name,
                student_id=student_id,
                reason=grant.reason,
                exc_info=True,
            )
            await refresh_if_expired(db, grant.student, grant.classroom)
