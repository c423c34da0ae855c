"""Badge unlock evaluation and awarding.

Automatic badges are checked after every grant against the student's current
state and the triggering event. Each (student, badge) pair is awarded at most
once; the unique constraint on student_badges backs the in-memory check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.database import refresh_if_expired
from classquest.db.enums import BadgeAssignment, BadgeScope
from classquest.db.models import Badge, Behavior, Classroom, PointLog, StudentBadge, StudentProfile
from classquest.errors import InvalidInputError, NotFoundError
from classquest.progression.levels import check_level_up
from classquest.progression.notification_service import (
    NotificationBatch,
    build_badge_notifications,
    build_level_up_notifications,
)
from classquest.progression.points import PointDelta, apply_points
from classquest.progression.schemas import (
    AnyBehaviorCondition,
    BadgeEvent,
    BadgeProgress,
    BehaviorCategoryCondition,
    BehaviorCountCondition,
    CompoundCondition,
    LevelCondition,
    PurchasesCondition,
    UnlockCondition,
    XpTotalCondition,
    unlock_condition_adapter,
)

logger = logging.getLogger(__name__)


@dataclass
class BadgeAward:
    badge: Badge
    student_badge: StudentBadge
    reward: PointDelta
    level_up: tuple[int, int] | None = None
    notifications: list = field(default_factory=list)


def parse_condition(raw: dict | None) -> UnlockCondition | None:
    """Validate a stored unlock condition. Returns None if missing or malformed."""
    if not raw:
        return None
    try:
        return unlock_condition_adapter.validate_python(raw)
    except ValidationError:
        logger.warning("Invalid badge unlock condition: %s", raw)
        return None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_classroom_badges(db: AsyncSession, classroom_id: int) -> list[Badge]:
    """Active SYSTEM badges plus the classroom's own active badges."""
    result = await db.execute(
        select(Badge)
        .where(
            Badge.is_active.is_(True),
            or_(Badge.scope == BadgeScope.SYSTEM, Badge.classroom_id == classroom_id),
        )
        .order_by(Badge.id)
    )
    return list(result.scalars().all())


async def get_owned_badge_ids(db: AsyncSession, student_id: int) -> set[int]:
    result = await db.execute(select(StudentBadge.badge_id).where(StudentBadge.student_id == student_id))
    return set(result.scalars().all())


async def has_badge(db: AsyncSession, student_id: int, badge_id: int) -> bool:
    result = await db.execute(
        select(StudentBadge.id).where(
            StudentBadge.student_id == student_id,
            StudentBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


def _application_keys(rows: list[tuple[int | None, datetime]]) -> set[tuple[int, datetime]]:
    """One key per behavior application.

    A combined XP+HP+GP behavior writes several logs with the same timestamp,
    so logs are grouped by behavior and exact timestamp. SQLite hands back
    naive datetimes, so the zone is dropped on both backends.
    """
    return {
        (behavior_id, created_at.replace(tzinfo=None))
        for behavior_id, created_at in rows
        if behavior_id is not None
    }


async def count_behavior_applications(
    db: AsyncSession,
    student_id: int,
    behavior_id: int | None = None,
    is_positive: bool | None = None,
    since: datetime | None = None,
) -> int:
    """Count distinct behavior applications in the student's point log.

    Filter by one behavior, by behavior polarity, or neither for all
    behaviors. Only logs at or after ``since`` count.
    """
    stmt = select(PointLog.behavior_id, PointLog.created_at).where(
        PointLog.student_id == student_id,
        PointLog.behavior_id.is_not(None),
    )
    if behavior_id is not None:
        stmt = stmt.where(PointLog.behavior_id == behavior_id)
    if is_positive is not None:
        stmt = stmt.join(Behavior, PointLog.behavior_id == Behavior.id).where(Behavior.is_positive.is_(is_positive))
    if since is not None:
        stmt = stmt.where(PointLog.created_at >= since)

    result = await db.execute(stmt)
    return len(_application_keys(list(result.tuples().all())))


# ---------------------------------------------------------------------------
# Condition evaluation
# ---------------------------------------------------------------------------


async def condition_value(
    db: AsyncSession,
    student: StudentProfile,
    badge: Badge,
    condition: UnlockCondition,
    event: BadgeEvent | None = None,
) -> tuple[int, int]:
    """(current, target) for a non-compound condition."""
    if isinstance(condition, XpTotalCondition):
        return student.xp, condition.value
    if isinstance(condition, LevelCondition):
        return student.level, condition.value
    if isinstance(condition, BehaviorCountCondition):
        count = await count_behavior_applications(
            db, student.id, behavior_id=condition.behavior_id, since=badge.created_at
        )
        return count, condition.count
    if isinstance(condition, BehaviorCategoryCondition):
        count = await count_behavior_applications(
            db, student.id, is_positive=condition.category == "positive", since=badge.created_at
        )
        return count, condition.count
    if isinstance(condition, AnyBehaviorCondition):
        return await count_behavior_applications(db, student.id, since=badge.created_at), condition.count
    if isinstance(condition, PurchasesCondition):
        purchases = (event.purchase_count if event else None) or 0
        return purchases, condition.value

    msg = f"No progress value for {condition.type} conditions"
    raise ValueError(msg)


async def evaluate_condition(
    db: AsyncSession,
    student: StudentProfile,
    badge: Badge,
    condition: UnlockCondition,
    event: BadgeEvent | None = None,
) -> bool:
    if isinstance(condition, CompoundCondition):
        if not condition.conditions:
            return False
        for sub in condition.conditions:
            met = await evaluate_condition(db, student, badge, sub, event)
            if condition.operator == "OR" and met:
                return True
            if condition.operator == "AND" and not met:
                return False
        return condition.operator == "AND"

    current, target = await condition_value(db, student, badge, condition, event)
    return current >= target


# ---------------------------------------------------------------------------
# Awarding
# ---------------------------------------------------------------------------


async def _grant_badge(
    db: AsyncSession,
    student: StudentProfile,
    classroom: Classroom,
    badge: Badge,
    awarded_by: int | None,
    award_reason: str | None,
    now: datetime,
) -> BadgeAward | None:
    """Insert the StudentBadge and pay its reward. None if it already exists."""
    student_badge = StudentBadge(
        student_id=student.id,
        badge_id=badge.id,
        unlocked_at=now,
        awarded_by=awarded_by,
        award_reason=award_reason,
    )
    try:
        async with db.begin_nested():
            db.add(student_badge)
            await db.flush()
    except IntegrityError:
        await refresh_if_expired(db, student, classroom, badge)
        logger.info("Badge %s already owned by student %s", badge.id, student.id)
        return None

    reward = PointDelta(xp=badge.reward_xp or 0, gp=badge.reward_gp or 0)
    level_up = None
    if not reward.is_zero:
        logs = apply_points(student, reward, classroom, f"Badge unlocked: {badge.name}", given_by=awarded_by, now=now)
        db.add_all(logs)
        level_up = check_level_up(student, classroom, reward.xp)
        await db.flush()

    award = BadgeAward(badge=badge, student_badge=student_badge, reward=reward, level_up=level_up)
    award.notifications.extend(build_badge_notifications(student, classroom, badge, now=now))
    if level_up is not None:
        award.notifications.extend(build_level_up_notifications(student, classroom, *level_up, now=now))

    logger.info("Awarded badge %s to student %s", badge.id, student.id)
    return award


async def check_and_award_badges(
    db: AsyncSession,
    student: StudentProfile,
    classroom: Classroom,
    event: BadgeEvent,
    notifications: NotificationBatch | None = None,
    now: datetime | None = None,
) -> list[BadgeAward]:
    """Evaluate every pending automatic badge for the student and award the ones met.

    Badge rewards go through the ledger and may raise the level, but do not
    trigger further clan, mission or badge processing.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    owned = await get_owned_badge_ids(db, student.id)
    pending = [
        badge
        for badge in await get_classroom_badges(db, classroom.id)
        if badge.id not in owned
        and badge.assignment_mode in (BadgeAssignment.AUTOMATIC, BadgeAssignment.BOTH)
        and badge.unlock_condition is not None
    ]

    awards: list[BadgeAward] = []
    for badge in pending:
        condition = parse_condition(badge.unlock_condition)
        if condition is None:
            continue
        if not await evaluate_condition(db, student, badge, condition, event):
            continue

        award = await _grant_badge(db, student, classroom, badge, None, None, now)
        if award is not None:
            awards.append(award)

    for award in awards:
        if notifications is not None:
            notifications.extend(award.notifications)
        else:
            db.add_all(award.notifications)

    if awards and notifications is None:
        await db.flush()

    return awards


async def award_badge_manually(
    db: AsyncSession,
    student_id: int,
    badge_id: int,
    teacher_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> BadgeAward:
    """Teacher-awarded badge. The badge must allow manual assignment and not be owned yet."""
    badge = await db.get(Badge, badge_id)
    if badge is None:
        msg = f"Badge {badge_id} not found"
        raise NotFoundError(msg)
    if badge.assignment_mode == BadgeAssignment.AUTOMATIC:
        msg = "This badge can only be unlocked automatically"
        raise InvalidInputError(msg)

    student = await db.get(StudentProfile, student_id)
    if student is None:
        msg = f"Student {student_id} not found"
        raise NotFoundError(msg)
    classroom = await db.get(Classroom, student.classroom_id)
    if classroom is None:
        msg = f"Classroom {student.classroom_id} not found"
        raise NotFoundError(msg)
    if badge.scope == BadgeScope.CLASSROOM and badge.classroom_id != classroom.id:
        msg = "Badge belongs to another classroom"
        raise InvalidInputError(msg)

    if await has_badge(db, student.id, badge.id):
        msg = "Student already has this badge"
        raise InvalidInputError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    award = await _grant_badge(db, student, classroom, badge, teacher_id, reason, now)
    if award is None:
        msg = "Student already has this badge"
        raise InvalidInputError(msg)

    db.add_all(award.notifications)
    await db.flush()
    return award


async def get_student_badge_progress(
    db: AsyncSession,
    student: StudentProfile,
    include_secret: bool = False,
) -> list[BadgeProgress]:
    """Progress toward each classroom badge, most advanced first.

    Unlocked badges report 100%. Compound and event-only conditions have no
    measurable progress and are reported only once unlocked.
    """
    owned_result = await db.execute(select(StudentBadge).where(StudentBadge.student_id == student.id))
    owned = {sb.badge_id: sb for sb in owned_result.scalars().all()}

    progress: list[BadgeProgress] = []
    for badge in await get_classroom_badges(db, student.classroom_id):
        if badge.is_secret and not include_secret and badge.id not in owned:
            continue

        base = {"badge_id": badge.id, "name": badge.name, "icon": badge.icon, "rarity": badge.rarity}
        if badge.id in owned:
            progress.append(BadgeProgress(
                **base, is_unlocked=True, unlocked_at=owned[badge.id].unlocked_at, percentage=100
            ))
            continue

        condition = parse_condition(badge.unlock_condition)
        if condition is None or isinstance(condition, (CompoundCondition, PurchasesCondition)):
            continue

        current, target = await condition_value(db, student, badge, condition)
        if target <= 0:
            continue
        progress.append(BadgeProgress(
            **base,
            is_unlocked=False,
            current=current,
            target=target,
            percentage=min(100, round(current / target * 100)),
        ))

    return sorted(progress, key=lambda p: p.percentage, reverse=True)
