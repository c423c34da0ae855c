"""Behavior application and manual point adjustments by a teacher."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.enums import PointAction, PointType
from classquest.db.models import Behavior, Classroom, StudentProfile
from classquest.errors import ForbiddenError, InvalidInputError, NotFoundError
from classquest.progression.effects import Effect, StudentGrant
from classquest.progression.engine import PointGrant, ProgressionEngine
from classquest.progression.points import PointDelta

logger = structlog.get_logger()


@dataclass
class BehaviorApplication:
    behavior: Behavior
    classroom: Classroom
    delta: PointDelta
    results: list[StudentGrant]


async def get_teacher_classroom(db: AsyncSession, classroom_id: int, teacher_id: int) -> Classroom:
    """Load a classroom the teacher owns."""
    classroom = await db.get(Classroom, classroom_id)
    if classroom is None:
        msg = f"Classroom {classroom_id} not found"
        raise NotFoundError(msg)
    if classroom.teacher_id != teacher_id:
        msg = "You do not have permission on this classroom"
        raise ForbiddenError(msg)
    return classroom


async def apply_behavior_to_students(
    db: AsyncSession,
    behavior_id: int,
    student_ids: list[int],
    teacher_id: int,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> BehaviorApplication:
    """Apply a behavior to a group of students in its classroom.

    Students outside the behavior's classroom are ignored; if none remain
    the operation fails before anything is written.
    """
    behavior = await db.get(Behavior, behavior_id)
    if behavior is None:
        msg = f"Behavior {behavior_id} not found"
        raise NotFoundError(msg)
    if not behavior.is_active:
        msg = "Behavior is not active"
        raise InvalidInputError(msg)

    classroom = await get_teacher_classroom(db, behavior.classroom_id, teacher_id)

    result = await db.execute(
        select(StudentProfile)
        .where(
            StudentProfile.id.in_(student_ids),
            StudentProfile.classroom_id == classroom.id,
        )
        .order_by(StudentProfile.id)
    )
    students = list(result.scalars().all())
    if not students:
        msg = "No valid students found in this classroom"
        raise NotFoundError(msg)

    delta = PointDelta.from_behavior(behavior)
    engine = ProgressionEngine(db, classroom, effects=effects, now=now)
    results = await engine.grant_many([
        PointGrant(
            student=student,
            delta=delta,
            reason=behavior.name,
            behavior=behavior,
            given_by=teacher_id,
            badge_event="BEHAVIOR_APPLIED",
        )
        for student in students
    ])
    await db.commit()

    logger.info(
        "behavior_applied",
        behavior_id=behavior.id,
        classroom_id=classroom.id,
        students=len(students),
        **delta.as_dict(),
    )
    return BehaviorApplication(behavior=behavior, classroom=classroom, delta=delta, results=results)


async def adjust_points(
    db: AsyncSession,
    student_id: int,
    teacher_id: int,
    point_type: str,
    action: str,
    amount: int,
    reason: str,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> StudentGrant:
    """Manually add or remove one currency from a student."""
    if point_type not in PointType.ALL:
        msg = f"Unknown point type: {point_type}"
        raise InvalidInputError(msg)
    if action not in (PointAction.ADD, PointAction.REMOVE):
        msg = f"Unknown action: {action}"
        raise InvalidInputError(msg)
    if amount <= 0:
        msg = "Amount must be positive"
        raise InvalidInputError(msg)

    student = await db.get(StudentProfile, student_id)
    if student is None:
        msg = f"Student {student_id} not found"
        raise NotFoundError(msg)

    classroom = await get_teacher_classroom(db, student.classroom_id, teacher_id)

    signed = amount if action == PointAction.ADD else -amount
    engine = ProgressionEngine(db, classroom, effects=effects, now=now)
    grant = await engine.grant(
        student,
        PointDelta.single(point_type, signed),
        reason,
        given_by=teacher_id,
        badge_event="POINTS_ADDED",
    )
    await db.commit()
    return grant
