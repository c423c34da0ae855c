"""Reward claims for completed missions and mission streak milestones."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.enums import MissionStatus
from classquest.db.models import Classroom, StudentMission, StudentProfile
from classquest.errors import InvalidInputError, NotFoundError
from classquest.progression.effects import Effect, StudentGrant
from classquest.progression.engine import ProgressionEngine
from classquest.progression.points import PointDelta
from classquest.progression.streak_service import mark_streak_milestone_claimed

logger = structlog.get_logger()


async def _load_student(db: AsyncSession, student_id: int) -> tuple[StudentProfile, Classroom]:
    student = await db.get(StudentProfile, student_id)
    if student is None:
        msg = f"Student {student_id} not found"
        raise NotFoundError(msg)
    classroom = await db.get(Classroom, student.classroom_id)
    if classroom is None:
        msg = f"Classroom {student.classroom_id} not found"
        raise NotFoundError(msg)
    return student, classroom


async def claim_mission_reward(
    db: AsyncSession,
    student_mission_id: int,
    student_id: int | None = None,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> StudentGrant | None:
    """Claim a COMPLETED mission and grant its reward.

    When ``student_id`` is given the mission must belong to that student.
    Returns None for missions without a reward.
    """
    student_mission = await db.get(StudentMission, student_mission_id)
    if student_mission is None or (student_id is not None and student_mission.student_id != student_id):
        msg = f"Student mission {student_mission_id} not found"
        raise NotFoundError(msg)
    if student_mission.status != MissionStatus.COMPLETED:
        msg = "Mission is not completed"
        raise InvalidInputError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    mission = student_mission.mission
    student, classroom = await _load_student(db, student_mission.student_id)

    student_mission.status = MissionStatus.CLAIMED
    student_mission.claimed_at = now
    await db.flush()

    reward = PointDelta(xp=mission.reward_xp or 0, hp=mission.reward_hp or 0, gp=mission.reward_gp or 0)
    grant = None
    if not reward.is_zero:
        grant = await ProgressionEngine(db, classroom, effects=effects, now=now).grant(
            student, reward, f"Mission completed: {mission.name}"
        )
    await db.commit()

    logger.info(
        "mission_reward_claimed",
        student_mission_id=student_mission.id,
        student_id=student.id,
        **reward.as_dict(),
    )
    return grant


async def claim_streak_reward(
    db: AsyncSession,
    student_id: int,
    classroom_id: int,
    milestone_days: int,
    *,
    effects: list[Effect] | None = None,
    now: datetime | None = None,
) -> StudentGrant:
    """Claim a mission streak milestone (3, 7, 14, 30 or 60 days) once."""
    student, classroom = await _load_student(db, student_id)
    if classroom.id != classroom_id:
        msg = f"Student {student_id} not found in classroom {classroom_id}"
        raise NotFoundError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    milestone = await mark_streak_milestone_claimed(db, student.id, classroom.id, milestone_days, now=now)

    reward = PointDelta(xp=milestone["xp"], gp=milestone["gp"])
    grant = await ProgressionEngine(db, classroom, effects=effects, now=now).grant(
        student, reward, f"{milestone_days}-day mission streak"
    )
    await db.commit()

    logger.info("streak_reward_claimed", student_id=student.id, classroom_id=classroom.id, days=milestone_days)
    return grant
