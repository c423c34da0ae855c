"""Mission assignment, progress tracking and expiry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.enums import MissionStatus, MissionType
from classquest.db.models import Mission, StudentMission, StudentProfile
from classquest.errors import NotFoundError
from classquest.progression.notification_service import NotificationBatch, build_mission_completed_notification
from classquest.progression.streak_service import update_streak

logger = logging.getLogger(__name__)

MISSION_DURATIONS = {
    MissionType.DAILY: timedelta(days=1),
    MissionType.WEEKLY: timedelta(days=7),
    MissionType.SPECIAL: timedelta(days=30),
}


@dataclass
class MissionProgressResult:
    updated: list[StudentMission] = field(default_factory=list)
    completed: list[StudentMission] = field(default_factory=list)


def calculate_expiration(mission_type: str, now: datetime | None = None) -> datetime:
    """When an assignment of ``mission_type`` made at ``now`` expires."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now + MISSION_DURATIONS.get(mission_type, MISSION_DURATIONS[MissionType.SPECIAL])


def matches_objective_config(mission_config: dict[str, Any] | None, event_config: dict[str, Any] | None) -> bool:
    """A mission pinned to a behavior only counts events for that behavior."""
    if not mission_config:
        return True
    required = mission_config.get("behavior_id")
    if required is None:
        return True
    return (event_config or {}).get("behavior_id") == required


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


async def assign_mission(
    db: AsyncSession,
    mission_id: int,
    student_ids: list[int],
    now: datetime | None = None,
) -> list[StudentMission]:
    """Assign a mission to students. Students already holding it ACTIVE are skipped."""
    mission = await db.get(Mission, mission_id)
    if mission is None:
        msg = f"Mission {mission_id} not found"
        raise NotFoundError(msg)

    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        select(StudentMission.student_id).where(
            StudentMission.mission_id == mission_id,
            StudentMission.status == MissionStatus.ACTIVE,
            StudentMission.student_id.in_(student_ids),
        )
    )
    already_active = set(result.scalars().all())

    expires_at = calculate_expiration(mission.type, now)
    assigned = [
        StudentMission(
            student_id=student_id,
            mission_id=mission_id,
            status=MissionStatus.ACTIVE,
            current_progress=0,
            target_progress=mission.objective_target,
            assigned_at=now,
            expires_at=expires_at,
        )
        for student_id in dict.fromkeys(student_ids)
        if student_id not in already_active
    ]
    if assigned:
        db.add_all(assigned)
        await db.flush()

    return assigned


async def assign_mission_to_all(
    db: AsyncSession,
    mission_id: int,
    now: datetime | None = None,
) -> list[StudentMission]:
    """Assign a mission to every active student in its classroom."""
    mission = await db.get(Mission, mission_id)
    if mission is None:
        msg = f"Mission {mission_id} not found"
        raise NotFoundError(msg)

    result = await db.execute(
        select(StudentProfile.id).where(
            StudentProfile.classroom_id == mission.classroom_id,
            StudentProfile.is_active.is_(True),
        )
    )
    return await assign_mission(db, mission_id, list(result.scalars().all()), now=now)


async def expire_old_missions(db: AsyncSession, now: datetime | None = None) -> int:
    """Move ACTIVE assignments past their expiry to EXPIRED. Returns the count."""
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        update(StudentMission)
        .where(
            StudentMission.status == MissionStatus.ACTIVE,
            StudentMission.expires_at.is_not(None),
            StudentMission.expires_at < now,
        )
        .values(status=MissionStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d student missions", expired)
    return expired


async def get_student_missions(
    db: AsyncSession,
    student_id: int,
    status: str | None = None,
) -> list[StudentMission]:
    stmt = select(StudentMission).where(StudentMission.student_id == student_id)
    if status is not None:
        stmt = stmt.where(StudentMission.status == status)
    result = await db.execute(stmt.order_by(StudentMission.assigned_at.desc()))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


async def update_mission_progress(
    db: AsyncSession,
    student: StudentProfile,
    objective_type: str,
    amount: int = 1,
    config: dict[str, Any] | None = None,
    notifications: NotificationBatch | None = None,
    now: datetime | None = None,
) -> MissionProgressResult:
    """Advance the student's ACTIVE missions of ``objective_type`` by ``amount``.

    Progress is capped at the target. A mission reaching it becomes
    COMPLETED, advances the daily streak and notifies the student. Missions
    that are not ACTIVE are never selected, so completion happens once.
    """
    outcome = MissionProgressResult()
    if amount <= 0:
        return outcome

    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        select(StudentMission)
        .join(Mission, StudentMission.mission_id == Mission.id)
        .where(
            StudentMission.student_id == student.id,
            StudentMission.status == MissionStatus.ACTIVE,
            Mission.objective_type == objective_type,
        )
        .order_by(StudentMission.id)
    )

    for student_mission in result.scalars().all():
        mission = student_mission.mission
        if not matches_objective_config(mission.objective_config, config):
            continue

        student_mission.current_progress = min(
            student_mission.current_progress + amount,
            student_mission.target_progress,
        )
        outcome.updated.append(student_mission)

        if student_mission.current_progress >= student_mission.target_progress:
            student_mission.status = MissionStatus.COMPLETED
            student_mission.completed_at = now
            outcome.completed.append(student_mission)

    if not outcome.updated:
        return outcome

    await db.flush()

    for student_mission in outcome.completed:
        mission = student_mission.mission
        await update_streak(db, student.id, mission.classroom_id, now=now)

        notification = build_mission_completed_notification(student, mission, now=now)
        if notifications is not None:
            notifications.add(notification)
        elif notification is not None:
            db.add(notification)

    if outcome.completed and notifications is None:
        await db.flush()

    return outcome
