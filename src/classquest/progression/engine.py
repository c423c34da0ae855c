"""Progression engine: ledger, level-up detection and post-grant effects."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.models import Behavior, Classroom, PointLog, StudentProfile
from classquest.errors import InvalidInputError
from classquest.progression.effects import DEFAULT_EFFECTS, Effect, StudentGrant, run_effects
from classquest.progression.levels import check_level_up
from classquest.progression.notification_service import NotificationBatch
from classquest.progression.points import PointDelta, apply_points

logger = structlog.get_logger()


@dataclass(frozen=True)
class PointGrant:
    """A requested change to one student's points."""

    student: StudentProfile
    delta: PointDelta
    reason: str | None
    behavior: Behavior | None = None
    given_by: int | None = None
    badge_event: str = "POINTS_ADDED"


class ProgressionEngine:
    """Applies point grants for one classroom and fans out their side effects.

    A batch runs in three phases: every student's ledger update and level
    check with a single log insert, then each student's effects in order,
    then a single insert of all notifications. The caller commits.
    """

    def __init__(
        self,
        db: AsyncSession,
        classroom: Classroom,
        effects: list[Effect] | None = None,
        now: datetime | None = None,
    ) -> None:
        self.db = db
        self.classroom = classroom
        self.effects = DEFAULT_EFFECTS if effects is None else effects
        self.now = now

    async def grant(
        self,
        student: StudentProfile,
        delta: PointDelta,
        reason: str | None,
        *,
        behavior: Behavior | None = None,
        given_by: int | None = None,
        badge_event: str = "POINTS_ADDED",
    ) -> StudentGrant:
        """Grant ``delta`` to a single student."""
        results = await self.grant_many([
            PointGrant(
                student=student,
                delta=delta,
                reason=reason,
                behavior=behavior,
                given_by=given_by,
                badge_event=badge_event,
            )
        ])
        return results[0]

    async def grant_many(self, grants: list[PointGrant]) -> list[StudentGrant]:
        """Grant a batch. Events logged meanwhile carry the batch id and classroom."""
        batch_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(grant_batch=batch_id, classroom_id=self.classroom.id):
            return await self._grant_many(grants)

    async def _grant_many(self, grants: list[PointGrant]) -> list[StudentGrant]:
        now = self.now or datetime.now(timezone.utc)
        notifications = NotificationBatch()

        for request in grants:
            if request.student.classroom_id != self.classroom.id:
                msg = f"Student {request.student.id} is not in classroom {self.classroom.id}"
                raise InvalidInputError(msg)

        # Phase 1: ledger + level for everyone, one log insert.
        results: list[StudentGrant] = []
        logs: list[PointLog] = []
        for request in grants:
            student_logs = apply_points(
                request.student,
                request.delta,
                self.classroom,
                request.reason,
                behavior_id=request.behavior.id if request.behavior is not None else None,
                given_by=request.given_by,
                now=now,
            )
            level_up = check_level_up(request.student, self.classroom, request.delta.xp)
            logs.extend(student_logs)
            results.append(StudentGrant(
                student=request.student,
                classroom=self.classroom,
                delta=request.delta,
                reason=request.reason,
                now=now,
                notifications=notifications,
                behavior=request.behavior,
                given_by=request.given_by,
                badge_event=request.badge_event,
                logs=student_logs,
                level_up=level_up,
            ))

        self.db.add_all(logs)
        await self.db.flush()

        # Phase 2: per-student effects, each isolated.
        for result in results:
            await run_effects(self.db, result, self.effects)

        # Phase 3: one notification insert.
        await notifications.flush(self.db)

        logger.info(
            "points_granted",
            students=len(results),
            logs=len(logs),
            level_ups=sum(1 for r in results if r.leveled_up),
            failed_effects=sum(len(r.failed_effects) for r in results),
        )
        return results
