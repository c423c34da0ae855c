"""Notification builders for progression events.

Builders return unsaved ``Notification`` rows (or nothing when the recipient
has no account or the classroom mutes the event). Callers collect them in a
``NotificationBatch`` and insert once per operation.

Types: POINTS, LEVEL_UP, MISSION_COMPLETED, BADGE
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.enums import NotificationType
from classquest.db.models import Badge, Classroom, Mission, Notification, StudentProfile
from classquest.progression.points import PointDelta

logger = logging.getLogger(__name__)


class NotificationBatch:
    """Notifications staged during one operation, written with a single insert."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def add(self, notification: Notification | None) -> None:
        if notification is not None:
            self._items.append(notification)

    def extend(self, notifications: list[Notification]) -> None:
        self._items.extend(notifications)

    def mark(self) -> int:
        return len(self._items)

    def rollback_to(self, mark: int) -> None:
        """Drop everything staged after ``mark``."""
        del self._items[mark:]

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    async def flush(self, db: AsyncSession) -> int:
        """Insert all staged rows. Returns how many were written."""
        count = len(self._items)
        if count:
            db.add_all(self._items)
            await db.flush()
            self._items = []
        return count


def _make(
    user_id: int,
    classroom_id: int | None,
    type_: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Notification:
    return Notification(
        user_id=user_id,
        classroom_id=classroom_id,
        type=type_,
        title=title,
        message=message,
        data=data,
        is_read=False,
        created_at=now or datetime.now(timezone.utc),
    )


def format_points(delta: PointDelta, signed: bool = False) -> str:
    """'30 XP, 5 HP', or '+5 XP, -20 HP' when ``signed``."""
    parts = [
        f"{amount:+d} {point_type}" if signed else f"{abs(amount)} {point_type}"
        for point_type, amount in delta.items()
        if amount != 0
    ]
    return ", ".join(parts)


def build_points_notification(
    student: StudentProfile,
    classroom: Classroom,
    delta: PointDelta,
    reason: str | None,
    now: datetime | None = None,
) -> Notification | None:
    """Points received, lost or changed both ways. Respects notify_on_points and show_reason_to_student."""
    if student.user_id is None or not classroom.notify_on_points or delta.is_zero:
        return None

    amounts = [amount for _, amount in delta.items() if amount != 0]
    if all(amount > 0 for amount in amounts):
        title = "Points received"
        message = f"You received {format_points(delta)}"
    elif all(amount < 0 for amount in amounts):
        title = "Points lost"
        message = f"You lost {format_points(delta)}"
    else:
        title = "Points updated"
        message = f"Your points changed: {format_points(delta, signed=True)}"
    if reason and classroom.show_reason_to_student:
        message += f" for: {reason}"

    return _make(
        student.user_id,
        classroom.id,
        NotificationType.POINTS,
        title,
        message,
        data={"student_id": student.id, **delta.as_dict()},
        now=now,
    )


def build_level_up_notifications(
    student: StudentProfile,
    classroom: Classroom,
    old_level: int,
    new_level: int,
    now: datetime | None = None,
) -> list[Notification]:
    """Level-up for the student's account and for the classroom teacher."""
    data = {"student_id": student.id, "old_level": old_level, "new_level": new_level}
    rows = []
    if student.user_id is not None:
        rows.append(_make(
            student.user_id,
            classroom.id,
            NotificationType.LEVEL_UP,
            "Level up!",
            f"Congratulations! You reached level {new_level}",
            data=data,
            now=now,
        ))
    rows.append(_make(
        classroom.teacher_id,
        classroom.id,
        NotificationType.LEVEL_UP,
        "A student levelled up",
        f"{student.label} reached level {new_level}",
        data=data,
        now=now,
    ))
    return rows


def build_mission_completed_notification(
    student: StudentProfile,
    mission: Mission,
    now: datetime | None = None,
) -> Notification | None:
    if student.user_id is None:
        return None
    return _make(
        student.user_id,
        mission.classroom_id,
        NotificationType.MISSION_COMPLETED,
        "Mission completed!",
        f'You completed the mission "{mission.name}". Claim your reward!',
        data={"student_id": student.id, "mission_id": mission.id},
        now=now,
    )


def build_badge_notifications(
    student: StudentProfile,
    classroom: Classroom,
    badge: Badge,
    now: datetime | None = None,
) -> list[Notification]:
    """Badge unlocked, for the student's account and for the teacher."""
    data = {"student_id": student.id, "badge_id": badge.id}
    rows = []
    if student.user_id is not None:
        rows.append(_make(
            student.user_id,
            classroom.id,
            NotificationType.BADGE,
            "Badge unlocked!",
            f'You earned the badge "{badge.name}"',
            data=data,
            now=now,
        ))
    rows.append(_make(
        classroom.teacher_id,
        classroom.id,
        NotificationType.BADGE,
        "Badge unlocked",
        f'{student.label} earned the badge "{badge.name}"',
        data=data,
        now=now,
    ))
    return rows


def build_streak_milestone_notification(
    student: StudentProfile,
    classroom: Classroom,
    days: int,
    xp: int,
    gp: int,
    random_item: bool = False,
    now: datetime | None = None,
) -> Notification | None:
    if student.user_id is None:
        return None

    reward = f"+{xp} XP"
    if gp > 0:
        reward += f", +{gp} GP"
    if random_item:
        reward += " + surprise item"

    return _make(
        student.user_id,
        classroom.id,
        NotificationType.BADGE,
        f"{days}-day streak!",
        f"You kept your streak for {days} days. Reward: {reward}",
        data={"student_id": student.id, "streak_days": days},
        now=now,
    )
