"""Point ledger: applies signed XP/HP/GP deltas to a student and logs each change."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from classquest.config import get_settings
from classquest.db.enums import PointAction, PointType
from classquest.db.models import Behavior, Classroom, PointLog, StudentProfile


def round_half_up(value: float) -> int:
    """Round half away from zero (2.5 -> 3, -2.5 -> -3)."""
    magnitude = math.floor(abs(value) + 0.5)
    return -magnitude if value < 0 else magnitude


@dataclass(frozen=True)
class PointDelta:
    """Signed change to each of the three currencies."""

    xp: int = 0
    hp: int = 0
    gp: int = 0

    @classmethod
    def single(cls, point_type: str, amount: int) -> PointDelta:
        if point_type == PointType.XP:
            return cls(xp=amount)
        if point_type == PointType.HP:
            return cls(hp=amount)
        if point_type == PointType.GP:
            return cls(gp=amount)
        msg = f"Unknown point type: {point_type!r}"
        raise ValueError(msg)

    @classmethod
    def from_behavior(cls, behavior: Behavior) -> PointDelta:
        """Normalise a behavior's legacy and per-currency fields into one delta.

        Per-currency values win; a NULL one falls back to the legacy
        ``point_type``/``point_value`` pair for that currency. Negative
        behaviors subtract.
        """
        legacy = cls.single(behavior.point_type, abs(behavior.point_value or 0))
        xp = abs(behavior.xp_value) if behavior.xp_value is not None else legacy.xp
        hp = abs(behavior.hp_value) if behavior.hp_value is not None else legacy.hp
        gp = abs(behavior.gp_value) if behavior.gp_value is not None else legacy.gp

        sign = 1 if behavior.is_positive else -1
        return cls(xp=sign * xp, hp=sign * hp, gp=sign * gp)

    def scaled(self, percent: int) -> PointDelta:
        """Multiply every component by ``percent``/100."""
        return PointDelta(
            xp=round_half_up(self.xp * percent / 100),
            hp=round_half_up(self.hp * percent / 100),
            gp=round_half_up(self.gp * percent / 100),
        )

    def __neg__(self) -> PointDelta:
        return PointDelta(xp=-self.xp, hp=-self.hp, gp=-self.gp)

    def __add__(self, other: PointDelta) -> PointDelta:
        return PointDelta(xp=self.xp + other.xp, hp=self.hp + other.hp, gp=self.gp + other.gp)

    @property
    def is_zero(self) -> bool:
        return not (self.xp or self.hp or self.gp)

    def items(self) -> list[tuple[str, int]]:
        return [(PointType.XP, self.xp), (PointType.HP, self.hp), (PointType.GP, self.gp)]

    def as_dict(self) -> dict[str, int]:
        return {"xp": self.xp, "hp": self.hp, "gp": self.gp}


@dataclass(frozen=True)
class StudentPointsUpdate:
    """The fields the ledger may write on a student profile."""

    xp: int
    hp: int
    gp: int
    updated_at: datetime

    def apply_to(self, student: StudentProfile) -> None:
        student.xp = self.xp
        student.hp = self.hp
        student.gp = self.gp
        student.updated_at = self.updated_at


def clamp_hp(current: int, delta: int, max_hp: int, allow_negative_hp: bool) -> int:
    """New HP after ``delta``.

    Gains cap at ``max_hp``; losses floor at 0 unless negative HP is allowed.
    """
    new_hp = current + delta
    if delta > 0:
        return min(new_hp, max_hp)
    if delta < 0 and not allow_negative_hp:
        return max(new_hp, 0)
    return new_hp


def compute_points_update(
    student: StudentProfile,
    delta: PointDelta,
    classroom: Classroom,
    now: datetime,
) -> StudentPointsUpdate:
    """Pure part of the ledger: the student's balances after ``delta``."""
    max_hp = classroom.max_hp if classroom.max_hp is not None else get_settings().default_max_hp
    return StudentPointsUpdate(
        xp=student.xp + delta.xp,
        hp=clamp_hp(student.hp, delta.hp, max_hp, classroom.allow_negative_hp),
        gp=student.gp + delta.gp,
        updated_at=now,
    )


def build_point_logs(
    student_id: int,
    delta: PointDelta,
    reason: str | None,
    now: datetime,
    behavior_id: int | None = None,
    given_by: int | None = None,
) -> list[PointLog]:
    """One log per non-zero component, all sharing reason and timestamp."""
    return [
        PointLog(
            student_id=student_id,
            behavior_id=behavior_id,
            point_type=point_type,
            action=PointAction.ADD if amount > 0 else PointAction.REMOVE,
            amount=abs(amount),
            reason=reason,
            given_by=given_by,
            created_at=now,
        )
        for point_type, amount in delta.items()
        if amount != 0
    ]


def apply_points(
    student: StudentProfile,
    delta: PointDelta,
    classroom: Classroom,
    reason: str | None,
    *,
    behavior_id: int | None = None,
    given_by: int | None = None,
    now: datetime | None = None,
) -> list[PointLog]:
    """Apply ``delta`` to ``student`` and return the log rows to insert.

    Does not add the logs to the session so batch callers can insert every
    student's logs in one write.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    compute_points_update(student, delta, classroom, now).apply_to(student)
    return build_point_logs(student.id, delta, reason, now, behavior_id=behavior_id, given_by=given_by)
