"""Level computation on a triangular XP curve.

Reaching level N requires ``xp_per_level * N * (N - 1) / 2`` total XP, so each
level costs ``xp_per_level`` more than the one before it (100, 200, 300, ...
for the default of 100).
"""

from __future__ import annotations

import math

from classquest.config import get_settings
from classquest.db.models import Classroom, StudentProfile


def xp_for_level(level: int, xp_per_level: int) -> int:
    """Total XP needed to reach ``level``."""
    if level <= 1:
        return 0
    return xp_per_level * level * (level - 1) // 2


def compute_level(xp: int, xp_per_level: int) -> int:
    """Return the level for ``xp`` total XP. Never below 1."""
    if xp_per_level <= 0:
        msg = f"xp_per_level must be positive, got {xp_per_level}"
        raise ValueError(msg)
    if xp <= 0:
        return 1

    level = int((1 + math.sqrt(1 + 8 * xp / xp_per_level)) // 2)

    # Float estimate can be off by one near a boundary; settle it with integers.
    while level > 1 and xp_per_level * level * (level - 1) > 2 * xp:
        level -= 1
    while xp_per_level * (level + 1) * level <= 2 * xp:
        level += 1

    return max(level, 1)


def level_progress(xp: int, xp_per_level: int) -> dict:
    """Level info for progress bars."""
    level = compute_level(xp, xp_per_level)
    current_floor = xp_for_level(level, xp_per_level)
    next_floor = xp_for_level(level + 1, xp_per_level)

    return {
        "level": level,
        "xp_into_level": max(xp, 0) - current_floor,
        "xp_for_level": next_floor - current_floor,
        "next_level": level + 1,
        "next_level_xp": next_floor,
    }


def effective_xp_per_level(classroom: Classroom) -> int:
    """Classroom curve parameter, or the configured default when unset."""
    return classroom.xp_per_level or get_settings().default_xp_per_level


def check_level_up(student: StudentProfile, classroom: Classroom, xp_delta: int) -> tuple[int, int] | None:
    """Raise the student's stored level after an XP gain.

    Returns ``(old_level, new_level)`` on a level-up. Levels never go down,
    and XP losses never trigger a recomputation.
    """
    if xp_delta <= 0:
        return None

    old_level = student.level
    new_level = compute_level(student.xp, effective_xp_per_level(classroom))
    if new_level <= old_level:
        return None

    student.level = new_level
    return old_level, new_level
