"""Clan XP contributions: a share of each member's XP gain feeds the clan total."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.db.enums import ClanAction
from classquest.db.models import ClanLog, Classroom, StudentProfile, Team
from classquest.progression.points import round_half_up

logger = logging.getLogger(__name__)


def compute_clan_contribution(xp_amount: int, clan_xp_percentage: int) -> int:
    """Clan share of an XP gain.

    Shares below half a point contribute nothing; any other share rounds
    half up and is at least 1.
    """
    if xp_amount <= 0 or clan_xp_percentage <= 0:
        return 0
    raw = xp_amount * clan_xp_percentage / 100
    if raw < 0.5:
        return 0
    return max(1, round_half_up(raw))


async def contribute_xp_to_clan(
    db: AsyncSession,
    student: StudentProfile,
    classroom: Classroom,
    xp_amount: int,
    reason: str | None,
    now: datetime | None = None,
) -> int:
    """Add the student's clan share of ``xp_amount`` to their team.

    Returns the contribution, 0 when clans are off, the student has no team
    or the share rounds to nothing.
    """
    if not classroom.clans_enabled or student.team_id is None:
        return 0

    contribution = compute_clan_contribution(xp_amount, classroom.clan_xp_percentage)
    if contribution == 0:
        return 0

    team = await db.get(Team, student.team_id)
    if team is None:
        logger.warning("Student %s references missing team %s", student.id, student.team_id)
        return 0

    if now is None:
        now = datetime.now(timezone.utc)

    team.total_xp += contribution
    team.updated_at = now
    db.add(ClanLog(
        clan_id=team.id,
        student_id=student.id,
        action=ClanAction.XP_CONTRIBUTED,
        xp_amount=contribution,
        reason=reason,
        created_at=now,
    ))
    await db.flush()

    return contribution


async def get_contributed_total(db: AsyncSession, team_id: int) -> int:
    """Sum of every XP_CONTRIBUTED log for a clan. Equals ``Team.total_xp``."""
    result = await db.execute(
        select(func.coalesce(func.sum(ClanLog.xp_amount), 0)).where(
            ClanLog.clan_id == team_id,
            ClanLog.action == ClanAction.XP_CONTRIBUTED,
        )
    )
    return int(result.scalar_one())
