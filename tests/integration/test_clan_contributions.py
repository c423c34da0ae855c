"""Clan XP contributions driven by point grants."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from classquest.db.enums import ClanAction, PointAction, PointType
from classquest.db.models import ClanLog, Team
from classquest.events.behavior_service import adjust_points, apply_behavior_to_students
from classquest.progression.clan_service import get_contributed_total

TEACHER_ID = 900
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


async def _clan_logs(db, team_id):
    result = await db.execute(select(ClanLog).where(ClanLog.clan_id == team_id).order_by(ClanLog.id))
    return list(result.scalars().all())


class TestClanContributions:
    @pytest.mark.asyncio
    async def test_half_of_behavior_xp(self, db_session, make):
        classroom = await make.classroom(clans_enabled=True, clan_xp_percentage=50)
        team = await make.team(classroom)
        student = await make.student(classroom, team_id=team.id)
        behavior = await make.behavior(classroom, point_value=10)

        application = await apply_behavior_to_students(db_session, behavior.id, [student.id], TEACHER_ID, now=NOW)

        assert application.results[0].clan_contribution == 5
        assert (await db_session.get(Team, team.id)).total_xp == 5
        [log] = await _clan_logs(db_session, team.id)
        assert (log.action, log.student_id, log.xp_amount, log.reason) == (
            ClanAction.XP_CONTRIBUTED,
            student.id,
            5,
            behavior.name,
        )

    @pytest.mark.asyncio
    async def test_tiny_share_writes_nothing(self, db_session, make):
        classroom = await make.classroom(clans_enabled=True, clan_xp_percentage=4)
        team = await make.team(classroom)
        student = await make.student(classroom, team_id=team.id)
        behavior = await make.behavior(classroom, point_value=10)

        application = await apply_behavior_to_students(db_session, behavior.id, [student.id], TEACHER_ID, now=NOW)

        assert application.results[0].clan_contribution == 0
        assert (await db_session.get(Team, team.id)).total_xp == 0
        assert await _clan_logs(db_session, team.id) == []

    @pytest.mark.asyncio
    async def test_only_xp_gains_contribute(self, db_session, make):
        classroom = await make.classroom(clans_enabled=True)
        team = await make.team(classroom)
        student = await make.student(classroom, team_id=team.id, xp=100, gp=10)

        await adjust_points(db_session, student.id, TEACHER_ID, PointType.XP, PointAction.REMOVE, 20, "x", now=NOW)
        await adjust_points(
            db_session, student.id, TEACHER_ID, PointType.GP, PointAction.ADD, 20, "x", now=NOW + timedelta(seconds=1)
        )

        assert await _clan_logs(db_session, team.id) == []

    @pytest.mark.asyncio
    async def test_clans_disabled(self, db_session, make):
        classroom = await make.classroom(clans_enabled=False)
        team = await make.team(classroom)
        student = await make.student(classroom, team_id=team.id)
        behavior = await make.behavior(classroom, point_value=10)

        await apply_behavior_to_students(db_session, behavior.id, [student.id], TEACHER_ID, now=NOW)

        assert await _clan_logs(db_session, team.id) == []

    @pytest.mark.asyncio
    async def test_student_without_team(self, db_session, make):
        classroom = await make.classroom(clans_enabled=True)
        student = await make.student(classroom)
        behavior = await make.behavior(classroom, point_value=10)

        application = await apply_behavior_to_students(db_session, behavior.id, [student.id], TEACHER_ID, now=NOW)

        assert application.results[0].clan_contribution == 0

    @pytest.mark.asyncio
    async def test_total_matches_log_sum(self, db_session, make):
        classroom = await make.classroom(clans_enabled=True, clan_xp_percentage=30)
        team = await make.team(classroom)
        members = [await make.student(classroom, team_id=team.id, character_name=n) for n in ("Aria", "Bo")]
        behavior = await make.behavior(classroom, point_value=7)

        for offset in range(3):
            await apply_behavior_to_students(
                db_session, behavior.id, [m.id for m in members], TEACHER_ID, now=NOW + timedelta(seconds=offset)
            )

        team = await db_session.get(Team, team.id)
        assert team.total_xp == 12
        assert await get_contributed_total(db_session, team.id) == team.total_xp
