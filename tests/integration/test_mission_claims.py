"""Mission reward claims and mission streak milestones."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from classquest.db.enums import MissionStatus, ObjectiveType
from classquest.db.models import PointLog, StudentProfile
from classquest.errors import InvalidInputError, NotFoundError
from classquest.events.mission_rewards import claim_mission_reward, claim_streak_reward
from classquest.progression.mission_service import update_mission_progress
from classquest.progression.streak_service import get_student_streak, update_streak

DAY_1 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _day(n):
    return DAY_1 + timedelta(days=n - 1)


async def _reasons(db, student_id):
    result = await db.execute(select(PointLog.reason).where(PointLog.student_id == student_id).order_by(PointLog.id))
    return list(result.scalars().all())


class TestClaimMissionReward:
    @pytest.mark.asyncio
    async def test_claim_pays_reward_once(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom, hp=90)
        mission = await make.mission(classroom, name="Read a chapter", reward_xp=20, reward_gp=5, reward_hp=20)
        student_mission = await make.student_mission(
            student, mission, status=MissionStatus.COMPLETED, current_progress=5
        )

        grant = await claim_mission_reward(db_session, student_mission.id, student.id, now=_day(1))

        assert grant.delta.as_dict() == {"xp": 20, "hp": 20, "gp": 5}
        assert student_mission.status == MissionStatus.CLAIMED
        assert student_mission.claimed_at is not None
        refreshed = await db_session.get(StudentProfile, student.id)
        assert (refreshed.xp, refreshed.hp, refreshed.gp) == (20, 100, 5)
        assert set(await _reasons(db_session, student.id)) == {"Mission completed: Read a chapter"}

        with pytest.raises(InvalidInputError):
            await claim_mission_reward(db_session, student_mission.id, student.id, now=_day(1))

    @pytest.mark.asyncio
    async def test_active_mission_cannot_be_claimed(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        student_mission = await make.student_mission(student, await make.mission(classroom, reward_xp=10))

        with pytest.raises(InvalidInputError):
            await claim_mission_reward(db_session, student_mission.id, student.id)

    @pytest.mark.asyncio
    async def test_other_students_mission(self, db_session, make):
        classroom = await make.classroom()
        owner = await make.student(classroom)
        intruder = await make.student(classroom, character_name="Bo")
        student_mission = await make.student_mission(
            owner, await make.mission(classroom, reward_xp=10), status=MissionStatus.COMPLETED
        )

        with pytest.raises(NotFoundError):
            await claim_mission_reward(db_session, student_mission.id, intruder.id)

    @pytest.mark.asyncio
    async def test_mission_without_reward(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        student_mission = await make.student_mission(
            student, await make.mission(classroom), status=MissionStatus.COMPLETED
        )

        assert await claim_mission_reward(db_session, student_mission.id, now=_day(1)) is None
        assert student_mission.status == MissionStatus.CLAIMED

    @pytest.mark.asyncio
    async def test_reward_xp_feeds_other_missions(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        done = await make.student_mission(
            student, await make.mission(classroom, reward_xp=10), status=MissionStatus.COMPLETED
        )
        earn_20 = await make.mission(classroom, name="Earn 20", objective_target=20)
        pending = await make.student_mission(student, earn_20)

        await claim_mission_reward(db_session, done.id, now=_day(1))

        assert pending.current_progress == 10


class TestMissionStreaks:
    @pytest.mark.asyncio
    async def test_consecutive_days_extend_streak(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)

        for n in (1, 2, 3):
            await update_streak(db_session, student.id, classroom.id, now=_day(n))
        await update_streak(db_session, student.id, classroom.id, now=_day(3) + timedelta(hours=5))

        streak = await get_student_streak(db_session, student.id, classroom.id)
        assert (streak.current_streak, streak.longest_streak) == (3, 3)

    @pytest.mark.asyncio
    async def test_gap_restarts_streak(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)

        for n in (1, 2, 5):
            await update_streak(db_session, student.id, classroom.id, now=_day(n))

        streak = await get_student_streak(db_session, student.id, classroom.id)
        assert (streak.current_streak, streak.longest_streak) == (1, 2)

    @pytest.mark.asyncio
    async def test_completions_on_consecutive_days(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        mission = await make.mission(classroom, objective_target=1)

        for n in (1, 2):
            await make.student_mission(student, mission)
            await update_mission_progress(db_session, student, ObjectiveType.EARN_XP, 1, now=_day(n))

        streak = await get_student_streak(db_session, student.id, classroom.id)
        assert streak.current_streak == 2

    @pytest.mark.asyncio
    async def test_claim_milestone_once(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        for n in (1, 2, 3):
            await update_streak(db_session, student.id, classroom.id, now=_day(n))

        grant = await claim_streak_reward(db_session, student.id, classroom.id, 3, now=_day(3))

        assert grant.delta.xp == 10
        assert await _reasons(db_session, student.id) == ["3-day mission streak"]
        streak = await get_student_streak(db_session, student.id, classroom.id)
        assert streak.claimed_milestones == [3]

        with pytest.raises(InvalidInputError):
            await claim_streak_reward(db_session, student.id, classroom.id, 3, now=_day(3))

    @pytest.mark.asyncio
    async def test_milestone_not_reached(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        await update_streak(db_session, student.id, classroom.id, now=_day(1))

        with pytest.raises(InvalidInputError):
            await claim_streak_reward(db_session, student.id, classroom.id, 7, now=_day(1))

    @pytest.mark.asyncio
    async def test_unknown_milestone(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        with pytest.raises(InvalidInputError):
            await claim_streak_reward(db_session, student.id, classroom.id, 4)

    @pytest.mark.asyncio
    async def test_no_streak_yet(self, db_session, make):
        classroom = await make.classroom()
        student = await make.student(classroom)
        with pytest.raises(NotFoundError):
            await claim_streak_reward(db_session, student.id, classroom.id, 3)
