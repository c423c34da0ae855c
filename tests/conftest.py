"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

import classquest.db.models  # noqa: F401  (registers tables on Base.metadata)
from classquest.config import Settings
from classquest.database import close_db, get_engine, get_session, init_db
from classquest.db.base import Base
from classquest.db.enums import BadgeAssignment, BadgeScope, MissionStatus, MissionType, PointType, TimedActivityMode
from classquest.db.models import (
    Badge,
    Behavior,
    Classroom,
    Mission,
    StudentMission,
    StudentProfile,
    Team,
    TimedActivity,
)
from classquest.logging_config import setup_logging

TEACHER_ID = 900
BADGE_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class Factory:
    """Row builders for integration tests. Every row is flushed so it has an id."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._next_user_id = 1000

    async def _save(self, row):
        self.db.add(row)
        await self.db.flush()
        return row

    def next_user_id(self) -> int:
        self._next_user_id += 1
        return self._next_user_id

    async def classroom(self, **kwargs) -> Classroom:
        values = {
            "name": "Class 5A",
            "teacher_id": TEACHER_ID,
            "xp_per_level": 100,
            "max_hp": 100,
            "allow_negative_hp": False,
            "notify_on_points": True,
            "show_reason_to_student": True,
            "clans_enabled": False,
            "clan_xp_percentage": 50,
            "login_streak_enabled": False,
        }
        values.update(kwargs)
        return await self._save(Classroom(**values))

    async def team(self, classroom: Classroom, **kwargs) -> Team:
        values = {"classroom_id": classroom.id, "name": "Dragons", "total_xp": 0, "total_gp": 0}
        values.update(kwargs)
        return await self._save(Team(**values))

    async def student(self, classroom: Classroom, with_account: bool = True, **kwargs) -> StudentProfile:
        values = {
            "classroom_id": classroom.id,
            "user_id": self.next_user_id() if with_account else None,
            "character_name": "Aria",
            "xp": 0,
            "hp": 100,
            "gp": 0,
            "level": 1,
        }
        values.update(kwargs)
        return await self._save(StudentProfile(**values))

    async def behavior(self, classroom: Classroom, **kwargs) -> Behavior:
        values = {
            "classroom_id": classroom.id,
            "name": "Helped a classmate",
            "point_type": PointType.XP,
            "point_value": 10,
            "is_positive": True,
        }
        values.update(kwargs)
        return await self._save(Behavior(**values))

    async def mission(self, classroom: Classroom, **kwargs) -> Mission:
        values = {
            "classroom_id": classroom.id,
            "name": "Earn 5 XP",
            "type": MissionType.DAILY,
            "objective_type": "EARN_XP",
            "objective_target": 5,
            "reward_xp": 0,
            "reward_gp": 0,
            "reward_hp": 0,
        }
        values.update(kwargs)
        return await self._save(Mission(**values))

    async def student_mission(self, student: StudentProfile, mission: Mission, **kwargs) -> StudentMission:
        values = {
            "student_id": student.id,
            "mission_id": mission.id,
            "status": MissionStatus.ACTIVE,
            "current_progress": 0,
            "target_progress": mission.objective_target,
        }
        values.update(kwargs)
        row = await self._save(StudentMission(**values))
        await self.db.refresh(row, ["mission"])
        return row

    async def badge(self, classroom: Classroom | None, unlock_condition: dict | None, **kwargs) -> Badge:
        values = {
            "scope": BadgeScope.CLASSROOM if classroom is not None else BadgeScope.SYSTEM,
            "classroom_id": classroom.id if classroom is not None else None,
            "name": "Centurion",
            "assignment_mode": BadgeAssignment.AUTOMATIC,
            "unlock_condition": unlock_condition,
            "reward_xp": 0,
            "reward_gp": 0,
            "created_at": BADGE_EPOCH,
        }
        values.update(kwargs)
        return await self._save(Badge(**values))

    async def timed_activity(self, classroom: Classroom, **kwargs) -> TimedActivity:
        values = {
            "classroom_id": classroom.id,
            "name": "Speed quiz",
            "mode": TimedActivityMode.TIMER,
            "point_type": PointType.XP,
            "bomb_penalty_type": PointType.HP,
            "use_multipliers": False,
        }
        values.update(kwargs)
        return await self._save(TimedActivity(**values))


@pytest.fixture(scope="session", autouse=True)
def _logging():
    """Render log events the way a deployment would."""
    setup_logging(Settings(log_format="console", log_level="INFO"))


@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """Session on a throw-away SQLite database with the full schema."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'classquest.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sessions = get_session()
    session = await anext(sessions)
    try:
        yield session
    finally:
        await sessions.aclose()
        await close_db()


@pytest_asyncio.fixture
async def make(db_session: AsyncSession) -> Factory:
    return Factory(db_session)
