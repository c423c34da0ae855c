"""ORM models for the progression engine.

Classroom, Behavior, Mission and Badge rows are definitions the engine only
reads. StudentProfile, Team, StudentMission, the streak tables and
StudentBadge are mutated by the engine; PointLog, ClanLog and Notification
are append-only.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from classquest.db.base import Base
from classquest.db.enums import BadgeAssignment, BadgeScope, MissionStatus, MissionType, PointType, TimedActivityMode


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Classroom configuration
# ---------------------------------------------------------------------------


class Classroom(Base):
    """Per-classroom point, clan, notification and streak settings."""

    __tablename__ = "classrooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    teacher_id: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    # --- Points ---
    xp_per_level: Mapped[int] = mapped_column(Integer, default=100, server_default="100")
    max_hp: Mapped[int] = mapped_column(Integer, default=100, server_default="100")
    allow_negative_hp: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())

    # --- Notifications ---
    notify_on_points: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    show_reason_to_student: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    # --- Clans ---
    clans_enabled: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    clan_xp_percentage: Mapped[int] = mapped_column(Integer, default=50, server_default="50")

    # --- Login streak ---
    login_streak_enabled: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    login_streak_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Team(Base):
    """A clan: shared XP pool for a group of students in one classroom."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    max_members: Mapped[int] = mapped_column(Integer, default=5, server_default="5")
    total_xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_gp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class StudentProfile(Base):
    """A student's character in one classroom. user_id is NULL for placeholder students."""

    __tablename__ = "student_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    team_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    character_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    hp: Mapped[int] = mapped_column(Integer, default=100, server_default="100")
    gp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def label(self) -> str:
        return self.character_name or self.display_name or "A student"


class Behavior(Base):
    """Reusable point-award template.

    point_type/point_value is the legacy single-currency representation;
    xp_value/hp_value/gp_value override it per currency when set.
    """

    __tablename__ = "behaviors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    point_type: Mapped[str] = mapped_column(String(2), default=PointType.XP, server_default=PointType.XP)
    point_value: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    xp_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hp_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gp_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_positive: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# Append-only logs
# ---------------------------------------------------------------------------


class PointLog(Base):
    """Immutable audit entry: one row per currency changed by one grant."""

    __tablename__ = "point_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    behavior_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("behaviors.id"), nullable=True, index=True)
    point_type: Mapped[str] = mapped_column(String(2), nullable=False)
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    given_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ClanLog(Base):
    """Clan contribution and membership history."""

    __tablename__ = "clan_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    clan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    gp_amount: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Notification(Base):
    """In-app notification row. Created here, read and marked read elsewhere."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    classroom_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# Missions & streaks
# ---------------------------------------------------------------------------


class Mission(Base):
    """Goal definition: reach objective_target on objective_type counters."""

    __tablename__ = "missions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", server_default="")
    type: Mapped[str] = mapped_column(String(16), default=MissionType.DAILY, server_default=MissionType.DAILY)
    objective_type: Mapped[str] = mapped_column(String(50), nullable=False)
    objective_target: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    objective_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reward_xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reward_gp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reward_hp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class StudentMission(Base):
    """A mission assigned to one student. ACTIVE -> COMPLETED -> CLAIMED, or ACTIVE -> EXPIRED."""

    __tablename__ = "student_missions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mission_id: Mapped[int] = mapped_column(Integer, ForeignKey("missions.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default=MissionStatus.ACTIVE, server_default=MissionStatus.ACTIVE, index=True
    )
    current_progress: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    target_progress: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    mission: Mapped[Mission] = relationship("Mission", lazy="joined")


class StudentStreak(Base):
    """Consecutive days with at least one completed mission."""

    __tablename__ = "student_streaks"
    __table_args__ = (
        UniqueConstraint("student_id", "classroom_id", name="student_streaks_student_classroom_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False
    )
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    streak_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_milestones: Mapped[list[int]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LoginStreak(Base):
    """Consecutive daily logins with milestone rewards."""

    __tablename__ = "login_streaks"
    __table_args__ = (
        UniqueConstraint("student_id", "classroom_id", name="login_streaks_student_classroom_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False
    )
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_logins: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    claimed_milestones: Mapped[list[int]] = mapped_column(JSON, default=list)
    grace_days_used: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    """Collectible with an optional automatic unlock condition (JSON tagged variant)."""

    __tablename__ = "badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(16), default=BadgeScope.CLASSROOM, server_default=BadgeScope.CLASSROOM)
    classroom_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=True
    )
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="", server_default="")
    icon: Mapped[str] = mapped_column(String(50), default="medal", server_default="medal")
    category: Mapped[str] = mapped_column(String(16), default="PROGRESS", server_default="PROGRESS")
    rarity: Mapped[str] = mapped_column(String(16), default="COMMON", server_default="COMMON")
    assignment_mode: Mapped[str] = mapped_column(
        String(16), default=BadgeAssignment.AUTOMATIC, server_default=BadgeAssignment.AUTOMATIC
    )
    unlock_condition: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reward_xp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reward_gp: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_secret: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class StudentBadge(Base):
    """A badge owned by a student. At most one row per (student, badge)."""

    __tablename__ = "student_badges"
    __table_args__ = (
        UniqueConstraint("student_id", "badge_id", name="student_badges_student_badge_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False
    )
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    awarded_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    award_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)


# ---------------------------------------------------------------------------
# Timed activities
# ---------------------------------------------------------------------------


class TimedActivity(Base):
    """Classroom stopwatch / timer / bomb activity that awards points on completion."""

    __tablename__ = "timed_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    classroom_id: Mapped[int] = mapped_column(Integer, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(
        String(16), default=TimedActivityMode.STOPWATCH, server_default=TimedActivityMode.STOPWATCH
    )
    time_limit_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    behavior_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("behaviors.id"), nullable=True)
    base_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    point_type: Mapped[str] = mapped_column(String(2), default=PointType.XP, server_default=PointType.XP)
    use_multipliers: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    multiplier_50: Mapped[int | None] = mapped_column(Integer, nullable=True)
    multiplier_75: Mapped[int | None] = mapped_column(Integer, nullable=True)
    negative_behavior_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("behaviors.id"), nullable=True)
    bomb_penalty_points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bomb_penalty_type: Mapped[str] = mapped_column(String(2), default=PointType.HP, server_default=PointType.HP)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class TimedActivityResult(Base):
    """Per-student outcome of a timed activity."""

    __tablename__ = "timed_activity_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("timed_activities.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("student_profiles.id", ondelete="CASCADE"), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    elapsed_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    multiplier_applied: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)
    was_exploded: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    penalty_applied: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
