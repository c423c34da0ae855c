"""Notification builders: recipients, gating and message text."""

from datetime import datetime, timezone

import pytest

from classquest.db.enums import NotificationType
from classquest.db.models import Badge, Classroom, Mission, Notification, StudentProfile
from classquest.progression.notification_service import (
    NotificationBatch,
    build_badge_notifications,
    build_level_up_notifications,
    build_mission_completed_notification,
    build_points_notification,
    build_streak_milestone_notification,
    format_points,
)
from classquest.progression.points import PointDelta

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
TEACHER_ID = 900


def _classroom(**kwargs):
    values = {"id": 1, "teacher_id": TEACHER_ID, "notify_on_points": True, "show_reason_to_student": True}
    values.update(kwargs)
    return Classroom(**values)


def _student(user_id=55):
    return StudentProfile(id=7, classroom_id=1, user_id=user_id, character_name="Aria")


class TestPointsNotification:
    def test_includes_reason_when_shown(self):
        note = build_points_notification(_student(), _classroom(), PointDelta(xp=30, hp=5), "Helping", now=NOW)
        assert note.type == NotificationType.POINTS
        assert note.user_id == 55
        assert note.message == "You received 30 XP, 5 HP for: Helping"
        assert note.is_read is False

    def test_hides_reason_when_configured(self):
        classroom = _classroom(show_reason_to_student=False)
        note = build_points_notification(_student(), classroom, PointDelta(xp=30), "Helping", now=NOW)
        assert note.message == "You received 30 XP"

    def test_loss_message(self):
        note = build_points_notification(_student(), _classroom(), PointDelta(hp=-10), "Late", now=NOW)
        assert note.message == "You lost 10 HP for: Late"

    def test_mixed_delta_shows_each_sign(self):
        note = build_points_notification(_student(), _classroom(), PointDelta(xp=5, hp=-20), "Late", now=NOW)
        assert note.title == "Points updated"
        assert note.message == "Your points changed: +5 XP, -20 HP for: Late"

    def test_muted_classroom_sends_nothing(self):
        classroom = _classroom(notify_on_points=False)
        assert build_points_notification(_student(), classroom, PointDelta(xp=30), "x", now=NOW) is None

    def test_placeholder_student_gets_nothing(self):
        assert build_points_notification(_student(user_id=None), _classroom(), PointDelta(xp=30), "x") is None

    def test_empty_delta_sends_nothing(self):
        assert build_points_notification(_student(), _classroom(), PointDelta(), "x") is None


class TestLevelUpNotifications:
    def test_student_and_teacher(self):
        rows = build_level_up_notifications(_student(), _classroom(), 1, 2, now=NOW)
        assert [row.user_id for row in rows] == [55, TEACHER_ID]
        assert {row.type for row in rows} == {NotificationType.LEVEL_UP}
        assert "level 2" in rows[0].message
        assert "Aria" in rows[1].message

    def test_placeholder_student_only_notifies_teacher(self):
        rows = build_level_up_notifications(_student(user_id=None), _classroom(), 2, 3, now=NOW)
        assert [row.user_id for row in rows] == [TEACHER_ID]


class TestOtherNotifications:
    def test_mission_completed(self):
        mission = Mission(id=3, classroom_id=1, name="Earn 5 XP")
        note = build_mission_completed_notification(_student(), mission, now=NOW)
        assert note.type == NotificationType.MISSION_COMPLETED
        assert '"Earn 5 XP"' in note.message

    def test_mission_completed_without_account(self):
        mission = Mission(id=3, classroom_id=1, name="Earn 5 XP")
        assert build_mission_completed_notification(_student(user_id=None), mission) is None

    def test_badge_goes_to_student_and_teacher(self):
        badge = Badge(id=9, name="Centurion")
        rows = build_badge_notifications(_student(), _classroom(), badge, now=NOW)
        assert [row.user_id for row in rows] == [55, TEACHER_ID]
        assert {row.type for row in rows} == {NotificationType.BADGE}

    def test_streak_milestone_reward_text(self):
        note = build_streak_milestone_notification(_student(), _classroom(), 30, 100, 50, random_item=True, now=NOW)
        assert note.type == NotificationType.BADGE
        assert note.message.endswith("+100 XP, +50 GP + surprise item")

    @pytest.mark.parametrize("delta,expected", [(PointDelta(xp=5, gp=-2), "5 XP, 2 GP"), (PointDelta(hp=3), "3 HP")])
    def test_format_points(self, delta, expected):
        assert format_points(delta) == expected

    def test_format_points_signed(self):
        assert format_points(PointDelta(xp=5, gp=-2), signed=True) == "+5 XP, -2 GP"


class TestNotificationBatch:
    def test_add_skips_none(self):
        batch = NotificationBatch()
        batch.add(None)
        assert len(batch) == 0

    def test_rollback_to_mark(self):
        batch = NotificationBatch()
        batch.add(Notification(user_id=1, type="POINTS", title="a", message="a"))
        mark = batch.mark()
        batch.extend([
            Notification(user_id=2, type="POINTS", title="b", message="b"),
            Notification(user_id=3, type="POINTS", title="c", message="c"),
        ])
        batch.rollback_to(mark)
        assert [n.user_id for n in batch.items] == [1]
