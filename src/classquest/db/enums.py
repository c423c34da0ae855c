"""String values stored in enum-like columns."""

from __future__ import annotations


class PointType:
    XP = "XP"
    HP = "HP"
    GP = "GP"

    ALL = (XP, HP, GP)


class PointAction:
    ADD = "ADD"
    REMOVE = "REMOVE"


class ClanAction:
    XP_CONTRIBUTED = "XP_CONTRIBUTED"
    MEMBER_JOINED = "MEMBER_JOINED"
    MEMBER_LEFT = "MEMBER_LEFT"


class MissionType:
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    SPECIAL = "SPECIAL"


class MissionStatus:
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class ObjectiveType:
    EARN_XP = "EARN_XP"
    EARN_GP = "EARN_GP"
    RECEIVE_BEHAVIOR = "RECEIVE_BEHAVIOR"
    CUSTOM = "CUSTOM"


class BadgeScope:
    SYSTEM = "SYSTEM"
    CLASSROOM = "CLASSROOM"


class BadgeAssignment:
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    BOTH = "BOTH"


class NotificationType:
    POINTS = "POINTS"
    LEVEL_UP = "LEVEL_UP"
    BADGE = "BADGE"
    MISSION_COMPLETED = "MISSION_COMPLETED"


class TimedActivityMode:
    STOPWATCH = "STOPWATCH"
    TIMER = "TIMER"
    BOMB = "BOMB"
    BOMB_RANDOM = "BOMB_RANDOM"

    BOMB_MODES = (BOMB, BOMB_RANDOM)
