"""Pydantic models for badge conditions, streak configuration and results."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


# --- Badge unlock conditions ---


class XpTotalCondition(BaseModel):
    type: Literal["XP_TOTAL"]
    value: int


class LevelCondition(BaseModel):
    type: Literal["LEVEL"]
    value: int


class BehaviorCountCondition(BaseModel):
    type: Literal["BEHAVIOR_COUNT"]
    behavior_id: int
    count: int


class BehaviorCategoryCondition(BaseModel):
    type: Literal["BEHAVIOR_CATEGORY"]
    category: Literal["positive", "negative"]
    count: int


class AnyBehaviorCondition(BaseModel):
    type: Literal["ANY_BEHAVIOR"]
    count: int


class PurchasesCondition(BaseModel):
    type: Literal["PURCHASES"]
    value: int


class CompoundCondition(BaseModel):
    type: Literal["COMPOUND"]
    operator: Literal["AND", "OR"] = "AND"
    conditions: list[UnlockCondition]


UnlockCondition = Annotated[
    Union[
        XpTotalCondition,
        LevelCondition,
        BehaviorCountCondition,
        BehaviorCategoryCondition,
        AnyBehaviorCondition,
        PurchasesCondition,
        CompoundCondition,
    ],
    Field(discriminator="type"),
]

CompoundCondition.model_rebuild()

unlock_condition_adapter: TypeAdapter[UnlockCondition] = TypeAdapter(UnlockCondition)


# --- Badge events ---


class BadgeEvent(BaseModel):
    """What just happened to a student, for badge evaluation."""

    type: Literal["BEHAVIOR_APPLIED", "POINTS_ADDED", "LEVEL_UP", "PURCHASE", "MANUAL_CHECK"]
    student_id: int
    classroom_id: int
    behavior_id: int | None = None
    behavior_type: Literal["positive", "negative"] | None = None
    purchase_count: int | None = None


class BadgeProgress(BaseModel):
    badge_id: int
    name: str
    icon: str
    rarity: str
    is_unlocked: bool
    unlocked_at: datetime | None = None
    current: int = 0
    target: int = 0
    percentage: int = 0


# --- Login streak ---


class LoginMilestone(BaseModel):
    day: int
    xp: int = 0
    gp: int = 0
    random_item: bool = False


class LoginStreakConfig(BaseModel):
    daily_xp: int = 5
    milestones: list[LoginMilestone] = Field(
        default_factory=lambda: [
            LoginMilestone(day=3, xp=10, gp=0),
            LoginMilestone(day=7, xp=25, gp=10),
            LoginMilestone(day=14, xp=50, gp=25),
            LoginMilestone(day=30, xp=100, gp=50, random_item=True),
            LoginMilestone(day=60, xp=200, gp=100, random_item=True),
        ]
    )
    reset_on_miss: bool = True
    grace_days: int = 0


class NextMilestone(BaseModel):
    day: int
    xp: int
    gp: int
    random_item: bool
    days_remaining: int


class StreakState(BaseModel):
    current_streak: int
    longest_streak: int
    total_logins: int
    last_login_at: datetime | None = None
    claimed_milestones: list[int] = []


class LoginRewards(BaseModel):
    daily_xp: int
    milestone_reached: int | None = None
    milestone_xp: int = 0
    milestone_gp: int = 0
    random_item: bool = False


class LoginStreakResult(BaseModel):
    streak: StreakState
    rewards: LoginRewards | None = None
    is_new_login: bool
    next_milestone: NextMilestone | None = None
    leveled_up: bool = False


class LoginStreakStatus(BaseModel):
    enabled: bool
    streak: StreakState | None = None
    daily_xp: int = 0
    milestones: list[LoginMilestone] = []
    next_milestone: NextMilestone | None = None
    can_claim_today: bool = False


# --- Timed activities ---


class TimedActivityOutcome(BaseModel):
    activity_id: int
    student_id: int
    elapsed_seconds: int | None = None
    multiplier: int = 100
    points: dict[str, int] = {}
    was_exploded: bool = False
    leveled_up: bool = False
