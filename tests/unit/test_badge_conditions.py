"""Badge unlock condition parsing and application grouping."""

from datetime import datetime, timezone

from classquest.progression.badge_service import _application_keys, parse_condition
from classquest.progression.schemas import (
    BehaviorCategoryCondition,
    BehaviorCountCondition,
    CompoundCondition,
    LevelCondition,
    XpTotalCondition,
)


class TestParseCondition:
    def test_xp_total(self):
        condition = parse_condition({"type": "XP_TOTAL", "value": 100})
        assert isinstance(condition, XpTotalCondition)
        assert condition.value == 100

    def test_behavior_count(self):
        condition = parse_condition({"type": "BEHAVIOR_COUNT", "behavior_id": 4, "count": 3})
        assert isinstance(condition, BehaviorCountCondition)
        assert (condition.behavior_id, condition.count) == (4, 3)

    def test_behavior_category(self):
        condition = parse_condition({"type": "BEHAVIOR_CATEGORY", "category": "negative", "count": 2})
        assert isinstance(condition, BehaviorCategoryCondition)
        assert condition.category == "negative"

    def test_nested_compound(self):
        condition = parse_condition({
            "type": "COMPOUND",
            "operator": "OR",
            "conditions": [
                {"type": "LEVEL", "value": 5},
                {"type": "COMPOUND", "conditions": [{"type": "XP_TOTAL", "value": 10}]},
            ],
        })
        assert isinstance(condition, CompoundCondition)
        assert condition.operator == "OR"
        assert isinstance(condition.conditions[0], LevelCondition)
        assert isinstance(condition.conditions[1], CompoundCondition)
        assert condition.conditions[1].operator == "AND"

    def test_unknown_type_is_rejected(self):
        assert parse_condition({"type": "MOON_PHASE", "value": 1}) is None

    def test_missing_fields_are_rejected(self):
        assert parse_condition({"type": "BEHAVIOR_COUNT", "count": 3}) is None

    def test_empty_is_none(self):
        assert parse_condition(None) is None
        assert parse_condition({}) is None


class TestApplicationKeys:
    def test_combined_behavior_logs_count_once(self):
        at = datetime(2026, 3, 2, 10, 0, 0, 120000, tzinfo=timezone.utc)
        rows = [(4, at), (4, at), (4, at.replace(microsecond=900000))]
        assert len(_application_keys(rows)) == 1

    def test_distinct_seconds_and_behaviors_count_separately(self):
        at = datetime(2026, 3, 2, 10, 0, 0)
        rows = [(4, at), (4, at.replace(second=1)), (5, at)]
        assert len(_application_keys(rows)) == 3

    def test_logs_without_behavior_are_ignored(self):
        assert _application_keys([(None, datetime(2026, 3, 2))]) == set()

    def test_naive_and_aware_timestamps_match(self):
        aware = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)
        assert len(_application_keys([(4, aware), (4, aware.replace(tzinfo=None))])) == 1
