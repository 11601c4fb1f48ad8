"""Tests for domain models, results and small helpers (F1)."""

from datetime import date

import pytest

from drillcoach.core.models import (
    CapabilityStage,
    Drill,
    DrillSection,
    Goal,
    LearningPlan,
    QuestSkillMapping,
    QuestWeekMapping,
    Skill,
    WeekPlan,
    new_id,
)
from drillcoach.core.result import err, ok
from drillcoach.utils.math_utils import ceil_div, clamp, round_half_up
from drillcoach.utils.text_utils import capitalize_first, first_sentence, truncate


class TestResult:
    """Tests for tagged results."""

    def test_ok_result(self):
        result = ok(42)
        assert result.ok
        assert result.code is None
        assert result.unwrap() == 42

    def test_err_result(self):
        result = err("NOT_FOUND", "Missing", skill_id="s1")
        assert not result.ok
        assert result.code == "NOT_FOUND"
        assert result.error.details == {"skill_id": "s1"}
        assert result.error.to_dict()["message"] == "Missing"

    def test_unwrap_error_raises(self):
        with pytest.raises(ValueError, match="NOT_FOUND"):
            err("NOT_FOUND", "Missing").unwrap()


class TestSerialization:
    """Models survive a trip through their dict form."""

    def test_skill_dates_restored(self, make_skill):
        skill = make_skill("s1", last_practiced_at=date(2026, 1, 6), mastered_at=None)

        data = skill.to_dict()
        restored = Skill.from_dict(data)

        assert data["last_practiced_at"] == "2026-01-06"
        assert restored.last_practiced_at == date(2026, 1, 6)
        assert restored == skill

    def test_drill_total_minutes_and_sections(self):
        main = DrillSection(type="main", title="Main", action="Build it", estimated_minutes=20)
        stretch = DrillSection(type="stretch", title="Stretch", action="Go", estimated_minutes=5)
        drill = Drill(
            drill_id="d1",
            user_id="u",
            goal_id="g",
            skill_id="s",
            quest_id="q",
            scheduled_date=date(2026, 1, 5),
            main=main,
            stretch=stretch,
        )

        data = drill.to_dict()
        restored = Drill.from_dict(data)

        assert data["total_minutes"] == 25
        assert [s.type for s in restored.sections] == ["main", "stretch"]
        assert restored.warmup is None
        assert restored.is_open

    def test_plan_round_trip_keeps_mappings(self):
        plan = LearningPlan(
            goal_id="g",
            user_id="u",
            duration="fixed",
            daily_minutes=30,
            start_date=date(2026, 1, 5),
            total_skills=2,
            total_days=2,
            total_weeks=1,
            estimated_completion_date=date(2026, 1, 12),
            quest_skill_mapping=[
                QuestSkillMapping(quest_id="q", title="Q", order=1, skill_ids=["a", "b"], estimated_days=2)
            ],
            quest_week_mapping=[QuestWeekMapping(quest_id="q", first_week=1, last_week=1)],
        )

        restored = LearningPlan.from_dict(plan.to_dict())

        assert restored.quest_skill_mapping[0].skill_count == 2
        assert restored.quest_week_mapping[0].label == "Week 1"
        assert restored.estimated_completion_date == date(2026, 1, 12)

    def test_stage_accepts_camel_case_failure(self):
        stage = CapabilityStage.from_dict(
            {"stage": 1, "title": "t", "capability": "c", "artifact": "a", "designedFailure": "boom"}
        )
        assert stage.designed_failure == "boom"

    def test_goal_from_dict_parses_date(self):
        goal = Goal.from_dict({"goal_id": "g", "user_id": "u", "start_date": "2026-01-05"})
        assert goal.start_date == date(2026, 1, 5)
        assert goal.title == "g"
        assert not goal.is_ongoing


class TestWeekPlanProperties:
    def _week(self, **overrides) -> WeekPlan:
        values = {
            "week_plan_id": "w1",
            "goal_id": "g",
            "user_id": "u",
            "quest_id": "q",
            "week_number": 1,
            "start_date": date(2026, 1, 5),
            "end_date": date(2026, 1, 11),
        }
        values.update(overrides)
        return WeekPlan(**values)

    def test_pass_rate_ignores_partials_and_skips(self):
        week = self._week(drills_passed=3, drills_failed=1, drills_completed=6, drills_skipped=2)
        assert week.pass_rate == 0.75

    def test_pass_rate_zero_when_nothing_graded(self):
        assert self._week().pass_rate == 0.0

    def test_skill_ids_carry_forward_first(self):
        week = self._week(scheduled_skill_ids=["b", "c"], carry_forward_skill_ids=["a", "b"])
        assert week.skill_ids == ["a", "b", "c"]

    def test_week_mapping_label_span(self):
        assert QuestWeekMapping(quest_id="q", first_week=3, last_week=4).label == "Weeks 3-4"


class TestHelpers:
    """Tests for math and text helpers."""

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4, 2), (16.5, 17), (0.0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_clamp(self):
        assert clamp(3, 5, 10) == 5
        assert clamp(12, 5, 10) == 10
        assert clamp(7, 5, 10) == 7

    @pytest.mark.parametrize("num,den,expected", [(118, 30, 4), (120, 30, 4), (1, 5, 1), (0, 5, 0)])
    def test_ceil_div(self, num, den, expected):
        assert ceil_div(num, den) == expected

    def test_first_sentence(self):
        assert first_sentence("The borrow failed. Then I gave up.") == "The borrow failed"
        assert first_sentence("   ") == ""

    def test_truncate(self):
        assert truncate("abcdefghij", 8) == "abcde..."
        assert truncate("short", 8) == "short"

    def test_capitalize_first(self):
        assert capitalize_first("build it") == "Build it"
        assert capitalize_first("") == ""

    def test_new_id_prefix(self):
        first, second = new_id("skill"), new_id("skill")
        assert first.startswith("skill-")
        assert first != second
