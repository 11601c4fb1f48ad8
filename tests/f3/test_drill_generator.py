"""Tests for drill generation (F3).

Tests cover:
- Carry-forward notes per outcome
- Warmup / main / stretch construction
- Retry adaptation (longer main, failure-aware text, review limit)
- Fitting a drill inside the daily budget
"""

from datetime import date

import pytest

from drillcoach.core.drill_generator import (
    CARRY_FORWARD_MISSED,
    CARRY_FORWARD_PASS_DEFAULT,
    CARRY_FORWARD_SKIPPED,
    DayContext,
    DrillGenerator,
    build_carry_forward,
    retry_multiplier,
)
from drillcoach.core.models import Drill, DrillSection


@pytest.fixture
def generator() -> DrillGenerator:
    return DrillGenerator(warmup_minutes=5, stretch_minutes=5, max_retry_attempts=3)


@pytest.fixture
def context() -> DayContext:
    return DayContext(
        user_id="user-1",
        goal_id="goal-rust",
        date=date(2026, 1, 6),
        day_number=2,
        week_plan_id="week-1",
        daily_minutes=30,
    )


def _previous_drill(outcome="fail", observation="Borrow error on line 3. Then I stopped."):
    return Drill(
        drill_id="d-prev",
        user_id="user-1",
        goal_id="goal-rust",
        skill_id="s1",
        quest_id="quest-basics",
        scheduled_date=date(2026, 1, 5),
        main=DrillSection(type="main", title="t", action="Build it", estimated_minutes=22),
        status="completed",
        outcome=outcome,
        observation=observation,
    )


class TestCarryForward:
    """Tests for build_carry_forward."""

    def test_pass_with_and_without_note(self):
        assert build_carry_forward("pass", None) == CARRY_FORWARD_PASS_DEFAULT
        assert build_carry_forward("pass", "Felt easy") == "Completed successfully. Note: Felt easy"

    def test_fail_uses_first_sentence(self):
        note = build_carry_forward("fail", "Borrow error on line 3. Then I stopped.")
        assert note == "Needs retry. Issue: Borrow error on line 3"

    def test_fail_without_note(self):
        assert build_carry_forward("fail", "  ").startswith("Needs retry.")

    def test_partial(self):
        assert build_carry_forward("partial", "Half done") == "Continue tomorrow. Progress: Half done"

    def test_skipped_and_missed(self):
        assert build_carry_forward("skipped", None) == CARRY_FORWARD_SKIPPED
        assert build_carry_forward(None, None) == CARRY_FORWARD_MISSED

    def test_long_observation_capped(self):
        note = build_carry_forward("pass", "x" * 300)
        assert len(note) == len("Completed successfully. Note: ") + 100


class TestSections:
    """Tests for individual section builders."""

    def test_main_section_copies_skill(self, generator, make_skill):
        skill = make_skill("s1", estimated_minutes=22, adversarial_element="Break it")

        main = generator.build_main(skill)

        assert main.type == "main"
        assert main.action == skill.action
        assert main.pass_signal == skill.success_signal
        assert main.estimated_minutes == 22
        assert main.constraint == skill.locked_variables[0]
        assert main.adversarial_element == "Break it"
        assert main.failure_mode is None

    def test_main_constraint_rotates_with_retry(self, generator, make_skill):
        skill = make_skill("s1", locked_variables=["first", "second"])
        assert generator.build_main(skill, retry_count=1).constraint == "second"
        assert generator.build_main(skill, retry_count=2).constraint == "first"

    @pytest.mark.parametrize(
        "skill_type,prefix",
        [
            ("building", "Combine"),
            ("compound", "Teach"),
            ("synthesis", "Speed challenge"),
        ],
    )
    def test_stretch_by_type(self, generator, make_skill, skill_type, prefix):
        stretch = generator.build_stretch(make_skill("s1", skill_type=skill_type))
        assert stretch.action.startswith(prefix)
        assert stretch.estimated_minutes == 5

    def test_foundation_stretch_uses_transfer(self, generator, make_skill):
        skill = make_skill("s1", skill_type="foundation", transfer_scenario="Count words instead")
        assert generator.build_stretch(skill).action == "Transfer challenge: Count words instead"

        plain = make_skill("s2", skill_type="foundation")
        assert "different context" in generator.build_stretch(plain).action

    def test_warmup_for_prerequisite(self, generator, make_skill):
        review = make_skill("s0", title="Count Lines", success_signal="Completed: line counts printed")
        skill = make_skill("s1", title="Borrow Input", prerequisite_skill_ids=["s0"])

        warmup = generator.build_warmup(review, skill)

        assert warmup.title == "Warmup: Count Lines"
        assert 'This prepares you for today\'s "Borrow Input" skill.' in warmup.action
        assert warmup.pass_signal == "Completed within 5 minutes: line counts printed"
        assert warmup.source_skill_id == "s0"
        assert not warmup.is_from_previous_quest

    def test_warmup_from_previous_quest(self, generator, make_skill):
        review = make_skill("s0", title="Count Lines", quest_id="quest-basics")
        skill = make_skill("s1", quest_id="quest-testing")

        warmup = generator.build_warmup(review, skill, review_quest_title="Rust Basics")

        assert warmup.is_from_previous_quest
        assert warmup.title == "Warmup: Count Lines (from Rust Basics)"
        assert "Aim for speed" in warmup.action


class TestRetryAdaptation:
    """Tests for adapt_for_retry."""

    @pytest.mark.parametrize("retry_count,expected", [(1, 1.25), (2, 1.5), (3, 1.5)])
    def test_retry_multiplier(self, retry_count, expected):
        assert retry_multiplier(retry_count) == expected

    def test_first_retry_scales_minutes(self, generator, make_skill):
        skill = make_skill("s1", estimated_minutes=22, recovery_steps="Pass a reference")

        main = generator.adapt_for_retry(skill, _previous_drill(), 1).value

        assert main.estimated_minutes == 28  # 27.5 rounded half up
        assert main.action.startswith('Previous attempt failed: "Borrow error on line 3".')
        assert main.action.endswith(skill.action)
        assert main.recovery_steps == "Recovery focus: Pass a reference"

    def test_later_retry_scales_more(self, generator, make_skill):
        skill = make_skill("s1", estimated_minutes=20)

        main = generator.adapt_for_retry(skill, _previous_drill(observation=None), 2).value

        assert main.estimated_minutes == 30
        assert main.action.startswith("Previous attempt failed.")
        assert main.recovery_steps.startswith("Recovery focus: Isolate")

    def test_partial_wording(self, generator, make_skill):
        main = generator.adapt_for_retry(
            make_skill("s1"), _previous_drill(outcome="partial", observation="Half"), 1
        ).value
        assert main.action.startswith('Previous attempt was partial: "Half".')

    def test_retry_limit_requires_review(self, generator, make_skill):
        result = generator.adapt_for_retry(make_skill("s1"), _previous_drill(), 4)

        assert result.code == "INVALID_STATE"
        assert result.error.details["needs_review"] is True

    def test_retry_count_must_be_positive(self, generator, make_skill):
        assert generator.adapt_for_retry(make_skill("s1"), None, 0).code == "VALIDATION_ERROR"


class TestGenerate:
    """Tests for full drill assembly and budget fitting."""

    def test_new_skill_has_main_and_stretch(self, generator, context, make_skill):
        skill = make_skill("s1", estimated_minutes=22)

        drill = generator.generate(skill, None, context).value

        assert drill.warmup is None
        assert drill.stretch is not None
        assert drill.total_minutes == 27
        assert drill.scheduled_date == context.date
        assert drill.day_number == 2
        assert drill.week_plan_id == "week-1"
        assert not drill.is_retry
        assert drill.is_open

    def test_stretch_dropped_first(self, generator, context, make_skill):
        review = make_skill("s0", mastery="mastered")
        skill = make_skill("s1", estimated_minutes=22)

        drill = generator.generate(skill, review, context).value

        assert drill.warmup is not None
        assert drill.stretch is None
        assert drill.total_minutes == 27

    def test_warmup_dropped_when_still_over(self, generator, context, make_skill):
        review = make_skill("s0", mastery="mastered")
        skill = make_skill("s1", estimated_minutes=28)

        drill = generator.generate(skill, review, context).value

        assert drill.warmup is None
        assert drill.stretch is None
        assert drill.total_minutes == 28

    def test_everything_fits(self, generator, make_skill):
        roomy = DayContext(user_id="u", goal_id="g", date=date(2026, 1, 6), daily_minutes=45)
        review = make_skill("s0", mastery="mastered")

        drill = generator.generate(make_skill("s1", estimated_minutes=22), review, roomy).value

        assert [s.type for s in drill.sections] == ["warmup", "main", "stretch"]
        assert drill.total_minutes == 32

    def test_review_of_same_skill_ignored(self, generator, context, make_skill):
        skill = make_skill("s1", estimated_minutes=20)
        drill = generator.generate(skill, skill, context).value
        assert drill.warmup is None

    def test_retry_drill(self, generator, context, make_skill):
        previous = _previous_drill()
        context.is_retry = True
        context.retry_count = 1
        context.previous_drill = previous

        drill = generator.generate(make_skill("s1", estimated_minutes=22), None, context).value

        assert drill.is_retry
        assert drill.retry_count == 1
        assert drill.previous_drill_id == "d-prev"
        assert drill.stretch is None
        assert drill.main.estimated_minutes == 28

    def test_retry_over_limit_returns_error(self, generator, context, make_skill):
        context.is_retry = True
        context.retry_count = 4
        context.previous_drill = _previous_drill()

        result = generator.generate(make_skill("s1"), None, context)

        assert result.code == "INVALID_STATE"
