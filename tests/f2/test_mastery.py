"""Tests for the mastery state machine and unlock propagation (F2)."""

from datetime import date

import pytest

from drillcoach.core.mastery import (
    apply_transition,
    compute_mastery_summary,
    locked_skills,
    prerequisites_met,
    propagate_unlocks,
    transition,
)


def _record(skill, outcome, day=date(2026, 1, 5)):
    return apply_transition(skill, transition(skill, outcome), outcome, practiced_on=day)


class TestTransition:
    """Tests for outcome -> mastery transitions."""

    def test_first_pass_moves_to_practicing(self, make_skill):
        step = transition(make_skill("s1"), "pass")

        assert step.previous == "not_started"
        assert step.mastery == "practicing"
        assert step.pass_count == 1
        assert step.consecutive_passes == 1
        assert step.changed

    def test_first_fail_moves_to_attempting(self, make_skill):
        step = transition(make_skill("s1"), "fail")
        assert step.mastery == "attempting"
        assert step.fail_count == 1

    def test_fail_after_pass_stays_practicing(self, make_skill):
        skill = make_skill("s1", mastery="practicing", pass_count=1, consecutive_passes=1)

        step = transition(skill, "fail")

        assert step.mastery == "practicing"
        assert step.consecutive_passes == 0

    def test_partial_starts_attempting_and_resets_streak(self, make_skill):
        assert transition(make_skill("s1"), "partial").mastery == "attempting"

        skill = make_skill("s2", mastery="practicing", pass_count=2, consecutive_passes=2)
        step = transition(skill, "partial")
        assert step.mastery == "practicing"
        assert step.consecutive_passes == 0
        assert step.pass_count == 2

    def test_skipped_changes_nothing(self, make_skill):
        skill = make_skill("s1", mastery="practicing", pass_count=1, consecutive_passes=1)

        step = transition(skill, "skipped")

        assert not step.changed
        assert (step.pass_count, step.fail_count, step.consecutive_passes) == (1, 0, 1)

    def test_three_passes_two_consecutive_masters(self, make_skill):
        """pass, pass, pass -> mastered on the third."""
        skill = make_skill("s1")

        _record(skill, "pass")
        _record(skill, "pass")
        assert skill.mastery == "practicing"
        step = transition(skill, "pass")

        assert step.mastery == "mastered"
        assert step.reached_mastered

    def test_consecutive_requirement(self, make_skill):
        """pass, pass, fail, pass: 3 passes but streak of 1 -> practicing."""
        skill = make_skill("s1")
        for outcome in ("pass", "pass", "fail", "pass"):
            _record(skill, outcome)

        assert skill.pass_count == 3
        assert skill.consecutive_passes == 1
        assert skill.mastery == "practicing"

    @pytest.mark.parametrize("outcome", ["fail", "partial", "skipped"])
    def test_mastered_is_sticky(self, make_skill, outcome):
        skill = make_skill("s1", mastery="mastered", status="mastered", pass_count=3, consecutive_passes=3)

        step = transition(skill, outcome)

        assert step.mastery == "mastered"
        assert not step.reached_mastered


class TestApplyTransition:
    def test_sets_practice_date_and_status(self, make_skill):
        skill = make_skill("s1", status="available")

        _record(skill, "fail", day=date(2026, 1, 7))

        assert skill.status == "in_progress"
        assert skill.last_practiced_at == date(2026, 1, 7)

    def test_mastered_sets_status_and_date(self, make_skill):
        skill = make_skill("s1", mastery="practicing", status="in_progress", pass_count=2, consecutive_passes=1)

        _record(skill, "pass", day=date(2026, 1, 9))

        assert skill.mastery == "mastered"
        assert skill.status == "mastered"
        assert skill.mastered_at == date(2026, 1, 9)

    def test_skip_keeps_status_and_date(self, make_skill):
        skill = make_skill("s1", status="available")

        _record(skill, "skipped")

        assert skill.status == "available"
        assert skill.last_practiced_at is None


class TestUnlocks:
    """Tests for prerequisite checks and unlock propagation."""

    def test_prerequisites_met_requires_practicing(self, make_skill):
        a = make_skill("a", mastery="attempting")
        b = make_skill("b", prerequisite_skill_ids=["a"])
        assert not prerequisites_met(b, {"a": a, "b": b})

        a.mastery = "practicing"
        assert prerequisites_met(b, {"a": a, "b": b})

    def test_unknown_prerequisite_is_unmet(self, make_skill):
        b = make_skill("b", prerequisite_skill_ids=["ghost"])
        assert not prerequisites_met(b, {"b": b})

    def test_propagate_unlocks(self, make_skill):
        a = make_skill("a", mastery="practicing", status="in_progress")
        b = make_skill("b", status="locked", prerequisite_skill_ids=["a"])
        c = make_skill("c", status="locked", prerequisite_skill_ids=["b"])

        unlocked = propagate_unlocks([a, b, c])

        assert [s.skill_id for s in unlocked] == ["b"]
        assert b.status == "available"
        assert c.status == "locked"

    def test_propagate_unlocks_idempotent(self, make_skill):
        a = make_skill("a", mastery="mastered", status="mastered")
        b = make_skill("b", status="locked", prerequisite_skill_ids=["a"])

        assert len(propagate_unlocks([a, b])) == 1
        assert propagate_unlocks([a, b]) == []


class TestLockedSkills:
    """Tests for reporting what holds locked skills back."""

    def test_reasons_per_prerequisite(self, make_skill):
        done = make_skill("a", title="Read Input", mastery="practicing", status="in_progress")
        pending = make_skill("b", title="Parse Args", status="available")
        locked = make_skill(
            "c", status="locked", prerequisite_skill_ids=["a", "b", "ghost"]
        )

        [item] = locked_skills([done, pending, locked])

        assert item.skill.skill_id == "c"
        assert item.missing_prerequisite_ids == ["b", "ghost"]
        assert item.reasons == [
            '"Parse Args" not yet practiced (not_started)',
            "Prerequisite ghost not found",
        ]
        assert item.to_dict()["title"] == "Skill c"

    def test_unlocked_skills_not_reported(self, make_skill):
        skills = [make_skill("a", status="available"), make_skill("b", status="mastered")]
        assert locked_skills(skills) == []


class TestMasterySummary:
    def test_counts_and_percentages(self, make_skill):
        skills = [
            make_skill("a", mastery="mastered"),
            make_skill("b", mastery="practicing"),
            make_skill("c", mastery="attempting"),
            make_skill("d"),
        ]

        summary = compute_mastery_summary(skills)

        assert summary.total == 4
        assert summary.mastered == 1
        assert summary.mastered_percent == 25
        assert summary.in_progress_percent == 50

    def test_empty(self):
        assert compute_mastery_summary([]).mastered_percent == 0
