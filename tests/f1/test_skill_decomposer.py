"""Tests for skill decomposition (F1).

Tests cover:
- Capability / artifact text conversion
- Locked-variable derivation
- Time estimation per learner level
- Skill validation contract
- Splitting over-budget skills into chained parts
- Prerequisite linking and quest decomposition
- Compound skills built across quests
"""

from dataclasses import replace

import pytest

from drillcoach.core.models import CapabilityStage
from drillcoach.core.skill_decomposer import (
    BASELINE_LOCKED_VARIABLE,
    COMPOUND_SUCCESS_SIGNAL,
    MAX_SKILL_MINUTES,
    MIN_SKILL_MINUTES,
    artifact_to_success_signal,
    build_compound_skill,
    capability_to_action,
    decompose_quest,
    derive_locked_variables,
    estimate_minutes,
    is_verb_first,
    link_prerequisites,
    split_skill,
    validate_skill,
)


class TestTextConversion:
    """Tests for capability and artifact conversion."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Build a parser", True),
            ("builds a parser", True),
            ("Testing the parser", True),
            ("[Part 2/3] Continue: Build a parser", True),
            ("The parser works", False),
            ("", False),
        ],
    )
    def test_is_verb_first(self, text, expected):
        """Verb detection ignores part markers and accepts inflections."""
        assert is_verb_first(text) is expected

    def test_capability_already_imperative(self):
        """Verb-first capability is kept and capitalized."""
        assert capability_to_action("build a parser.") == "Build a parser"

    def test_capability_can_prefix_promoted(self):
        """'can X' becomes 'X'."""
        assert capability_to_action("can tune a guitar") == "Tune a guitar"

    def test_capability_able_to_prefix_promoted(self):
        assert capability_to_action("Able to read sheet music") == "Read sheet music"

    def test_capability_fallback_practice_prefix(self):
        """Non-verb capability gets a 'Practice:' prefix."""
        assert capability_to_action("Chord transitions") == "Practice: Chord transitions"

    def test_artifact_becomes_completion_signal(self):
        """Leading article is dropped and 'Completed:' is prepended."""
        assert artifact_to_success_signal("A parser binary") == "Completed: parser binary"

    def test_artifact_already_completion(self):
        """Artifacts that already describe completion are kept."""
        assert artifact_to_success_signal("the finished recording") == "Finished recording"
        assert artifact_to_success_signal("working build") == "Working build"


class TestLockedVariables:
    """Tests for locked-variable derivation."""

    def test_baseline_always_present(self):
        stage = CapabilityStage(stage=1, title="t", capability="c", artifact="a")
        assert derive_locked_variables(stage) == [BASELINE_LOCKED_VARIABLE]

    def test_without_clause_adds_ensure(self):
        """'without X' in the designed failure adds 'Ensure: X'."""
        stage = CapabilityStage(
            stage=1,
            title="t",
            capability="c",
            artifact="a",
            designed_failure="Run it without a file argument.",
        )
        assert derive_locked_variables(stage) == [
            BASELINE_LOCKED_VARIABLE,
            "Ensure: a file argument",
        ]


class TestEstimateMinutes:
    """Tests for text-complexity time estimation."""

    def _stage(self, words: int) -> CapabilityStage:
        return CapabilityStage(
            stage=1,
            title="t",
            capability=" ".join(["word"] * words),
            artifact="",
        )

    def test_two_minutes_per_word(self):
        assert estimate_minutes(self._stage(11), "intermediate") == 22

    def test_base_floor(self):
        """Short text still gets the 15 minute floor."""
        assert estimate_minutes(self._stage(2), "intermediate") == 15

    def test_base_ceiling(self):
        assert estimate_minutes(self._stage(40), "intermediate") == 45

    @pytest.mark.parametrize(
        "level,expected",
        [("beginner", 33), ("intermediate", 22), ("advanced", 17)],
    )
    def test_level_multiplier(self, level, expected):
        """22 base minutes scaled by 1.5 / 1.0 / 0.75, rounding halves up."""
        assert estimate_minutes(self._stage(11), level) == expected

    def test_final_clamp(self):
        """45 * 1.5 is capped at 60."""
        assert estimate_minutes(self._stage(40), "beginner") == MAX_SKILL_MINUTES


class TestValidateSkill:
    """Tests for the skill contract."""

    def test_valid_skill(self, make_skill):
        assert validate_skill(make_skill("s1"), budget=30) == []

    def test_action_must_be_verb_first(self, make_skill):
        errors = validate_skill(make_skill("s1", action="The parser"), budget=30)
        assert any("verb" in e for e in errors)

    def test_success_signal_minimum_length(self, make_skill):
        errors = validate_skill(make_skill("s1", success_signal="Done"), budget=30)
        assert any("Success signal too short" in e for e in errors)

    def test_locked_variable_required(self, make_skill):
        errors = validate_skill(make_skill("s1", locked_variables=[]), budget=30)
        assert "At least one locked variable is required" in errors

    def test_budget_check_can_be_skipped(self, make_skill):
        skill = make_skill("s1", estimated_minutes=50)
        assert validate_skill(skill, budget=30)
        assert validate_skill(skill, budget=30, check_budget=False) == []


class TestSplitSkill:
    """Tests for splitting over-budget skills."""

    def test_fitting_skill_unchanged(self, make_skill):
        skill = make_skill("s1", estimated_minutes=30)
        assert split_skill(skill, 30) == [skill]

    def test_split_even_parts(self, make_skill):
        """130 minutes at a 30 minute budget -> 5 parts of 26."""
        skill = make_skill("s1", estimated_minutes=130)

        parts = split_skill(skill, 30)

        assert len(parts) == 5
        assert [p.estimated_minutes for p in parts] == [26, 26, 26, 26, 26]

    def test_split_remainder_goes_to_first_parts(self, make_skill):
        skill = make_skill("s1", estimated_minutes=62)

        parts = split_skill(skill, 30)

        assert [p.estimated_minutes for p in parts] == [21, 21, 20]
        assert sum(p.estimated_minutes for p in parts) == 62

    def test_parts_chained_and_labelled(self, make_skill):
        skill = make_skill(
            "s1",
            estimated_minutes=50,
            prerequisite_skill_ids=["s0"],
            failure_mode="It crashes",
        )

        first, last = split_skill(skill, 30)

        assert first.prerequisite_skill_ids == ["s0"]
        assert last.prerequisite_skill_ids == [first.skill_id]
        assert first.action.startswith("[Part 1/2] Begin:")
        assert last.action.startswith("[Part 2/2] Complete:")
        assert first.title.endswith("(Part 1/2)")
        assert first.success_signal.startswith("Part 1 checkpoint")
        assert last.success_signal == skill.success_signal
        assert first.failure_mode == ""
        assert last.failure_mode == "It crashes"
        assert first.skill_id != last.skill_id != skill.skill_id

    def test_parts_never_below_minimum(self, make_skill):
        """17 minutes at a 5 minute budget -> 4 parts of 5, not 5/4/4/4."""
        parts = split_skill(make_skill("s1", estimated_minutes=17), 5)

        assert [p.estimated_minutes for p in parts] == [5, 5, 5, 5]
        assert all(validate_skill(p, budget=5) == [] for p in parts)

    def test_budget_must_be_positive(self, make_skill):
        with pytest.raises(ValueError):
            split_skill(make_skill("s1"), 0)


class TestLinkPrerequisites:
    """Tests for linear prerequisite linking."""

    def test_adjacent_stages_linked(self, make_skill):
        skills = [
            make_skill("a", stage_index=1),
            make_skill("b", stage_index=1),
            make_skill("c", stage_index=2),
        ]

        link_prerequisites(skills)

        assert skills[0].prerequisite_skill_ids == []
        assert skills[1].prerequisite_skill_ids == ["a"]
        assert skills[2].prerequisite_skill_ids == ["b"]

    def test_stage_gap_breaks_chain(self, make_skill):
        skills = [make_skill("a", stage_index=1), make_skill("c", stage_index=3)]

        link_prerequisites(skills)

        assert skills[1].prerequisite_skill_ids == []

    def test_no_duplicate_links(self, make_skill):
        skills = [make_skill("a", stage_index=1), make_skill("b", stage_index=2)]

        link_prerequisites(skills)
        link_prerequisites(skills)

        assert skills[1].prerequisite_skill_ids == ["a"]


class TestDecomposeQuest:
    """Tests for decompose_quest."""

    def test_one_skill_per_stage(self, sample_quest, sample_goal, sample_stages):
        result = decompose_quest(sample_quest, sample_goal, sample_stages)

        assert result.ok
        value = result.value
        assert len(value.skills) == 5
        assert [s.estimated_minutes for s in value.skills] == [22, 24, 26, 22, 24]
        assert value.total_minutes == 118
        assert value.estimated_days == 4
        assert value.warnings == []

    def test_skill_fields(self, sample_quest, sample_goal, sample_stages):
        skills = decompose_quest(sample_quest, sample_goal, sample_stages).value.skills
        first = skills[0]

        assert first.action == "Build a file line counter"
        assert first.success_signal == "Completed: program that prints line counts"
        assert first.locked_variables[-1] == "Ensure: a file argument"
        assert first.topic == "io"
        assert first.adversarial_element == "Run it without a file argument"
        assert first.user_id == sample_goal.user_id

    def test_types_orders_and_statuses(self, sample_quest, sample_goal, sample_stages):
        skills = decompose_quest(
            sample_quest, sample_goal, sample_stages, start_order=10
        ).value.skills

        assert [s.skill_type for s in skills] == [
            "foundation", "foundation", "building", "building", "synthesis",
        ]
        assert [s.difficulty for s in skills] == [
            "intro", "intro", "practice", "challenge", "synthesis",
        ]
        assert [s.order for s in skills] == [10, 11, 12, 13, 14]
        assert skills[0].status == "available"
        assert all(s.status == "locked" for s in skills[1:])
        assert skills[4].component_skill_ids == [s.skill_id for s in skills[:4]]

    def test_over_budget_stage_split(self, sample_quest, sample_goal, sample_stages):
        result = decompose_quest(sample_quest, sample_goal, sample_stages, daily_minutes_budget=20)

        value = result.value
        assert all(s.estimated_minutes <= 20 for s in value.skills)
        assert len(value.skills) == 10
        assert any("split into 2 parts" in w for w in value.warnings)
        # Parts still form a single chain
        for previous, current in zip(value.skills, value.skills[1:]):
            assert previous.skill_id in current.prerequisite_skill_ids

    def test_invalid_stage_skipped_with_warning(self, sample_quest, sample_goal, sample_stages):
        stages = [CapabilityStage(stage=1, title="Empty", capability="", artifact=""), *sample_stages[1:]]

        result = decompose_quest(sample_quest, sample_goal, stages)

        assert result.ok
        assert len(result.value.skills) == 4
        assert "missing capability or artifact" in result.value.warnings[0]

    def test_no_usable_stage_is_processing_error(self, sample_quest, sample_goal):
        stages = [CapabilityStage(stage=1, title="Bad", capability="", artifact="x")]

        result = decompose_quest(sample_quest, sample_goal, stages)

        assert result.code == "PROCESSING_ERROR"
        assert result.error.details["warnings"]

    def test_budget_below_minimum(self, sample_quest, sample_goal, sample_stages):
        result = decompose_quest(sample_quest, sample_goal, sample_stages, daily_minutes_budget=3)
        assert result.code == "VALIDATION_ERROR"

    def test_smallest_budget_keeps_every_stage(self, sample_quest, sample_goal, sample_stages):
        """Advanced estimates 17/18/20/17/18 all split into 5 minute parts."""
        goal = replace(sample_goal, user_level="advanced", daily_minutes=5)

        result = decompose_quest(sample_quest, goal, sample_stages)

        assert result.ok
        skills = result.value.skills
        assert {s.stage_index for s in skills} == {1, 2, 3, 4, 5}
        assert len(skills) == 20
        assert all(s.estimated_minutes == MIN_SKILL_MINUTES for s in skills)
        assert not any("below minimum" in w for w in result.value.warnings)


class TestCompoundSkills:
    """Tests for compound skills combining earlier work."""

    def test_build_compound_skill(self, make_skill, sample_quest, sample_goal):
        first = make_skill("a", title="Read Files (Part 2/2)", estimated_minutes=20)
        second = make_skill("b", title="Parse Args", estimated_minutes=24)

        compound = build_compound_skill([first, second], sample_quest, sample_goal, budget=30)

        assert compound.skill_type == "compound"
        assert compound.difficulty == "challenge"
        assert compound.title == "Read Files + Parse Args"
        assert compound.action == "Combine read files and parse args to solve a multi-step problem"
        assert compound.success_signal == COMPOUND_SUCCESS_SIGNAL
        assert compound.estimated_minutes == 26
        assert compound.prerequisite_skill_ids == ["a", "b"]
        assert compound.component_skill_ids == ["a", "b"]
        assert validate_skill(compound, budget=30) == []

    def test_compound_minutes_capped_by_budget(self, make_skill, sample_quest, sample_goal):
        components = [make_skill("a", estimated_minutes=40), make_skill("b", estimated_minutes=40)]

        compound = build_compound_skill(components, sample_quest, sample_goal, budget=30)

        assert compound.estimated_minutes == 30

    def test_compound_needs_two_components(self, make_skill, sample_quest, sample_goal):
        with pytest.raises(ValueError):
            build_compound_skill([make_skill("a")], sample_quest, sample_goal, budget=30)

    def test_first_quest_has_no_compound(self, sample_quest, sample_goal, sample_stages):
        skills = decompose_quest(sample_quest, sample_goal, sample_stages).value.skills
        assert all(s.skill_type != "compound" for s in skills)

    def test_compound_appended_without_synthesis(
        self, sample_quest, second_quest, sample_goal, sample_stages, second_stages
    ):
        prior = decompose_quest(sample_quest, sample_goal, sample_stages).value.skills

        result = decompose_quest(
            second_quest, sample_goal, second_stages, start_order=5, prior_skills=prior
        )

        skills = result.value.skills
        assert [s.skill_type for s in skills] == ["foundation", "foundation", "compound"]
        compound = skills[2]
        assert compound.title == "Design a CLI + Unit Tests"
        assert compound.component_skill_ids == [prior[3].skill_id, skills[0].skill_id]
        assert compound.prerequisite_skill_ids == [
            prior[3].skill_id, skills[0].skill_id, skills[1].skill_id,
        ]
        assert compound.estimated_minutes == 26
        assert compound.order == 7
        assert compound.status == "locked"
        assert result.value.total_minutes == 74
        assert result.value.estimated_days == 3

    def test_compound_inserted_before_synthesis(
        self, sample_quest, second_quest, sample_goal, sample_stages
    ):
        prior = decompose_quest(sample_quest, sample_goal, sample_stages).value.skills
        stages = [replace(stage, topics=[f"next-{stage.stage}"]) for stage in sample_stages]

        skills = decompose_quest(
            second_quest, sample_goal, stages, prior_skills=prior
        ).value.skills

        assert [s.skill_type for s in skills] == [
            "foundation", "foundation", "building", "building", "compound", "synthesis",
        ]
        compound, synthesis = skills[4], skills[5]
        assert compound.stage_index == 4
        assert compound.component_skill_ids[0] == prior[3].skill_id
        assert compound.skill_id in synthesis.component_skill_ids
        assert compound.skill_id in synthesis.prerequisite_skill_ids
