"""Drill generation module.

Responsibilities:
- Expand the selected skill into a drill with warmup / main / stretch sections
- Adapt the main section for retries (longer, failure-aware, no stretch)
- Keep total minutes within the daily budget (drop stretch, then warmup)
- Build carry-forward notes from recorded outcomes

All text is produced from deterministic templates (NO LLM).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

import structlog

from drillcoach.core.models import Drill, DrillOutcome, DrillSection, Skill, new_id
from drillcoach.core.result import Result, err, ok
from drillcoach.utils.math_utils import round_half_up
from drillcoach.utils.text_utils import first_sentence

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_WARMUP_MINUTES = 5
DEFAULT_STRETCH_MINUTES = 5
DEFAULT_MAX_RETRY_ATTEMPTS = 3

FIRST_RETRY_MULTIPLIER = 1.25
LATER_RETRY_MULTIPLIER = 1.5

ISSUE_MAX_LENGTH = 100

WARMUP_CONSTRAINT = "Complete quickly without looking up references"
STRETCH_PASS_SIGNAL = "Successfully applied skill in new context with no errors"
DEFAULT_RECOVERY = "Isolate the step that failed and practice it slowly before the full exercise"

# Carry-forward templates per outcome
CARRY_FORWARD_PASS = "Completed successfully. Note: {observation}"
CARRY_FORWARD_PASS_DEFAULT = "Completed successfully. Ready to advance."
CARRY_FORWARD_FAIL = "Needs retry. Issue: {issue}"
CARRY_FORWARD_FAIL_DEFAULT = "Needs retry. Focus on the blocking issue."
CARRY_FORWARD_PARTIAL = "Continue tomorrow. Progress: {observation}"
CARRY_FORWARD_PARTIAL_DEFAULT = "Continue tomorrow. Pick up where you stopped."
CARRY_FORWARD_SKIPPED = "Rescheduled for next session."
CARRY_FORWARD_MISSED = "Missed - rescheduled for next session"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class DayContext:
    """Explicit scheduling context for one drill."""

    user_id: str
    goal_id: str
    date: date
    day_number: int = 1
    week_plan_id: str | None = None
    daily_minutes: int = 30
    quest_title: str | None = None
    review_quest_title: str | None = None
    is_retry: bool = False
    retry_count: int = 0
    previous_drill: Drill | None = None
    context_note: str | None = None


# =============================================================================
# CARRY FORWARD
# =============================================================================


def build_carry_forward(outcome: DrillOutcome | None, observation: str | None) -> str:
    """Build the note carried into the next session.

    Args:
        outcome: Recorded outcome, or None for a missed drill
        observation: Learner's free-text observation

    Returns:
        One-line carry-forward note
    """
    note = (observation or "").strip()

    if outcome is None:
        return CARRY_FORWARD_MISSED
    if outcome == "pass":
        if note:
            return CARRY_FORWARD_PASS.format(observation=note[:ISSUE_MAX_LENGTH])
        return CARRY_FORWARD_PASS_DEFAULT
    if outcome == "fail":
        if note:
            return CARRY_FORWARD_FAIL.format(issue=first_sentence(note, ISSUE_MAX_LENGTH))
        return CARRY_FORWARD_FAIL_DEFAULT
    if outcome == "partial":
        if note:
            return CARRY_FORWARD_PARTIAL.format(observation=note[:ISSUE_MAX_LENGTH])
        return CARRY_FORWARD_PARTIAL_DEFAULT
    return CARRY_FORWARD_SKIPPED


def retry_multiplier(retry_count: int) -> float:
    """Main-section time multiplier for a retry (1.25 first, 1.5 after)."""
    return FIRST_RETRY_MULTIPLIER if retry_count <= 1 else LATER_RETRY_MULTIPLIER


# =============================================================================
# GENERATOR
# =============================================================================


class DrillGenerator:
    """Expands skills into structured daily drills."""

    def __init__(
        self,
        warmup_minutes: int = DEFAULT_WARMUP_MINUTES,
        stretch_minutes: int = DEFAULT_STRETCH_MINUTES,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
    ):
        self.warmup_minutes = warmup_minutes
        self.stretch_minutes = stretch_minutes
        self.max_retry_attempts = max_retry_attempts

    # -------------------------------------------------------------------------
    # Sections
    # -------------------------------------------------------------------------

    def build_warmup(
        self,
        review_skill: Skill,
        skill: Skill,
        review_quest_title: str | None = None,
    ) -> DrillSection:
        """Quick review of a prerequisite or previously practiced skill."""
        review_action = review_skill.action[:1].lower() + review_skill.action[1:]
        if review_skill.skill_id in skill.prerequisite_skill_ids:
            action = (
                f"Quick review: {review_action}. "
                f'This prepares you for today\'s "{skill.title}" skill.'
            )
        else:
            action = f"Quick review: {review_action}. Aim for speed over perfection."

        is_from_previous_quest = review_skill.quest_id != skill.quest_id
        title = f"Warmup: {review_skill.title}"
        if is_from_previous_quest and review_quest_title:
            title = f"{title} (from {review_quest_title})"

        signal = review_skill.success_signal.removeprefix("Completed: ")
        return DrillSection(
            type="warmup",
            title=title,
            action=action,
            estimated_minutes=self.warmup_minutes,
            pass_signal=f"Completed within {self.warmup_minutes} minutes: {signal}",
            constraint=WARMUP_CONSTRAINT,
            source_skill_id=review_skill.skill_id,
            is_from_previous_quest=is_from_previous_quest,
        )

    def build_main(self, skill: Skill, retry_count: int = 0) -> DrillSection:
        """Main section: the skill itself with one locked-variable constraint.

        The constraint rotates with the retry count so a retry practices a
        different restriction when the skill has several.
        """
        constraint = None
        if skill.locked_variables:
            constraint = skill.locked_variables[retry_count % len(skill.locked_variables)]

        return DrillSection(
            type="main",
            title=skill.title,
            action=skill.action,
            estimated_minutes=skill.estimated_minutes,
            pass_signal=skill.success_signal,
            constraint=constraint,
            source_skill_id=skill.skill_id,
            adversarial_element=skill.adversarial_element or None,
            failure_mode=skill.failure_mode or None,
            recovery_steps=skill.recovery_steps or None,
        )

    def build_stretch(self, skill: Skill) -> DrillSection:
        """Optional stretch whose nature depends on the skill type."""
        if skill.skill_type == "foundation":
            if skill.transfer_scenario:
                action = f"Transfer challenge: {skill.transfer_scenario}"
            else:
                action = (
                    f'Apply "{skill.title}" to a different context '
                    "without any guidance or references"
                )
        elif skill.skill_type == "building":
            action = f'Combine "{skill.title}" with a previous skill to solve a more complex problem'
        elif skill.skill_type == "compound":
            action = f'Teach "{skill.title}" by explaining it as if to a complete beginner'
        else:
            action = f'Speed challenge: Complete "{skill.action}" in half the time'

        return DrillSection(
            type="stretch",
            title=f"Stretch: {skill.title}",
            action=action,
            estimated_minutes=self.stretch_minutes,
            pass_signal=STRETCH_PASS_SIGNAL,
            source_skill_id=skill.skill_id,
        )

    def adapt_for_retry(
        self,
        skill: Skill,
        previous_drill: Drill | None,
        retry_count: int,
    ) -> Result[DrillSection]:
        """Build a retry main section.

        Minutes scale x1.25 on the first retry and x1.5 afterwards. The
        previous observation is prepended to the action and recovery
        guidance is attached. Past ``max_retry_attempts`` the skill must go
        to manual review instead.

        Args:
            skill: Skill being retried
            previous_drill: Drill whose outcome triggered the retry
            retry_count: 1 for the first retry

        Returns:
            ok(main section) or err(INVALID_STATE, needs_review=True)
        """
        if retry_count < 1:
            return err("VALIDATION_ERROR", f"retry_count must be >= 1, got {retry_count}")

        if retry_count > self.max_retry_attempts:
            logger.warning(
                "retry_limit_exceeded",
                skill_id=skill.skill_id,
                retry_count=retry_count,
                max_retry_attempts=self.max_retry_attempts,
            )
            return err(
                "INVALID_STATE",
                f"Skill exceeded {self.max_retry_attempts} retries; manual review required",
                skill_id=skill.skill_id,
                needs_review=True,
            )

        main = self.build_main(skill, retry_count)
        main.estimated_minutes = round_half_up(skill.estimated_minutes * retry_multiplier(retry_count))

        issue = ""
        if previous_drill is not None and previous_drill.observation:
            issue = first_sentence(previous_drill.observation, ISSUE_MAX_LENGTH)
        verb = "was partial" if previous_drill and previous_drill.outcome == "partial" else "failed"
        if issue:
            main.action = f'Previous attempt {verb}: "{issue}". {skill.action}'
        else:
            main.action = f"Previous attempt {verb}. {skill.action}"

        main.recovery_steps = f"Recovery focus: {skill.recovery_steps or DEFAULT_RECOVERY}"
        return ok(main)

    # -------------------------------------------------------------------------
    # Drill assembly
    # -------------------------------------------------------------------------

    def _fit_to_budget(
        self,
        main: DrillSection,
        warmup: DrillSection | None,
        stretch: DrillSection | None,
        budget: int,
    ) -> tuple[DrillSection | None, DrillSection | None]:
        def total() -> int:
            return sum(s.estimated_minutes for s in (warmup, main, stretch) if s is not None)

        dropped: list[str] = []
        if stretch is not None and total() > budget:
            stretch = None
            dropped.append("stretch")
        if warmup is not None and total() > budget:
            warmup = None
            dropped.append("warmup")

        if dropped:
            logger.debug("drill_sections_dropped", dropped=dropped, budget=budget)
        return warmup, stretch

    def generate(
        self,
        skill: Skill,
        review_skill: Skill | None,
        context: DayContext,
    ) -> Result[Drill]:
        """Materialize today's drill for a selected skill.

        Args:
            skill: Selected skill
            review_skill: Optional skill reviewed in the warmup
            context: Scheduling context (date, budget, retry info)

        Returns:
            ok(Drill) or the retry adaptation error
        """
        stretch: DrillSection | None = None
        if context.is_retry:
            adapted = self.adapt_for_retry(skill, context.previous_drill, context.retry_count)
            if not adapted.ok:
                return adapted
            main = adapted.value
        else:
            main = self.build_main(skill)
            stretch = self.build_stretch(skill)

        warmup = None
        if review_skill is not None and review_skill.skill_id != skill.skill_id:
            warmup = self.build_warmup(review_skill, skill, context.review_quest_title)

        warmup, stretch = self._fit_to_budget(main, warmup, stretch, context.daily_minutes)

        drill = Drill(
            drill_id=new_id("drill"),
            user_id=context.user_id,
            goal_id=context.goal_id,
            skill_id=skill.skill_id,
            quest_id=skill.quest_id,
            week_plan_id=context.week_plan_id,
            scheduled_date=context.date,
            day_number=context.day_number,
            warmup=warmup,
            main=main,
            stretch=stretch,
            context_note=context.context_note,
            is_retry=context.is_retry,
            retry_count=context.retry_count if context.is_retry else 0,
            previous_drill_id=context.previous_drill.drill_id if context.previous_drill else None,
        )

        logger.info(
            "drill_generated",
            drill_id=drill.drill_id,
            skill_id=skill.skill_id,
            date=context.date.isoformat(),
            is_retry=drill.is_retry,
            retry_count=drill.retry_count,
            total_minutes=drill.total_minutes,
        )
        return ok(drill)
