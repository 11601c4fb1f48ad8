"""Mastery state machine.

States: not_started -> attempting -> practicing -> mastered

Transition rules (outcome -> mastery):
- pass: pass_count += 1, consecutive_passes += 1;
  mastered if consecutive_passes >= 2 and pass_count >= 3,
  else practicing if pass_count >= 1
- fail: fail_count += 1, consecutive_passes = 0;
  practicing if pass_count > 0, else attempting
- partial: consecutive_passes = 0; not_started becomes attempting
- skipped: no change

Mastered is sticky: later outcomes update counters but never demote it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

import structlog

from drillcoach.core.models import (
    PREREQUISITE_MET_LEVELS,
    DrillOutcome,
    MasteryLevel,
    Skill,
    utc_now,
)
from drillcoach.utils.math_utils import round_half_up

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

MASTERY_MIN_PASSES = 3
MASTERY_MIN_CONSECUTIVE = 2


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class MasteryTransition:
    """Result of applying one outcome to a skill's counters."""

    previous: MasteryLevel
    mastery: MasteryLevel
    pass_count: int
    fail_count: int
    consecutive_passes: int

    @property
    def changed(self) -> bool:
        return self.previous != self.mastery

    @property
    def reached_mastered(self) -> bool:
        return self.mastery == "mastered" and self.previous != "mastered"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "previous": self.previous,
            "mastery": self.mastery,
            "pass_count": self.pass_count,
            "fail_count": self.fail_count,
            "consecutive_passes": self.consecutive_passes,
        }


@dataclass
class MasterySummary:
    """Counts of skills per mastery level."""

    total: int
    not_started: int
    attempting: int
    practicing: int
    mastered: int

    @property
    def mastered_percent(self) -> int:
        if self.total == 0:
            return 0
        return round_half_up(self.mastered * 100 / self.total)

    @property
    def in_progress_percent(self) -> int:
        if self.total == 0:
            return 0
        return round_half_up((self.attempting + self.practicing) * 100 / self.total)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total": self.total,
            "not_started": self.not_started,
            "attempting": self.attempting,
            "practicing": self.practicing,
            "mastered": self.mastered,
            "mastered_percent": self.mastered_percent,
            "in_progress_percent": self.in_progress_percent,
        }


# =============================================================================
# TRANSITIONS
# =============================================================================


def _mastery_after_pass(pass_count: int, consecutive_passes: int) -> MasteryLevel:
    if consecutive_passes >= MASTERY_MIN_CONSECUTIVE and pass_count >= MASTERY_MIN_PASSES:
        return "mastered"
    if pass_count >= 1:
        return "practicing"
    return "attempting"


def transition(skill: Skill, outcome: DrillOutcome) -> MasteryTransition:
    """Compute the mastery transition for an outcome without mutating the skill.

    Args:
        skill: Skill with its current counters
        outcome: Recorded drill outcome

    Returns:
        MasteryTransition with the new counters and mastery level
    """
    previous = skill.mastery
    pass_count = skill.pass_count
    fail_count = skill.fail_count
    consecutive = skill.consecutive_passes

    if outcome == "pass":
        pass_count += 1
        consecutive += 1
        mastery = _mastery_after_pass(pass_count, consecutive)
    elif outcome == "fail":
        fail_count += 1
        consecutive = 0
        mastery = "practicing" if pass_count > 0 else "attempting"
    elif outcome == "partial":
        consecutive = 0
        mastery = "attempting" if previous == "not_started" else previous
    else:
        mastery = previous

    if previous == "mastered":
        mastery = "mastered"

    return MasteryTransition(
        previous=previous,
        mastery=mastery,
        pass_count=pass_count,
        fail_count=fail_count,
        consecutive_passes=consecutive,
    )


def apply_transition(
    skill: Skill,
    result: MasteryTransition,
    outcome: DrillOutcome,
    practiced_on: date | None = None,
) -> Skill:
    """Write a transition back onto the skill (in place) and sync its status.

    Args:
        skill: Skill to update
        result: Transition computed by ``transition``
        outcome: Outcome that produced the transition
        practiced_on: Practice date (sets last_practiced_at / mastered_at)

    Returns:
        The same skill instance, updated
    """
    skill.pass_count = result.pass_count
    skill.fail_count = result.fail_count
    skill.consecutive_passes = result.consecutive_passes
    skill.mastery = result.mastery

    if outcome != "skipped":
        if practiced_on is not None:
            skill.last_practiced_at = practiced_on
        if skill.status in ("locked", "available"):
            skill.status = "in_progress"

    if result.mastery == "mastered":
        skill.status = "mastered"
        if result.reached_mastered:
            skill.mastered_at = practiced_on

    skill.updated_at = utc_now()

    if result.changed:
        logger.info(
            "mastery_changed",
            skill_id=skill.skill_id,
            previous=result.previous,
            mastery=result.mastery,
            pass_count=result.pass_count,
            consecutive_passes=result.consecutive_passes,
        )
    return skill


# =============================================================================
# UNLOCKS
# =============================================================================


def prerequisites_met(skill: Skill, skills_by_id: dict[str, Skill]) -> bool:
    """True when every prerequisite is practicing or mastered.

    Unknown prerequisite ids count as unmet.
    """
    for prerequisite_id in skill.prerequisite_skill_ids:
        prerequisite = skills_by_id.get(prerequisite_id)
        if prerequisite is None or prerequisite.mastery not in PREREQUISITE_MET_LEVELS:
            return False
    return True


def propagate_unlocks(skills: list[Skill]) -> list[Skill]:
    """Flip locked skills whose prerequisites are now satisfied to available.

    Operates on every skill passed in, so prerequisites may cross quests.
    Safe to call repeatedly: already-available skills are left alone.

    Args:
        skills: All skills of the goal (mutated in place)

    Returns:
        Skills whose status changed to available
    """
    skills_by_id = {s.skill_id: s for s in skills}
    unlocked: list[Skill] = []

    for skill in skills:
        if skill.status != "locked":
            continue
        if prerequisites_met(skill, skills_by_id):
            skill.status = "available"
            skill.updated_at = utc_now()
            unlocked.append(skill)

    if unlocked:
        logger.info("skills_unlocked", skill_ids=[s.skill_id for s in unlocked])

    return unlocked


@dataclass
class LockedSkill:
    """A locked skill and the prerequisites still holding it back."""

    skill: Skill
    missing_prerequisite_ids: list[str]
    reasons: list[str]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "skill_id": self.skill.skill_id,
            "title": self.skill.title,
            "missing_prerequisite_ids": self.missing_prerequisite_ids,
            "reasons": self.reasons,
        }


def locked_skills(skills: list[Skill]) -> list[LockedSkill]:
    """List locked skills with the reason each prerequisite is unmet.

    Args:
        skills: All skills of the goal (prerequisites may cross quests)

    Returns:
        One LockedSkill per locked skill, in the order given
    """
    skills_by_id = {s.skill_id: s for s in skills}
    result: list[LockedSkill] = []

    for skill in skills:
        if skill.status != "locked":
            continue
        missing: list[str] = []
        reasons: list[str] = []
        for prerequisite_id in skill.prerequisite_skill_ids:
            prerequisite = skills_by_id.get(prerequisite_id)
            if prerequisite is None:
                missing.append(prerequisite_id)
                reasons.append(f"Prerequisite {prerequisite_id} not found")
            elif prerequisite.mastery not in PREREQUISITE_MET_LEVELS:
                missing.append(prerequisite_id)
                reasons.append(f'"{prerequisite.title}" not yet practiced ({prerequisite.mastery})')
        result.append(LockedSkill(skill, missing, reasons))

    return result


def compute_mastery_summary(skills: list[Skill]) -> MasterySummary:
    """Count skills per mastery level."""
    counts = {"not_started": 0, "attempting": 0, "practicing": 0, "mastered": 0}
    for skill in skills:
        counts[skill.mastery] = counts.get(skill.mastery, 0) + 1
    return MasterySummary(total=len(skills), **counts)
