"""Daily skill selection.

Picks exactly one skill per goal per day using a strict priority cascade:

1. retry           - yesterday's drill failed or was partial: same skill again
2. reinforce       - practicing skill with the fewest consecutive passes
3. next_in_sequence- first not_started skill (by order) whose prerequisites are met
4. loop_back       - ongoing goals only: mastered skill practiced longest ago
5. attempting      - any skill still at mastery=attempting

Skills flagged for manual review are never selected automatically. When
nothing qualifies a fixed-duration goal reports COMPLETED; an ongoing goal
falls back to its first skill.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

import structlog

from drillcoach.core.mastery import prerequisites_met
from drillcoach.core.models import Drill, Skill
from drillcoach.core.result import Result, err, ok

logger = structlog.get_logger(__name__)

SelectionTier = Literal[
    "retry",
    "reinforce",
    "next_in_sequence",
    "loop_back",
    "attempting",
    "fallback",
]

# Outcomes that make tomorrow a retry of the same skill
RETRY_OUTCOMES = ("fail", "partial")

DEFAULT_MAX_RETRY_ATTEMPTS = 3


@dataclass
class SkillSelection:
    """Skill chosen for today plus retry bookkeeping."""

    skill: Skill
    tier: SelectionTier
    is_retry: bool = False
    retry_count: int = 0
    context_note: str | None = None
    flagged_skill_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "skill_id": self.skill.skill_id,
            "tier": self.tier,
            "is_retry": self.is_retry,
            "retry_count": self.retry_count,
            "context_note": self.context_note,
            "flagged_skill_ids": self.flagged_skill_ids,
        }


def _select_retry(
    yesterday_drill: Drill | None,
    skills_by_id: dict[str, Skill],
    max_retry_attempts: int,
    flagged: list[str],
) -> SkillSelection | None:
    if yesterday_drill is None or yesterday_drill.outcome not in RETRY_OUTCOMES:
        return None

    skill = skills_by_id.get(yesterday_drill.skill_id)
    if skill is None or skill.needs_review:
        return None

    retry_count = yesterday_drill.retry_count + 1
    if retry_count > max_retry_attempts:
        skill.needs_review = True
        flagged.append(skill.skill_id)
        logger.warning(
            "skill_flagged_for_review",
            skill_id=skill.skill_id,
            retry_count=retry_count,
            max_retry_attempts=max_retry_attempts,
        )
        return None

    return SkillSelection(
        skill=skill,
        tier="retry",
        is_retry=True,
        retry_count=retry_count,
        context_note=yesterday_drill.observation or yesterday_drill.carry_forward,
    )


def select_skill_for_today(
    skills: list[Skill],
    *,
    is_ongoing: bool,
    today: date | None = None,
    yesterday_drill: Drill | None = None,
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
) -> Result[SkillSelection]:
    """Select the one skill to practice today.

    Args:
        skills: All skills of the goal
        is_ongoing: True for goals without a fixed end
        today: Date being scheduled (for logging)
        yesterday_drill: Drill scheduled for the previous day, if any
        max_retry_attempts: Retries allowed before flagging for manual review

    Returns:
        ok(SkillSelection); err(COMPLETED) when a fixed-duration goal has
        nothing left; err(INVALID_STATE) when the only remaining skills await
        manual review; err(NOT_FOUND) when there are no skills at all.
        Newly flagged skills are mutated (needs_review=True) and listed in
        ``flagged_skill_ids`` so the caller can persist them.
    """
    if not skills:
        return err("NOT_FOUND", "No skills to schedule")

    skills_by_id = {s.skill_id: s for s in skills}
    flagged: list[str] = []

    selection = _select_retry(yesterday_drill, skills_by_id, max_retry_attempts, flagged)

    if selection is None:
        selection = _select_by_mastery(skills, skills_by_id, is_ongoing)

    if selection is None:
        remaining = [s for s in skills if s.mastery != "mastered"]
        if is_ongoing:
            first = min(skills, key=lambda s: s.order)
            logger.warning("scheduler_fallback_first_skill", skill_id=first.skill_id)
            selection = SkillSelection(skill=first, tier="fallback")
        elif not remaining:
            logger.info("goal_completed", skills=len(skills))
            return err(
                "COMPLETED",
                "All skills mastered",
                flagged_skill_ids=flagged,
            )
        else:
            return err(
                "INVALID_STATE",
                "No skill can be scheduled automatically",
                pending_review=[s.skill_id for s in remaining if s.needs_review],
                blocked=[s.skill_id for s in remaining if not s.needs_review],
                flagged_skill_ids=flagged,
            )

    selection.flagged_skill_ids = flagged
    logger.debug(
        "skill_selected",
        skill_id=selection.skill.skill_id,
        tier=selection.tier,
        is_retry=selection.is_retry,
        retry_count=selection.retry_count,
        date=today.isoformat() if today else None,
    )
    return ok(selection)


def _select_by_mastery(
    skills: list[Skill],
    skills_by_id: dict[str, Skill],
    is_ongoing: bool,
) -> SkillSelection | None:
    candidates = [s for s in skills if not s.needs_review]

    practicing = [s for s in candidates if s.mastery == "practicing"]
    if practicing:
        skill = min(practicing, key=lambda s: (s.consecutive_passes, s.order))
        return SkillSelection(skill=skill, tier="reinforce")

    not_started = sorted(
        (s for s in candidates if s.mastery == "not_started"), key=lambda s: s.order
    )
    for skill in not_started:
        if prerequisites_met(skill, skills_by_id):
            return SkillSelection(skill=skill, tier="next_in_sequence")

    if is_ongoing:
        mastered = [s for s in candidates if s.mastery == "mastered"]
        if mastered:
            skill = min(mastered, key=lambda s: (s.last_practiced_at or date.min, s.order))
            return SkillSelection(skill=skill, tier="loop_back")

    attempting = [s for s in candidates if s.mastery == "attempting"]
    if attempting:
        skill = min(attempting, key=lambda s: s.order)
        return SkillSelection(skill=skill, tier="attempting")

    return None
