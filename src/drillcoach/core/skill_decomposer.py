"""Skill decomposition module.

Responsibilities:
- Turn a quest's ordered capability stages into atomic Skill records (NO LLM)
- Enforce the action / success-signal / locked-variable contracts
- Split skills that exceed the daily time budget into chained parts
- Link prerequisites between same-stage and adjacent-stage skills

Conversion rules:
- capability -> imperative action (verb-first, "can X" promoted, else "Practice: X")
- artifact -> binary success signal ("Completed: X" unless already a completion)
- designed failure "without X" -> extra locked variable "Ensure: X"

Time estimation:
- base = 2 min per word of capability + artifact, clamped to [15, 45]
- scaled by learner level (beginner 1.5, intermediate 1.0, advanced 0.75)
- final clamp to [5, 60]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from drillcoach.core.models import (
    CapabilityStage,
    Goal,
    Quest,
    Skill,
    SkillDifficulty,
    SkillType,
    UserLevel,
    new_id,
)
from drillcoach.core.result import Result, err, ok
from drillcoach.utils.math_utils import ceil_div, clamp, round_half_up
from drillcoach.utils.text_utils import capitalize_first, count_words

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_SKILL_MINUTES = 60
MIN_SKILL_MINUTES = 5

# Text-complexity estimate
MINUTES_PER_WORD = 2
BASE_MINUTES_FLOOR = 15
BASE_MINUTES_CEILING = 45

LEVEL_MULTIPLIERS: dict[UserLevel, float] = {
    "beginner": 1.5,
    "intermediate": 1.0,
    "advanced": 0.75,
}

MIN_SUCCESS_SIGNAL_LENGTH = 10

BASELINE_LOCKED_VARIABLE = "Don't switch approach mid-exercise"

ACTION_VERBS = (
    "create", "build", "write", "implement", "design", "develop",
    "configure", "setup", "install", "deploy", "test", "debug",
    "refactor", "optimize", "profile", "analyze", "document", "explain",
    "demonstrate", "present", "teach", "review", "fix", "modify",
    "adapt", "extend", "integrate", "connect", "validate", "verify",
    "measure", "evaluate", "compare", "research", "explore", "investigate",
    "identify", "discover", "practice", "rehearse", "drill", "exercise",
    "apply", "master", "complete", "finish", "deliver", "ship",
    "begin", "continue", "combine",
)

CAPABILITY_PATTERN = re.compile(r"^(?:can|able to)\s+(.+)$", re.IGNORECASE)
ARTICLE_PATTERN = re.compile(r"^(?:a|an|the)\s+", re.IGNORECASE)
COMPLETION_PATTERN = re.compile(
    r"^(?:completed?|finished?|working|functional|tested)\b", re.IGNORECASE
)
WITHOUT_PATTERN = re.compile(r"\bwithout\s+(.+)$", re.IGNORECASE)
PART_PREFIX_PATTERN = re.compile(r"^\[Part \d+/\d+\]\s*")
PART_SUFFIX_PATTERN = re.compile(r"\s*\(Part \d+/\d+\)$")

# Stage number (1-5) -> (skill type, difficulty)
STAGE_PROFILES: dict[int, tuple[SkillType, SkillDifficulty]] = {
    1: ("foundation", "intro"),
    2: ("foundation", "intro"),
    3: ("building", "practice"),
    4: ("building", "challenge"),
    5: ("synthesis", "synthesis"),
}

# Compound skills: combined practice of skills from different quests
COMPOUND_MINUTES_FACTOR = 0.6
COMPOUND_SUCCESS_SIGNAL = "Solution uses all component skills correctly and produces expected output"
COMPOUND_LOCKED_VARIABLES = ("Don't simplify the problem", "Use all components")
COMPOUND_ADVERSARIAL = "Miss one component or use them in isolation instead of combining"
COMPOUND_FAILURE_MODE = "Solution doesn't integrate all skills, missing the combined benefit"
COMPOUND_RECOVERY = (
    "Identify which component is missing or underused, practice that component, "
    "then retry the combination"
)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class DecompositionResult:
    """Skills produced for one quest."""

    quest_id: str
    skills: list[Skill]
    total_minutes: int
    estimated_days: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "skills": [s.to_dict() for s in self.skills],
            "total_minutes": self.total_minutes,
            "estimated_days": self.estimated_days,
            "warnings": self.warnings,
        }


# =============================================================================
# TEXT CONVERSION
# =============================================================================


def is_verb_first(text: str) -> bool:
    """Check whether text starts with a known action verb.

    A leading "[Part i/N]" marker is ignored. The first word matches when it
    equals a verb or starts with one ("builds", "testing").
    """
    stripped = PART_PREFIX_PATTERN.sub("", text.strip())
    if not stripped:
        return False
    first_word = re.sub(r"[^a-z]", "", stripped.split()[0].lower())
    if not first_word:
        return False
    return any(first_word == verb or first_word.startswith(verb) for verb in ACTION_VERBS)


def capability_to_action(capability: str) -> str:
    """Convert capability text into an imperative action."""
    text = capability.strip().rstrip(".")
    if is_verb_first(text):
        return capitalize_first(text)

    match = CAPABILITY_PATTERN.match(text)
    if match:
        return capitalize_first(match.group(1))

    return f"Practice: {text}"


def artifact_to_success_signal(artifact: str) -> str:
    """Convert artifact text into a binary success signal."""
    text = ARTICLE_PATTERN.sub("", artifact.strip())
    if COMPLETION_PATTERN.match(text):
        return capitalize_first(text)
    return f"Completed: {text}"


def derive_locked_variables(stage: CapabilityStage) -> list[str]:
    """Build locked-variable constraints for a stage.

    Always includes the baseline constraint; adds "Ensure: X" when the
    designed failure carries a "without X" clause.
    """
    locked = [BASELINE_LOCKED_VARIABLE]
    match = WITHOUT_PATTERN.search(stage.designed_failure or "")
    if match:
        clause = match.group(1).strip().rstrip(".")
        if clause:
            locked.append(f"Ensure: {clause}")
    return locked


def estimate_minutes(stage: CapabilityStage, level: UserLevel = "intermediate") -> int:
    """Estimate practice minutes from text complexity and learner level."""
    words = count_words(stage.capability) + count_words(stage.artifact)
    base = clamp(words * MINUTES_PER_WORD, BASE_MINUTES_FLOOR, BASE_MINUTES_CEILING)
    multiplier = LEVEL_MULTIPLIERS.get(level, 1.0)
    return clamp(round_half_up(base * multiplier), MIN_SKILL_MINUTES, MAX_SKILL_MINUTES)


# =============================================================================
# VALIDATION
# =============================================================================


def validate_skill(skill: Skill, budget: int, check_budget: bool = True) -> list[str]:
    """Validate a skill against the decomposition contract.

    Args:
        skill: Skill to validate
        budget: Daily minutes budget
        check_budget: If False, skip the upper-bound check (used before splitting)

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    if not is_verb_first(skill.action):
        errors.append(f"Action must start with a verb: '{skill.action[:40]}'")

    if len(skill.success_signal.strip()) < MIN_SUCCESS_SIGNAL_LENGTH:
        errors.append(
            f"Success signal too short ({len(skill.success_signal.strip())} chars, "
            f"min {MIN_SUCCESS_SIGNAL_LENGTH})"
        )

    if not skill.locked_variables:
        errors.append("At least one locked variable is required")

    if skill.estimated_minutes < MIN_SKILL_MINUTES:
        errors.append(
            f"Estimated minutes {skill.estimated_minutes} below minimum {MIN_SKILL_MINUTES}"
        )

    if check_budget and skill.estimated_minutes > budget:
        errors.append(
            f"Estimated minutes {skill.estimated_minutes} exceed daily budget {budget}"
        )

    return errors


# =============================================================================
# SPLITTING AND LINKING
# =============================================================================


def split_skill(skill: Skill, budget: int) -> list[Skill]:
    """Split a skill into ordered, prerequisite-chained parts.

    Minutes are spread evenly (base + remainder) and none exceeds the budget.
    A part never drops below MIN_SKILL_MINUTES, so at small budgets the parts
    can sum to slightly more than the original estimate. Only the final part
    keeps the resilience fields; only the first part keeps the original
    prerequisites.

    Args:
        skill: Skill whose estimate may exceed the budget
        budget: Maximum minutes per part (must be positive)

    Returns:
        [skill] unchanged if it fits, else N = ceil(minutes / budget) parts
    """
    if budget <= 0:
        raise ValueError(f"budget must be positive, got {budget}")

    num_parts = ceil_div(skill.estimated_minutes, budget)
    if num_parts <= 1:
        return [skill]

    base, remainder = divmod(skill.estimated_minutes, num_parts)
    floor = min(MIN_SKILL_MINUTES, budget)
    parts: list[Skill] = []

    for i in range(num_parts):
        number = i + 1
        is_last = number == num_parts
        if i == 0:
            label = "Begin"
        elif is_last:
            label = "Complete"
        else:
            label = "Continue"

        part = replace(
            skill,
            skill_id=new_id("skill"),
            title=f"{skill.title} (Part {number}/{num_parts})",
            action=f"[Part {number}/{num_parts}] {label}: {skill.action}",
            success_signal=(
                skill.success_signal
                if is_last
                else f"Part {number} checkpoint: Progress documented for continuation"
            ),
            estimated_minutes=max(floor, base + (1 if i < remainder else 0)),
            prerequisite_skill_ids=(
                list(skill.prerequisite_skill_ids) if i == 0 else [parts[-1].skill_id]
            ),
            component_skill_ids=list(skill.component_skill_ids),
            locked_variables=list(skill.locked_variables),
            adversarial_element=skill.adversarial_element if is_last else "",
            failure_mode=skill.failure_mode if is_last else "",
            recovery_steps=skill.recovery_steps if is_last else "",
            transfer_scenario=skill.transfer_scenario if is_last else "",
        )
        parts.append(part)

    logger.debug(
        "skill_split",
        title=skill.title,
        minutes=skill.estimated_minutes,
        budget=budget,
        parts=num_parts,
    )
    return parts


def link_prerequisites(skills: list[Skill]) -> None:
    """Chain skills linearly across same and adjacent stages (in place).

    Skill N requires skill N-1 when both come from the same stage or from
    neighbouring stages. A gap (a skipped stage) breaks the chain.
    """
    for previous, current in zip(skills, skills[1:]):
        if current.stage_index - previous.stage_index > 1:
            continue
        if previous.skill_id not in current.prerequisite_skill_ids:
            current.prerequisite_skill_ids.append(previous.skill_id)


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================


def build_skill(
    stage: CapabilityStage,
    stage_number: int,
    quest: Quest,
    goal: Goal,
) -> Skill:
    """Build an unsplit, unlinked Skill from one capability stage."""
    skill_type, difficulty = STAGE_PROFILES.get(stage_number, ("building", "practice"))
    topic = stage.topics[0] if stage.topics else (quest.topic or quest.title)

    return Skill(
        skill_id=new_id("skill"),
        quest_id=quest.quest_id,
        goal_id=goal.goal_id,
        user_id=goal.user_id,
        title=stage.title.strip() or f"{quest.title} - Stage {stage_number}",
        topic=topic,
        action=capability_to_action(stage.capability),
        success_signal=artifact_to_success_signal(stage.artifact),
        locked_variables=derive_locked_variables(stage),
        estimated_minutes=estimate_minutes(stage, goal.user_level),
        skill_type=skill_type,
        difficulty=difficulty,
        stage_index=stage_number,
        adversarial_element=stage.designed_failure,
        failure_mode=stage.consequence,
        recovery_steps=stage.recovery,
        transfer_scenario=stage.transfer,
    )


def build_compound_skill(
    components: list[Skill],
    quest: Quest,
    goal: Goal,
    budget: int,
) -> Skill:
    """Build a compound skill that practices its components together.

    The components become both prerequisites and ``component_skill_ids``.
    Minutes are 60% of the components' total, kept within [MIN, budget].

    Raises:
        ValueError: If fewer than two components are given
    """
    if len(components) < 2:
        raise ValueError("Compound skills require at least 2 component skills")

    titles = [PART_SUFFIX_PATTERN.sub("", c.title) for c in components]
    component_ids = [c.skill_id for c in components]
    minutes = round_half_up(sum(c.estimated_minutes for c in components) * COMPOUND_MINUTES_FACTOR)

    return Skill(
        skill_id=new_id("skill"),
        quest_id=quest.quest_id,
        goal_id=goal.goal_id,
        user_id=goal.user_id,
        title=" + ".join(titles[:2]),
        topic=components[0].topic,
        action=f"Combine {' and '.join(t.lower() for t in titles)} to solve a multi-step problem",
        success_signal=COMPOUND_SUCCESS_SIGNAL,
        locked_variables=list(COMPOUND_LOCKED_VARIABLES),
        estimated_minutes=clamp(minutes, MIN_SKILL_MINUTES, min(budget, MAX_SKILL_MINUTES)),
        skill_type="compound",
        difficulty="challenge",
        prerequisite_skill_ids=list(component_ids),
        component_skill_ids=list(component_ids),
        adversarial_element=COMPOUND_ADVERSARIAL,
        failure_mode=COMPOUND_FAILURE_MODE,
        recovery_steps=COMPOUND_RECOVERY,
    )


def _add_compound_skill(
    skills: list[Skill],
    prior_skills: list[Skill],
    quest: Quest,
    goal: Goal,
    budget: int,
) -> Skill:
    """Insert a cross-quest compound skill ahead of the quest's synthesis.

    Pairs the latest building skill of earlier quests with the first skill
    of this quest on a different topic. Synthesis skills list it as a
    component.
    """
    prior = next(
        (s for s in reversed(prior_skills) if s.skill_type == "building"), prior_skills[-1]
    )
    partner = next((s for s in skills if s.topic != prior.topic), skills[0])
    compound = build_compound_skill([prior, partner], quest, goal, budget)

    position = next(
        (i for i, s in enumerate(skills) if s.skill_type == "synthesis"), len(skills)
    )
    compound.stage_index = skills[position - 1].stage_index if position > 0 else 1
    skills.insert(position, compound)
    for skill in skills[position + 1:]:
        if skill.skill_type == "synthesis":
            skill.component_skill_ids.append(compound.skill_id)

    logger.debug(
        "compound_skill_added",
        quest_id=quest.quest_id,
        components=compound.component_skill_ids,
        minutes=compound.estimated_minutes,
    )
    return compound


def decompose_quest(
    quest: Quest,
    goal: Goal,
    stages: list[CapabilityStage],
    daily_minutes_budget: int | None = None,
    start_order: int = 0,
    prior_skills: list[Skill] | None = None,
) -> Result[DecompositionResult]:
    """Decompose a quest's capability stages into skills.

    Stages that fail validation are skipped with a warning. Skills receive
    order indexes starting at ``start_order`` so orders stay unique across
    the quests of a goal. When skills of earlier quests are given, one
    compound skill combining an earlier skill with this quest's work is
    added before the synthesis stage.

    Args:
        quest: Quest being decomposed
        goal: Owning goal (user, level and default budget)
        stages: Ordered capability stages for the quest
        daily_minutes_budget: Budget override (defaults to goal.daily_minutes)
        start_order: First order index to assign
        prior_skills: Skills of the goal's earlier quests, in order

    Returns:
        ok(DecompositionResult), err(VALIDATION_ERROR) for an unusable
        budget, or err(PROCESSING_ERROR) when no stage yields a usable skill.
    """
    requested = daily_minutes_budget if daily_minutes_budget is not None else goal.daily_minutes
    budget = min(requested, MAX_SKILL_MINUTES)
    if budget < MIN_SKILL_MINUTES:
        return err(
            "VALIDATION_ERROR",
            f"Daily budget {requested} is below the minimum skill length {MIN_SKILL_MINUTES}",
            quest_id=quest.quest_id,
        )

    warnings: list[str] = []
    skills: list[Skill] = []

    for position, stage in enumerate(stages):
        stage_number = stage.stage if 1 <= stage.stage <= 5 else position + 1
        label = f"Stage {stage_number} ({stage.title or 'untitled'})"

        if not stage.capability.strip() or not stage.artifact.strip():
            warnings.append(f"{label}: missing capability or artifact")
            continue

        skill = build_skill(stage, stage_number, quest, goal)
        errors = validate_skill(skill, budget, check_budget=False)
        if errors:
            warnings.append(f"{label}: {'; '.join(errors)}")
            continue

        parts = split_skill(skill, budget)
        part_errors = [e for p in parts for e in validate_skill(p, budget)]
        if part_errors:
            warnings.append(f"{label}: {'; '.join(part_errors)}")
            continue

        if skill.skill_type == "synthesis":
            component_ids = [s.skill_id for s in skills]
            for part in parts:
                part.component_skill_ids = list(component_ids)

        if len(parts) > 1:
            warnings.append(f"{label}: split into {len(parts)} parts to fit {budget} min")

        skills.extend(parts)

    if not skills:
        logger.warning("quest_decomposition_empty", quest_id=quest.quest_id, warnings=warnings)
        return err(
            "PROCESSING_ERROR",
            f"Quest '{quest.title}' produced no usable skills",
            quest_id=quest.quest_id,
            warnings=warnings,
        )

    if prior_skills:
        _add_compound_skill(skills, prior_skills, quest, goal, budget)

    link_prerequisites(skills)

    for offset, skill in enumerate(skills):
        skill.order = start_order + offset
        skill.status = "locked" if skill.prerequisite_skill_ids else "available"

    total_minutes = sum(s.estimated_minutes for s in skills)
    estimated_days = ceil_div(total_minutes, requested) if requested > 0 else len(skills)

    logger.info(
        "skills_decomposed",
        quest_id=quest.quest_id,
        stages=len(stages),
        skills=len(skills),
        total_minutes=total_minutes,
        estimated_days=estimated_days,
        warnings=len(warnings),
    )

    return ok(
        DecompositionResult(
            quest_id=quest.quest_id,
            skills=skills,
            total_minutes=total_minutes,
            estimated_days=estimated_days,
            warnings=warnings,
        )
    )
