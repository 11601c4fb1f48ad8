"""Domain models for the practice core.

Entities:
- Goal, Quest, CapabilityStage: inputs supplied by the calling layer
- Skill: atomic, time-boxed practice unit derived from a capability stage
- Drill, DrillSection: one day's exercise for one skill
- WeekPlan: contiguous span of practice days within one quest
- LearningPlan: per-goal totals and quest mappings
- QuestMilestone: quest-level synthesis checkpoint

All entities serialize to plain dicts (dates as ISO strings) so stores can
persist them as JSON.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal

# =============================================================================
# TYPES
# =============================================================================

SkillType = Literal["foundation", "building", "compound", "synthesis"]
SkillDifficulty = Literal["intro", "practice", "challenge", "synthesis"]
MasteryLevel = Literal["not_started", "attempting", "practicing", "mastered"]
SkillStatus = Literal["locked", "available", "in_progress", "mastered"]
DrillStatus = Literal["scheduled", "completed", "missed"]
DrillOutcome = Literal["pass", "fail", "partial", "skipped"]
SectionType = Literal["warmup", "main", "stretch"]
WeekStatus = Literal["pending", "active", "completed"]
MilestoneStatus = Literal["locked", "available", "in_progress", "completed"]
GoalDuration = Literal["fixed", "ongoing"]
UserLevel = Literal["beginner", "intermediate", "advanced"]

# Mastery levels that satisfy a prerequisite
PREREQUISITE_MET_LEVELS: frozenset[str] = frozenset({"practicing", "mastered"})


def new_id(prefix: str) -> str:
    """Generate a prefixed random identifier, e.g. ``skill-1a2b3c4d5e6f``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utc_now() -> str:
    """Current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def _date_or_none(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso_or_none(value: date | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# INPUTS
# =============================================================================


@dataclass
class Goal:
    """A learner's top-level objective."""

    goal_id: str
    user_id: str
    title: str
    duration: GoalDuration = "fixed"
    daily_minutes: int = 30
    user_level: UserLevel = "intermediate"
    start_date: date | None = None

    @property
    def is_ongoing(self) -> bool:
        return self.duration == "ongoing"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Goal:
        return cls(
            goal_id=data["goal_id"],
            user_id=data["user_id"],
            title=data.get("title", data["goal_id"]),
            duration=data.get("duration", "fixed"),
            daily_minutes=int(data.get("daily_minutes", 30)),
            user_level=data.get("user_level", "intermediate"),
            start_date=_date_or_none(data.get("start_date")),
        )


@dataclass
class Quest:
    """An ordered stage of a goal."""

    quest_id: str
    goal_id: str
    title: str
    order: int
    topic: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], goal_id: str) -> Quest:
        return cls(
            quest_id=data["quest_id"],
            goal_id=data.get("goal_id", goal_id),
            title=data["title"],
            order=int(data.get("order", 0)),
            topic=data.get("topic", ""),
        )


@dataclass
class CapabilityStage:
    """Externally supplied description of one competence level."""

    stage: int
    title: str
    capability: str
    artifact: str
    designed_failure: str = ""
    consequence: str = ""
    recovery: str = ""
    transfer: str = ""
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "stage": self.stage,
            "title": self.title,
            "capability": self.capability,
            "artifact": self.artifact,
            "designed_failure": self.designed_failure,
            "consequence": self.consequence,
            "recovery": self.recovery,
            "transfer": self.transfer,
            "topics": list(self.topics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CapabilityStage:
        return cls(
            stage=int(data.get("stage", 0)),
            title=data.get("title", ""),
            capability=data.get("capability", ""),
            artifact=data.get("artifact", ""),
            designed_failure=data.get("designed_failure", data.get("designedFailure", "")),
            consequence=data.get("consequence", ""),
            recovery=data.get("recovery", ""),
            transfer=data.get("transfer", ""),
            topics=list(data.get("topics", [])),
        )


# =============================================================================
# SKILL
# =============================================================================


@dataclass
class Skill:
    """Atomic practice unit with mastery tracking."""

    skill_id: str
    quest_id: str
    goal_id: str
    user_id: str
    title: str
    topic: str
    action: str
    success_signal: str
    locked_variables: list[str]
    estimated_minutes: int
    skill_type: SkillType = "foundation"
    difficulty: SkillDifficulty = "intro"
    order: int = 0
    stage_index: int = 0
    prerequisite_skill_ids: list[str] = field(default_factory=list)
    component_skill_ids: list[str] = field(default_factory=list)
    # Resilience fields (propagated from the capability stage)
    adversarial_element: str = ""
    failure_mode: str = ""
    recovery_steps: str = ""
    transfer_scenario: str = ""
    # Mutable tracking
    mastery: MasteryLevel = "not_started"
    status: SkillStatus = "locked"
    pass_count: int = 0
    fail_count: int = 0
    consecutive_passes: int = 0
    last_practiced_at: date | None = None
    mastered_at: date | None = None
    needs_review: bool = False
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_compound(self) -> bool:
        return bool(self.component_skill_ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "skill_id": self.skill_id,
            "quest_id": self.quest_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "title": self.title,
            "topic": self.topic,
            "action": self.action,
            "success_signal": self.success_signal,
            "locked_variables": list(self.locked_variables),
            "estimated_minutes": self.estimated_minutes,
            "skill_type": self.skill_type,
            "difficulty": self.difficulty,
            "order": self.order,
            "stage_index": self.stage_index,
            "prerequisite_skill_ids": list(self.prerequisite_skill_ids),
            "component_skill_ids": list(self.component_skill_ids),
            "adversarial_element": self.adversarial_element,
            "failure_mode": self.failure_mode,
            "recovery_steps": self.recovery_steps,
            "transfer_scenario": self.transfer_scenario,
            "mastery": self.mastery,
            "status": self.status,
            "pass_count": self.pass_count,
            "fail_count": self.fail_count,
            "consecutive_passes": self.consecutive_passes,
            "last_practiced_at": _iso_or_none(self.last_practiced_at),
            "mastered_at": _iso_or_none(self.mastered_at),
            "needs_review": self.needs_review,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Skill:
        values = dict(data)
        values["locked_variables"] = list(values.get("locked_variables", []))
        values["prerequisite_skill_ids"] = list(values.get("prerequisite_skill_ids", []))
        values["component_skill_ids"] = list(values.get("component_skill_ids", []))
        values["last_practiced_at"] = _date_or_none(values.get("last_practiced_at"))
        values["mastered_at"] = _date_or_none(values.get("mastered_at"))
        return cls(**values)


# =============================================================================
# DRILL
# =============================================================================


@dataclass
class DrillSection:
    """One section (warmup, main or stretch) of a drill."""

    type: SectionType
    title: str
    action: str
    estimated_minutes: int
    pass_signal: str | None = None
    constraint: str | None = None
    source_skill_id: str | None = None
    is_from_previous_quest: bool = False
    adversarial_element: str | None = None
    failure_mode: str | None = None
    recovery_steps: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "title": self.title,
            "action": self.action,
            "estimated_minutes": self.estimated_minutes,
            "pass_signal": self.pass_signal,
            "constraint": self.constraint,
            "source_skill_id": self.source_skill_id,
            "is_from_previous_quest": self.is_from_previous_quest,
            "adversarial_element": self.adversarial_element,
            "failure_mode": self.failure_mode,
            "recovery_steps": self.recovery_steps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DrillSection:
        return cls(**data)


@dataclass
class Drill:
    """One day's concrete exercise for one skill."""

    drill_id: str
    user_id: str
    goal_id: str
    skill_id: str
    quest_id: str
    scheduled_date: date
    main: DrillSection
    week_plan_id: str | None = None
    day_number: int = 1
    warmup: DrillSection | None = None
    stretch: DrillSection | None = None
    status: DrillStatus = "scheduled"
    outcome: DrillOutcome | None = None
    observation: str | None = None
    carry_forward: str | None = None
    context_note: str | None = None
    is_retry: bool = False
    retry_count: int = 0
    previous_drill_id: str | None = None
    completed_at: str | None = None
    created_at: str = field(default_factory=utc_now)

    @property
    def sections(self) -> list[DrillSection]:
        """Sections in practice order, skipping absent ones."""
        return [s for s in (self.warmup, self.main, self.stretch) if s is not None]

    @property
    def total_minutes(self) -> int:
        return sum(s.estimated_minutes for s in self.sections)

    @property
    def is_open(self) -> bool:
        """True while no outcome has been recorded."""
        return self.status == "scheduled" and self.outcome is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "$schema": "drill_v1",
            "drill_id": self.drill_id,
            "user_id": self.user_id,
            "goal_id": self.goal_id,
            "skill_id": self.skill_id,
            "quest_id": self.quest_id,
            "week_plan_id": self.week_plan_id,
            "scheduled_date": self.scheduled_date.isoformat(),
            "day_number": self.day_number,
            "warmup": self.warmup.to_dict() if self.warmup else None,
            "main": self.main.to_dict(),
            "stretch": self.stretch.to_dict() if self.stretch else None,
            "status": self.status,
            "outcome": self.outcome,
            "observation": self.observation,
            "carry_forward": self.carry_forward,
            "context_note": self.context_note,
            "is_retry": self.is_retry,
            "retry_count": self.retry_count,
            "previous_drill_id": self.previous_drill_id,
            "completed_at": self.completed_at,
            "created_at": self.created_at,
            "total_minutes": self.total_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Drill:
        return cls(
            drill_id=data["drill_id"],
            user_id=data["user_id"],
            goal_id=data["goal_id"],
            skill_id=data["skill_id"],
            quest_id=data["quest_id"],
            week_plan_id=data.get("week_plan_id"),
            scheduled_date=_date_or_none(data["scheduled_date"]),  # type: ignore[arg-type]
            day_number=int(data.get("day_number", 1)),
            warmup=DrillSection.from_dict(data["warmup"]) if data.get("warmup") else None,
            main=DrillSection.from_dict(data["main"]),
            stretch=DrillSection.from_dict(data["stretch"]) if data.get("stretch") else None,
            status=data.get("status", "scheduled"),
            outcome=data.get("outcome"),
            observation=data.get("observation"),
            carry_forward=data.get("carry_forward"),
            context_note=data.get("context_note"),
            is_retry=bool(data.get("is_retry", False)),
            retry_count=int(data.get("retry_count", 0)),
            previous_drill_id=data.get("previous_drill_id"),
            completed_at=data.get("completed_at"),
            created_at=data.get("created_at") or utc_now(),
        )


# =============================================================================
# WEEK PLAN
# =============================================================================


@dataclass
class WeekPlan:
    """A contiguous span of practice days within one quest."""

    week_plan_id: str
    goal_id: str
    user_id: str
    quest_id: str
    week_number: int
    start_date: date
    end_date: date
    theme: str = ""
    status: WeekStatus = "pending"
    scheduled_skill_ids: list[str] = field(default_factory=list)
    carry_forward_skill_ids: list[str] = field(default_factory=list)
    days_total: int = 5
    drills_completed: int = 0
    drills_passed: int = 0
    drills_failed: int = 0
    drills_skipped: int = 0
    skills_mastered: int = 0
    next_week_focus: str | None = None
    completed_at: str | None = None

    @property
    def pass_rate(self) -> float:
        """passed / (passed + failed); 0.0 when nothing was graded."""
        graded = self.drills_passed + self.drills_failed
        if graded == 0:
            return 0.0
        return self.drills_passed / graded

    @property
    def skill_ids(self) -> list[str]:
        """Carried-forward skills first, then this week's scheduled skills."""
        seen: list[str] = []
        for skill_id in [*self.carry_forward_skill_ids, *self.scheduled_skill_ids]:
            if skill_id not in seen:
                seen.append(skill_id)
        return seen

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "week_plan_id": self.week_plan_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "quest_id": self.quest_id,
            "week_number": self.week_number,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "theme": self.theme,
            "status": self.status,
            "scheduled_skill_ids": list(self.scheduled_skill_ids),
            "carry_forward_skill_ids": list(self.carry_forward_skill_ids),
            "days_total": self.days_total,
            "drills_completed": self.drills_completed,
            "drills_passed": self.drills_passed,
            "drills_failed": self.drills_failed,
            "drills_skipped": self.drills_skipped,
            "skills_mastered": self.skills_mastered,
            "next_week_focus": self.next_week_focus,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeekPlan:
        values = dict(data)
        values["start_date"] = _date_or_none(values["start_date"])
        values["end_date"] = _date_or_none(values["end_date"])
        values["scheduled_skill_ids"] = list(values.get("scheduled_skill_ids", []))
        values["carry_forward_skill_ids"] = list(values.get("carry_forward_skill_ids", []))
        return cls(**values)


# =============================================================================
# LEARNING PLAN
# =============================================================================


@dataclass
class QuestSkillMapping:
    """Skills produced for one quest."""

    quest_id: str
    title: str
    order: int
    skill_ids: list[str]
    estimated_days: int
    foundation_count: int = 0
    building_count: int = 0
    compound_count: int = 0
    synthesis_count: int = 0

    @property
    def skill_count(self) -> int:
        return len(self.skill_ids)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "title": self.title,
            "order": self.order,
            "skill_ids": list(self.skill_ids),
            "skill_count": self.skill_count,
            "estimated_days": self.estimated_days,
            "foundation_count": self.foundation_count,
            "building_count": self.building_count,
            "compound_count": self.compound_count,
            "synthesis_count": self.synthesis_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuestSkillMapping:
        values = {k: v for k, v in data.items() if k != "skill_count"}
        return cls(**values)


@dataclass
class QuestWeekMapping:
    """Week span covered by one quest."""

    quest_id: str
    first_week: int
    last_week: int

    @property
    def label(self) -> str:
        """Display label, e.g. "Week 2" or "Weeks 3-4"."""
        if self.first_week == self.last_week:
            return f"Week {self.first_week}"
        return f"Weeks {self.first_week}-{self.last_week}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "first_week": self.first_week,
            "last_week": self.last_week,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuestWeekMapping:
        return cls(
            quest_id=data["quest_id"],
            first_week=int(data["first_week"]),
            last_week=int(data["last_week"]),
        )


@dataclass
class LearningPlan:
    """Per-goal totals and quest mappings."""

    goal_id: str
    user_id: str
    duration: GoalDuration
    daily_minutes: int
    start_date: date
    total_skills: int
    foundation_count: int = 0
    building_count: int = 0
    compound_count: int = 0
    synthesis_count: int = 0
    total_minutes: int = 0
    total_days: int | None = None
    total_weeks: int | None = None
    estimated_completion_date: date | None = None
    quest_skill_mapping: list[QuestSkillMapping] = field(default_factory=list)
    quest_week_mapping: list[QuestWeekMapping] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)

    @property
    def is_ongoing(self) -> bool:
        return self.duration == "ongoing"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "$schema": "learning_plan_v1",
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "duration": self.duration,
            "daily_minutes": self.daily_minutes,
            "start_date": self.start_date.isoformat(),
            "total_skills": self.total_skills,
            "foundation_count": self.foundation_count,
            "building_count": self.building_count,
            "compound_count": self.compound_count,
            "synthesis_count": self.synthesis_count,
            "total_minutes": self.total_minutes,
            "total_days": self.total_days,
            "total_weeks": self.total_weeks,
            "estimated_completion_date": _iso_or_none(self.estimated_completion_date),
            "quest_skill_mapping": [m.to_dict() for m in self.quest_skill_mapping],
            "quest_week_mapping": [m.to_dict() for m in self.quest_week_mapping],
            "warnings": list(self.warnings),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearningPlan:
        return cls(
            goal_id=data["goal_id"],
            user_id=data["user_id"],
            duration=data.get("duration", "fixed"),
            daily_minutes=int(data.get("daily_minutes", 30)),
            start_date=_date_or_none(data["start_date"]),  # type: ignore[arg-type]
            total_skills=int(data.get("total_skills", 0)),
            foundation_count=int(data.get("foundation_count", 0)),
            building_count=int(data.get("building_count", 0)),
            compound_count=int(data.get("compound_count", 0)),
            synthesis_count=int(data.get("synthesis_count", 0)),
            total_minutes=int(data.get("total_minutes", 0)),
            total_days=data.get("total_days"),
            total_weeks=data.get("total_weeks"),
            estimated_completion_date=_date_or_none(data.get("estimated_completion_date")),
            quest_skill_mapping=[
                QuestSkillMapping.from_dict(m) for m in data.get("quest_skill_mapping", [])
            ],
            quest_week_mapping=[
                QuestWeekMapping.from_dict(m) for m in data.get("quest_week_mapping", [])
            ],
            warnings=list(data.get("warnings", [])),
            created_at=data.get("created_at") or utc_now(),
        )


# =============================================================================
# MILESTONE
# =============================================================================


@dataclass
class QuestMilestone:
    """Quest-level synthesis checkpoint gated by mastery percentage."""

    quest_id: str
    goal_id: str
    user_id: str
    title: str
    acceptance_criteria: list[str]
    required_mastery_percent: int = 75
    status: MilestoneStatus = "locked"
    self_assessment: dict[str, bool] = field(default_factory=dict)
    unlocked_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "title": self.title,
            "acceptance_criteria": list(self.acceptance_criteria),
            "required_mastery_percent": self.required_mastery_percent,
            "status": self.status,
            "self_assessment": dict(self.self_assessment),
            "unlocked_at": self.unlocked_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuestMilestone:
        values = dict(data)
        values["acceptance_criteria"] = list(values.get("acceptance_criteria", []))
        values["self_assessment"] = dict(values.get("self_assessment", {}))
        return cls(**values)
