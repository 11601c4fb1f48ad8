"""Progress aggregation and quest milestones.

Responsibilities:
- Create one milestone per quest with its acceptance criteria
- Evaluate milestone availability from quest mastery percentage
- Validate learner self-assessment before completing a milestone
- Aggregate goal-level and quest-level progress statistics

Milestone rule:
- available once mastered / total >= required_mastery_percent
- never moves backwards, never completes automatically
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import structlog

from drillcoach.core.mastery import compute_mastery_summary
from drillcoach.core.models import (
    Drill,
    LearningPlan,
    Quest,
    QuestMilestone,
    Skill,
    WeekPlan,
    utc_now,
)
from drillcoach.utils.math_utils import ceil_div, round_half_up

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_REQUIRED_MASTERY_PERCENT = 75
ON_TRACK_TOLERANCE_DAYS = 2

BASE_ACCEPTANCE_CRITERIA = (
    "All component skills demonstrated",
    "No critical errors or failures",
    "Can explain key decisions",
)

# Outcomes that count as a practiced day
PRACTICED_OUTCOMES = ("pass", "fail", "partial")


# =============================================================================
# MILESTONES
# =============================================================================


@dataclass
class MilestoneCheck:
    """Result of evaluating a milestone's mastery gate."""

    quest_id: str
    mastered: int
    total: int
    required_percent: int
    available: bool
    reason: str

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round_half_up(self.mastered * 100 / self.total)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "mastered": self.mastered,
            "total": self.total,
            "percent": self.percent,
            "required_percent": self.required_percent,
            "available": self.available,
            "reason": self.reason,
        }


def build_milestone(
    quest: Quest,
    user_id: str,
    quest_skills: list[Skill],
    required_percent: int = DEFAULT_REQUIRED_MASTERY_PERCENT,
) -> QuestMilestone:
    """Create the locked milestone for a quest.

    The synthesis skill's success signal, when present, becomes an extra
    acceptance criterion.
    """
    criteria = [BASE_ACCEPTANCE_CRITERIA[0]]
    synthesis = [s for s in quest_skills if s.skill_type == "synthesis"]
    if synthesis:
        criteria.append(synthesis[-1].success_signal)
    criteria.extend(BASE_ACCEPTANCE_CRITERIA[1:])

    return QuestMilestone(
        quest_id=quest.quest_id,
        goal_id=quest.goal_id,
        user_id=user_id,
        title=f"Milestone: {quest.title}",
        acceptance_criteria=criteria,
        required_mastery_percent=required_percent,
    )


def check_milestone(milestone: QuestMilestone, quest_skills: list[Skill]) -> MilestoneCheck:
    """Compute whether the quest's mastery crosses the milestone threshold."""
    total = len(quest_skills)
    mastered = sum(1 for s in quest_skills if s.mastery == "mastered")
    required = milestone.required_mastery_percent

    if total == 0:
        return MilestoneCheck(milestone.quest_id, 0, 0, required, False, "Quest has no skills")

    current = round_half_up(mastered * 100 / total)
    if mastered * 100 >= required * total:
        reason = f"Mastery threshold reached ({current}% / {required}% required)"
        return MilestoneCheck(milestone.quest_id, mastered, total, required, True, reason)

    needed = ceil_div(required * total, 100) - mastered
    reason = f"Need {needed} more skill(s) mastered ({current}% / {required}% required)"
    return MilestoneCheck(milestone.quest_id, mastered, total, required, False, reason)


def evaluate_milestone(milestone: QuestMilestone, quest_skills: list[Skill]) -> MilestoneCheck:
    """Unlock a locked milestone when its mastery gate is met (in place).

    Statuses other than locked are left untouched.
    """
    check = check_milestone(milestone, quest_skills)
    if milestone.status == "locked" and check.available:
        milestone.status = "available"
        milestone.unlocked_at = utc_now()
        logger.info(
            "milestone_available",
            quest_id=milestone.quest_id,
            mastered=check.mastered,
            total=check.total,
            required_percent=check.required_percent,
        )
    return check


def unmet_criteria(milestone: QuestMilestone, self_assessment: dict[str, bool]) -> list[str]:
    """Acceptance criteria the learner has not confirmed."""
    return [c for c in milestone.acceptance_criteria if not self_assessment.get(c, False)]


# =============================================================================
# GOAL PROGRESS
# =============================================================================


@dataclass
class GoalProgress:
    """Aggregate statistics for one goal."""

    goal_id: str
    is_ongoing: bool
    skills_total: int
    skills_mastered: int
    skills_practicing: int
    skills_attempting: int
    skills_not_started: int
    skills_locked: int
    skills_available: int
    skills_needing_review: int
    mastered_by_type: dict[str, int]
    weeks_total: int
    weeks_completed: int
    current_week_number: int | None
    drills_completed: int
    drills_passed: int
    drills_failed: int
    drills_skipped: int
    drills_missed: int
    pass_rate: float
    expected_days: int
    days_behind: int
    on_track: bool
    current_streak: int
    last_practice_date: date | None = None
    milestones_available: list[str] = field(default_factory=list)
    milestones_completed: list[str] = field(default_factory=list)

    @property
    def percent_complete(self) -> int:
        if self.skills_total == 0:
            return 0
        return round_half_up(self.skills_mastered * 100 / self.skills_total)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "goal_id": self.goal_id,
            "is_ongoing": self.is_ongoing,
            "skills_total": self.skills_total,
            "skills_mastered": self.skills_mastered,
            "skills_practicing": self.skills_practicing,
            "skills_attempting": self.skills_attempting,
            "skills_not_started": self.skills_not_started,
            "skills_locked": self.skills_locked,
            "skills_available": self.skills_available,
            "skills_needing_review": self.skills_needing_review,
            "mastered_by_type": self.mastered_by_type,
            "weeks_total": self.weeks_total,
            "weeks_completed": self.weeks_completed,
            "current_week_number": self.current_week_number,
            "drills_completed": self.drills_completed,
            "drills_passed": self.drills_passed,
            "drills_failed": self.drills_failed,
            "drills_skipped": self.drills_skipped,
            "drills_missed": self.drills_missed,
            "pass_rate": round(self.pass_rate, 3),
            "expected_days": self.expected_days,
            "days_behind": self.days_behind,
            "on_track": self.on_track,
            "current_streak": self.current_streak,
            "percent_complete": self.percent_complete,
            "last_practice_date": self.last_practice_date.isoformat() if self.last_practice_date else None,
            "milestones_available": self.milestones_available,
            "milestones_completed": self.milestones_completed,
        }


def _expected_practice_days(
    weeks: list[WeekPlan],
    today: date,
    days_per_week: int,
) -> tuple[int, int | None]:
    """Practice days that should have happened by today, and the current week."""
    current = next((w for w in weeks if w.status == "active"), None)
    if current is None:
        return sum(w.days_total for w in weeks if w.status == "completed"), None

    before = sum(w.days_total for w in weeks if w.week_number < current.week_number)
    elapsed = (today - current.start_date).days + 1
    into_week = max(0, min(days_per_week, elapsed))
    return before + into_week, current.week_number


def _current_streak(practiced_dates: set[date], today: date) -> int:
    """Consecutive practiced days ending today (or yesterday)."""
    day = today if today in practiced_dates else today - timedelta(days=1)
    streak = 0
    while day in practiced_dates:
        streak += 1
        day -= timedelta(days=1)
    return streak


def build_goal_progress(
    plan: LearningPlan,
    skills: list[Skill],
    weeks: list[WeekPlan],
    drills: list[Drill],
    milestones: list[QuestMilestone],
    today: date,
    days_per_week: int = 5,
    tolerance_days: int = ON_TRACK_TOLERANCE_DAYS,
) -> GoalProgress:
    """Aggregate goal statistics from skills, weeks and drill history.

    Args:
        plan: The goal's learning plan
        skills: All skills of the goal
        weeks: All week plans of the goal
        drills: All drills of the goal
        milestones: All quest milestones of the goal
        today: Reference date for schedule and streak calculations
        days_per_week: Practice days per week
        tolerance_days: Days behind still considered on track

    Returns:
        GoalProgress snapshot
    """
    practiced = [d for d in drills if d.outcome in PRACTICED_OUTCOMES]
    passed = sum(1 for d in practiced if d.outcome == "pass")
    failed = sum(1 for d in practiced if d.outcome == "fail")
    graded = passed + failed

    expected, current_week = _expected_practice_days(weeks, today, days_per_week)
    practiced_dates = {d.scheduled_date for d in practiced}
    days_behind = max(0, expected - len(practiced_dates))

    mastered_by_type = {"foundation": 0, "building": 0, "compound": 0, "synthesis": 0}
    for skill in skills:
        if skill.mastery == "mastered":
            mastered_by_type[skill.skill_type] = mastered_by_type.get(skill.skill_type, 0) + 1

    return GoalProgress(
        goal_id=plan.goal_id,
        is_ongoing=plan.is_ongoing,
        skills_total=len(skills),
        skills_mastered=sum(1 for s in skills if s.mastery == "mastered"),
        skills_practicing=sum(1 for s in skills if s.mastery == "practicing"),
        skills_attempting=sum(1 for s in skills if s.mastery == "attempting"),
        skills_not_started=sum(1 for s in skills if s.mastery == "not_started"),
        skills_locked=sum(1 for s in skills if s.status == "locked"),
        skills_available=sum(1 for s in skills if s.status == "available"),
        skills_needing_review=sum(1 for s in skills if s.needs_review),
        mastered_by_type=mastered_by_type,
        weeks_total=len(weeks),
        weeks_completed=sum(1 for w in weeks if w.status == "completed"),
        current_week_number=current_week,
        drills_completed=len(practiced),
        drills_passed=passed,
        drills_failed=failed,
        drills_skipped=sum(1 for d in drills if d.outcome == "skipped" and d.status != "missed"),
        drills_missed=sum(1 for d in drills if d.status == "missed"),
        pass_rate=passed / graded if graded else 0.0,
        expected_days=expected,
        days_behind=days_behind,
        on_track=days_behind <= tolerance_days,
        current_streak=_current_streak(practiced_dates, today),
        last_practice_date=max(practiced_dates) if practiced_dates else None,
        milestones_available=[m.quest_id for m in milestones if m.status == "available"],
        milestones_completed=[m.quest_id for m in milestones if m.status == "completed"],
    )


# =============================================================================
# QUEST PROGRESS
# =============================================================================


@dataclass
class QuestProgress:
    """Skill and milestone statistics for one quest."""

    quest_id: str
    goal_id: str
    title: str
    week_label: str | None
    estimated_days: int
    skills_total: int
    skills_mastered: int
    skills_practicing: int
    skills_attempting: int
    skills_not_started: int
    skills_locked: int
    milestone_status: str | None = None
    milestone_reason: str | None = None

    @property
    def percent_complete(self) -> int:
        if self.skills_total == 0:
            return 0
        return round_half_up(self.skills_mastered * 100 / self.skills_total)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "quest_id": self.quest_id,
            "goal_id": self.goal_id,
            "title": self.title,
            "week_label": self.week_label,
            "estimated_days": self.estimated_days,
            "skills_total": self.skills_total,
            "skills_mastered": self.skills_mastered,
            "skills_practicing": self.skills_practicing,
            "skills_attempting": self.skills_attempting,
            "skills_not_started": self.skills_not_started,
            "skills_locked": self.skills_locked,
            "percent_complete": self.percent_complete,
            "milestone_status": self.milestone_status,
            "milestone_reason": self.milestone_reason,
        }


def build_quest_progress(
    plan: LearningPlan,
    quest_id: str,
    quest_skills: list[Skill],
    milestone: QuestMilestone | None,
) -> QuestProgress:
    """Aggregate one quest's skills with its plan mappings and milestone."""
    mapping = next((m for m in plan.quest_skill_mapping if m.quest_id == quest_id), None)
    week_mapping = next((m for m in plan.quest_week_mapping if m.quest_id == quest_id), None)
    summary = compute_mastery_summary(quest_skills)

    return QuestProgress(
        quest_id=quest_id,
        goal_id=plan.goal_id,
        title=mapping.title if mapping else quest_id,
        week_label=week_mapping.label if week_mapping else None,
        estimated_days=mapping.estimated_days if mapping else len(quest_skills),
        skills_total=summary.total,
        skills_mastered=summary.mastered,
        skills_practicing=summary.practicing,
        skills_attempting=summary.attempting,
        skills_not_started=summary.not_started,
        skills_locked=sum(1 for s in quest_skills if s.status == "locked"),
        milestone_status=milestone.status if milestone else None,
        milestone_reason=check_milestone(milestone, quest_skills).reason if milestone else None,
    )
