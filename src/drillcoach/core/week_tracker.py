"""Week tracking module.

Responsibilities:
- Lay out week plans per quest (5 practice days, 7 calendar days each)
- Roll drill outcomes into week counters
- Drive the week lifecycle: pending -> active -> completed
- Compute carry-forward skills and the next week's focus
- Summarize completed weeks

Week layout:
- weeks per quest = ceil(estimated_days / 5)
- quest skills spread evenly across the quest's weeks
- weeks are contiguous: next start = previous end + 1 day
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Literal

import structlog

from drillcoach.core.models import (
    PREREQUISITE_MET_LEVELS,
    DrillOutcome,
    Goal,
    Quest,
    QuestWeekMapping,
    Skill,
    WeekPlan,
    new_id,
    utc_now,
)
from drillcoach.core.result import Result, err, ok
from drillcoach.utils.math_utils import ceil_div
from drillcoach.utils.text_utils import truncate

if TYPE_CHECKING:
    from drillcoach.db.stores import WeekPlanStore

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

PRACTICE_DAYS_PER_WEEK = 5
CALENDAR_DAYS_PER_WEEK = 7
MAX_SKILLS_PER_WEEK = 5

GOOD_WEEK_PASS_RATE = 0.7
NEEDS_IMPROVEMENT_PASS_RATE = 0.5

REVIEW_WEEK_THEME = "Review & Reinforce"
FOCUS_ACTION_MAX_LENGTH = 50

WeekRating = Literal["good", "needs_improvement", "struggling"]


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class WeekProgressDelta:
    """Counter increments applied to a week plan."""

    completed: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    mastered: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary for JSON serialization."""
        return {
            "completed": self.completed,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "mastered": self.mastered,
        }


@dataclass
class WeekSummary:
    """Summary of one week of practice."""

    week_number: int
    theme: str
    skills_mastered: int
    skills_in_progress: int
    days_practiced: int
    days_total: int
    pass_rate: float
    rating: WeekRating
    next_week_focus: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "week_number": self.week_number,
            "theme": self.theme,
            "skills_mastered": self.skills_mastered,
            "skills_in_progress": self.skills_in_progress,
            "days_practiced": self.days_practiced,
            "days_total": self.days_total,
            "pass_rate": round(self.pass_rate, 3),
            "rating": self.rating,
            "next_week_focus": self.next_week_focus,
        }


@dataclass
class WeekCompletion:
    """Outcome of completing a week."""

    week: WeekPlan
    next_week: WeekPlan | None
    carry_forward_skill_ids: list[str]
    quest_finished: bool
    summary: WeekSummary

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "week": self.week.to_dict(),
            "next_week": self.next_week.to_dict() if self.next_week else None,
            "carry_forward_skill_ids": self.carry_forward_skill_ids,
            "quest_finished": self.quest_finished,
            "summary": self.summary.to_dict(),
        }


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def delta_for_outcome(outcome: DrillOutcome, reached_mastered: bool = False) -> WeekProgressDelta:
    """Counter increments for one recorded drill outcome."""
    delta = WeekProgressDelta(mastered=1 if reached_mastered else 0)
    if outcome == "skipped":
        delta.skipped = 1
        return delta
    delta.completed = 1
    if outcome == "pass":
        delta.passed = 1
    elif outcome == "fail":
        delta.failed = 1
    return delta


def apply_delta(week: WeekPlan, delta: WeekProgressDelta) -> WeekPlan:
    """Add counter increments to a week plan (in place)."""
    week.drills_completed += delta.completed
    week.drills_passed += delta.passed
    week.drills_failed += delta.failed
    week.drills_skipped += delta.skipped
    week.skills_mastered += delta.mastered
    return week


def _chunk_evenly(items: list[str], parts: int) -> list[list[str]]:
    base, remainder = divmod(len(items), parts)
    chunks: list[list[str]] = []
    start = 0
    for i in range(parts):
        size = base + (1 if i < remainder else 0)
        chunks.append(items[start:start + size])
        start += size
    return chunks


def rate_week(pass_rate: float) -> WeekRating:
    """Classify a week by pass rate."""
    if pass_rate >= GOOD_WEEK_PASS_RATE:
        return "good"
    if pass_rate >= NEEDS_IMPROVEMENT_PASS_RATE:
        return "needs_improvement"
    return "struggling"


def carry_forward_skill_ids(week: WeekPlan, skills_by_id: dict[str, Skill]) -> list[str]:
    """Skills of the week not yet practicing or mastered."""
    return [
        skill_id
        for skill_id in week.skill_ids
        if skill_id in skills_by_id
        and skills_by_id[skill_id].mastery not in PREREQUISITE_MET_LEVELS
    ]


def next_week_focus(carry_ids: list[str], skills_by_id: dict[str, Skill]) -> str:
    """One-line focus statement for the following week."""
    if not carry_ids:
        return "Ready to advance! No skills need review."
    if len(carry_ids) == 1:
        action = truncate(skills_by_id[carry_ids[0]].action, FOCUS_ACTION_MAX_LENGTH)
        return f'Focus: Master "{action}" before moving on.'
    titles = ", ".join(skills_by_id[s].title for s in carry_ids[:3])
    return f"Focus: Complete {len(carry_ids)} skills from this week: {titles}"


def summarize_week(week: WeekPlan, skills_by_id: dict[str, Skill]) -> WeekSummary:
    """Build the summary of a week from its counters and skill states."""
    week_skills = [skills_by_id[s] for s in week.skill_ids if s in skills_by_id]
    return WeekSummary(
        week_number=week.week_number,
        theme=week.theme,
        skills_mastered=sum(1 for s in week_skills if s.mastery == "mastered"),
        skills_in_progress=sum(
            1 for s in week_skills if s.mastery in ("attempting", "practicing")
        ),
        days_practiced=week.drills_completed,
        days_total=week.days_total,
        pass_rate=week.pass_rate,
        rating=rate_week(week.pass_rate),
        next_week_focus=week.next_week_focus,
    )


# =============================================================================
# WEEK LAYOUT
# =============================================================================


def build_week_plans(
    goal: Goal,
    quest_days: list[tuple[Quest, list[str], int]],
    start_date: date,
    days_per_week: int = PRACTICE_DAYS_PER_WEEK,
) -> tuple[list[WeekPlan], list[QuestWeekMapping]]:
    """Lay out contiguous week plans for every quest.

    Args:
        goal: Owning goal
        quest_days: (quest, ordered skill ids, estimated practice days) per quest
        start_date: First day of week 1
        days_per_week: Practice days per week

    Returns:
        (week plans with the first one active, quest -> week mapping)
    """
    weeks: list[WeekPlan] = []
    mapping: list[QuestWeekMapping] = []
    week_number = 1
    week_start = start_date

    for quest, skill_ids, estimated_days in quest_days:
        num_weeks = max(1, ceil_div(max(estimated_days, 1), days_per_week))
        first_week = week_number

        for index, chunk in enumerate(_chunk_evenly(skill_ids, num_weeks)):
            theme = quest.title if num_weeks == 1 else f"{quest.title} ({index + 1}/{num_weeks})"
            weeks.append(
                WeekPlan(
                    week_plan_id=new_id("week"),
                    goal_id=goal.goal_id,
                    user_id=goal.user_id,
                    quest_id=quest.quest_id,
                    week_number=week_number,
                    start_date=week_start,
                    end_date=week_start + timedelta(days=CALENDAR_DAYS_PER_WEEK - 1),
                    theme=theme,
                    scheduled_skill_ids=chunk,
                    days_total=days_per_week,
                )
            )
            week_number += 1
            week_start += timedelta(days=CALENDAR_DAYS_PER_WEEK)

        mapping.append(
            QuestWeekMapping(quest_id=quest.quest_id, first_week=first_week, last_week=week_number - 1)
        )

    if weeks:
        weeks[0].status = "active"

    return weeks, mapping


def build_follow_up_week(
    previous: WeekPlan,
    carry_ids: list[str],
    skills: list[Skill],
    days_per_week: int = PRACTICE_DAYS_PER_WEEK,
) -> WeekPlan:
    """Create the week after the last planned one (ongoing goals).

    Carried skills come first; remaining slots are filled with unmastered
    skills by order, or with the least recently practiced mastered skills.
    """
    slots = max(0, MAX_SKILLS_PER_WEEK - len(carry_ids))
    ordered = sorted(skills, key=lambda s: s.order)
    fillers = [s for s in ordered if s.skill_id not in carry_ids and s.mastery != "mastered"]
    if not fillers:
        fillers = sorted(
            (s for s in ordered if s.skill_id not in carry_ids),
            key=lambda s: (s.last_practiced_at or date.min, s.order),
        )
    scheduled = [s.skill_id for s in fillers[:slots]]
    quest_id = _follow_up_quest_id(previous, scheduled, skills)

    start = previous.end_date + timedelta(days=1)
    number = previous.week_number + 1
    return WeekPlan(
        week_plan_id=new_id("week"),
        goal_id=previous.goal_id,
        user_id=previous.user_id,
        quest_id=quest_id,
        week_number=number,
        start_date=start,
        end_date=start + timedelta(days=CALENDAR_DAYS_PER_WEEK - 1),
        theme=REVIEW_WEEK_THEME if carry_ids else f"Week {number}",
        status="active",
        scheduled_skill_ids=scheduled,
        carry_forward_skill_ids=list(carry_ids),
        days_total=days_per_week,
    )


def _follow_up_quest_id(previous: WeekPlan, scheduled: list[str], skills: list[Skill]) -> str:
    """Quest of the first scheduled skill, else the previous week's quest."""
    by_id = {s.skill_id: s for s in skills}
    for skill_id in scheduled:
        if skill_id in by_id:
            return by_id[skill_id].quest_id
    return previous.quest_id


# =============================================================================
# TRACKER
# =============================================================================


class WeekTracker:
    """Week lifecycle and counters on top of a WeekPlanStore."""

    def __init__(self, store: WeekPlanStore, days_per_week: int = PRACTICE_DAYS_PER_WEEK):
        self.store = store
        self.days_per_week = days_per_week

    def record_outcome(
        self,
        week_plan_id: str,
        outcome: DrillOutcome,
        reached_mastered: bool = False,
    ) -> WeekPlan | None:
        """Increment a week's counters for one recorded outcome."""
        delta = delta_for_outcome(outcome, reached_mastered)
        week = self.store.update_progress(week_plan_id, delta)
        if week is not None:
            logger.debug(
                "week_progress_updated",
                week_plan_id=week_plan_id,
                outcome=outcome,
                pass_rate=round(week.pass_rate, 3),
            )
        return week

    def activate_week(self, week: WeekPlan) -> Result[WeekPlan]:
        """Move a pending week to active (no-op for an active week)."""
        if week.status == "completed":
            return err(
                "INVALID_STATE",
                f"Week {week.week_number} is already completed",
                week_plan_id=week.week_plan_id,
            )
        if week.status == "active":
            return ok(week)

        week.status = "active"
        self.store.save(week)
        logger.info("week_activated", week_plan_id=week.week_plan_id, week_number=week.week_number)
        return ok(week)

    def complete_week(
        self,
        week: WeekPlan,
        skills: list[Skill],
        is_ongoing: bool,
    ) -> Result[WeekCompletion]:
        """Complete an active week and activate the one after it.

        Args:
            week: Week to complete (must be active)
            skills: All skills of the goal
            is_ongoing: Whether to create a follow-up week when none is pending

        Returns:
            ok(WeekCompletion) or err(INVALID_STATE) for a non-active week
        """
        if week.status != "active":
            return err(
                "INVALID_STATE",
                f"Week {week.week_number} is {week.status}, only the active week can be completed",
                week_plan_id=week.week_plan_id,
            )

        skills_by_id = {s.skill_id: s for s in skills}
        carry_ids = carry_forward_skill_ids(week, skills_by_id)

        week.status = "completed"
        week.next_week_focus = next_week_focus(carry_ids, skills_by_id)
        week.completed_at = utc_now()
        self.store.save(week)

        pending = sorted(
            (
                w
                for w in self.store.list_by_goal(week.goal_id)
                if w.status == "pending" and w.week_number > week.week_number
            ),
            key=lambda w: w.week_number,
        )
        next_week = pending[0] if pending else None
        quest_finished = next_week is None or next_week.quest_id != week.quest_id

        if next_week is not None:
            next_week.carry_forward_skill_ids = [
                s for s in carry_ids if s not in next_week.scheduled_skill_ids
            ]
            activated = self.activate_week(next_week)
            if not activated.ok:
                return activated
        elif is_ongoing:
            next_week = build_follow_up_week(week, carry_ids, skills, self.days_per_week)
            self.store.save(next_week)

        summary = summarize_week(week, skills_by_id)
        logger.info(
            "week_completed",
            week_plan_id=week.week_plan_id,
            week_number=week.week_number,
            pass_rate=round(week.pass_rate, 3),
            carry_forward=len(carry_ids),
            quest_finished=quest_finished,
            next_week=next_week.week_number if next_week else None,
        )

        return ok(
            WeekCompletion(
                week=week,
                next_week=next_week,
                carry_forward_skill_ids=carry_ids,
                quest_finished=quest_finished,
                summary=summary,
            )
        )
