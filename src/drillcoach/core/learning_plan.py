"""Practice engine: the single entry point for the calling layer.

Initializes a learning plan once per goal (skills, week plans, milestones),
then serves one drill per day, records outcomes, and reports progress.

Every public method returns a ``Result``; store failures surface as
STORE_ERROR instead of exceptions.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, TypeVar

import structlog

from drillcoach.config.app_config import PracticeConfig
from drillcoach.core.drill_generator import (
    CARRY_FORWARD_SKIPPED,
    DayContext,
    DrillGenerator,
    build_carry_forward,
)
from drillcoach.core.mastery import (
    LockedSkill,
    apply_transition,
    locked_skills,
    propagate_unlocks,
    transition,
)
from drillcoach.core.models import (
    PREREQUISITE_MET_LEVELS,
    CapabilityStage,
    Drill,
    DrillOutcome,
    Goal,
    LearningPlan,
    MasteryLevel,
    Quest,
    QuestMilestone,
    QuestSkillMapping,
    QuestWeekMapping,
    Skill,
    WeekPlan,
    utc_now,
)
from drillcoach.core.progress import (
    GoalProgress,
    MilestoneCheck,
    QuestProgress,
    build_goal_progress,
    build_milestone,
    build_quest_progress,
    check_milestone,
    evaluate_milestone,
    unmet_criteria,
)
from drillcoach.core.result import PracticeValidationError, Result, err, ok
from drillcoach.core.scheduler import select_skill_for_today
from drillcoach.core.skill_decomposer import decompose_quest
from drillcoach.core.week_tracker import (
    CALENDAR_DAYS_PER_WEEK,
    WeekCompletion,
    WeekSummary,
    WeekTracker,
    build_week_plans,
    summarize_week,
)
from drillcoach.db.stores import DuplicateDrillError, StoreError, Stores
from drillcoach.llm.capability_generator import CapabilityGenerator
from drillcoach.utils.math_utils import ceil_div

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Result[Any]])

# Duration hint passed to the stage generator
DEFAULT_GENERATION_DAYS = 30


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class TodayPractice:
    """What the learner should practice on a given day."""

    has_content: bool
    drill: Drill | None = None
    skill: Skill | None = None
    week_plan: WeekPlan | None = None
    context: str | None = None
    review_skill: Skill | None = None
    review_quest_title: str | None = None
    component_skills: list[Skill] = field(default_factory=list)
    goal_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "has_content": self.has_content,
            "drill": self.drill.to_dict() if self.drill else None,
            "skill": self.skill.to_dict() if self.skill else None,
            "week_plan": self.week_plan.to_dict() if self.week_plan else None,
            "context": self.context,
            "review_skill": self.review_skill.to_dict() if self.review_skill else None,
            "review_quest_title": self.review_quest_title,
            "component_skills": [s.to_dict() for s in self.component_skills],
            "goal_completed": self.goal_completed,
        }


@dataclass
class OutcomeResult:
    """Effects of recording one drill outcome."""

    drill: Drill
    skill: Skill
    previous_mastery: MasteryLevel
    new_mastery: MasteryLevel
    unlocked_skill_ids: list[str] = field(default_factory=list)
    milestone: QuestMilestone | None = None
    already_recorded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "drill": self.drill.to_dict(),
            "skill": self.skill.to_dict(),
            "previous_mastery": self.previous_mastery,
            "new_mastery": self.new_mastery,
            "unlocked_skill_ids": self.unlocked_skill_ids,
            "milestone": self.milestone.to_dict() if self.milestone else None,
            "already_recorded": self.already_recorded,
        }


# =============================================================================
# HELPERS
# =============================================================================


def _store_guarded(method: F) -> F:
    """Convert store and validation exceptions into error results."""

    @functools.wraps(method)
    def wrapper(self: PracticeEngine, *args: Any, **kwargs: Any) -> Result[Any]:
        try:
            return method(self, *args, **kwargs)
        except PracticeValidationError as e:
            return err("VALIDATION_ERROR", str(e), errors=e.errors)
        except StoreError as e:
            logger.error("store_error", operation=method.__name__, error=str(e))
            return err("STORE_ERROR", str(e), operation=method.__name__)

    return wrapper  # type: ignore[return-value]


def check_prerequisite_graph(skills: list[Skill]) -> None:
    """Raise if prerequisites reference unknown skills or form a cycle.

    Uses Kahn's algorithm: any skill left unprocessed sits on a cycle.

    Raises:
        PracticeValidationError: With the offending skill ids in ``errors``
    """
    ids = {s.skill_id for s in skills}
    unknown = sorted(
        f"{s.skill_id} -> {p}" for s in skills for p in s.prerequisite_skill_ids if p not in ids
    )
    if unknown:
        raise PracticeValidationError("Unknown prerequisite skill ids", unknown)

    in_degree = {s.skill_id: len(set(s.prerequisite_skill_ids)) for s in skills}
    dependents: dict[str, list[str]] = {s.skill_id: [] for s in skills}
    for skill in skills:
        for prerequisite_id in set(skill.prerequisite_skill_ids):
            dependents[prerequisite_id].append(skill.skill_id)

    ready = [skill_id for skill_id, degree in in_degree.items() if degree == 0]
    processed = 0
    while ready:
        current = ready.pop()
        processed += 1
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                ready.append(dependent)

    if processed < len(skills):
        cyclic = sorted(skill_id for skill_id, degree in in_degree.items() if degree > 0)
        raise PracticeValidationError("Prerequisite cycle detected", cyclic)


def validate_prerequisite_graph(skills: list[Skill]) -> Result[None]:
    """Result-returning wrapper around ``check_prerequisite_graph``."""
    try:
        check_prerequisite_graph(skills)
    except PracticeValidationError as e:
        return err("VALIDATION_ERROR", str(e), skill_ids=e.errors)
    return ok(None)


def select_review_skill(skill: Skill, skills: list[Skill]) -> Skill | None:
    """Pick a skill to review in the warmup.

    Prefers a prerequisite of today's skill that is already practicing or
    mastered; otherwise the least recently practiced mastered skill.
    """
    by_id = {s.skill_id: s for s in skills}
    for prerequisite_id in skill.prerequisite_skill_ids:
        prerequisite = by_id.get(prerequisite_id)
        if prerequisite is not None and prerequisite.mastery in PREREQUISITE_MET_LEVELS:
            return prerequisite

    mastered = [s for s in skills if s.mastery == "mastered" and s.skill_id != skill.skill_id]
    if not mastered:
        return None
    return min(mastered, key=lambda s: (s.last_practiced_at or date.min, s.order))


def _outcome_from_signal(pass_signal_met: bool, partial: bool) -> DrillOutcome:
    if pass_signal_met:
        return "pass"
    return "partial" if partial else "fail"


def _count_types(skills: list[Skill]) -> dict[str, int]:
    counts = {"foundation": 0, "building": 0, "compound": 0, "synthesis": 0}
    for skill in skills:
        counts[skill.skill_type] = counts.get(skill.skill_type, 0) + 1
    return counts


# =============================================================================
# ENGINE
# =============================================================================


class PracticeEngine:
    """Orchestrates decomposition, scheduling, drills and progression.

    Args:
        stores: Persistence collaborators
        config: Practice settings (defaults from PracticeConfig)
        generator: Optional stage generator for quests supplied without stages
        drill_generator: Drill builder (defaults from config)
    """

    def __init__(
        self,
        stores: Stores,
        config: PracticeConfig | None = None,
        generator: CapabilityGenerator | None = None,
        drill_generator: DrillGenerator | None = None,
    ):
        self.stores = stores
        self.config = config or PracticeConfig()
        self.generator = generator
        self.drill_generator = drill_generator or DrillGenerator(
            warmup_minutes=self.config.warmup_minutes,
            stretch_minutes=self.config.stretch_minutes,
            max_retry_attempts=self.config.max_retry_attempts,
        )
        self.week_tracker = WeekTracker(stores.weeks, self.config.practice_days_per_week)

    # -------------------------------------------------------------------------
    # Plan initialization
    # -------------------------------------------------------------------------

    @_store_guarded
    def initialize_plan(
        self,
        goal: Goal,
        quests: list[Quest],
        stages_by_quest: dict[str, list[CapabilityStage]] | None = None,
    ) -> Result[LearningPlan]:
        """Decompose every quest and persist the goal's plan.

        Runs once per goal: an existing plan is returned unchanged.

        Args:
            goal: Goal being planned
            quests: Quests of the goal (any order; sorted by ``order``)
            stages_by_quest: Capability stages keyed by quest_id

        Returns:
            ok(LearningPlan); err(VALIDATION_ERROR) for bad budgets or an
            invalid prerequisite graph; err(PROCESSING_ERROR) when no quest
            yields a skill.
        """
        existing = self.stores.plans.get(goal.goal_id)
        if existing is not None:
            logger.info("plan_already_initialized", goal_id=goal.goal_id)
            return ok(existing)

        if not quests:
            return err("VALIDATION_ERROR", "Goal has no quests", goal_id=goal.goal_id)

        stages_by_quest = stages_by_quest or {}
        start_date = goal.start_date or date.today()
        warnings: list[str] = []
        all_skills: list[Skill] = []
        mappings: list[QuestSkillMapping] = []
        quest_days: list[tuple[Quest, list[str], int]] = []
        planned_quests: list[tuple[Quest, list[Skill]]] = []

        for quest in sorted(quests, key=lambda q: q.order):
            stages = list(stages_by_quest.get(quest.quest_id, []))
            if not stages and self.generator is not None:
                generated = self.generator.generate(
                    quest.topic or quest.title, goal.user_level, DEFAULT_GENERATION_DAYS
                )
                stages = generated.stages
                warnings.extend(f"{quest.title}: {w}" for w in generated.warnings)

            if not stages:
                logger.warning("quest_skipped_no_stages", quest_id=quest.quest_id)
                warnings.append(f"{quest.title}: no capability stages, quest skipped")
                continue

            decomposed = decompose_quest(
                quest,
                goal,
                stages,
                goal.daily_minutes,
                start_order=len(all_skills),
                prior_skills=all_skills,
            )
            if not decomposed.ok:
                if decomposed.code == "PROCESSING_ERROR":
                    logger.warning("quest_skipped_no_skills", quest_id=quest.quest_id)
                    warnings.append(f"{quest.title}: {decomposed.error.message}")
                    warnings.extend(decomposed.error.details.get("warnings", []))
                    continue
                return decomposed

            result = decomposed.value
            quest_skills = result.skills

            # Quest k starts only once quest k-1's last skill is under way
            if all_skills:
                first = quest_skills[0]
                first.prerequisite_skill_ids.append(all_skills[-1].skill_id)
                first.status = "locked"

            all_skills.extend(quest_skills)
            warnings.extend(f"{quest.title}: {w}" for w in result.warnings)

            counts = _count_types(quest_skills)
            skill_ids = [s.skill_id for s in quest_skills]
            mappings.append(
                QuestSkillMapping(
                    quest_id=quest.quest_id,
                    title=quest.title,
                    order=quest.order,
                    skill_ids=skill_ids,
                    estimated_days=result.estimated_days,
                    foundation_count=counts["foundation"],
                    building_count=counts["building"],
                    compound_count=counts["compound"],
                    synthesis_count=counts["synthesis"],
                )
            )
            quest_days.append((quest, skill_ids, result.estimated_days))
            planned_quests.append((quest, quest_skills))

        if not all_skills:
            return err(
                "PROCESSING_ERROR",
                "No quest produced usable skills",
                goal_id=goal.goal_id,
                warnings=warnings,
            )

        graph = validate_prerequisite_graph(all_skills)
        if not graph.ok:
            return graph

        weeks, week_mapping = build_week_plans(
            goal, quest_days, start_date, self.config.practice_days_per_week
        )

        total_days = sum(m.estimated_days for m in mappings)
        total_weeks = ceil_div(total_days, self.config.practice_days_per_week)
        counts = _count_types(all_skills)
        plan = LearningPlan(
            goal_id=goal.goal_id,
            user_id=goal.user_id,
            duration=goal.duration,
            daily_minutes=goal.daily_minutes,
            start_date=start_date,
            total_skills=len(all_skills),
            foundation_count=counts["foundation"],
            building_count=counts["building"],
            compound_count=counts["compound"],
            synthesis_count=counts["synthesis"],
            total_minutes=sum(s.estimated_minutes for s in all_skills),
            total_days=None if goal.is_ongoing else total_days,
            total_weeks=None if goal.is_ongoing else total_weeks,
            estimated_completion_date=(
                None
                if goal.is_ongoing
                else start_date + timedelta(days=total_weeks * CALENDAR_DAYS_PER_WEEK)
            ),
            quest_skill_mapping=mappings,
            quest_week_mapping=week_mapping,
            warnings=warnings,
        )

        for skill in all_skills:
            self.stores.skills.save(skill)
        for week in weeks:
            self.stores.weeks.save(week)
        for quest, quest_skills in planned_quests:
            self.stores.milestones.save(
                build_milestone(
                    quest, goal.user_id, quest_skills, self.config.milestone_mastery_percent
                )
            )
        self.stores.plans.save(plan)

        logger.info(
            "plan_initialized",
            goal_id=goal.goal_id,
            quests=len(planned_quests),
            skills=len(all_skills),
            weeks=len(weeks),
            warnings=len(warnings),
        )
        return ok(plan)

    # -------------------------------------------------------------------------
    # Daily practice
    # -------------------------------------------------------------------------

    @_store_guarded
    def get_today_practice(
        self,
        user_id: str,
        goal_id: str,
        today: date | None = None,
    ) -> Result[TodayPractice]:
        """Return today's drill, generating it on first request.

        Calling this repeatedly for the same date returns the same drill.

        Returns:
            ok(TodayPractice); goal_completed=True once a fixed-duration
            goal has nothing left to practice.
        """
        today = today or date.today()
        plan = self.stores.plans.get(goal_id)
        if plan is None:
            return err("NOT_FOUND", f"No learning plan for goal {goal_id}", goal_id=goal_id)

        reconciled = self.reconcile_missed_drills(user_id, goal_id, today)
        if not reconciled.ok:
            return reconciled

        existing = self.stores.drills.get_by_date(user_id, goal_id, today)
        if existing is not None:
            return ok(self._today_from_drill(existing, plan))

        skills = self.stores.skills.list_by_goal(goal_id)
        yesterday = self.stores.drills.get_by_date(user_id, goal_id, today - timedelta(days=1))

        selected = select_skill_for_today(
            skills,
            is_ongoing=plan.is_ongoing,
            today=today,
            yesterday_drill=yesterday,
            max_retry_attempts=self.config.max_retry_attempts,
        )
        flagged = (
            selected.value.flagged_skill_ids
            if selected.ok
            else selected.error.details.get("flagged_skill_ids", [])
        )
        self._persist_flags(skills, flagged)

        if not selected.ok:
            if selected.code == "COMPLETED":
                logger.info("goal_completed", goal_id=goal_id)
                return ok(TodayPractice(has_content=False, goal_completed=True))
            return selected

        selection = selected.value
        skill = selection.skill
        review_skill = select_review_skill(skill, skills)
        week = self.stores.weeks.get_active_by_goal(goal_id)
        titles = {m.quest_id: m.title for m in plan.quest_skill_mapping}

        context_note = selection.context_note
        if not selection.is_retry and yesterday is not None:
            context_note = yesterday.carry_forward

        context = DayContext(
            user_id=user_id,
            goal_id=goal_id,
            date=today,
            day_number=max(1, (today - plan.start_date).days + 1),
            week_plan_id=week.week_plan_id if week else None,
            daily_minutes=plan.daily_minutes,
            quest_title=titles.get(skill.quest_id),
            review_quest_title=titles.get(review_skill.quest_id) if review_skill else None,
            is_retry=selection.is_retry,
            retry_count=selection.retry_count,
            previous_drill=yesterday if selection.is_retry else None,
            context_note=context_note,
        )

        generated = self.drill_generator.generate(skill, review_skill, context)
        if not generated.ok:
            if generated.error.details.get("needs_review"):
                skill.needs_review = True
                self.stores.skills.save(skill)
            return generated

        drill = generated.value
        try:
            self.stores.drills.save(drill)
        except DuplicateDrillError:
            winner = self.stores.drills.get_by_date(user_id, goal_id, today)
            if winner is None:
                raise
            logger.info("drill_creation_lost_race", goal_id=goal_id, date=today.isoformat())
            return ok(self._today_from_drill(winner, plan))

        logger.info(
            "drill_created",
            drill_id=drill.drill_id,
            goal_id=goal_id,
            skill_id=skill.skill_id,
            tier=selection.tier,
            date=today.isoformat(),
        )
        return ok(
            TodayPractice(
                has_content=True,
                drill=drill,
                skill=skill,
                week_plan=week,
                context=drill.context_note,
                review_skill=review_skill if drill.warmup else None,
                review_quest_title=context.review_quest_title if drill.warmup else None,
                component_skills=self._component_skills(skill, skills),
            )
        )

    def _component_skills(self, skill: Skill | None, skills: list[Skill] | None = None) -> list[Skill]:
        if skill is None or skill.skill_type != "compound":
            return []
        if skills is None:
            found = [self.stores.skills.get(skill_id) for skill_id in skill.component_skill_ids]
        else:
            by_id = {s.skill_id: s for s in skills}
            found = [by_id.get(skill_id) for skill_id in skill.component_skill_ids]
        return [s for s in found if s is not None]

    def _today_from_drill(self, drill: Drill, plan: LearningPlan) -> TodayPractice:
        skill = self.stores.skills.get(drill.skill_id)
        week = self.stores.weeks.get(drill.week_plan_id) if drill.week_plan_id else None

        review_skill = None
        review_quest_title = None
        if drill.warmup is not None and drill.warmup.source_skill_id:
            review_skill = self.stores.skills.get(drill.warmup.source_skill_id)
            if review_skill is not None:
                titles = {m.quest_id: m.title for m in plan.quest_skill_mapping}
                review_quest_title = titles.get(review_skill.quest_id)

        return TodayPractice(
            has_content=True,
            drill=drill,
            skill=skill,
            week_plan=week,
            context=drill.context_note,
            review_skill=review_skill,
            review_quest_title=review_quest_title,
            component_skills=self._component_skills(skill),
        )

    def _persist_flags(self, skills: list[Skill], flagged_ids: list[str]) -> None:
        by_id = {s.skill_id: s for s in skills}
        for skill_id in flagged_ids:
            skill = by_id.get(skill_id)
            if skill is not None:
                skill.needs_review = True
                skill.updated_at = utc_now()
                self.stores.skills.save(skill)

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    @_store_guarded
    def record_outcome(
        self,
        drill_id: str,
        pass_signal_met: bool,
        observation: str | None = None,
        partial: bool = False,
    ) -> Result[OutcomeResult]:
        """Record the learner's outcome for a drill, exactly once.

        Args:
            drill_id: Drill being graded
            pass_signal_met: Whether the main pass signal was met
            observation: Free-text note from the learner
            partial: Progress made but pass signal not met

        Returns:
            ok(OutcomeResult); a repeat of the same outcome returns
            already_recorded=True without touching counters.
        """
        drill = self.stores.drills.get(drill_id)
        if drill is None:
            return err("NOT_FOUND", f"Drill not found: {drill_id}", drill_id=drill_id)
        if drill.status == "missed":
            return err("INVALID_STATE", "Cannot record an outcome on a missed drill", drill_id=drill_id)

        outcome = _outcome_from_signal(pass_signal_met, partial)
        carry_forward = build_carry_forward(outcome, observation)

        if not self.stores.drills.update_outcome(drill_id, outcome, observation, carry_forward):
            return self._already_recorded(drill_id, outcome)

        skill = self.stores.skills.get(drill.skill_id)
        if skill is None:
            return err("NOT_FOUND", f"Skill not found: {drill.skill_id}", skill_id=drill.skill_id)

        step = transition(skill, outcome)
        apply_transition(skill, step, outcome, practiced_on=drill.scheduled_date)
        stored = self.stores.skills.update_mastery(
            skill.skill_id,
            step.mastery,
            step.pass_count,
            step.fail_count,
            step.consecutive_passes,
            status=skill.status,
            last_practiced_at=skill.last_practiced_at,
            mastered_at=skill.mastered_at,
        )
        if stored is None:
            return err("NOT_FOUND", f"Skill not found: {drill.skill_id}", skill_id=drill.skill_id)
        skill = stored

        goal_skills = [
            skill if s.skill_id == skill.skill_id else s
            for s in self.stores.skills.list_by_goal(drill.goal_id)
        ]
        unlocked = propagate_unlocks(goal_skills)
        for unlocked_skill in unlocked:
            self.stores.skills.save(unlocked_skill)

        if drill.week_plan_id:
            self.week_tracker.record_outcome(drill.week_plan_id, outcome, step.reached_mastered)

        milestone = self._refresh_milestone(skill.quest_id, goal_skills)
        updated = self.stores.drills.get(drill_id) or drill

        logger.info(
            "outcome_recorded",
            drill_id=drill_id,
            skill_id=skill.skill_id,
            outcome=outcome,
            previous_mastery=step.previous,
            mastery=step.mastery,
            unlocked=len(unlocked),
        )
        return ok(
            OutcomeResult(
                drill=updated,
                skill=skill,
                previous_mastery=step.previous,
                new_mastery=step.mastery,
                unlocked_skill_ids=[s.skill_id for s in unlocked],
                milestone=milestone,
            )
        )

    def _already_recorded(self, drill_id: str, outcome: DrillOutcome) -> Result[OutcomeResult]:
        current = self.stores.drills.get(drill_id)
        if current is None:
            return err("NOT_FOUND", f"Drill not found: {drill_id}", drill_id=drill_id)
        if current.status == "missed":
            return err("INVALID_STATE", "Cannot record an outcome on a missed drill", drill_id=drill_id)
        if current.outcome != outcome:
            return err(
                "INVALID_STATE",
                f"Drill already recorded as {current.outcome}",
                drill_id=drill_id,
                outcome=current.outcome,
            )

        skill = self.stores.skills.get(current.skill_id)
        if skill is None:
            return err("NOT_FOUND", f"Skill not found: {current.skill_id}", skill_id=current.skill_id)

        logger.debug("outcome_already_recorded", drill_id=drill_id, outcome=outcome)
        return ok(
            OutcomeResult(
                drill=current,
                skill=skill,
                previous_mastery=skill.mastery,
                new_mastery=skill.mastery,
                milestone=self.stores.milestones.get(skill.quest_id),
                already_recorded=True,
            )
        )

    @_store_guarded
    def skip_drill(self, drill_id: str, reason: str | None = None) -> Result[Drill]:
        """Skip a drill; mastery is unchanged and the week counts a skip."""
        drill = self.stores.drills.get(drill_id)
        if drill is None:
            return err("NOT_FOUND", f"Drill not found: {drill_id}", drill_id=drill_id)
        if drill.status == "missed":
            return err("INVALID_STATE", "Cannot skip a missed drill", drill_id=drill_id)

        if not self.stores.drills.update_outcome(drill_id, "skipped", reason, CARRY_FORWARD_SKIPPED):
            current = self.stores.drills.get(drill_id)
            if current is not None and current.outcome == "skipped":
                return ok(current)
            return err(
                "INVALID_STATE",
                f"Drill already recorded as {current.outcome if current else None}",
                drill_id=drill_id,
            )

        if drill.week_plan_id:
            self.week_tracker.record_outcome(drill.week_plan_id, "skipped")

        logger.info("drill_skipped", drill_id=drill_id, reason=reason)
        return ok(self.stores.drills.get(drill_id) or drill)

    @_store_guarded
    def mark_missed(self, drill_id: str) -> Result[Drill]:
        """Close a drill whose day passed without an outcome."""
        drill = self.stores.drills.get(drill_id)
        if drill is None:
            return err("NOT_FOUND", f"Drill not found: {drill_id}", drill_id=drill_id)
        if drill.status == "missed":
            return ok(drill)

        missed = self.stores.drills.update_outcome(
            drill_id, "skipped", None, build_carry_forward(None, None), status="missed"
        )
        if not missed:
            return err(
                "INVALID_STATE",
                f"Drill already recorded as {drill.outcome}",
                drill_id=drill_id,
            )

        logger.info("drill_missed", drill_id=drill_id, date=drill.scheduled_date.isoformat())
        return ok(self.stores.drills.get(drill_id) or drill)

    @_store_guarded
    def reconcile_missed_drills(self, user_id: str, goal_id: str, today: date) -> Result[list[Drill]]:
        """Mark every open drill scheduled before today as missed."""
        missed: list[Drill] = []
        for drill in self.stores.drills.list_by_goal(goal_id):
            if drill.user_id != user_id or drill.scheduled_date >= today or not drill.is_open:
                continue
            result = self.mark_missed(drill.drill_id)
            if not result.ok:
                return result
            missed.append(result.value)

        if missed:
            logger.info("missed_drills_reconciled", goal_id=goal_id, count=len(missed))
        return ok(missed)

    # -------------------------------------------------------------------------
    # Progress and weeks
    # -------------------------------------------------------------------------

    @_store_guarded
    def get_progress(self, goal_id: str, today: date | None = None) -> Result[GoalProgress]:
        """Aggregate goal statistics."""
        plan = self.stores.plans.get(goal_id)
        if plan is None:
            return err("NOT_FOUND", f"No learning plan for goal {goal_id}", goal_id=goal_id)

        return ok(
            build_goal_progress(
                plan,
                self.stores.skills.list_by_goal(goal_id),
                self.stores.weeks.list_by_goal(goal_id),
                self.stores.drills.list_by_goal(goal_id),
                self.stores.milestones.list_by_goal(goal_id),
                today or date.today(),
                days_per_week=self.config.practice_days_per_week,
                tolerance_days=self.config.on_track_tolerance_days,
            )
        )

    @_store_guarded
    def get_quest_progress(self, quest_id: str) -> Result[QuestProgress]:
        """Skill counts, mastery percentage and milestone state for one quest."""
        skills = self.stores.skills.list_by_quest(quest_id)
        if not skills:
            return err("NOT_FOUND", f"No skills for quest {quest_id}", quest_id=quest_id)

        plan = self.stores.plans.get(skills[0].goal_id)
        if plan is None:
            return err("NOT_FOUND", f"No learning plan for goal {skills[0].goal_id}", quest_id=quest_id)

        return ok(build_quest_progress(plan, quest_id, skills, self.stores.milestones.get(quest_id)))

    @_store_guarded
    def get_locked_skills(self, goal_id: str, quest_id: str | None = None) -> Result[list[LockedSkill]]:
        """Locked skills of a goal (optionally one quest) with their unmet prerequisites."""
        if self.stores.plans.get(goal_id) is None:
            return err("NOT_FOUND", f"No learning plan for goal {goal_id}", goal_id=goal_id)

        locked = locked_skills(self.stores.skills.list_by_goal(goal_id))
        if quest_id is not None:
            locked = [item for item in locked if item.skill.quest_id == quest_id]
        return ok(locked)

    @_store_guarded
    def get_review_queue(self, user_id: str) -> Result[list[Skill]]:
        """Skills of every goal of a user that await manual review."""
        return ok([s for s in self.stores.skills.list_by_user(user_id) if s.needs_review])

    @_store_guarded
    def get_current_week(self, goal_id: str) -> Result[WeekPlan]:
        week = self.stores.weeks.get_active_by_goal(goal_id)
        if week is None:
            return err("NOT_FOUND", f"No active week for goal {goal_id}", goal_id=goal_id)
        return ok(week)

    @_store_guarded
    def get_weeks(self, goal_id: str) -> Result[list[WeekPlan]]:
        return ok(self.stores.weeks.list_by_goal(goal_id))

    @_store_guarded
    def complete_week(self, goal_id: str, week_plan_id: str | None = None) -> Result[WeekCompletion]:
        """Complete a week (the active one by default) and advance.

        When the completed week was the last of its quest, the quest's
        milestone is re-evaluated.
        """
        plan = self.stores.plans.get(goal_id)
        if plan is None:
            return err("NOT_FOUND", f"No learning plan for goal {goal_id}", goal_id=goal_id)

        if week_plan_id is None:
            week = self.stores.weeks.get_active_by_goal(goal_id)
        else:
            week = self.stores.weeks.get(week_plan_id)
            if week is not None and week.goal_id != goal_id:
                week = None
        if week is None:
            return err("NOT_FOUND", "Week not found", goal_id=goal_id, week_plan_id=week_plan_id)

        skills = self.stores.skills.list_by_goal(goal_id)
        completed = self.week_tracker.complete_week(week, skills, plan.is_ongoing)
        if not completed.ok:
            return completed
        if completed.value.quest_finished:
            self._refresh_milestone(week.quest_id, skills)
        if completed.value.next_week is not None:
            self._extend_week_mapping(plan, completed.value.next_week)
        return completed

    def _extend_week_mapping(self, plan: LearningPlan, next_week: WeekPlan) -> None:
        """Record a follow-up week of an ongoing goal in the plan's week mapping."""
        mapping = [
            QuestWeekMapping(m.quest_id, m.first_week, m.last_week)
            for m in plan.quest_week_mapping
        ]
        if any(m.first_week <= next_week.week_number <= m.last_week for m in mapping):
            return

        current = next((m for m in mapping if m.quest_id == next_week.quest_id), None)
        if current is not None and current.last_week == next_week.week_number - 1:
            current.last_week = next_week.week_number
        else:
            mapping.append(
                QuestWeekMapping(next_week.quest_id, next_week.week_number, next_week.week_number)
            )
        self.stores.plans.update(plan.goal_id, quest_week_mapping=mapping)
        logger.debug("week_mapping_extended", goal_id=plan.goal_id, week_number=next_week.week_number)

    @_store_guarded
    def get_week_summary(self, week_plan_id: str) -> Result[WeekSummary]:
        week = self.stores.weeks.get(week_plan_id)
        if week is None:
            return err("NOT_FOUND", f"Week not found: {week_plan_id}", week_plan_id=week_plan_id)
        skills = {s.skill_id: s for s in self.stores.skills.list_by_goal(week.goal_id)}
        return ok(summarize_week(week, skills))

    # -------------------------------------------------------------------------
    # Milestones
    # -------------------------------------------------------------------------

    def _refresh_milestone(self, quest_id: str, goal_skills: list[Skill]) -> QuestMilestone | None:
        milestone = self.stores.milestones.get(quest_id)
        if milestone is None:
            return None
        before = milestone.status
        evaluate_milestone(milestone, [s for s in goal_skills if s.quest_id == quest_id])
        if milestone.status != before:
            self.stores.milestones.save(milestone)
        return milestone

    @_store_guarded
    def get_milestone(self, quest_id: str) -> Result[QuestMilestone]:
        milestone = self.stores.milestones.get(quest_id)
        if milestone is None:
            return err("NOT_FOUND", f"Milestone not found for quest {quest_id}", quest_id=quest_id)
        return ok(milestone)

    @_store_guarded
    def check_milestone(self, quest_id: str) -> Result[MilestoneCheck]:
        """Mastery progress toward a quest's milestone threshold."""
        milestone = self.stores.milestones.get(quest_id)
        if milestone is None:
            return err("NOT_FOUND", f"Milestone not found for quest {quest_id}", quest_id=quest_id)
        return ok(check_milestone(milestone, self.stores.skills.list_by_quest(quest_id)))

    @_store_guarded
    def start_milestone(self, quest_id: str) -> Result[QuestMilestone]:
        milestone = self.stores.milestones.get(quest_id)
        if milestone is None:
            return err("NOT_FOUND", f"Milestone not found for quest {quest_id}", quest_id=quest_id)
        if milestone.status == "in_progress":
            return ok(milestone)
        if milestone.status != "available":
            return err(
                "INVALID_STATE",
                f"Milestone is {milestone.status}, only an available milestone can be started",
                quest_id=quest_id,
            )

        milestone.status = "in_progress"
        milestone.started_at = utc_now()
        self.stores.milestones.save(milestone)
        logger.info("milestone_started", quest_id=quest_id)
        return ok(milestone)

    @_store_guarded
    def complete_milestone(
        self,
        quest_id: str,
        self_assessment: dict[str, bool],
    ) -> Result[QuestMilestone]:
        """Complete a milestone once the learner confirms every criterion.

        Args:
            quest_id: Quest whose milestone is completed
            self_assessment: criterion -> confirmed

        Returns:
            ok(QuestMilestone) or err(INVALID_STATE) listing unmet criteria
        """
        milestone = self.stores.milestones.get(quest_id)
        if milestone is None:
            return err("NOT_FOUND", f"Milestone not found for quest {quest_id}", quest_id=quest_id)
        if milestone.status not in ("available", "in_progress"):
            return err(
                "INVALID_STATE",
                f"Milestone is {milestone.status} and cannot be completed",
                quest_id=quest_id,
            )

        unmet = unmet_criteria(milestone, self_assessment)
        if unmet:
            return err(
                "INVALID_STATE",
                f"{len(unmet)} acceptance criteria not confirmed",
                quest_id=quest_id,
                unmet_criteria=unmet,
            )

        milestone.status = "completed"
        milestone.self_assessment = dict(self_assessment)
        milestone.completed_at = utc_now()
        if milestone.started_at is None:
            milestone.started_at = milestone.completed_at
        self.stores.milestones.save(milestone)
        logger.info("milestone_completed", quest_id=quest_id)
        return ok(milestone)

    # -------------------------------------------------------------------------
    # Review flags
    # -------------------------------------------------------------------------

    @_store_guarded
    def clear_review_flag(self, skill_id: str) -> Result[Skill]:
        """Return a flagged skill to automatic scheduling."""
        skill = self.stores.skills.get(skill_id)
        if skill is None:
            return err("NOT_FOUND", f"Skill not found: {skill_id}", skill_id=skill_id)
        if skill.needs_review:
            skill.needs_review = False
            skill.updated_at = utc_now()
            self.stores.skills.save(skill)
            logger.info("review_flag_cleared", skill_id=skill_id)
        return ok(skill)
