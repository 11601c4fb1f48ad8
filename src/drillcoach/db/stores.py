"""Store interfaces and in-memory implementations.

The practice core only talks to persistence through these protocols:
- SkillStore: skills with an atomic mastery-counter update
- DrillStore: drills keyed by (user, goal, date) with a once-only outcome write
- WeekPlanStore: week plans with counter increments
- LearningPlanStore: one plan per goal
- MilestoneStore: one milestone per quest

In-memory stores keep serialized copies, so callers never share mutable
objects with the store.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

import structlog

from drillcoach.core.models import (
    Drill,
    DrillOutcome,
    DrillStatus,
    LearningPlan,
    MasteryLevel,
    QuestMilestone,
    Skill,
    SkillStatus,
    WeekPlan,
    utc_now,
)
from drillcoach.core.week_tracker import WeekProgressDelta, apply_delta

logger = structlog.get_logger(__name__)


# =============================================================================
# ERRORS
# =============================================================================


class StoreError(Exception):
    """Error raised by a store implementation."""

    code = "STORE_ERROR"


class DuplicateDrillError(StoreError):
    """A drill already exists for this (user, goal, date)."""

    def __init__(self, user_id: str, goal_id: str, scheduled_date: date):
        super().__init__(
            f"Drill already exists for user={user_id} goal={goal_id} date={scheduled_date}"
        )
        self.user_id = user_id
        self.goal_id = goal_id
        self.scheduled_date = scheduled_date


# =============================================================================
# PROTOCOLS
# =============================================================================


class SkillStore(Protocol):
    def save(self, skill: Skill) -> Skill: ...

    def get(self, skill_id: str) -> Skill | None: ...

    def delete(self, skill_id: str) -> bool: ...

    def list_by_quest(self, quest_id: str) -> list[Skill]: ...

    def list_by_goal(self, goal_id: str) -> list[Skill]: ...

    def list_by_user(self, user_id: str) -> list[Skill]: ...

    def update_mastery(
        self,
        skill_id: str,
        mastery: MasteryLevel,
        pass_count: int,
        fail_count: int,
        consecutive_passes: int,
        *,
        status: SkillStatus | None = None,
        last_practiced_at: date | None = None,
        mastered_at: date | None = None,
    ) -> Skill | None: ...


class DrillStore(Protocol):
    def save(self, drill: Drill) -> Drill: ...

    def get(self, drill_id: str) -> Drill | None: ...

    def delete(self, drill_id: str) -> bool: ...

    def get_by_date(self, user_id: str, goal_id: str, scheduled_date: date) -> Drill | None: ...

    def list_by_goal(self, goal_id: str) -> list[Drill]: ...

    def update_outcome(
        self,
        drill_id: str,
        outcome: DrillOutcome,
        observation: str | None,
        carry_forward: str | None,
        status: DrillStatus = "completed",
    ) -> bool: ...


class WeekPlanStore(Protocol):
    def save(self, week: WeekPlan) -> WeekPlan: ...

    def get(self, week_plan_id: str) -> WeekPlan | None: ...

    def delete(self, week_plan_id: str) -> bool: ...

    def list_by_goal(self, goal_id: str) -> list[WeekPlan]: ...

    def get_active_by_goal(self, goal_id: str) -> WeekPlan | None: ...

    def update_progress(self, week_plan_id: str, delta: WeekProgressDelta) -> WeekPlan | None: ...


class LearningPlanStore(Protocol):
    def save(self, plan: LearningPlan) -> LearningPlan: ...

    def get(self, goal_id: str) -> LearningPlan | None: ...

    def update(self, goal_id: str, **changes: Any) -> LearningPlan | None: ...

    def delete(self, goal_id: str) -> bool: ...


class MilestoneStore(Protocol):
    def save(self, milestone: QuestMilestone) -> QuestMilestone: ...

    def get(self, quest_id: str) -> QuestMilestone | None: ...

    def list_by_goal(self, goal_id: str) -> list[QuestMilestone]: ...


@dataclass
class Stores:
    """Bundle of the stores the engine needs."""

    skills: SkillStore
    drills: DrillStore
    weeks: WeekPlanStore
    plans: LearningPlanStore
    milestones: MilestoneStore


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemorySkillStore:
    """Thread-safe dict-backed SkillStore."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, skill: Skill) -> Skill:
        with self._lock:
            self._data[skill.skill_id] = skill.to_dict()
        return skill

    def get(self, skill_id: str) -> Skill | None:
        with self._lock:
            data = self._data.get(skill_id)
        return Skill.from_dict(data) if data else None

    def delete(self, skill_id: str) -> bool:
        with self._lock:
            return self._data.pop(skill_id, None) is not None

    def _list(self, key: str, value: str) -> list[Skill]:
        with self._lock:
            rows = [d for d in self._data.values() if d[key] == value]
        return sorted((Skill.from_dict(d) for d in rows), key=lambda s: s.order)

    def list_by_quest(self, quest_id: str) -> list[Skill]:
        return self._list("quest_id", quest_id)

    def list_by_goal(self, goal_id: str) -> list[Skill]:
        return self._list("goal_id", goal_id)

    def list_by_user(self, user_id: str) -> list[Skill]:
        return self._list("user_id", user_id)

    def update_mastery(
        self,
        skill_id: str,
        mastery: MasteryLevel,
        pass_count: int,
        fail_count: int,
        consecutive_passes: int,
        *,
        status: SkillStatus | None = None,
        last_practiced_at: date | None = None,
        mastered_at: date | None = None,
    ) -> Skill | None:
        with self._lock:
            data = self._data.get(skill_id)
            if data is None:
                return None
            data.update(
                mastery=mastery,
                pass_count=pass_count,
                fail_count=fail_count,
                consecutive_passes=consecutive_passes,
                updated_at=utc_now(),
            )
            if status is not None:
                data["status"] = status
            if last_practiced_at is not None:
                data["last_practiced_at"] = last_practiced_at.isoformat()
            if mastered_at is not None:
                data["mastered_at"] = mastered_at.isoformat()
            return Skill.from_dict(data)


class InMemoryDrillStore:
    """Thread-safe dict-backed DrillStore with a (user, goal, date) index."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._by_date: dict[tuple[str, str, date], str] = {}
        self._lock = threading.Lock()

    def save(self, drill: Drill) -> Drill:
        key = (drill.user_id, drill.goal_id, drill.scheduled_date)
        with self._lock:
            existing_id = self._by_date.get(key)
            if existing_id is not None and existing_id != drill.drill_id:
                raise DuplicateDrillError(drill.user_id, drill.goal_id, drill.scheduled_date)
            self._data[drill.drill_id] = drill.to_dict()
            self._by_date[key] = drill.drill_id
        return drill

    def get(self, drill_id: str) -> Drill | None:
        with self._lock:
            data = self._data.get(drill_id)
        return Drill.from_dict(data) if data else None

    def delete(self, drill_id: str) -> bool:
        with self._lock:
            data = self._data.pop(drill_id, None)
            if data is None:
                return False
            key = (data["user_id"], data["goal_id"], date.fromisoformat(data["scheduled_date"]))
            self._by_date.pop(key, None)
            return True

    def get_by_date(self, user_id: str, goal_id: str, scheduled_date: date) -> Drill | None:
        with self._lock:
            drill_id = self._by_date.get((user_id, goal_id, scheduled_date))
            data = self._data.get(drill_id) if drill_id else None
        return Drill.from_dict(data) if data else None

    def list_by_goal(self, goal_id: str) -> list[Drill]:
        with self._lock:
            rows = [d for d in self._data.values() if d["goal_id"] == goal_id]
        return sorted((Drill.from_dict(d) for d in rows), key=lambda d: d.scheduled_date)

    def update_outcome(
        self,
        drill_id: str,
        outcome: DrillOutcome,
        observation: str | None,
        carry_forward: str | None,
        status: DrillStatus = "completed",
    ) -> bool:
        with self._lock:
            data = self._data.get(drill_id)
            if data is None or data.get("outcome") is not None:
                return False
            data.update(
                outcome=outcome,
                observation=observation,
                carry_forward=carry_forward,
                status=status,
                completed_at=utc_now(),
            )
            return True


class InMemoryWeekPlanStore:
    """Thread-safe dict-backed WeekPlanStore."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, week: WeekPlan) -> WeekPlan:
        with self._lock:
            self._data[week.week_plan_id] = week.to_dict()
        return week

    def get(self, week_plan_id: str) -> WeekPlan | None:
        with self._lock:
            data = self._data.get(week_plan_id)
        return WeekPlan.from_dict(data) if data else None

    def delete(self, week_plan_id: str) -> bool:
        with self._lock:
            return self._data.pop(week_plan_id, None) is not None

    def list_by_goal(self, goal_id: str) -> list[WeekPlan]:
        with self._lock:
            rows = [d for d in self._data.values() if d["goal_id"] == goal_id]
        return sorted((WeekPlan.from_dict(d) for d in rows), key=lambda w: w.week_number)

    def get_active_by_goal(self, goal_id: str) -> WeekPlan | None:
        active = [w for w in self.list_by_goal(goal_id) if w.status == "active"]
        return active[0] if active else None

    def update_progress(self, week_plan_id: str, delta: WeekProgressDelta) -> WeekPlan | None:
        with self._lock:
            data = self._data.get(week_plan_id)
            if data is None:
                return None
            week = apply_delta(WeekPlan.from_dict(data), delta)
            self._data[week_plan_id] = week.to_dict()
        return week


class InMemoryLearningPlanStore:
    """Thread-safe dict-backed LearningPlanStore."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, plan: LearningPlan) -> LearningPlan:
        with self._lock:
            self._data[plan.goal_id] = plan.to_dict()
        return plan

    def get(self, goal_id: str) -> LearningPlan | None:
        with self._lock:
            data = self._data.get(goal_id)
        return LearningPlan.from_dict(data) if data else None

    def update(self, goal_id: str, **changes: Any) -> LearningPlan | None:
        with self._lock:
            data = self._data.get(goal_id)
            if data is None:
                return None
            plan = LearningPlan.from_dict(data)
            for name, value in changes.items():
                setattr(plan, name, value)
            self._data[goal_id] = plan.to_dict()
        return plan

    def delete(self, goal_id: str) -> bool:
        with self._lock:
            return self._data.pop(goal_id, None) is not None


class InMemoryMilestoneStore:
    """Thread-safe dict-backed MilestoneStore."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, milestone: QuestMilestone) -> QuestMilestone:
        with self._lock:
            self._data[milestone.quest_id] = milestone.to_dict()
        return milestone

    def get(self, quest_id: str) -> QuestMilestone | None:
        with self._lock:
            data = self._data.get(quest_id)
        return QuestMilestone.from_dict(data) if data else None

    def list_by_goal(self, goal_id: str) -> list[QuestMilestone]:
        with self._lock:
            rows = [d for d in self._data.values() if d["goal_id"] == goal_id]
        return [QuestMilestone.from_dict(d) for d in rows]


def create_memory_stores() -> Stores:
    """Build a fresh set of in-memory stores."""
    return Stores(
        skills=InMemorySkillStore(),
        drills=InMemoryDrillStore(),
        weeks=InMemoryWeekPlanStore(),
        plans=InMemoryLearningPlanStore(),
        milestones=InMemoryMilestoneStore(),
    )
