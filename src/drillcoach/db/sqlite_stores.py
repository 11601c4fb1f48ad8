"""SQLite-backed store implementations.

Each table keeps the lookup columns next to a JSON payload of the full
record. Atomic transitions are expressed as conditional UPDATEs:
- drills: UNIQUE(user_id, goal_id, scheduled_date) anchors get-or-create
- drills: outcome is written only WHERE outcome IS NULL
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Generator

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
from drillcoach.db.database import _create_schema, get_db
from drillcoach.db.stores import DuplicateDrillError, StoreError, Stores

logger = structlog.get_logger(__name__)


class _SQLiteStore:
    """Shared connection handling for the SQLite stores."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            with get_db(self.db_path) as conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(f"SQLite error: {e}") from e


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False)


# =============================================================================
# SKILLS
# =============================================================================


class SQLiteSkillStore(_SQLiteStore):
    """SkillStore on the skills table."""

    def save(self, skill: Skill) -> Skill:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO skills (skill_id, goal_id, quest_id, user_id, order_index, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(skill_id) DO UPDATE SET
                    order_index = excluded.order_index,
                    payload = excluded.payload
                """,
                (
                    skill.skill_id,
                    skill.goal_id,
                    skill.quest_id,
                    skill.user_id,
                    skill.order,
                    _dumps(skill.to_dict()),
                ),
            )
        logger.debug("skills.saved", skill_id=skill.skill_id)
        return skill

    def get(self, skill_id: str) -> Skill | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM skills WHERE skill_id = ?", (skill_id,)
            ).fetchone()
        return Skill.from_dict(json.loads(row["payload"])) if row else None

    def delete(self, skill_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM skills WHERE skill_id = ?", (skill_id,))
        return cursor.rowcount > 0

    def _list(self, column: str, value: str) -> list[Skill]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT payload FROM skills WHERE {column} = ? ORDER BY order_index",
                (value,),
            ).fetchall()
        return [Skill.from_dict(json.loads(row["payload"])) for row in rows]

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
        fields: dict[str, Any] = {
            "mastery": mastery,
            "pass_count": pass_count,
            "fail_count": fail_count,
            "consecutive_passes": consecutive_passes,
            "updated_at": utc_now(),
        }
        if status is not None:
            fields["status"] = status
        if last_practiced_at is not None:
            fields["last_practiced_at"] = last_practiced_at.isoformat()
        if mastered_at is not None:
            fields["mastered_at"] = mastered_at.isoformat()

        paths = ", ".join(f"'$.{name}', ?" for name in fields)
        with self._conn() as conn:
            conn.execute(
                f"UPDATE skills SET payload = json_set(payload, {paths}) WHERE skill_id = ?",
                (*fields.values(), skill_id),
            )
            row = conn.execute(
                "SELECT payload FROM skills WHERE skill_id = ?", (skill_id,)
            ).fetchone()
        return Skill.from_dict(json.loads(row["payload"])) if row else None


# =============================================================================
# DRILLS
# =============================================================================


class SQLiteDrillStore(_SQLiteStore):
    """DrillStore on the drills table."""

    def save(self, drill: Drill) -> Drill:
        try:
            with get_db(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO drills (
                        drill_id, user_id, goal_id, scheduled_date, status, outcome, payload
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(drill_id) DO UPDATE SET
                        status = excluded.status,
                        outcome = excluded.outcome,
                        payload = excluded.payload
                    """,
                    (
                        drill.drill_id,
                        drill.user_id,
                        drill.goal_id,
                        drill.scheduled_date.isoformat(),
                        drill.status,
                        drill.outcome,
                        _dumps(drill.to_dict()),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateDrillError(drill.user_id, drill.goal_id, drill.scheduled_date) from e
        except sqlite3.Error as e:
            raise StoreError(f"SQLite error: {e}") from e

        logger.debug("drills.saved", drill_id=drill.drill_id)
        return drill

    def get(self, drill_id: str) -> Drill | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM drills WHERE drill_id = ?", (drill_id,)
            ).fetchone()
        return Drill.from_dict(json.loads(row["payload"])) if row else None

    def delete(self, drill_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM drills WHERE drill_id = ?", (drill_id,))
        return cursor.rowcount > 0

    def get_by_date(self, user_id: str, goal_id: str, scheduled_date: date) -> Drill | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT payload FROM drills
                WHERE user_id = ? AND goal_id = ? AND scheduled_date = ?
                """,
                (user_id, goal_id, scheduled_date.isoformat()),
            ).fetchone()
        return Drill.from_dict(json.loads(row["payload"])) if row else None

    def list_by_goal(self, goal_id: str) -> list[Drill]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT payload FROM drills WHERE goal_id = ? ORDER BY scheduled_date",
                (goal_id,),
            ).fetchall()
        return [Drill.from_dict(json.loads(row["payload"])) for row in rows]

    def update_outcome(
        self,
        drill_id: str,
        outcome: DrillOutcome,
        observation: str | None,
        carry_forward: str | None,
        status: DrillStatus = "completed",
    ) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                """
                UPDATE drills SET
                    status = ?,
                    outcome = ?,
                    payload = json_set(
                        payload,
                        '$.status', ?,
                        '$.outcome', ?,
                        '$.observation', ?,
                        '$.carry_forward', ?,
                        '$.completed_at', ?
                    )
                WHERE drill_id = ? AND outcome IS NULL
                """,
                (
                    status,
                    outcome,
                    status,
                    outcome,
                    observation,
                    carry_forward,
                    utc_now(),
                    drill_id,
                ),
            )
        applied = cursor.rowcount > 0
        logger.debug("drills.outcome_updated", drill_id=drill_id, outcome=outcome, applied=applied)
        return applied


# =============================================================================
# WEEK PLANS
# =============================================================================


class SQLiteWeekPlanStore(_SQLiteStore):
    """WeekPlanStore on the week_plans table."""

    def save(self, week: WeekPlan) -> WeekPlan:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO week_plans (week_plan_id, goal_id, week_number, status, payload)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(week_plan_id) DO UPDATE SET
                    status = excluded.status,
                    payload = excluded.payload
                """,
                (
                    week.week_plan_id,
                    week.goal_id,
                    week.week_number,
                    week.status,
                    _dumps(week.to_dict()),
                ),
            )
        logger.debug("week_plans.saved", week_plan_id=week.week_plan_id, status=week.status)
        return week

    def get(self, week_plan_id: str) -> WeekPlan | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM week_plans WHERE week_plan_id = ?", (week_plan_id,)
            ).fetchone()
        return WeekPlan.from_dict(json.loads(row["payload"])) if row else None

    def delete(self, week_plan_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute(
                "DELETE FROM week_plans WHERE week_plan_id = ?", (week_plan_id,)
            )
        return cursor.rowcount > 0

    def list_by_goal(self, goal_id: str) -> list[WeekPlan]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT payload FROM week_plans WHERE goal_id = ? ORDER BY week_number",
                (goal_id,),
            ).fetchall()
        return [WeekPlan.from_dict(json.loads(row["payload"])) for row in rows]

    def get_active_by_goal(self, goal_id: str) -> WeekPlan | None:
        with self._conn() as conn:
            row = conn.execute(
                """
                SELECT payload FROM week_plans
                WHERE goal_id = ? AND status = 'active'
                ORDER BY week_number LIMIT 1
                """,
                (goal_id,),
            ).fetchone()
        return WeekPlan.from_dict(json.loads(row["payload"])) if row else None

    def update_progress(self, week_plan_id: str, delta: WeekProgressDelta) -> WeekPlan | None:
        # Read-modify-write inside one transaction
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT payload FROM week_plans WHERE week_plan_id = ?", (week_plan_id,)
            ).fetchone()
            if row is None:
                return None
            week = apply_delta(WeekPlan.from_dict(json.loads(row["payload"])), delta)
            conn.execute(
                "UPDATE week_plans SET payload = ? WHERE week_plan_id = ?",
                (_dumps(week.to_dict()), week_plan_id),
            )
        return week


# =============================================================================
# LEARNING PLANS AND MILESTONES
# =============================================================================


class SQLiteLearningPlanStore(_SQLiteStore):
    """LearningPlanStore on the learning_plans table."""

    def save(self, plan: LearningPlan) -> LearningPlan:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO learning_plans (goal_id, user_id, payload) VALUES (?, ?, ?)
                ON CONFLICT(goal_id) DO UPDATE SET payload = excluded.payload
                """,
                (plan.goal_id, plan.user_id, _dumps(plan.to_dict())),
            )
        logger.debug("learning_plans.saved", goal_id=plan.goal_id)
        return plan

    def get(self, goal_id: str) -> LearningPlan | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM learning_plans WHERE goal_id = ?", (goal_id,)
            ).fetchone()
        return LearningPlan.from_dict(json.loads(row["payload"])) if row else None

    def update(self, goal_id: str, **changes: Any) -> LearningPlan | None:
        plan = self.get(goal_id)
        if plan is None:
            return None
        for name, value in changes.items():
            setattr(plan, name, value)
        return self.save(plan)

    def delete(self, goal_id: str) -> bool:
        with self._conn() as conn:
            cursor = conn.execute("DELETE FROM learning_plans WHERE goal_id = ?", (goal_id,))
        return cursor.rowcount > 0


class SQLiteMilestoneStore(_SQLiteStore):
    """MilestoneStore on the milestones table."""

    def save(self, milestone: QuestMilestone) -> QuestMilestone:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO milestones (quest_id, goal_id, payload) VALUES (?, ?, ?)
                ON CONFLICT(quest_id) DO UPDATE SET payload = excluded.payload
                """,
                (milestone.quest_id, milestone.goal_id, _dumps(milestone.to_dict())),
            )
        logger.debug("milestones.saved", quest_id=milestone.quest_id, status=milestone.status)
        return milestone

    def get(self, quest_id: str) -> QuestMilestone | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM milestones WHERE quest_id = ?", (quest_id,)
            ).fetchone()
        return QuestMilestone.from_dict(json.loads(row["payload"])) if row else None

    def list_by_goal(self, goal_id: str) -> list[QuestMilestone]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT payload FROM milestones WHERE goal_id = ?", (goal_id,)
            ).fetchall()
        return [QuestMilestone.from_dict(json.loads(row["payload"])) for row in rows]


def create_sqlite_stores(db_path: Path) -> Stores:
    """Create the schema at db_path and return SQLite stores bound to it."""
    with get_db(db_path) as conn:
        _create_schema(conn)

    return Stores(
        skills=SQLiteSkillStore(db_path),
        drills=SQLiteDrillStore(db_path),
        weeks=SQLiteWeekPlanStore(db_path),
        plans=SQLiteLearningPlanStore(db_path),
        milestones=SQLiteMilestoneStore(db_path),
    )
