"""Core scheduling and progression logic.

Modules:
- models: domain dataclasses (Skill, Drill, WeekPlan, LearningPlan, QuestMilestone)
- result: tagged ok/err results returned by public operations
- skill_decomposer: capability stages -> time-boxed skills
- mastery: outcome -> mastery transitions and unlock propagation
- scheduler: five-tier daily skill selection
- drill_generator: warmup / main / stretch drills and retry adaptation
- week_tracker: week layout, counters, lifecycle and carry-forward
- progress: milestones and goal-level statistics
- learning_plan: PracticeEngine, the entry point for the calling layer
"""

__all__ = [
    "models",
    "result",
    "skill_decomposer",
    "mastery",
    "scheduler",
    "drill_generator",
    "week_tracker",
    "progress",
    "learning_plan",
]
