"""CLI commands for the practice coach.

Commands:
- init: Initialize a learning plan from a goal YAML file
- today: Show (and create on first call) today's drill
- record: Record a drill outcome
- skip: Skip a drill
- progress: Show goal progress
- week: Show or complete the current week
- milestone: Show, start or complete a quest milestone
- quest: Show progress and locked skills for a quest
- review: List or clear skills flagged for review
"""

from datetime import date
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from drillcoach.config.app_config import AppConfig, load_app_config
from drillcoach.core.learning_plan import PracticeEngine
from drillcoach.core.models import CapabilityStage, Drill, Goal, Quest
from drillcoach.core.result import PracticeError, Result
from drillcoach.db.sqlite_stores import create_sqlite_stores
from drillcoach.llm.capability_generator import CapabilityGenerator
from drillcoach.llm.client import LLMClient, LLMConfig

app = typer.Typer(
    name="drill",
    help="Deliberate-practice coach: one focused drill per day.",
    no_args_is_help=True,
)

console = Console()

# Set by the app callback
_state: dict[str, Any] = {"db_path": None}


@app.callback()
def main(
    db: Path | None = typer.Option(None, "--db", help="SQLite database path (default from config)"),
) -> None:
    """Deliberate-practice coach: one focused drill per day."""
    _state["db_path"] = db


# =============================================================================
# HELPERS
# =============================================================================


def _build_generator(config: AppConfig) -> CapabilityGenerator:
    """Stage generator; LLM-backed only when generation is enabled."""
    generation = config.generation
    client = None
    if generation.enabled:
        client = LLMClient(LLMConfig.from_provider(generation.provider, model=generation.model))
    return CapabilityGenerator(client=client, ttl_seconds=generation.cache_ttl_seconds)


def _get_engine() -> PracticeEngine:
    config = load_app_config()
    db_path = _state["db_path"] or config.db_path
    return PracticeEngine(
        create_sqlite_stores(db_path),
        config=config.practice,
        generator=_build_generator(config),
    )


def _fail(error: PracticeError | None) -> None:
    """Print an error result and exit with code 1."""
    message = error.message if error else "Unknown error"
    console.print(f"[red]✗ {message}[/red]")
    if error and error.details.get("unmet_criteria"):
        for criterion in error.details["unmet_criteria"]:
            console.print(f"  [dim]-[/dim] {criterion}")
    raise typer.Exit(code=1)


def _unwrap(result: Result[Any]) -> Any:
    if not result.ok:
        _fail(result.error)
    return result.value


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]✗ Invalid date (expected YYYY-MM-DD): {value}[/red]")
        raise typer.Exit(code=1)


def _load_goal_file(path: Path) -> tuple[Goal, list[Quest], dict[str, list[CapabilityStage]]]:
    """Parse a goal YAML file into goal, quests and stages."""
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    goal_data = data.get("goal")
    if not isinstance(goal_data, dict):
        raise ValueError("Goal file must contain a 'goal' mapping")

    goal = Goal.from_dict(goal_data)
    quests: list[Quest] = []
    stages: dict[str, list[CapabilityStage]] = {}
    for index, quest_data in enumerate(data.get("quests", []), start=1):
        quest_data = {"order": index, **quest_data}
        quest = Quest.from_dict(quest_data, goal.goal_id)
        quests.append(quest)
        stages[quest.quest_id] = [
            CapabilityStage.from_dict({"stage": position, **stage})
            for position, stage in enumerate(quest_data.get("stages", []), start=1)
        ]
    return goal, quests, stages


def _print_drill(drill: Drill, context: str | None) -> None:
    header = f"[bold]{drill.scheduled_date.isoformat()}[/bold]  ·  {drill.total_minutes} min"
    if drill.is_retry:
        header += f"  ·  [yellow]retry {drill.retry_count}[/yellow]"
    console.print(Panel(header, title="[bold]Today's drill[/bold]", expand=False))
    console.print(f"[dim]drill_id:[/dim] {drill.drill_id}")

    if context:
        console.print(f"[dim]Context:[/dim] {context}")

    for section in drill.sections:
        console.print(f"\n[bold cyan]{section.type.upper()}[/bold cyan] ({section.estimated_minutes} min)  {section.title}")
        console.print(f"  {section.action}")
        if section.pass_signal:
            console.print(f"  [green]Pass:[/green] {section.pass_signal}")
        if section.constraint:
            console.print(f"  [dim]Constraint:[/dim] {section.constraint}")
        if section.adversarial_element:
            console.print(f"  [dim]Break it:[/dim] {section.adversarial_element}")
        if section.recovery_steps:
            console.print(f"  [dim]Recover:[/dim] {section.recovery_steps}")


# =============================================================================
# COMMANDS
# =============================================================================


@app.command()
def init(
    goal_file: Path = typer.Argument(..., help="YAML file with goal, quests and stages"),
) -> None:
    """Initialize the learning plan for a goal."""
    if not goal_file.exists():
        console.print(f"[red]✗ File not found: {goal_file}[/red]")
        raise typer.Exit(code=1)

    try:
        goal, quests, stages = _load_goal_file(goal_file)
    except (yaml.YAMLError, KeyError, ValueError) as e:
        console.print(f"[red]✗ Invalid goal file: {e}[/red]")
        raise typer.Exit(code=1)

    plan = _unwrap(_get_engine().initialize_plan(goal, quests, stages))

    console.print(f"[green]✓ Plan ready for {goal.title}[/green]")
    console.print(f"  [dim]goal_id:[/dim] {plan.goal_id}")
    console.print(f"  [dim]skills:[/dim]  {plan.total_skills}")
    if plan.total_weeks is not None:
        console.print(f"  [dim]weeks:[/dim]   {plan.total_weeks}")
        console.print(f"  [dim]finish:[/dim]  {plan.estimated_completion_date}")
    else:
        console.print("  [dim]weeks:[/dim]   ongoing")
    for mapping in plan.quest_week_mapping:
        console.print(f"  {mapping.label}: {mapping.quest_id}")
    for warning in plan.warnings:
        console.print(f"  [yellow]⚠ {warning}[/yellow]")


@app.command()
def today(
    goal: str = typer.Option(..., "--goal", "-g", help="Goal ID"),
    on: str | None = typer.Option(None, "--date", help="Date to schedule (YYYY-MM-DD)"),
) -> None:
    """Show today's drill, creating it on first request."""
    engine = _get_engine()
    plan = engine.stores.plans.get(goal)
    if plan is None:
        console.print(f"[red]✗ No learning plan for goal {goal}[/red]")
        raise typer.Exit(code=1)

    practice = _unwrap(engine.get_today_practice(plan.user_id, goal, _parse_date(on)))
    if practice.goal_completed:
        console.print("[green]✓ Every skill is mastered. Goal complete![/green]")
        return
    if not practice.has_content:
        console.print("[yellow]⚠ Nothing to practice today[/yellow]")
        return

    _print_drill(practice.drill, practice.context)
    if practice.component_skills:
        titles = ", ".join(s.title for s in practice.component_skills)
        console.print(f"\n[dim]Combines:[/dim] {titles}")


@app.command()
def record(
    drill_id: str = typer.Argument(..., help="Drill ID"),
    passed: bool = typer.Option(..., "--pass/--fail", help="Whether the pass signal was met"),
    partial: bool = typer.Option(False, "--partial", help="Progress made but not passed"),
    note: str | None = typer.Option(None, "--note", "-n", help="What you observed"),
) -> None:
    """Record the outcome of a drill."""
    result = _unwrap(_get_engine().record_outcome(drill_id, passed, note, partial))

    if result.already_recorded:
        console.print(f"[yellow]⚠ Outcome already recorded: {result.drill.outcome}[/yellow]")
        return

    console.print(f"[green]✓ Recorded {result.drill.outcome}[/green]")
    console.print(f"  [dim]skill:[/dim]   {result.skill.title}")
    console.print(f"  [dim]mastery:[/dim] {result.previous_mastery} → {result.new_mastery}")
    if result.unlocked_skill_ids:
        console.print(f"  [dim]unlocked:[/dim] {len(result.unlocked_skill_ids)} skill(s)")
    if result.milestone is not None and result.milestone.status == "available":
        console.print(f"  [cyan]Milestone available: {result.milestone.title}[/cyan]")
    if result.drill.carry_forward:
        console.print(f"  [dim]next:[/dim]    {result.drill.carry_forward}")


@app.command()
def skip(
    drill_id: str = typer.Argument(..., help="Drill ID"),
    reason: str | None = typer.Option(None, "--reason", "-r", help="Why it was skipped"),
) -> None:
    """Skip a drill without affecting mastery."""
    drill = _unwrap(_get_engine().skip_drill(drill_id, reason))
    console.print(f"[green]✓ Skipped {drill.drill_id}[/green]")
    console.print(f"  [dim]{drill.carry_forward}[/dim]")


@app.command()
def progress(
    goal: str = typer.Option(..., "--goal", "-g", help="Goal ID"),
) -> None:
    """Show progress for a goal."""
    stats = _unwrap(_get_engine().get_progress(goal))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Complete", f"{stats.percent_complete}%")
    table.add_row("Mastered", f"{stats.skills_mastered}/{stats.skills_total}")
    table.add_row("Practicing", str(stats.skills_practicing))
    table.add_row("Attempting", str(stats.skills_attempting))
    table.add_row("Needs review", str(stats.skills_needing_review))
    table.add_row("Weeks", f"{stats.weeks_completed}/{stats.weeks_total}")
    table.add_row("Pass rate", f"{stats.pass_rate:.0%}")
    table.add_row("Streak", f"{stats.current_streak} day(s)")
    table.add_row("On track", "yes" if stats.on_track else f"no ({stats.days_behind} days behind)")
    console.print(table)

    for quest_id in stats.milestones_available:
        console.print(f"[cyan]Milestone available: {quest_id}[/cyan]")


@app.command()
def week(
    goal: str = typer.Option(..., "--goal", "-g", help="Goal ID"),
    complete: bool = typer.Option(False, "--complete", help="Complete the current week"),
) -> None:
    """Show the current week, or complete it."""
    engine = _get_engine()

    if complete:
        completion = _unwrap(engine.complete_week(goal))
        summary = completion.summary
        console.print(f"[green]✓ Week {summary.week_number} completed ({summary.rating})[/green]")
        console.print(f"  [dim]pass rate:[/dim] {summary.pass_rate:.0%}")
        console.print(f"  [dim]mastered:[/dim]  {summary.skills_mastered}")
        if summary.next_week_focus:
            console.print(f"  {summary.next_week_focus}")
        if completion.next_week is not None:
            console.print(f"  [dim]next:[/dim]      Week {completion.next_week.week_number}: {completion.next_week.theme}")
        return

    current = _unwrap(engine.get_current_week(goal))
    console.print(Panel(
        f"{current.start_date.isoformat()} → {current.end_date.isoformat()}\n"
        f"Completed {current.drills_completed}/{current.days_total}  ·  "
        f"passed {current.drills_passed}  ·  failed {current.drills_failed}  ·  "
        f"skipped {current.drills_skipped}",
        title=f"[bold]Week {current.week_number}: {current.theme}[/bold]",
        expand=False,
    ))


@app.command()
def milestone(
    quest_id: str = typer.Argument(..., help="Quest ID"),
    start: bool = typer.Option(False, "--start", help="Start the milestone"),
    complete: bool = typer.Option(False, "--complete", help="Complete the milestone"),
) -> None:
    """Show, start or complete a quest milestone."""
    if start and complete:
        console.print("[red]✗ Use either --start or --complete[/red]")
        raise typer.Exit(code=1)

    engine = _get_engine()

    if start:
        started = _unwrap(engine.start_milestone(quest_id))
        console.print(f"[green]✓ Started {started.title}[/green]")
        return

    current = _unwrap(engine.get_milestone(quest_id))

    if complete:
        assessment = {
            criterion: typer.confirm(f"  {criterion}?", default=False)
            for criterion in current.acceptance_criteria
        }
        completed = _unwrap(engine.complete_milestone(quest_id, assessment))
        console.print(f"[green]✓ Completed {completed.title}[/green]")
        return

    check = _unwrap(engine.check_milestone(quest_id))
    console.print(f"[bold]{current.title}[/bold]  [dim]({current.status})[/dim]")
    console.print(f"  {check.reason}")
    for criterion in current.acceptance_criteria:
        console.print(f"  [dim]-[/dim] {criterion}")


@app.command()
def quest(
    quest_id: str = typer.Argument(..., help="Quest ID"),
) -> None:
    """Show skill counts and locked skills for one quest."""
    engine = _get_engine()
    stats = _unwrap(engine.get_quest_progress(quest_id))

    console.print(f"[bold]{stats.title}[/bold]  [dim]({stats.week_label or 'unscheduled'})[/dim]")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Complete", f"{stats.percent_complete}%")
    table.add_row("Mastered", f"{stats.skills_mastered}/{stats.skills_total}")
    table.add_row("Practicing", str(stats.skills_practicing))
    table.add_row("Attempting", str(stats.skills_attempting))
    table.add_row("Not started", str(stats.skills_not_started))
    table.add_row("Locked", str(stats.skills_locked))
    console.print(table)
    if stats.milestone_status is not None:
        console.print(f"  [dim]milestone:[/dim] {stats.milestone_status}  {stats.milestone_reason or ''}")

    locked = _unwrap(engine.get_locked_skills(stats.goal_id, quest_id))
    for item in locked:
        console.print(f"  [yellow]locked:[/yellow] {item.skill.title}")
        for reason in item.reasons:
            console.print(f"     [dim]-[/dim] {reason}")


@app.command()
def review(
    user: str = typer.Option(..., "--user", "-u", help="User ID"),
    clear: str | None = typer.Option(None, "--clear", help="Clear the review flag of a skill"),
) -> None:
    """List skills flagged for review, or clear one flag."""
    engine = _get_engine()

    if clear is not None:
        skill = _unwrap(engine.clear_review_flag(clear))
        console.print(f"[green]✓ Cleared review flag on {skill.title}[/green]")
        return

    flagged = _unwrap(engine.get_review_queue(user))
    if not flagged:
        console.print("[green]✓ No skills need review[/green]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Skill ID")
    table.add_column("Title")
    table.add_column("Mastery")
    table.add_column("Failures", justify="right")
    for skill in flagged:
        table.add_row(skill.skill_id, skill.title, skill.mastery, str(skill.fail_count))
    console.print(table)
