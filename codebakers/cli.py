"""
CodeBakers CLI - agents, lessons and project scores.

Commands:
    codebakers init               Initialize a workspace in the current directory
    codebakers status             Workspace summary
    codebakers doctor             Check the machine for required tools
    codebakers setup              Create ~/.codebakers and clone the agent repo
    codebakers agents             List agents
    codebakers agent <name>       Show an agent (or copy it to the clipboard)
    codebakers match "<task>"     Find agents for a task
    codebakers capture            Capture a lesson
    codebakers lessons            List lessons
    codebakers apply <id>         Fold a lesson into its agent
    codebakers scores             Project ranking
    codebakers record <project>   Record project metrics
    codebakers review             Monthly review
    codebakers serve              Run the dashboard API
"""

from datetime import date
from pathlib import Path
from typing import Optional
import json
import logging

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .agents import lint_agent
from .config import (
    CONFIG_DIR,
    CONFIG_FILE,
    InstallConfig,
    find_workspace_root,
    get_install_home,
    get_repo_url,
)
from .errors import (
    AgentNotFoundError,
    LessonNotFoundError,
    ScoresError,
    ScoresValidationError,
    SetupError,
    ValidationReport,
)
from .health import HealthReport, HealthStatus, SetupChecker, run_setup
from .lessons import Lesson, LessonCategory, LessonStatus, Severity
from .review import build_review, render_markdown, save_review
from .scores import (
    SEVERITIES,
    ScoresStore,
    merge_bug_counts,
    validate_scores,
)
from .utils import parse_iso_date, parse_quarter, quarter_start
from .workspace import Workspace

app = typer.Typer(
    name="codebakers",
    help="CodeBakers: agent library, lesson review and project scores",
    no_args_is_help=True,
)
console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """CodeBakers: agent library, lesson review and project scores."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def get_context() -> Workspace:
    """Open the workspace containing the current directory."""
    root = find_workspace_root()

    try:
        return Workspace.open(root)
    except FileNotFoundError:
        console.print("[red]CodeBakers workspace not initialized. Run 'codebakers init' first.[/red]")
        raise typer.Exit(1)


def _load_scores(workspace: Workspace) -> ScoresStore:
    try:
        return workspace.scores()
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ScoresValidationError as e:
        _print_report(e.report)
        console.print("[red]scores.json is invalid. Fix it (see 'codebakers validate') before updating.[/red]")
        raise typer.Exit(1)
    except ScoresError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        console.print(f"[red]Invalid {option} '{value}', expected YYYY-MM-DD[/red]")
        raise typer.Exit(1)


def _archive_cutoff(before: Optional[str], quarter: Optional[str]) -> date:
    """
    Cutoff date for the archive commands.

    --quarter 2026-Q2 archives everything up to the end of that quarter;
    with neither option, everything before the current quarter.
    """
    if before and quarter:
        console.print("[red]Use either --before or --quarter, not both.[/red]")
        raise typer.Exit(1)

    if quarter:
        try:
            start = parse_quarter(quarter)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        if start.month == 10:
            return date(start.year + 1, 1, 1)
        return date(start.year, start.month + 3, 1)

    return _parse_date(before, "--before") or quarter_start(date.today())


def _print_report(report: ValidationReport, label: Optional[str] = None) -> None:
    for issue in report.issues:
        prefix = f"{label}: " if label else ""
        if issue.level.value == "error":
            console.print(f"  ❌ [red]{prefix}{issue.path}[/red]: {issue.message}")
        else:
            console.print(f"  ⚠️  [yellow]{prefix}{issue.path}[/yellow]: {issue.message}")


# ============================================================================
# Core Commands
# ============================================================================


@app.command()
def init(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Workspace name"),
):
    """
    Initialize a CodeBakers workspace in the current directory.

    Creates .codebakers/workspace.json, agents/, lessons/, reviews/ and an
    empty metrics/scores.json. Existing agents, lessons and scores are kept.
    """
    root = Path.cwd()

    if (root / CONFIG_DIR / CONFIG_FILE).exists():
        if not Confirm.ask("CodeBakers already initialized. Reinitialize?"):
            raise typer.Exit(0)

    console.print(f"\n🍞 Initializing CodeBakers in [cyan]{root}[/cyan]\n")

    workspace = Workspace.initialize(root, name=name)
    ws = workspace.config.workspace

    console.print(f"✅ Workspace: [green]{ws.name}[/green]")
    console.print(f"✅ Agents: [green]{ws.agents_dir}/[/green]")
    console.print(f"✅ Lessons: [green]{ws.lessons_dir}/[/green]")
    console.print(f"✅ Scores: [green]{ws.scores_path}[/green]")

    console.print("\n[bold]Next steps:[/bold]")
    console.print("  1. Add an agent: [cyan]codebakers new-agent <name>[/cyan]")
    console.print("  2. Capture a lesson: [cyan]codebakers capture[/cyan]")
    console.print("  3. Record scores: [cyan]codebakers record <project> --score code_quality=85[/cyan]")


@app.command()
def status():
    """Show a summary of the workspace."""
    workspace = get_context()
    library = workspace.library()
    book = workspace.lessons()

    lint = library.lint_all()
    failing = [name for name, report in lint.items() if not report.ok]
    stats = book.get_stats()

    console.print(f"\n🍞 [bold]{workspace.name}[/bold] [dim]({workspace.root})[/dim]\n")
    console.print(f"Agents: {len(library.list_agents())}" + (
        f" [red]({len(failing)} failing lint)[/red]" if failing else ""
    ))

    by_status = stats["by_status"]
    console.print(
        f"Lessons: {stats['total']} "
        f"[dim](pending {by_status['pending']}, deferred {by_status['deferred']}, "
        f"applied {by_status['applied']}, rejected {by_status['rejected']})[/dim]"
    )

    try:
        store = workspace.scores()
    except FileNotFoundError:
        console.print("Scores: [yellow]no scores.json[/yellow]")
        return
    except ScoresError as e:
        console.print(f"Scores: [red]{e}[/red]")
        return

    score_stats = store.get_stats()
    average = score_stats["average_overall"]
    console.print(
        f"Projects: {score_stats['projects']} "
        f"[dim](average {average if average is not None else '-'}, "
        f"{score_stats['open_bugs']} open bugs, {score_stats['open_critical']} critical)[/dim]"
    )


@app.command()
def version():
    """Show CodeBakers version."""
    console.print(f"CodeBakers v{__version__}")


# ============================================================================
# Machine Setup
# ============================================================================


@app.command()
def doctor(
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Check that git, Node.js, pnpm and the service CLIs are installed."""
    checker = SetupChecker(get_install_home())
    report = checker.run_all_checks()

    if as_json:
        console.print_json(json.dumps(report.to_dict()))
    else:
        _show_health_report(report)

    if report.overall_status == HealthStatus.ERROR:
        raise typer.Exit(1)


def _show_health_report(report: HealthReport) -> None:
    console.print("\n🔍 [bold]Checking tools...[/bold]")

    for check in report.checks:
        if check.status == HealthStatus.OK:
            console.print(f"  ✅ {check.name}: {check.message}")
        elif check.status == HealthStatus.WARNING:
            console.print(f"  ⚠️  [yellow]{check.name}[/yellow]: {check.message}")
        else:
            console.print(f"  ❌ [red]{check.name}[/red]: {check.message}")
        if check.fix_command and check.status != HealthStatus.OK:
            console.print(f"     [dim]Fix: {check.fix_command}[/dim]")

    if report.overall_status == HealthStatus.OK:
        console.print("\n✅ Machine: [green]Ready[/green]")
    elif report.overall_status == HealthStatus.WARNING:
        console.print("\n⚠️  Machine: [yellow]Needs attention[/yellow]")
    else:
        console.print("\n❌ Machine: [red]Missing required tools[/red]")
        console.print("  [dim]Install them with the commands above, then run codebakers doctor again.[/dim]")


@app.command()
def setup(
    no_clone: bool = typer.Option(False, "--no-clone", help="Don't clone or update the agent repo"),
    repo_url: Optional[str] = typer.Option(None, "--repo", help="Agent repo URL"),
):
    """
    Set up ~/.codebakers on this machine.

    Checks tools, clones (or pulls) the shared agent repo and writes
    ~/.codebakers/config.json. Missing tools are reported, not installed.
    """
    home = get_install_home()
    checker = SetupChecker(home)

    report = checker.run_all_checks()
    _show_health_report(report)

    existing = InstallConfig.load(home)
    if existing:
        console.print(f"\n[dim]Previous install: {existing.installed_at}[/dim]")

    console.print(f"\n📦 Setting up [cyan]{home}[/cyan]")
    try:
        result = run_setup(home, repo_url or get_repo_url(), clone=not no_clone, checker=checker)
    except SetupError as e:
        console.print(f"[red]Setup failed: {e}[/red]")
        raise typer.Exit(1)

    if result.repo_action != "skipped":
        console.print(f"✅ Agent repo {result.repo_action}: [green]{result.install.repo_path}[/green]")
    console.print(f"✅ Config: [green]{result.config_path}[/green]")
    console.print(f"   Node.js: {result.install.node_version}")
    console.print(f"   pnpm: {result.install.pnpm_version}")


# ============================================================================
# Agents
# ============================================================================


@app.command()
def agents(
    tree_view: bool = typer.Option(False, "--tree/--flat", help="Show triggers as a tree"),
):
    """List agents."""
    workspace = get_context()
    docs = workspace.library().list_agents()

    if not docs:
        console.print("[yellow]No agents yet. Run 'codebakers new-agent <name>' to add one.[/yellow]")
        return

    if tree_view:
        tree = Tree("🍞 [bold]Agents[/bold]")
        for doc in docs:
            branch = tree.add(f"[cyan]{doc.name}[/cyan] {doc.title}")
            for trigger in doc.triggers:
                branch.add(f"[dim]{trigger}[/dim]")
        console.print(tree)
        return

    table = Table(title="Agents")
    table.add_column("Name", style="cyan")
    table.add_column("Title")
    table.add_column("Triggers")
    table.add_column("Lessons", justify="right")

    for doc in docs:
        triggers = ", ".join(doc.triggers)
        table.add_row(
            doc.name,
            doc.title,
            triggers if len(triggers) <= 50 else triggers[:47] + "...",
            str(len(doc.lesson_ids)),
        )

    console.print(table)


@app.command()
def agent(
    name: str = typer.Argument(..., help="Agent name"),
    copy: bool = typer.Option(False, "--copy", "-c", help="Copy the agent document to the clipboard"),
    raw: bool = typer.Option(False, "--raw", help="Print the markdown source"),
):
    """Show an agent document."""
    workspace = get_context()

    try:
        doc = workspace.library().get_agent(name)
    except AgentNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    text = doc.path.read_text()

    if copy:
        try:
            import pyperclip
            pyperclip.copy(text)
            console.print(f"✅ Copied [cyan]{doc.name}[/cyan] to clipboard")
            return
        except (ImportError, RuntimeError):
            console.print("[yellow]Could not copy to clipboard[/yellow]")

    if raw:
        console.print(text, markup=False, highlight=False)
        return

    console.print(Panel(
        f"[bold]{doc.title or doc.name}[/bold]\n\n"
        f"{doc.summary or '(No summary)'}\n\n"
        f"[dim]Triggers:[/dim] {', '.join(doc.triggers) or '(none)'}\n"
        f"[dim]Anti-patterns:[/dim] {len(doc.anti_patterns)}\n"
        f"[dim]Snippets:[/dim] {len(doc.snippets)}\n"
        f"[dim]Checklist:[/dim] {len(doc.checklist)} items\n"
        f"[dim]Lessons:[/dim] {len(doc.lesson_ids)}\n"
        f"[dim]File:[/dim] {doc.path}",
        title=f"Agent: {doc.name}",
    ))
    console.print(Markdown(text))


@app.command("new-agent")
def new_agent(
    name: str = typer.Argument(..., help="Agent name, e.g. 'stripe-payments'"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Document title"),
):
    """Scaffold a new agent document."""
    workspace = get_context()

    try:
        doc = workspace.library().create_agent(name, title=title)
    except (FileExistsError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n✅ Created agent: [green]{doc.title}[/green]")
    console.print(f"   File: {doc.path}")
    console.print("   [dim]Fill in Role, Triggers, Anti-Patterns and Checklist, then run codebakers lint.[/dim]")


@app.command()
def lint(
    name: Optional[str] = typer.Argument(None, help="Agent to lint (default: all)"),
    strict: bool = typer.Option(False, "--strict", help="Fail on warnings too"),
):
    """Check agent documents for missing or malformed sections."""
    workspace = get_context()
    library = workspace.library()

    if name:
        try:
            reports = {name: lint_agent(library.get_agent(name))}
        except AgentNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
    else:
        reports = library.lint_all()

    if not reports:
        console.print("[yellow]No agents to lint.[/yellow]")
        return

    failed = False
    for agent_name, report in reports.items():
        if report.issues:
            console.print(f"\n[bold]{agent_name}[/bold]")
            _print_report(report)
        if not report.ok or (strict and report.warnings):
            failed = True

    errors = sum(len(r.errors) for r in reports.values())
    warnings = sum(len(r.warnings) for r in reports.values())
    if errors:
        console.print(f"\n❌ {errors} errors, {warnings} warnings in {len(reports)} agents")
    elif warnings:
        console.print(f"\n⚠️  {warnings} warnings in {len(reports)} agents")
    else:
        console.print(f"\n✅ {len(reports)} agents OK")

    if failed:
        raise typer.Exit(1)


@app.command()
def match(
    task: str = typer.Argument(..., help="Task description"),
    limit: int = typer.Option(3, "--limit", "-l", help="Maximum agents to show"),
):
    """Find the agents whose triggers match a task."""
    workspace = get_context()
    matches = workspace.library().match(task, limit=limit)

    if not matches:
        console.print("[yellow]No agent matches that task.[/yellow]")
        raise typer.Exit(1)

    for m in matches:
        console.print(
            f"  [cyan]{m.agent.name}[/cyan] {m.agent.title} "
            f"[dim](score {m.score}: {', '.join(m.matched)})[/dim]"
        )


# ============================================================================
# Lessons
# ============================================================================


@app.command()
def capture(
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Lesson title"),
    agent_name: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent the lesson belongs to"),
    category: str = typer.Option("bug-pattern", "--category", "-c", help="bug-pattern, improvement, anti-pattern, checklist-item"),
    severity: str = typer.Option("medium", "--severity", "-s", help="critical, high, medium, low"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project where it was found"),
    problem: Optional[str] = typer.Option(None, "--problem", help="What went wrong"),
    root_cause: Optional[str] = typer.Option(None, "--root-cause", help="Why it happened"),
    fix: Optional[str] = typer.Option(None, "--fix", help="How it was fixed"),
    prevention: Optional[str] = typer.Option(None, "--prevention", help="How the agent should prevent it"),
    on: Optional[str] = typer.Option(None, "--date", help="Date found (YYYY-MM-DD, default today)"),
):
    """
    Capture a lesson for the monthly review.

    Prompts for the title and agent when they aren't given.
    """
    workspace = get_context()
    library = workspace.library()

    if not title:
        title = Prompt.ask("Lesson title")
    if not agent_name:
        names = [doc.name for doc in library.list_agents()]
        if names:
            console.print(f"[dim]Agents: {', '.join(names)}[/dim]")
        agent_name = Prompt.ask("Agent")

    try:
        lesson = Lesson(
            title=title,
            agent=agent_name,
            category=LessonCategory(category),
            severity=Severity(severity),
            project=project,
            problem=problem or "",
            root_cause=root_cause or "",
            fix=fix or "",
            prevention=prevention or "",
        )
        if on:
            lesson.date = _parse_date(on, "--date").isoformat()
        lesson = workspace.lessons().capture(lesson)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n✅ Captured lesson: [green]{lesson.id}[/green]")
    console.print(f"   Agent: {lesson.agent}")
    if not library.has_agent(lesson.agent):
        console.print(f"   [yellow]No agent named '{lesson.agent}' yet; create it before applying.[/yellow]")
    console.print("   [dim]Fill in the details, then review with codebakers review.[/dim]")


@app.command()
def lessons(
    status_filter: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    agent_name: Optional[str] = typer.Option(None, "--agent", "-a", help="Filter by agent"),
):
    """List lessons."""
    workspace = get_context()

    try:
        status = LessonStatus(status_filter) if status_filter else None
    except ValueError:
        console.print(f"[red]Invalid status: {status_filter}[/red]")
        raise typer.Exit(1)

    found = workspace.lessons().list_lessons(status=status, agent=agent_name)
    if not found:
        console.print("[yellow]No lessons found.[/yellow]")
        return

    status_colors = {
        LessonStatus.PENDING: "yellow",
        LessonStatus.APPLIED: "green",
        LessonStatus.REJECTED: "red",
        LessonStatus.DEFERRED: "blue",
    }

    table = Table(title="Lessons")
    table.add_column("ID", style="cyan")
    table.add_column("Agent")
    table.add_column("Severity")
    table.add_column("Status")

    for lesson in found:
        color = status_colors[lesson.status]
        table.add_row(
            lesson.id,
            lesson.agent,
            lesson.severity.value,
            f"[{color}]{lesson.status.value}[/{color}]",
        )

    console.print(table)


@app.command()
def lesson(lesson_id: str = typer.Argument(..., help="Lesson ID")):
    """Show a lesson."""
    workspace = get_context()

    try:
        found = workspace.lessons().get_lesson(lesson_id)
    except LessonNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(Markdown(found.to_markdown()))


@app.command()
def apply(
    lesson_id: str = typer.Argument(..., help="Lesson ID to apply"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
):
    """Fold a lesson into its agent's Lessons Learned section."""
    workspace = get_context()
    book = workspace.lessons()

    try:
        found = book.get_lesson(lesson_id)
    except LessonNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not yes:
        console.print(Markdown(found.to_agent_entry()))
        if not Confirm.ask(f"Add this to agent '{found.agent}'?"):
            console.print("[yellow]Cancelled.[/yellow]")
            raise typer.Exit(0)

    try:
        applied = book.apply(lesson_id, workspace.library())
    except AgentNotFoundError as e:
        console.print(f"[red]{e}. Create it with 'codebakers new-agent {found.agent}'.[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n✅ Applied [green]{applied.id}[/green] to agent [cyan]{applied.agent}[/cyan]")


def _set_lesson_status(lesson_id: str, status: LessonStatus, note: Optional[str]) -> None:
    workspace = get_context()
    try:
        updated = workspace.lessons().update_status(lesson_id, status, note)
    except LessonNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"✅ {updated.id}: [cyan]{updated.status.value}[/cyan]")


@app.command()
def reject(
    lesson_id: str = typer.Argument(..., help="Lesson ID"),
    note: Optional[str] = typer.Option(None, "--note", "-n", help="Why it was rejected"),
):
    """Reject a lesson."""
    _set_lesson_status(lesson_id, LessonStatus.REJECTED, note)


@app.command()
def defer(
    lesson_id: str = typer.Argument(..., help="Lesson ID"),
    note: Optional[str] = typer.Option(None, "--note", "-n", help="What it is waiting on"),
):
    """Defer a lesson to a later review."""
    _set_lesson_status(lesson_id, LessonStatus.DEFERRED, note)


@app.command("archive-lessons")
def archive_lessons(
    before: Optional[str] = typer.Option(None, "--before", help="Archive lessons dated before (YYYY-MM-DD)"),
    quarter: Optional[str] = typer.Option(None, "--quarter", "-q", help="Archive through this quarter (e.g. 2026-Q2)"),
):
    """Move applied and rejected lessons into lessons/archive/<quarter>/."""
    workspace = get_context()
    cutoff = _archive_cutoff(before, quarter)

    try:
        moved = workspace.lessons().archive(cutoff)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if not moved:
        console.print(f"[yellow]Nothing to archive before {cutoff}.[/yellow]")
        return
    console.print(f"✅ Archived {len(moved)} lessons dated before {cutoff}")


# ============================================================================
# Scores
# ============================================================================


@app.command()
def scores():
    """Show projects ranked by overall score."""
    workspace = get_context()
    store = _load_scores(workspace)

    projects = store.ranking()
    if not projects:
        console.print("[yellow]No projects yet. Run 'codebakers record <project>' to add one.[/yellow]")
        return

    threshold = workspace.config.workspace.score_threshold

    table = Table(title="Project Scores")
    table.add_column("Project", style="cyan")
    table.add_column("Name")
    table.add_column("Overall", justify="right")
    table.add_column("Trend", justify="right")
    table.add_column("Open bugs", justify="right")
    table.add_column("Updated")

    for project in projects:
        overall = "-" if project.overall is None else f"{project.overall:g}"
        if project.overall is not None and project.overall < threshold:
            overall = f"[red]{overall}[/red]"

        trend = store.trend(project.id)
        trend_text = "" if trend is None else f"{trend:+g}"
        if trend is not None and trend < 0:
            trend_text = f"[red]{trend_text}[/red]"

        bugs = ""
        if project.bugs:
            bugs = str(project.bugs.open)
            if project.bugs.open_critical:
                bugs += f" [red]({project.bugs.open_critical} critical)[/red]"

        table.add_row(project.id, project.name, overall, trend_text, bugs, project.updated_at[:10])

    console.print(table)


@app.command()
def validate(
    path: Optional[Path] = typer.Argument(None, help="scores.json to check (default: the workspace's)"),
):
    """Validate a scores.json document."""
    if path is None:
        path = get_context().scores_path

    try:
        data = ScoresStore.read_raw(path)
    except (FileNotFoundError, ScoresError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    report = validate_scores(data)
    _print_report(report)

    if not report.ok:
        console.print(f"\n❌ {path}: {len(report.errors)} errors, {len(report.warnings)} warnings")
        raise typer.Exit(1)
    console.print(f"\n✅ {path} is valid" + (f" ({len(report.warnings)} warnings)" if report.warnings else ""))


def _parse_scores(values: list[str]) -> dict[str, float]:
    parsed = {}
    for value in values:
        metric, sep, number = value.partition("=")
        try:
            if not sep or not metric.strip():
                raise ValueError
            parsed[metric.strip()] = float(number)
        except ValueError:
            console.print(f"[red]Invalid --score '{value}', expected metric=value[/red]")
            raise typer.Exit(1)
    return parsed


@app.command()
def record(
    project_id: str = typer.Argument(..., help="Project ID (lowercase slug)"),
    score: Optional[list[str]] = typer.Option(None, "--score", "-s", help="metric=value, repeatable"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
    bugs_open: Optional[int] = typer.Option(None, "--bugs-open", help="Open bug count"),
    bugs_resolved: Optional[int] = typer.Option(None, "--bugs-resolved", help="Resolved bug count"),
    critical: Optional[int] = typer.Option(None, "--critical", help="Open critical bugs"),
    high: Optional[int] = typer.Option(None, "--high", help="Open high severity bugs"),
    medium: Optional[int] = typer.Option(None, "--medium", help="Open medium severity bugs"),
    low: Optional[int] = typer.Option(None, "--low", help="Open low severity bugs"),
    agent_names: Optional[list[str]] = typer.Option(None, "--agent", "-a", help="Agent used on the project, repeatable"),
    on: Optional[str] = typer.Option(None, "--date", help="Snapshot date (YYYY-MM-DD, default today)"),
):
    """
    Record metrics for a project.

    Scores are merged into the project's existing ones and the overall is
    recomputed from the weights. Nothing is written if the result would
    not validate.
    """
    workspace = get_context()
    store = _load_scores(workspace)
    day = _parse_date(on, "--date")
    new_scores = _parse_scores(score or [])

    severity_counts = dict(zip(SEVERITIES, (critical, high, medium, low)))
    by_severity = {k: v for k, v in severity_counts.items() if v is not None} or None

    existing = store.get_project(project_id)
    bugs = merge_bug_counts(
        existing.bugs if existing else None,
        open=bugs_open,
        resolved=bugs_resolved,
        by_severity=by_severity,
    )

    try:
        project = store.record(
            project_id,
            scores=new_scores,
            bugs=bugs,
            name=name,
            agents=agent_names or [],
            on=day,
        )
    except ScoresValidationError as e:
        _print_report(e.report)
        console.print("[red]Not recorded: the result would not validate.[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    overall = "-" if project.overall is None else f"{project.overall:g}"
    console.print(f"\n✅ Recorded [green]{project.name}[/green] ([cyan]{project.id}[/cyan]): overall {overall}")
    trend = store.trend(project.id)
    if trend is not None:
        console.print(f"   Trend: {trend:+g}")
    if project.bugs:
        console.print(f"   Bugs: {project.bugs.open} open, {project.bugs.resolved} resolved")


@app.command("remove-project")
def remove_project(
    project_id: str = typer.Argument(..., help="Project ID"),
    force: bool = typer.Option(False, "--force", "-f", help="Don't ask for confirmation"),
):
    """Remove a project and its history from scores.json."""
    workspace = get_context()
    store = _load_scores(workspace)

    project = store.get_project(project_id)
    if not project:
        console.print(f"[red]Project not found: {project_id}[/red]")
        raise typer.Exit(1)

    if not force:
        if not Confirm.ask(f"Remove project '{project.name}' and {len(project.history)} snapshots?"):
            console.print("[yellow]Removal cancelled.[/yellow]")
            raise typer.Exit(0)

    store.remove_project(project_id)
    console.print(f"\n✅ Removed project: [green]{project.name}[/green]")


@app.command()
def weights(
    values: Optional[list[str]] = typer.Argument(None, help="metric=weight pairs replacing the table"),
):
    """
    Show or replace the scoring weights.

    Setting weights replaces the whole table; they must sum to 1.0. Every
    project's overall is recomputed.
    """
    workspace = get_context()
    store = _load_scores(workspace)

    if values:
        new_weights = {}
        for value in values:
            metric, sep, number = value.partition("=")
            try:
                if not sep or not metric.strip():
                    raise ValueError
                new_weights[metric.strip()] = float(number)
            except ValueError:
                console.print(f"[red]Invalid weight '{value}', expected metric=weight[/red]")
                raise typer.Exit(1)

        try:
            store.set_weights(new_weights)
        except ScoresValidationError as e:
            _print_report(e.report)
            console.print("[red]Weights not changed.[/red]")
            raise typer.Exit(1)
        console.print("✅ Weights updated")

    table = Table(title="Weights")
    table.add_column("Metric", style="cyan")
    table.add_column("Weight", justify="right")
    for metric, weight in store.weights.items():
        table.add_row(metric, f"{weight:g}")
    console.print(table)


@app.command("archive-scores")
def archive_scores(
    before: Optional[str] = typer.Option(None, "--before", help="Archive snapshots dated before (YYYY-MM-DD)"),
    quarter: Optional[str] = typer.Option(None, "--quarter", "-q", help="Archive through this quarter (e.g. 2026-Q2)"),
):
    """Move old history snapshots into metrics/archive/scores-<quarter>.json."""
    workspace = get_context()
    store = _load_scores(workspace)
    cutoff = _archive_cutoff(before, quarter)

    try:
        moved = store.archive_history(cutoff)
    except ScoresError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not moved:
        console.print(f"[yellow]No snapshots before {cutoff}.[/yellow]")
        return
    console.print(f"✅ Archived {moved} snapshots dated before {cutoff} to {store.archive_dir}")


# ============================================================================
# Review
# ============================================================================


@app.command()
def review(
    since: Optional[str] = typer.Option(None, "--since", help="Start of the period (default: first of the month)"),
    save: bool = typer.Option(False, "--save", help="Write reviews/<YYYY-MM>.md"),
):
    """Build the monthly agent review."""
    workspace = get_context()
    since_date = _parse_date(since, "--since") or date.today().replace(day=1)

    try:
        store = workspace.scores()
    except (FileNotFoundError, ScoresError) as e:
        console.print(f"[yellow]Reviewing without scores: {e}[/yellow]")
        store = None

    report = build_review(
        workspace.library(),
        workspace.lessons(),
        store,
        since=since_date,
        threshold=workspace.config.workspace.score_threshold,
    )

    console.print(Markdown(render_markdown(report)))

    if save:
        path = save_review(report, workspace.reviews_dir)
        console.print(f"\n✅ Saved review: [green]{path}[/green]")


# ============================================================================
# Templates
# ============================================================================


@app.command()
def templates(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by category"),
):
    """List code templates."""
    workspace = get_context()
    catalog = workspace.templates()

    found = catalog.list_templates(category)
    if not found:
        console.print(f"[yellow]No templates in {catalog.templates_dir}.[/yellow]")
        return

    table = Table(title="Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Language")
    table.add_column("Description")

    for info in found:
        table.add_row(info.name, info.category, info.language, info.description[:60])

    console.print(table)


@app.command("use-template")
def use_template(
    name: str = typer.Argument(..., help="Template name"),
    dest: Path = typer.Argument(Path("."), help="Destination file or directory"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Copy a code template into a project."""
    workspace = get_context()

    try:
        target = workspace.templates().copy_template(name, dest, force=force)
    except (FileNotFoundError, FileExistsError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"✅ Copied [cyan]{name}[/cyan] to [green]{target}[/green]")


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default 127.0.0.1)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (default 8082)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the dashboard API for this workspace."""
    from .server import main as run_server

    workspace = get_context()
    console.print(f"🍞 Serving [cyan]{workspace.name}[/cyan] dashboard API")
    run_server(host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
