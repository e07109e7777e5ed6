"""
Monthly review for CodeBakers.

Pulls together what needs a decision this month: lessons waiting to be
folded into agents, agents that no longer lint, and projects whose scores
are low, falling, or carrying open critical bugs.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .agents import AgentLibrary
from .lessons import Lesson, LessonBook, LessonStatus
from .scores import ProjectScores, ScoresStore


@dataclass
class Regression:
    project_id: str
    name: str
    previous: float
    current: float

    @property
    def delta(self) -> float:
        return round(self.current - self.previous, 1)


@dataclass
class ReviewReport:
    """Everything the monthly review meeting goes through."""

    period: str
    since: str
    generated_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec="seconds"))
    pending_by_agent: dict[str, list[Lesson]] = field(default_factory=dict)
    deferred: list[Lesson] = field(default_factory=list)
    applied_since: list[Lesson] = field(default_factory=list)
    unknown_agents: list[str] = field(default_factory=list)
    agents_with_errors: dict[str, list[str]] = field(default_factory=dict)
    below_threshold: list[ProjectScores] = field(default_factory=list)
    open_critical: list[ProjectScores] = field(default_factory=list)
    regressions: list[Regression] = field(default_factory=list)
    threshold: float = 70.0

    @property
    def pending_count(self) -> int:
        return sum(len(lessons) for lessons in self.pending_by_agent.values())

    @property
    def is_clear(self) -> bool:
        return not (
            self.pending_by_agent
            or self.deferred
            or self.agents_with_errors
            or self.below_threshold
            or self.open_critical
            or self.regressions
        )

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "since": self.since,
            "generated_at": self.generated_at,
            "threshold": self.threshold,
            "pending_by_agent": {
                agent: [lsn.id for lsn in lessons] for agent, lessons in self.pending_by_agent.items()
            },
            "deferred": [lsn.id for lsn in self.deferred],
            "applied_since": [lsn.id for lsn in self.applied_since],
            "unknown_agents": self.unknown_agents,
            "agents_with_errors": self.agents_with_errors,
            "below_threshold": {p.id: p.overall for p in self.below_threshold},
            "open_critical": {p.id: p.bugs.open_critical for p in self.open_critical if p.bugs},
            "regressions": [
                {"project": r.project_id, "previous": r.previous, "current": r.current, "delta": r.delta}
                for r in self.regressions
            ],
        }


def build_review(
    library: AgentLibrary,
    book: LessonBook,
    store: Optional[ScoresStore],
    since: date,
    threshold: float = 70.0,
    today: Optional[date] = None,
) -> ReviewReport:
    """Build the review report for the period starting at `since`."""
    today = today or date.today()
    report = ReviewReport(
        period=today.strftime("%Y-%m"),
        since=since.isoformat(),
        threshold=threshold,
    )

    for lesson in book.list_lessons(status=LessonStatus.PENDING):
        report.pending_by_agent.setdefault(lesson.agent, []).append(lesson)
        if not library.has_agent(lesson.agent) and lesson.agent not in report.unknown_agents:
            report.unknown_agents.append(lesson.agent)

    report.deferred = book.list_lessons(status=LessonStatus.DEFERRED)
    report.applied_since = [
        lesson for lesson in book.list_lessons(status=LessonStatus.APPLIED)
        if (lesson.applied_at or lesson.date) >= report.since
    ]

    for name, lint in library.lint_all().items():
        if not lint.ok:
            report.agents_with_errors[name] = [i.message for i in lint.errors]

    if store is not None:
        for project in store.ranking():
            if project.overall is not None and project.overall < threshold:
                report.below_threshold.append(project)
            if project.bugs and project.bugs.open_critical:
                report.open_critical.append(project)

            scored = [s for s in project.history if s.overall is not None]
            if len(scored) >= 2 and scored[-1].overall < scored[-2].overall:
                report.regressions.append(Regression(
                    project_id=project.id,
                    name=project.name,
                    previous=scored[-2].overall,
                    current=scored[-1].overall,
                ))

    return report


def render_markdown(report: ReviewReport) -> str:
    """Render the report as the markdown review document."""
    parts = [
        f"# Agent Review: {report.period}",
        "",
        f"_Covers {report.since} to {report.generated_at[:10]}._",
    ]

    if report.is_clear:
        parts += ["", "Nothing needs a decision this month."]

    if report.pending_by_agent:
        parts += ["", f"## Pending Lessons ({report.pending_count})"]
        for agent in sorted(report.pending_by_agent):
            suffix = " (no such agent)" if agent in report.unknown_agents else ""
            parts += ["", f"### {agent}{suffix}", ""]
            for lesson in report.pending_by_agent[agent]:
                parts.append(f"- [ ] `{lesson.id}` {lesson.title} ({lesson.severity.value})")

    if report.deferred:
        parts += ["", "## Deferred Lessons", ""]
        for lesson in report.deferred:
            note = f": {lesson.note}" if lesson.note else ""
            parts.append(f"- `{lesson.id}` {lesson.title}{note}")

    if report.applied_since:
        parts += ["", "## Applied Since Last Review", ""]
        for lesson in report.applied_since:
            parts.append(f"- `{lesson.id}` into **{lesson.agent}**")

    if report.agents_with_errors:
        parts += ["", "## Agents Failing Lint", ""]
        for name, errors in report.agents_with_errors.items():
            parts.append(f"- **{name}**: {'; '.join(errors)}")

    if report.below_threshold:
        parts += ["", f"## Projects Below {report.threshold:g}", ""]
        for project in report.below_threshold:
            parts.append(f"- {project.name} (`{project.id}`): {project.overall}")

    if report.open_critical:
        parts += ["", "## Open Critical Bugs", ""]
        for project in report.open_critical:
            parts.append(f"- {project.name} (`{project.id}`): {project.bugs.open_critical}")

    if report.regressions:
        parts += ["", "## Regressions", ""]
        for regression in report.regressions:
            parts.append(
                f"- {regression.name} (`{regression.project_id}`): "
                f"{regression.previous} -> {regression.current} ({regression.delta:+})"
            )

    return "\n".join(parts) + "\n"


def save_review(report: ReviewReport, reviews_dir: Path) -> Path:
    """Write reviews/<YYYY-MM>.md, replacing an earlier run for the same month."""
    reviews_dir.mkdir(parents=True, exist_ok=True)
    path = reviews_dir / f"{report.period}.md"
    path.write_text(render_markdown(report))
    return path
