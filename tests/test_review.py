"""Tests for the monthly review report."""

from datetime import date

from codebakers.lessons import Lesson, Severity
from codebakers.review import build_review, render_markdown, save_review
from codebakers.scores import ScoresStore


class TestBuildReview:
    """Tests for build_review()."""

    def test_empty_workspace_is_clear(self, workspace):
        report = build_review(
            workspace.library(),
            workspace.lessons(),
            workspace.scores(),
            since=date(2026, 10, 1),
            today=date(2026, 10, 18),
        )
        assert report.period == "2026-10"
        assert report.is_clear
        assert "Nothing needs a decision this month." in render_markdown(report)

    def test_pending_lessons_grouped_by_agent(self, workspace):
        book = workspace.lessons()
        book.capture(Lesson(title="A", agent="stripe-payments", date="2026-10-02"))
        book.capture(Lesson(title="B", agent="stripe-payments", date="2026-10-03"))
        book.capture(Lesson(title="C", agent="gdpr", date="2026-10-04", severity=Severity.CRITICAL))

        report = build_review(workspace.library(), book, None, since=date(2026, 10, 1))

        assert report.pending_count == 3
        assert len(report.pending_by_agent["stripe-payments"]) == 2
        assert report.unknown_agents == ["gdpr"]

        text = render_markdown(report)
        assert "## Pending Lessons (3)" in text
        assert "### gdpr (no such agent)" in text
        assert "(critical)" in text

    def test_applied_since(self, workspace):
        book = workspace.lessons()
        lesson = book.capture(Lesson(title="A", agent="stripe-payments", date="2026-08-01"))
        book.apply(lesson.id, workspace.library())

        report = build_review(workspace.library(), book, None, since=date.today().replace(day=1))
        assert [lsn.id for lsn in report.applied_since] == [lesson.id]

    def test_agents_failing_lint(self, workspace):
        agents_dir = workspace.config.workspace.agents_path(workspace.root)
        (agents_dir / "broken.md").write_text("# Broken\n")

        report = build_review(workspace.library(), workspace.lessons(), None, since=date(2026, 10, 1))
        assert "broken" in report.agents_with_errors
        assert "## Agents Failing Lint" in render_markdown(report)

    def test_project_findings(self, workspace, scores_file):
        store = ScoresStore.load(scores_file)
        store.record("acme-portal", scores={"security": 40}, on=date(2026, 10, 5))

        report = build_review(
            workspace.library(),
            workspace.lessons(),
            workspace.scores(),
            since=date(2026, 10, 1),
        )

        assert [p.id for p in report.below_threshold] == ["acme-portal"]
        assert [p.id for p in report.open_critical] == ["acme-portal"]
        regression = report.regressions[0]
        assert regression.previous == 76.5
        assert regression.current == 66.5
        assert regression.delta == -10.0

        text = render_markdown(report)
        assert "## Projects Below 70" in text
        assert "76.5 -> 66.5 (-10.0)" in text

    def test_save_review(self, workspace, tmp_path):
        report = build_review(
            workspace.library(),
            workspace.lessons(),
            None,
            since=date(2026, 10, 1),
            today=date(2026, 10, 18),
        )
        path = save_review(report, tmp_path / "reviews")
        assert path.name == "2026-10.md"
        assert path.read_text().startswith("# Agent Review: 2026-10")
