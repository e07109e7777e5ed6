"""Tests for the codebakers CLI."""

import json

import pytest
from typer.testing import CliRunner

from codebakers.cli import app
from codebakers.health import SetupChecker
from codebakers.lessons import LessonBook
from codebakers.scores import ScoresStore

runner = CliRunner()


@pytest.fixture
def in_workspace(workspace, monkeypatch):
    """Run commands from inside the sample workspace."""
    monkeypatch.chdir(workspace.root)
    return workspace


class TestCoreCommands:
    """Tests for init, status and version."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "CodeBakers v1.0.0" in result.output

    def test_init(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["init", "--name", "acme"])

        assert result.exit_code == 0
        assert (tmp_path / ".codebakers" / "workspace.json").exists()
        assert (tmp_path / "metrics" / "scores.json").exists()

    def test_init_again_can_be_declined(self, in_workspace):
        result = runner.invoke(app, ["init"], input="n\n")
        assert result.exit_code == 0
        assert "Initializing" not in result.output

    def test_not_initialized(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "not initialized" in result.output

    def test_status(self, in_workspace):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Agents: 2" in result.output


class TestAgentCommands:
    """Tests for agents, agent, new-agent, lint and match."""

    def test_agents(self, in_workspace):
        result = runner.invoke(app, ["agents", "--tree"])
        assert result.exit_code == 0
        assert "stripe-payments" in result.output
        assert "subscription billing" in result.output

    def test_agent_raw(self, in_workspace):
        result = runner.invoke(app, ["agent", "stripe-payments", "--raw"])
        assert result.exit_code == 0
        assert "## Anti-Patterns" in result.output

    def test_unknown_agent(self, in_workspace):
        result = runner.invoke(app, ["agent", "nope"])
        assert result.exit_code == 1
        assert "Agent not found" in result.output

    def test_new_agent(self, in_workspace):
        result = runner.invoke(app, ["new-agent", "gdpr-compliance"])
        assert result.exit_code == 0
        assert (in_workspace.root / "agents" / "gdpr-compliance.md").exists()

        again = runner.invoke(app, ["new-agent", "gdpr-compliance"])
        assert again.exit_code == 1

    def test_lint_clean(self, in_workspace):
        result = runner.invoke(app, ["lint"])
        assert result.exit_code == 0

    def test_lint_strict_fails_on_warnings(self, in_workspace):
        result = runner.invoke(app, ["lint", "--strict"])
        assert result.exit_code == 1

    def test_lint_errors(self, in_workspace):
        (in_workspace.root / "agents" / "broken.md").write_text("# Broken\n")
        result = runner.invoke(app, ["lint"])
        assert result.exit_code == 1
        assert "broken" in result.output

    def test_match(self, in_workspace):
        result = runner.invoke(app, ["match", "build a voice agent"])
        assert result.exit_code == 0
        assert "chatbot" in result.output

    def test_no_match(self, in_workspace):
        result = runner.invoke(app, ["match", "tune postgres indexes"])
        assert result.exit_code == 1


class TestLessonCommands:
    """Tests for capture, lessons, apply, reject and defer."""

    def _capture(self, title="Webhook retried twice", agent="stripe-payments"):
        return runner.invoke(app, [
            "capture",
            "--title", title,
            "--agent", agent,
            "--severity", "high",
            "--fix", "Use idempotency keys",
            "--date", "2026-09-01",
        ])

    def test_capture_and_apply(self, in_workspace):
        result = self._capture()
        assert result.exit_code == 0

        lesson_id = "2026-09-01-webhook-retried-twice"
        assert (in_workspace.root / "lessons" / f"{lesson_id}.md").exists()

        applied = runner.invoke(app, ["apply", lesson_id, "--yes"])
        assert applied.exit_code == 0

        agent_text = (in_workspace.root / "agents" / "stripe-payments.md").read_text()
        assert f"<!-- lesson:{lesson_id} -->" in agent_text
        assert "- **Fix:** Use idempotency keys" in agent_text

    def test_apply_can_be_cancelled(self, in_workspace):
        self._capture()
        result = runner.invoke(app, ["apply", "2026-09-01-webhook-retried-twice"], input="n\n")
        assert result.exit_code == 0

        agent_text = (in_workspace.root / "agents" / "stripe-payments.md").read_text()
        assert "lesson:" not in agent_text

    def test_apply_unknown_agent(self, in_workspace):
        self._capture(agent="gdpr")
        result = runner.invoke(app, ["apply", "2026-09-01-webhook-retried-twice", "--yes"])
        assert result.exit_code == 1
        assert "new-agent gdpr" in result.output

    def test_capture_invalid_severity(self, in_workspace):
        result = runner.invoke(app, ["capture", "-t", "x", "-a", "chatbot", "--severity", "urgent"])
        assert result.exit_code == 1

    def test_reject_and_defer(self, in_workspace):
        self._capture()
        self._capture(title="Second one")

        assert runner.invoke(app, ["reject", "2026-09-01-webhook-retried-twice", "-n", "dup"]).exit_code == 0
        assert runner.invoke(app, ["defer", "2026-09-01-second-one"]).exit_code == 0

        book = LessonBook.load(in_workspace.root / "lessons")
        assert book.get_lesson("2026-09-01-webhook-retried-twice").note == "dup"
        assert book.get_lesson("2026-09-01-second-one").status.value == "deferred"

    def test_unknown_lesson(self, in_workspace):
        result = runner.invoke(app, ["reject", "nope"])
        assert result.exit_code == 1

    def test_lessons_invalid_status(self, in_workspace):
        result = runner.invoke(app, ["lessons", "--status", "done"])
        assert result.exit_code == 1

    def test_archive_lessons(self, in_workspace):
        self._capture()
        runner.invoke(app, ["reject", "2026-09-01-webhook-retried-twice"])

        result = runner.invoke(app, ["archive-lessons", "--quarter", "2026-Q3"])

        assert result.exit_code == 0
        archived = in_workspace.root / "lessons" / "archive" / "2026-Q3" / "2026-09-01-webhook-retried-twice.md"
        assert archived.exists()

    def test_archive_lessons_skips_bad_date(self, in_workspace):
        self._capture()
        runner.invoke(app, ["reject", "2026-09-01-webhook-retried-twice"])
        (in_workspace.root / "lessons" / "hand-edited.md").write_text(
            "# Lesson: Hand edited\n\n- **Agent:** chatbot\n- **Date:** Oct 1 2026\n- **Status:** applied\n"
        )

        result = runner.invoke(app, ["archive-lessons", "--quarter", "2026-Q3"])

        assert result.exit_code == 0
        assert (in_workspace.root / "lessons" / "hand-edited.md").exists()
        archived = in_workspace.root / "lessons" / "archive" / "2026-Q3" / "2026-09-01-webhook-retried-twice.md"
        assert archived.exists()

    def test_capture_compact_date(self, in_workspace):
        result = runner.invoke(app, ["capture", "-t", "x", "-a", "chatbot", "--date", "20260901"])
        assert result.exit_code == 1

    def test_archive_both_options(self, in_workspace):
        result = runner.invoke(app, ["archive-lessons", "--quarter", "2026-Q3", "--before", "2026-01-01"])
        assert result.exit_code == 1


class TestScoreCommands:
    """Tests for record, validate, weights and archive-scores."""

    def test_record_new_project(self, in_workspace):
        result = runner.invoke(app, [
            "record", "beta-app",
            "--name", "Beta",
            "-s", "code_quality=90",
            "-s", "test_coverage=80",
            "--critical", "1",
            "--high", "1",
            "--bugs-resolved", "4",
            "--agent", "stripe-payments",
            "--date", "2026-10-01",
        ])
        assert result.exit_code == 0

        project = ScoresStore.load(in_workspace.scores_path).get_project("beta-app")
        assert project.overall == 85.0
        assert project.bugs.to_dict() == {
            "total": 6,
            "open": 2,
            "resolved": 4,
            "by_severity": {"critical": 1, "high": 1, "medium": 0, "low": 0},
        }
        assert project.agents == ["stripe-payments"]

    def test_record_one_severity_keeps_the_others(self, in_workspace, scores_file):
        result = runner.invoke(app, ["record", "acme-portal", "--critical", "0"])
        assert result.exit_code == 0

        bugs = ScoresStore.load(scores_file).get_project("acme-portal").bugs
        assert bugs.by_severity == {"critical": 0, "high": 1, "medium": 0, "low": 0}
        assert bugs.open == 1
        assert bugs.resolved == 3

    def test_record_invalid_score(self, in_workspace):
        before = in_workspace.scores_path.read_text()
        result = runner.invoke(app, ["record", "beta-app", "-s", "security=150"])
        assert result.exit_code == 1
        assert in_workspace.scores_path.read_text() == before

    def test_record_malformed_score(self, in_workspace):
        result = runner.invoke(app, ["record", "beta-app", "-s", "security"])
        assert result.exit_code == 1

    def test_record_refuses_invalid_file(self, in_workspace, scores_file, sample_scores):
        sample_scores["weights"]["security"] = 0.9
        scores_file.write_text(json.dumps(sample_scores))

        result = runner.invoke(app, ["record", "acme-portal", "-s", "security=95"])

        assert result.exit_code == 1
        assert json.loads(scores_file.read_text()) == sample_scores

    def test_scores_table(self, in_workspace, scores_file):
        result = runner.invoke(app, ["scores"])
        assert result.exit_code == 0
        assert "Project Scores" in result.output

    def test_validate(self, in_workspace, scores_file, sample_scores):
        assert runner.invoke(app, ["validate"]).exit_code == 0

        sample_scores["projects"]["acme-portal"]["overall"] = 10
        scores_file.write_text(json.dumps(sample_scores))
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 1
        assert "overall" in result.output

    def test_validate_other_file(self, in_workspace, tmp_path):
        path = tmp_path / "other.json"
        path.write_text("[]")
        assert runner.invoke(app, ["validate", str(path)]).exit_code == 1

    def test_weights(self, in_workspace, scores_file):
        result = runner.invoke(app, ["weights"])
        assert result.exit_code == 0
        assert "code_quality" in result.output

        bad = runner.invoke(app, ["weights", "code_quality=0.5", "test_coverage=0.2"])
        assert bad.exit_code == 1
        assert ScoresStore.load(scores_file).weights["code_quality"] == 0.25

    def test_remove_project(self, in_workspace, scores_file):
        result = runner.invoke(app, ["remove-project", "acme-portal", "--force"])
        assert result.exit_code == 0
        assert ScoresStore.load(scores_file).list_projects() == []

    def test_archive_scores(self, in_workspace, scores_file):
        result = runner.invoke(app, ["archive-scores", "--before", "2026-07-01"])
        assert result.exit_code == 0
        assert (in_workspace.root / "metrics" / "archive" / "scores-2026-Q2.json").exists()


class TestOtherCommands:
    """Tests for review, templates and doctor."""

    def test_review_save(self, in_workspace):
        result = runner.invoke(app, ["review", "--save"])
        assert result.exit_code == 0
        assert len(list((in_workspace.root / "reviews").glob("*.md"))) == 1

    def test_templates(self, in_workspace):
        templates_dir = in_workspace.root / "templates" / "code"
        templates_dir.mkdir(parents=True)
        (templates_dir / "vapi-assistant.ts").write_text("// Vapi assistant config\nexport {};\n")

        listed = runner.invoke(app, ["templates"])
        assert listed.exit_code == 0
        assert "vapi-assistant" in listed.output

        dest = in_workspace.root / "src"
        dest.mkdir()
        copied = runner.invoke(app, ["use-template", "vapi-assistant", str(dest)])
        assert copied.exit_code == 0
        assert (dest / "vapi-assistant.ts").exists()

        again = runner.invoke(app, ["use-template", "vapi-assistant", str(dest)])
        assert again.exit_code == 1

    def test_doctor_missing_tools(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CODEBAKERS_HOME", str(tmp_path / ".codebakers"))
        monkeypatch.setattr(
            "codebakers.cli.SetupChecker",
            lambda home: SetupChecker(home, os_name="linux", which=lambda command: None),
        )

        result = runner.invoke(app, ["doctor", "--json"])

        assert result.exit_code == 1
        assert '"overall_status": "error"' in result.output
