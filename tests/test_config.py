"""Tests for workspace and install configuration."""

import json
from datetime import date

import pytest

from codebakers.config import (
    CodeBakersConfig,
    InstallConfig,
    WorkspaceConfig,
    find_workspace_root,
    get_install_home,
    get_repo_url,
)
from codebakers.utils import parse_iso_date, parse_quarter, quarter_label, quarter_start, slugify
from codebakers.workspace import Workspace


class TestCodeBakersConfig:
    """Tests for the workspace config file."""

    def test_save_and_load(self, tmp_path):
        config = CodeBakersConfig(workspace=WorkspaceConfig(name="acme", score_threshold=80.0))
        path = config.save(tmp_path)

        assert path == tmp_path / ".codebakers" / "workspace.json"
        loaded = CodeBakersConfig.load(tmp_path)
        assert loaded.workspace.name == "acme"
        assert loaded.workspace.score_threshold == 80.0

    def test_load_uninitialized(self, tmp_path):
        with pytest.raises(FileNotFoundError) as exc:
            CodeBakersConfig.load(tmp_path)
        assert "codebakers init" in str(exc.value)

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / ".codebakers" / "workspace.json"
        path.parent.mkdir()
        path.write_text(json.dumps({"version": "1.2.0", "workspace": {"name": "x", "colour": "blue"}}))

        loaded = CodeBakersConfig.load(tmp_path)
        assert loaded.workspace.name == "x"
        assert loaded.version == "1.2.0"

    def test_resolved_paths(self, tmp_path):
        ws = WorkspaceConfig(name="acme")
        assert ws.scores_file(tmp_path) == tmp_path / "metrics" / "scores.json"
        assert ws.templates_path(tmp_path) == tmp_path / "templates" / "code"


class TestFindWorkspaceRoot:
    """Tests for find_workspace_root()."""

    def test_walks_up(self, workspace):
        nested = workspace.root / "agents" / "deep"
        nested.mkdir(parents=True)
        assert find_workspace_root(nested) == workspace.root

    def test_install_home_is_not_a_workspace(self, tmp_path):
        home = tmp_path / "user"
        InstallConfig.create(home / ".codebakers", "linux").save(home / ".codebakers")
        project = home / "project"
        project.mkdir()
        assert find_workspace_root(project) == project

    def test_falls_back_to_start(self, tmp_path):
        assert find_workspace_root(tmp_path) == tmp_path


class TestInstallConfig:
    """Tests for the machine install record."""

    def test_create_defaults(self, tmp_path):
        install = InstallConfig.create(tmp_path, "macos", node_version="v20.11.0")
        assert install.node_version == "v20.11.0"
        assert install.pnpm_version == "not installed"
        assert install.installed_at.endswith("Z")

    def test_load_missing(self, tmp_path):
        assert InstallConfig.load(tmp_path) is None

    def test_load_unreadable(self, tmp_path):
        (tmp_path / "config.json").write_text("{")
        assert InstallConfig.load(tmp_path) is None

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CODEBAKERS_HOME", str(tmp_path))
        monkeypatch.setenv("CODEBAKERS_REPO_URL", "https://example.com/fork.git")
        assert get_install_home() == tmp_path
        assert get_repo_url() == "https://example.com/fork.git"


class TestWorkspace:
    """Tests for Workspace.initialize()."""

    def test_layout(self, tmp_path):
        Workspace.initialize(tmp_path)
        assert (tmp_path / "agents").is_dir()
        assert (tmp_path / "lessons").is_dir()
        assert (tmp_path / "reviews").is_dir()
        assert json.loads((tmp_path / "metrics" / "scores.json").read_text())["projects"] == {}
        assert Workspace.open(tmp_path).name == tmp_path.name

    def test_reinitialize_keeps_scores(self, workspace, scores_file):
        before = scores_file.read_text()
        Workspace.initialize(workspace.root, name="renamed")
        assert scores_file.read_text() == before
        assert Workspace.open(workspace.root).name == "renamed"


class TestUtils:
    """Tests for slug and quarter helpers."""

    def test_slugify(self):
        assert slugify("Webhook: retried twice!") == "webhook-retried-twice"
        assert slugify("a" * 80) == "a" * 50

    def test_quarters(self):
        assert quarter_label(date(2026, 8, 15)) == "2026-Q3"
        assert quarter_start(date(2026, 12, 31)) == date(2026, 10, 1)
        assert parse_quarter("2026-Q2") == date(2026, 4, 1)

    def test_parse_quarter_invalid(self):
        with pytest.raises(ValueError):
            parse_quarter("2026-Q5")

    def test_parse_iso_date(self):
        assert parse_iso_date("2026-06-15") == date(2026, 6, 15)
        for value in ("20260615", "2026-W24-1", "2026-6-15", None):
            with pytest.raises(ValueError):
                parse_iso_date(value)
