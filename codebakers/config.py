"""Configuration management for CodeBakers."""

from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import json
import logging
import os

logger = logging.getLogger(__name__)

CONFIG_DIR = ".codebakers"
CONFIG_FILE = "workspace.json"
DEFAULT_REPO_URL = "https://github.com/tdaniel1925/codebakers-system.git"
NOT_INSTALLED = "not installed"


@dataclass
class WorkspaceConfig:
    """Workspace layout and review settings."""

    name: str
    agents_dir: str = "agents"
    lessons_dir: str = "lessons"
    scores_path: str = "metrics/scores.json"
    archive_dir: str = "metrics/archive"
    reviews_dir: str = "reviews"
    templates_dir: str = "templates/code"

    # Projects scoring below this show up in the monthly review
    score_threshold: float = 70.0

    def agents_path(self, root: Path) -> Path:
        return root / self.agents_dir

    def lessons_path(self, root: Path) -> Path:
        return root / self.lessons_dir

    def scores_file(self, root: Path) -> Path:
        return root / self.scores_path

    def archive_path(self, root: Path) -> Path:
        return root / self.archive_dir

    def reviews_path(self, root: Path) -> Path:
        return root / self.reviews_dir

    def templates_path(self, root: Path) -> Path:
        return root / self.templates_dir


@dataclass
class CodeBakersConfig:
    """Workspace configuration stored in .codebakers/workspace.json."""

    workspace: WorkspaceConfig
    version: str = "1.0.0"

    @classmethod
    def load(cls, root: Path) -> "CodeBakersConfig":
        """Load config from .codebakers/workspace.json."""
        config_path = root / CONFIG_DIR / CONFIG_FILE

        if not config_path.exists():
            raise FileNotFoundError(
                f"CodeBakers workspace not initialized. Run 'codebakers init' first.\n"
                f"Expected config at: {config_path}"
            )

        with open(config_path) as f:
            data = json.load(f)

        # Ignore keys written by newer versions
        known = {f.name for f in fields(WorkspaceConfig)}
        workspace_data = {
            k: v for k, v in data.get("workspace", {}).items() if k in known
        }
        workspace_data.setdefault("name", root.name)

        return cls(
            workspace=WorkspaceConfig(**workspace_data),
            version=data.get("version", "1.0.0"),
        )

    def save(self, root: Path) -> Path:
        """Save config to .codebakers/workspace.json."""
        config_path = root / CONFIG_DIR / CONFIG_FILE
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": self.version,
            "workspace": asdict(self.workspace),
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

        logger.debug(f"Saved workspace config to {config_path}")
        return config_path


@dataclass
class InstallConfig:
    """Machine-level install record written by 'codebakers setup'."""

    version: str
    installed_at: str
    os: str
    codebakers_dir: str
    repo_path: str
    node_version: str = NOT_INSTALLED
    pnpm_version: str = NOT_INSTALLED

    @classmethod
    def create(
        cls,
        home: Path,
        os_name: str,
        node_version: Optional[str] = None,
        pnpm_version: Optional[str] = None,
    ) -> "InstallConfig":
        return cls(
            version="1.0.0",
            installed_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            os=os_name,
            codebakers_dir=str(home),
            repo_path=str(home / "repo"),
            node_version=node_version or NOT_INSTALLED,
            pnpm_version=pnpm_version or NOT_INSTALLED,
        )

    @classmethod
    def load(cls, home: Path) -> Optional["InstallConfig"]:
        """Load the install record, or None if setup never ran."""
        config_path = home / "config.json"
        if not config_path.exists():
            return None

        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable install config {config_path}: {e}")
            return None

        known = {f.name for f in fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except TypeError as e:
            logger.warning(f"Ignoring incomplete install config {config_path}: {e}")
            return None

    def save(self, home: Path) -> Path:
        config_path = home / "config.json"
        home.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(asdict(self), indent=2))
        return config_path


def get_install_home() -> Path:
    """Machine-level CodeBakers directory (CODEBAKERS_HOME or ~/.codebakers)."""
    return Path(os.environ.get(
        "CODEBAKERS_HOME",
        os.path.expanduser("~/.codebakers"),
    ))


def get_repo_url() -> str:
    """Git URL of the shared agent repo."""
    return os.environ.get("CODEBAKERS_REPO_URL", DEFAULT_REPO_URL)


def find_workspace_root(start_path: Optional[Path] = None) -> Path:
    """
    Find the workspace root by looking for .codebakers/workspace.json.

    Walks up the directory tree from start_path (or cwd) until it finds
    .codebakers/workspace.json or reaches the filesystem root.
    """
    current = start_path or Path.cwd()

    while current != current.parent:
        if (current / CONFIG_DIR / CONFIG_FILE).exists():
            return current
        current = current.parent

    # If not found, assume cwd is the workspace root (for init)
    return start_path or Path.cwd()
