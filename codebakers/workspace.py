"""Workspace context shared by the CLI and the dashboard server."""

from pathlib import Path
from typing import Optional
import logging

from .agents import AgentLibrary
from .config import CodeBakersConfig, WorkspaceConfig
from .lessons import LessonBook
from .scores import DEFAULT_WEIGHTS, ScoresStore
from .templates import TemplateCatalog

logger = logging.getLogger(__name__)


class Workspace:
    """
    A CodeBakers workspace on disk.

    Stores are loaded on first use so commands that only touch lessons
    never parse scores.json.
    """

    def __init__(self, root: Path, config: CodeBakersConfig):
        self.root = root
        self.config = config
        self._library: Optional[AgentLibrary] = None
        self._book: Optional[LessonBook] = None

    @classmethod
    def open(cls, root: Path) -> "Workspace":
        """Open an initialized workspace (FileNotFoundError otherwise)."""
        return cls(root, CodeBakersConfig.load(root))

    @classmethod
    def initialize(
        cls,
        root: Path,
        name: Optional[str] = None,
        weights: Optional[dict[str, float]] = None,
    ) -> "Workspace":
        """
        Create the workspace layout.

        Existing agents, lessons and scores are left alone.
        """
        config = CodeBakersConfig(workspace=WorkspaceConfig(name=name or root.name))
        config.save(root)
        ws = config.workspace

        for path in (ws.agents_path(root), ws.lessons_path(root), ws.reviews_path(root)):
            path.mkdir(parents=True, exist_ok=True)

        scores_file = ws.scores_file(root)
        if not scores_file.exists():
            ScoresStore.create_new(
                scores_file,
                weights=weights or DEFAULT_WEIGHTS,
                archive_dir=ws.archive_path(root),
            )

        logger.info(f"Initialized workspace {ws.name} at {root}")
        return cls(root, config)

    @property
    def name(self) -> str:
        return self.config.workspace.name

    @property
    def scores_path(self) -> Path:
        return self.config.workspace.scores_file(self.root)

    @property
    def reviews_dir(self) -> Path:
        return self.config.workspace.reviews_path(self.root)

    def library(self) -> AgentLibrary:
        if self._library is None:
            self._library = AgentLibrary.load(self.config.workspace.agents_path(self.root))
        return self._library

    def lessons(self) -> LessonBook:
        if self._book is None:
            self._book = LessonBook.load(self.config.workspace.lessons_path(self.root))
        return self._book

    def scores(self) -> ScoresStore:
        """Load scores.json fresh (raises ScoresError if it is invalid)."""
        return ScoresStore.load(
            self.scores_path,
            archive_dir=self.config.workspace.archive_path(self.root),
        )

    def templates(self) -> TemplateCatalog:
        return TemplateCatalog(self.config.workspace.templates_path(self.root))
