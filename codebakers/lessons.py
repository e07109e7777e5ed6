"""
Lesson capture for CodeBakers.

A lesson is a short markdown note written when a bug pattern or an
improvement is discovered on a project. Lessons wait in lessons/ as
pending until the review folds them into the agent they belong to, or
rejects or defers them. Resolved lessons are archived per quarter.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional
import logging
import re

from .agents import AgentLibrary
from .errors import LessonNotFoundError
from .utils import parse_iso_date, quarter_label, slugify

logger = logging.getLogger(__name__)

ARCHIVE_DIR = "archive"

META_RE = re.compile(r"^\s*[-*]\s+\*\*(.+?):\*\*\s*(.*?)\s*$")


class LessonStatus(str, Enum):
    """Where a lesson is in the review process."""

    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class LessonCategory(str, Enum):
    BUG_PATTERN = "bug-pattern"
    IMPROVEMENT = "improvement"
    ANTI_PATTERN = "anti-pattern"
    CHECKLIST_ITEM = "checklist-item"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SECTIONS = {
    "problem": "problem",
    "root cause": "root_cause",
    "fix": "fix",
    "prevention": "prevention",
}


@dataclass
class Lesson:
    """A captured lesson."""

    title: str
    agent: str
    category: LessonCategory = LessonCategory.BUG_PATTERN
    severity: Severity = Severity.MEDIUM
    project: Optional[str] = None
    date: str = field(default_factory=lambda: date.today().isoformat())
    status: LessonStatus = LessonStatus.PENDING
    id: str = ""

    problem: str = ""
    root_cause: str = ""
    fix: str = ""
    prevention: str = ""

    applied_at: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "agent": self.agent,
            "category": self.category.value,
            "severity": self.severity.value,
            "project": self.project,
            "date": self.date,
            "status": self.status.value,
            "problem": self.problem,
            "root_cause": self.root_cause,
            "fix": self.fix,
            "prevention": self.prevention,
            "applied_at": self.applied_at,
            "note": self.note,
        }

    def to_markdown(self) -> str:
        meta = [
            ("Agent", self.agent),
            ("Category", self.category.value),
            ("Severity", self.severity.value),
            ("Project", self.project),
            ("Date", self.date),
            ("Status", self.status.value),
            ("Applied", self.applied_at),
            ("Note", self.note),
        ]
        lines = [f"# Lesson: {self.title}", ""]
        lines += [f"- **{key}:** {value}" for key, value in meta if value]

        for heading, attr in (
            ("Problem", "problem"),
            ("Root Cause", "root_cause"),
            ("Fix", "fix"),
            ("Prevention", "prevention"),
        ):
            lines += ["", f"## {heading}", "", getattr(self, attr).strip() or "_TBD_"]

        return "\n".join(lines) + "\n"

    @classmethod
    def from_markdown(cls, text: str, lesson_id: str) -> "Lesson":
        """
        Parse a lesson file.

        Raises ValueError when the title, agent or an enum field is missing
        or unknown.
        """
        title = ""
        meta: dict[str, str] = {}
        sections: dict[str, list[str]] = {}
        current: Optional[str] = None

        for line in text.splitlines():
            if line.startswith("# ") and not title:
                title = line[2:].strip()
                if title.lower().startswith("lesson:"):
                    title = title[len("lesson:"):].strip()
                continue
            if line.startswith("## "):
                current = SECTIONS.get(line[3:].strip().lower())
                if current:
                    sections[current] = []
                continue
            if current:
                sections[current].append(line)
                continue
            match = META_RE.match(line)
            if match:
                meta[match.group(1).strip().lower()] = match.group(2)

        if not title:
            raise ValueError(f"Lesson {lesson_id} has no '# Lesson:' title")
        if not meta.get("agent"):
            raise ValueError(f"Lesson {lesson_id} has no Agent")
        if meta.get("date"):
            parse_iso_date(meta["date"])

        def section(key: str) -> str:
            body = "\n".join(sections.get(key, [])).strip()
            return "" if body == "_TBD_" else body

        return cls(
            id=lesson_id,
            title=title,
            agent=meta["agent"],
            category=LessonCategory(meta.get("category", LessonCategory.BUG_PATTERN.value)),
            severity=Severity(meta.get("severity", Severity.MEDIUM.value)),
            project=meta.get("project") or None,
            date=meta.get("date") or date.today().isoformat(),
            status=LessonStatus(meta.get("status", LessonStatus.PENDING.value)),
            problem=section("problem"),
            root_cause=section("root_cause"),
            fix=section("fix"),
            prevention=section("prevention"),
            applied_at=meta.get("applied") or None,
            note=meta.get("note") or None,
        )

    def to_agent_entry(self) -> str:
        """The block folded into the agent's Lessons Learned section."""
        origin = f"{self.category.value}, {self.severity.value}"
        if self.project:
            origin += f", {self.project}"

        lines = [f"### {self.date}: {self.title}", "", f"_{origin}_", ""]
        for label, value in (
            ("Problem", self.problem),
            ("Root cause", self.root_cause),
            ("Fix", self.fix),
            ("Prevention", self.prevention),
        ):
            if value:
                lines.append(f"- **{label}:** {' '.join(value.split())}")
        return "\n".join(lines)


class LessonBook:
    """
    Manages the lessons/ directory of a workspace.

    One markdown file per lesson, named after its ID
    (<date>-<slug-of-title>.md).
    """

    def __init__(self, lessons_dir: Path):
        self.lessons_dir = lessons_dir
        self._lessons: dict[str, Lesson] = {}

    @classmethod
    def load(cls, lessons_dir: Path) -> "LessonBook":
        """Load lessons from disk, skipping files that don't parse."""
        book = cls(lessons_dir)

        if lessons_dir.exists():
            for path in sorted(lessons_dir.glob("*.md")):
                if path.stem.lower() == "readme":
                    continue
                try:
                    book._lessons[path.stem] = Lesson.from_markdown(path.read_text(), path.stem)
                except ValueError as e:
                    logger.warning(f"Skipping malformed lesson {path}: {e}")

        return book

    def _path(self, lesson_id: str) -> Path:
        return self.lessons_dir / f"{lesson_id}.md"

    def _save(self, lesson: Lesson) -> None:
        self.lessons_dir.mkdir(parents=True, exist_ok=True)
        self._path(lesson.id).write_text(lesson.to_markdown())

    def generate_id(self, lesson: Lesson) -> str:
        base = f"{lesson.date}-{slugify(lesson.title)}".rstrip("-")
        lesson_id = base
        n = 2
        while lesson_id in self._lessons or self._path(lesson_id).exists():
            lesson_id = f"{base}-{n}"
            n += 1
        return lesson_id

    # CRUD Operations

    def capture(self, lesson: Lesson) -> Lesson:
        """Write a new lesson to lessons/."""
        if not lesson.title.strip():
            raise ValueError("Lesson needs a title")
        if not lesson.agent.strip():
            raise ValueError("Lesson needs an agent")
        parse_iso_date(lesson.date)

        lesson.id = self.generate_id(lesson)
        self._lessons[lesson.id] = lesson
        self._save(lesson)

        logger.info(f"Captured lesson {lesson.id} for agent {lesson.agent}")
        return lesson

    def get_lesson(self, lesson_id: str) -> Lesson:
        if lesson_id not in self._lessons:
            raise LessonNotFoundError(lesson_id)
        return self._lessons[lesson_id]

    def list_lessons(
        self,
        status: Optional[LessonStatus] = None,
        agent: Optional[str] = None,
    ) -> list[Lesson]:
        """List lessons with optional filtering, oldest first."""
        lessons = list(self._lessons.values())

        if status:
            lessons = [lsn for lsn in lessons if lsn.status == status]

        if agent:
            lessons = [lsn for lsn in lessons if lsn.agent == agent]

        return sorted(lessons, key=lambda lsn: (lsn.date, lsn.id))

    def update_status(
        self,
        lesson_id: str,
        status: LessonStatus,
        note: Optional[str] = None,
    ) -> Lesson:
        lesson = self.get_lesson(lesson_id)
        lesson.status = LessonStatus(status)
        if note:
            lesson.note = note
        self._save(lesson)

        logger.info(f"Lesson {lesson_id} is now {lesson.status.value}")
        return lesson

    def reject(self, lesson_id: str, note: Optional[str] = None) -> Lesson:
        return self.update_status(lesson_id, LessonStatus.REJECTED, note)

    def defer(self, lesson_id: str, note: Optional[str] = None) -> Lesson:
        return self.update_status(lesson_id, LessonStatus.DEFERRED, note)

    def apply(self, lesson_id: str, library: AgentLibrary) -> Lesson:
        """
        Fold a pending or deferred lesson into its agent and mark it applied.

        Raises AgentNotFoundError (leaving the lesson untouched) when the
        agent does not exist.
        """
        lesson = self.get_lesson(lesson_id)

        if lesson.status == LessonStatus.APPLIED:
            raise ValueError(f"Lesson already applied: {lesson_id}")
        if lesson.status == LessonStatus.REJECTED:
            raise ValueError(f"Lesson was rejected: {lesson_id}. Reopen it as pending first.")

        folded = library.append_lesson(lesson.agent, lesson.id, lesson.to_agent_entry())
        if not folded:
            logger.warning(f"Lesson {lesson_id} was already in agent {lesson.agent}")

        lesson.status = LessonStatus.APPLIED
        lesson.applied_at = date.today().isoformat()
        self._save(lesson)
        return lesson

    # Archiving

    def archive(self, before: date) -> list[Lesson]:
        """
        Move applied and rejected lessons dated before `before` into
        lessons/archive/<YYYY>-Q<n>/.

        Pending and deferred lessons stay put however old they are.
        """
        due = []
        for lesson in self.list_lessons():
            if lesson.status not in (LessonStatus.APPLIED, LessonStatus.REJECTED):
                continue
            day = parse_iso_date(lesson.date)
            if day < before:
                due.append((lesson, day))

        moved = []
        for lesson, day in due:
            dest_dir = self.lessons_dir / ARCHIVE_DIR / quarter_label(day)
            dest_dir.mkdir(parents=True, exist_ok=True)
            self._path(lesson.id).replace(dest_dir / f"{lesson.id}.md")

            del self._lessons[lesson.id]
            moved.append(lesson)

        if moved:
            logger.info(f"Archived {len(moved)} lessons from before {before.isoformat()}")
        return moved

    # Statistics

    def get_stats(self) -> dict:
        """Get summary statistics."""
        by_status = {}
        for status in LessonStatus:
            by_status[status.value] = len(self.list_lessons(status=status))

        pending_by_agent: dict[str, int] = {}
        for lesson in self.list_lessons(status=LessonStatus.PENDING):
            pending_by_agent[lesson.agent] = pending_by_agent.get(lesson.agent, 0) + 1

        return {
            "total": len(self._lessons),
            "by_status": by_status,
            "pending_by_agent": pending_by_agent,
        }
