"""
Project scores for CodeBakers.

scores.json tracks per-project health metrics. It is edited by hand and by
'codebakers record', read by external reporting tools, and always written
as a whole file by a single writer. Every write is validated first; an
invalid document is never persisted.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional
import copy
import json
import logging
import math
import re

from .errors import ScoresError, ScoresValidationError, ValidationReport
from .utils import parse_iso_date, quarter_label

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
SUPPORTED_MAJOR = 1
SUPPORTED_MINOR = 0

WEIGHT_TOLERANCE = 0.01
OVERALL_TOLERANCE = 0.5
MIN_SCORE = 0
MAX_SCORE = 100

SEVERITIES = ("critical", "high", "medium", "low")

DEFAULT_WEIGHTS = {
    "code_quality": 0.25,
    "test_coverage": 0.25,
    "security": 0.2,
    "performance": 0.15,
    "accessibility": 0.15,
}

PROJECT_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")

# Keys the store manages; anything else in the file is carried through untouched
DOCUMENT_KEYS = ("schema_version", "updated_at", "weights", "projects")
PROJECT_KEYS = ("name", "scores", "overall", "bugs", "agents", "updated_at", "history")
SNAPSHOT_KEYS = ("date", "overall", "scores", "bugs_open")


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def weighted_score(scores: dict, weights: dict) -> Optional[float]:
    """
    Weighted average of the metrics present in scores.

    Metrics without a weight are ignored. Returns None when nothing
    weighted is present.
    """
    present = [
        (weights[metric], value)
        for metric, value in scores.items()
        if metric in weights and _is_number(value)
    ]
    weight_sum = sum(w for w, _ in present)
    if not present or weight_sum <= 0:
        return None
    return round(sum(w * v for w, v in present) / weight_sum, 1)


# =============================================================================
# Validation
# =============================================================================


def validate_scores(data) -> ValidationReport:
    """Validate a raw scores document (as loaded from JSON)."""
    report = ValidationReport()

    if not isinstance(data, dict):
        report.error("$", "Top level must be a JSON object.")
        return report

    _check_schema_version(data.get("schema_version"), report)
    weights = _check_weights(data.get("weights"), report)

    projects = data.get("projects")
    if not isinstance(projects, dict):
        report.error("$.projects", "Missing or not an object.")
        return report

    for project_id, project in projects.items():
        _check_project(project_id, project, weights, report)

    return report


def _check_schema_version(version, report: ValidationReport) -> None:
    path = "$.schema_version"
    if version is None:
        report.error(path, "Missing schema version.")
        return
    if not isinstance(version, str):
        report.error(path, f"Must be a string like \"{SCHEMA_VERSION}\", got {version!r}.")
        return

    match = re.fullmatch(r"(\d+)\.(\d+)", version)
    if not match:
        report.error(path, f"Malformed schema version {version!r}.")
        return

    major, minor = int(match.group(1)), int(match.group(2))
    if major != SUPPORTED_MAJOR:
        report.error(
            path,
            f"Unsupported schema version {version} (supported: {SUPPORTED_MAJOR}.x).",
        )
    elif minor > SUPPORTED_MINOR:
        report.warning(
            path,
            f"Schema version {version} is newer than {SCHEMA_VERSION}; unknown fields are kept as-is.",
        )


def _check_weights(weights, report: ValidationReport) -> Optional[dict]:
    """Check the weights table. Returns the usable weights, or None."""
    path = "$.weights"
    if not isinstance(weights, dict) or not weights:
        report.error(path, "Missing or empty weights table.")
        return None

    usable = {}
    for metric, weight in weights.items():
        if not _is_number(weight):
            report.error(f"{path}.{metric}", f"Weight must be a number, got {weight!r}.")
            continue
        if not 0 <= weight <= 1:
            report.error(f"{path}.{metric}", f"Weight {weight} is outside [0, 1].")
        usable[metric] = weight

    total = sum(usable.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        report.error(path, f"Weights sum to {total:.3f}, expected 1.0.")

    return usable


def _check_project(project_id: str, project, weights: Optional[dict], report: ValidationReport) -> None:
    path = f"$.projects.{project_id}"

    if not PROJECT_ID_PATTERN.match(project_id):
        report.warning(path, "Project IDs should be lowercase slugs (a-z, 0-9, -).")

    if not isinstance(project, dict):
        report.error(path, "Project must be an object.")
        return

    name = project.get("name")
    if name is not None and not isinstance(name, str):
        report.error(f"{path}.name", "Name must be a string.")

    scores = project.get("scores", {})
    valid_scores = {}
    if not isinstance(scores, dict):
        report.error(f"{path}.scores", "Scores must be an object.")
    else:
        for metric, value in scores.items():
            metric_path = f"{path}.scores.{metric}"
            if weights is not None and metric not in weights:
                report.error(metric_path, "Metric has no weight in $.weights.")
            if not _is_number(value):
                report.error(metric_path, f"Score must be a number, got {value!r}.")
                continue
            if not MIN_SCORE <= value <= MAX_SCORE:
                report.error(metric_path, f"Score {value} is outside [{MIN_SCORE}, {MAX_SCORE}].")
                continue
            valid_scores[metric] = value

        if weights:
            missing = [m for m in weights if m not in scores]
            if scores and missing:
                report.warning(f"{path}.scores", f"No score for: {', '.join(missing)}.")

    _check_overall(path, project.get("overall"), valid_scores, weights, report)

    if "bugs" in project:
        _check_bugs(f"{path}.bugs", project["bugs"], report)

    agents = project.get("agents", [])
    if not isinstance(agents, list) or not all(isinstance(a, str) for a in agents):
        report.error(f"{path}.agents", "Agents must be a list of agent names.")

    if "history" in project:
        _check_history(f"{path}.history", project["history"], report)


def _check_overall(path: str, overall, valid_scores: dict, weights: Optional[dict], report: ValidationReport) -> None:
    if overall is None:
        return

    path = f"{path}.overall"
    if not _is_number(overall):
        report.error(path, f"Overall must be a number, got {overall!r}.")
        return
    if not MIN_SCORE <= overall <= MAX_SCORE:
        report.error(path, f"Overall {overall} is outside [{MIN_SCORE}, {MAX_SCORE}].")
        return
    if not weights:
        return

    expected = weighted_score(valid_scores, weights)
    if expected is None:
        report.error(path, "Overall is set but the project has no weighted scores.")
    elif abs(overall - expected) > OVERALL_TOLERANCE:
        report.error(path, f"Stale overall {overall}; weighted scores give {expected}.")


def _check_bugs(path: str, bugs, report: ValidationReport) -> None:
    if not isinstance(bugs, dict):
        report.error(path, "Bugs must be an object.")
        return

    counts_ok = True
    for key in ("total", "open", "resolved"):
        if not _is_count(bugs.get(key)):
            report.error(f"{path}.{key}", f"Must be a non-negative integer, got {bugs.get(key)!r}.")
            counts_ok = False

    if counts_ok and bugs["open"] + bugs["resolved"] != bugs["total"]:
        report.error(
            path,
            f"open ({bugs['open']}) + resolved ({bugs['resolved']}) != total ({bugs['total']}).",
        )

    by_severity = bugs.get("by_severity")
    if by_severity is None:
        return
    if not isinstance(by_severity, dict):
        report.error(f"{path}.by_severity", "Must be an object.")
        return

    severity_ok = True
    for severity, count in by_severity.items():
        if severity not in SEVERITIES:
            report.error(f"{path}.by_severity.{severity}", f"Unknown severity; use {', '.join(SEVERITIES)}.")
            severity_ok = False
        if not _is_count(count):
            report.error(f"{path}.by_severity.{severity}", f"Must be a non-negative integer, got {count!r}.")
            severity_ok = False

    if severity_ok and _is_count(bugs.get("open")):
        total = sum(by_severity.values())
        if total != bugs["open"]:
            report.error(
                f"{path}.by_severity",
                f"Severity counts sum to {total} but {bugs['open']} bugs are open.",
            )


def _check_history(path: str, history, report: ValidationReport) -> None:
    if not isinstance(history, list):
        report.error(path, "History must be a list of snapshots.")
        return

    previous: Optional[date] = None
    for i, snapshot in enumerate(history):
        snap_path = f"{path}[{i}]"
        if not isinstance(snapshot, dict):
            report.error(snap_path, "Snapshot must be an object.")
            continue

        try:
            day = parse_iso_date(snapshot.get("date"))
        except ValueError:
            report.error(f"{snap_path}.date", f"Invalid date {snapshot.get('date')!r}, expected YYYY-MM-DD.")
            day = None

        overall = snapshot.get("overall")
        if overall is not None and not (_is_number(overall) and MIN_SCORE <= overall <= MAX_SCORE):
            report.error(f"{snap_path}.overall", f"Overall must be a number in [{MIN_SCORE}, {MAX_SCORE}].")

        if day is not None:
            if previous is not None and day < previous:
                report.error(f"{snap_path}.date", f"Snapshot {day} is older than the one before it.")
            previous = day


# =============================================================================
# Model
# =============================================================================


@dataclass
class BugCounts:
    """Bug tallies for a project. by_severity breaks down the open bugs."""

    total: int = 0
    open: int = 0
    resolved: int = 0
    by_severity: Optional[dict[str, int]] = None

    @classmethod
    def from_counts(
        cls,
        open: int,
        resolved: int,
        by_severity: Optional[dict[str, int]] = None,
    ) -> "BugCounts":
        return cls(
            total=open + resolved,
            open=open,
            resolved=resolved,
            by_severity=by_severity,
        )

    @property
    def open_critical(self) -> int:
        return (self.by_severity or {}).get("critical", 0)

    def to_dict(self) -> dict:
        data = {"total": self.total, "open": self.open, "resolved": self.resolved}
        if self.by_severity is not None:
            data["by_severity"] = dict(self.by_severity)
        return data


def merge_bug_counts(
    existing: Optional[BugCounts],
    open: Optional[int] = None,
    resolved: Optional[int] = None,
    by_severity: Optional[dict[str, int]] = None,
) -> Optional[BugCounts]:
    """
    Apply a partial bug update on top of the existing counts.

    Severity counts are merged over the existing breakdown. When they are
    given without an open count, open becomes their sum.

    Returns None when nothing was given, so the project keeps its counts.
    """
    if open is None and resolved is None and by_severity is None:
        return None

    base = existing or BugCounts()
    severity = base.by_severity
    if by_severity is not None:
        severity = dict.fromkeys(SEVERITIES, 0)
        severity.update(base.by_severity or {})
        severity.update(by_severity)
        if open is None:
            open = sum(severity.values())

    return BugCounts.from_counts(
        open=base.open if open is None else open,
        resolved=base.resolved if resolved is None else resolved,
        by_severity=severity,
    )


@dataclass
class Snapshot:
    """A dated point in a project's score history."""

    date: str
    overall: Optional[float] = None
    scores: dict = field(default_factory=dict)
    bugs_open: int = 0
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "date": self.date,
            "overall": self.overall,
            "scores": dict(self.scores),
            "bugs_open": self.bugs_open,
        })
        return data


@dataclass
class ProjectScores:
    """Health metrics for one project."""

    id: str
    name: str
    scores: dict = field(default_factory=dict)
    overall: Optional[float] = None
    bugs: Optional[BugCounts] = None
    agents: list[str] = field(default_factory=list)
    updated_at: str = field(default_factory=_now)
    history: list[Snapshot] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "name": self.name,
            "scores": dict(self.scores),
            "overall": self.overall,
            "agents": list(self.agents),
            "updated_at": self.updated_at,
            "history": [s.to_dict() for s in self.history],
        })
        if self.bugs is not None:
            data["bugs"] = self.bugs.to_dict()
        return data

    @classmethod
    def from_dict(cls, project_id: str, data: dict) -> "ProjectScores":
        bugs = data.get("bugs")
        return cls(
            id=project_id,
            name=data.get("name") or project_id,
            scores=dict(data.get("scores", {})),
            overall=data.get("overall"),
            bugs=BugCounts(
                total=bugs["total"],
                open=bugs["open"],
                resolved=bugs["resolved"],
                by_severity=bugs.get("by_severity"),
            ) if bugs else None,
            agents=list(data.get("agents", [])),
            updated_at=data.get("updated_at") or _now(),
            history=[
                Snapshot(
                    date=s["date"],
                    overall=s.get("overall"),
                    scores=dict(s.get("scores", {})),
                    bugs_open=s.get("bugs_open", 0),
                    extra={k: v for k, v in s.items() if k not in SNAPSHOT_KEYS},
                )
                for s in data.get("history", [])
            ],
            extra={k: v for k, v in data.items() if k not in PROJECT_KEYS},
        )


# =============================================================================
# Store
# =============================================================================


class ScoresStore:
    """
    Reads and writes scores.json.

    Only documents that pass validate_scores() are loaded for update or
    written back; hand-edited mistakes have to be fixed before the store
    will touch the file again.
    """

    def __init__(self, path: Path, archive_dir: Optional[Path] = None):
        self.path = path
        self.archive_dir = archive_dir or path.parent / "archive"
        self.schema_version = SCHEMA_VERSION
        self.updated_at: Optional[str] = None
        self.weights: dict[str, float] = dict(DEFAULT_WEIGHTS)
        self._projects: dict[str, ProjectScores] = {}
        self.extra: dict = {}

    @staticmethod
    def read_raw(path: Path) -> dict:
        """Read scores.json without validating it."""
        if not path.exists():
            raise FileNotFoundError(
                f"Scores file not found: {path}\n"
                f"Run 'codebakers init' to create one."
            )

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ScoresError(f"{path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ScoresError(f"{path}: top level must be a JSON object")

        return data

    @classmethod
    def load(cls, path: Path, archive_dir: Optional[Path] = None) -> "ScoresStore":
        """Load and validate scores.json."""
        data = cls.read_raw(path)

        report = validate_scores(data)
        if not report.ok:
            raise ScoresValidationError(report)
        for issue in report.warnings:
            logger.warning(f"{path}: {issue.path}: {issue.message}")

        store = cls(path, archive_dir)
        store.schema_version = data["schema_version"]
        store.updated_at = data.get("updated_at")
        store.weights = dict(data["weights"])
        store.extra = {k: v for k, v in data.items() if k not in DOCUMENT_KEYS}
        for project_id, project in data["projects"].items():
            store._projects[project_id] = ProjectScores.from_dict(project_id, project)

        logger.debug(f"Loaded {len(store._projects)} projects from {path}")
        return store

    @classmethod
    def create_new(
        cls,
        path: Path,
        weights: Optional[dict[str, float]] = None,
        archive_dir: Optional[Path] = None,
    ) -> "ScoresStore":
        """Create a new scores file with no projects."""
        if path.exists():
            raise FileExistsError(f"Scores file already exists: {path}")

        store = cls(path, archive_dir)
        if weights:
            store.weights = dict(weights)
        store.save()
        return store

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "schema_version": self.schema_version,
            "updated_at": self.updated_at,
            "weights": dict(self.weights),
            "projects": {pid: p.to_dict() for pid, p in self._projects.items()},
        })
        return data

    def validate(self) -> ValidationReport:
        return validate_scores(self.to_dict())

    def save(self) -> None:
        """Validate, then write the whole document to disk."""
        self.updated_at = _now()
        data = self.to_dict()

        report = validate_scores(data)
        if not report.ok:
            raise ScoresValidationError(report)

        _write_json(self.path, data)
        logger.debug(f"Saved {len(self._projects)} projects to {self.path}")

    def _save_project(self, project: ProjectScores) -> None:
        """Put project in place and save, restoring the old one on failure."""
        previous = self._projects.get(project.id)
        self._projects[project.id] = project
        try:
            self.save()
        except ScoresValidationError:
            if previous is None:
                del self._projects[project.id]
            else:
                self._projects[project.id] = previous
            raise

    # CRUD Operations

    def get_project(self, project_id: str) -> Optional[ProjectScores]:
        return self._projects.get(project_id)

    def list_projects(self) -> list[ProjectScores]:
        return sorted(self._projects.values(), key=lambda p: p.id)

    def record(
        self,
        project_id: str,
        scores: Optional[dict] = None,
        bugs: Optional[BugCounts] = None,
        name: Optional[str] = None,
        agents: Optional[list[str]] = None,
        on: Optional[date] = None,
    ) -> ProjectScores:
        """
        Record new metrics for a project and append a history snapshot.

        Scores are merged into the project's existing scores, so a partial
        update only touches the metrics given. A snapshot for a date that
        already has one replaces it.
        """
        if not PROJECT_ID_PATTERN.match(project_id):
            raise ValueError(
                f"Invalid project ID '{project_id}'. Use a lowercase slug like 'acme-portal'."
            )

        existing = self._projects.get(project_id)
        if existing:
            project = copy.deepcopy(existing)
        else:
            project = ProjectScores(id=project_id, name=name or project_id)
            logger.info(f"Adding project {project_id} to {self.path}")

        if name:
            project.name = name
        if scores:
            project.scores.update(scores)
        if bugs is not None:
            project.bugs = bugs
        for agent in agents or []:
            if agent not in project.agents:
                project.agents.append(agent)

        project.overall = weighted_score(project.scores, self.weights)
        project.updated_at = _now()

        day = (on or date.today()).isoformat()
        snapshot = Snapshot(
            date=day,
            overall=project.overall,
            scores=dict(project.scores),
            bugs_open=project.bugs.open if project.bugs else 0,
        )
        project.history = [s for s in project.history if s.date != day]
        project.history.append(snapshot)
        project.history.sort(key=lambda s: s.date)

        self._save_project(project)
        return project

    def remove_project(self, project_id: str) -> ProjectScores:
        """Remove a project and its history."""
        if project_id not in self._projects:
            raise ValueError(f"Project not found: {project_id}")

        project = self._projects.pop(project_id)
        try:
            self.save()
        except ScoresValidationError:
            self._projects[project_id] = project
            raise
        logger.info(f"Removed project {project_id} from {self.path}")
        return project

    def set_weights(self, weights: dict[str, float]) -> None:
        """Replace the weights table and recompute every project's overall."""
        previous_weights = self.weights
        previous_overall = {pid: p.overall for pid, p in self._projects.items()}

        self.weights = dict(weights)
        for project in self._projects.values():
            project.overall = weighted_score(project.scores, self.weights)

        try:
            self.save()
        except ScoresValidationError:
            self.weights = previous_weights
            for pid, overall in previous_overall.items():
                self._projects[pid].overall = overall
            raise

    # Reporting

    def ranking(self) -> list[ProjectScores]:
        """Projects by overall score, best first; unscored projects last."""
        return sorted(
            self._projects.values(),
            key=lambda p: (p.overall is None, -(p.overall or 0), p.id),
        )

    def trend(self, project_id: str) -> Optional[float]:
        """Change in overall between the last two snapshots."""
        project = self._projects.get(project_id)
        if not project:
            return None

        scored = [s for s in project.history if s.overall is not None]
        if len(scored) < 2:
            return None
        return round(scored[-1].overall - scored[-2].overall, 1)

    def get_stats(self) -> dict:
        """Get summary statistics."""
        scored = [p.overall for p in self._projects.values() if p.overall is not None]
        return {
            "projects": len(self._projects),
            "average_overall": round(sum(scored) / len(scored), 1) if scored else None,
            "open_bugs": sum(p.bugs.open for p in self._projects.values() if p.bugs),
            "open_critical": sum(p.bugs.open_critical for p in self._projects.values() if p.bugs),
        }

    # Archiving

    def archive_history(self, before: date) -> int:
        """
        Move snapshots dated before `before` into quarterly archive files.

        Snapshots land in archive/scores-<YYYY>-Q<n>.json according to
        their own date, merged with whatever the archive already holds.
        Returns the number of snapshots moved.
        """
        cutoff = before.isoformat()
        by_quarter: dict[str, dict[str, list[Snapshot]]] = {}
        kept: dict[str, list[Snapshot]] = {}

        for project in self._projects.values():
            kept[project.id] = []
            for snapshot in project.history:
                if snapshot.date < cutoff:
                    quarter = quarter_label(parse_iso_date(snapshot.date))
                    by_quarter.setdefault(quarter, {}).setdefault(project.id, []).append(snapshot)
                else:
                    kept[project.id].append(snapshot)

        moved = sum(len(snaps) for projects in by_quarter.values() for snaps in projects.values())
        if not moved:
            return 0

        # Archives are read before anything is written
        archives = {
            quarter: self._merge_archive(quarter, projects)
            for quarter, projects in by_quarter.items()
        }

        previous = {pid: p.history for pid, p in self._projects.items()}
        for project_id, history in kept.items():
            self._projects[project_id].history = history
        try:
            self.save()
        except ScoresValidationError:
            for project_id, history in previous.items():
                self._projects[project_id].history = history
            raise

        for quarter, data in archives.items():
            _write_json(self.archive_path(quarter), data)

        logger.info(f"Archived {moved} snapshots from before {cutoff}")
        return moved

    def archive_path(self, quarter: str) -> Path:
        return self.archive_dir / f"scores-{quarter}.json"

    def _merge_archive(self, quarter: str, projects: dict[str, list[Snapshot]]) -> dict:
        """The archive document for quarter with projects' snapshots merged in."""
        path = self.archive_path(quarter)

        data = {"schema_version": self.schema_version, "quarter": quarter, "projects": {}}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except json.JSONDecodeError as e:
                raise ScoresError(f"Archive {path} is not valid JSON: {e}") from e

        archived = data.setdefault("projects", {})
        for project_id, snapshots in projects.items():
            existing = {s["date"]: s for s in archived.get(project_id, [])}
            for snapshot in snapshots:
                existing[snapshot.date] = snapshot.to_dict()
            archived[project_id] = [existing[d] for d in sorted(existing)]

        return data


def _write_json(path: Path, data: dict) -> None:
    """Write JSON through a temp file so readers never see half a document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(data, indent=2) + "\n")
    tmp_path.replace(path)
