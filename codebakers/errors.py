"""Errors and validation results shared across CodeBakers modules."""

from dataclasses import dataclass, field
from enum import Enum


class CodeBakersError(Exception):
    """Base class for CodeBakers errors."""


class ScoresError(CodeBakersError, ValueError):
    """The scores file could not be read or is not a scores document."""


class ScoresValidationError(ScoresError):
    """A scores document failed validation and was not written."""

    def __init__(self, report: "ValidationReport"):
        self.report = report
        summary = "; ".join(f"{i.path}: {i.message}" for i in report.errors[:3])
        if len(report.errors) > 3:
            summary += f" (+{len(report.errors) - 3} more)"
        super().__init__(f"Invalid scores document: {summary}")


class AgentNotFoundError(CodeBakersError, KeyError):
    """No agent document with the requested name."""

    def __str__(self) -> str:
        return f"Agent not found: {self.args[0]}"


class LessonNotFoundError(CodeBakersError, KeyError):
    """No lesson with the requested ID."""

    def __str__(self) -> str:
        return f"Lesson not found: {self.args[0]}"


class SetupError(CodeBakersError):
    """Machine setup could not complete (git clone or pull failed)."""


class IssueLevel(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    """A single problem found while validating a document."""
    path: str
    message: str
    level: IssueLevel = IssueLevel.ERROR

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message, "level": self.level.value}


@dataclass
class ValidationReport:
    """Result of validating a document."""
    issues: list[ValidationIssue] = field(default_factory=list)

    def error(self, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(path, message, IssueLevel.ERROR))

    def warning(self, path: str, message: str) -> None:
        self.issues.append(ValidationIssue(path, message, IssueLevel.WARNING))

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == IssueLevel.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == IssueLevel.WARNING]

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "issues": [i.to_dict() for i in self.issues],
        }
