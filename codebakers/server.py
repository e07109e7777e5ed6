"""
CodeBakers Dashboard Server - FastAPI wrapper over a workspace.

This server provides:
1. Read access to agents, lessons, scores and the monthly review
2. Lesson capture and apply for tools that can't run the CLI
3. Score recording for CI jobs that report project metrics

Reporting tools that only read scores.json can keep reading the file;
this API is for clients that need validation on write.
"""

from datetime import date
from pathlib import Path
from typing import Optional
import logging
import os

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, StrictFloat, StrictInt

from . import __version__
from .config import find_workspace_root
from .errors import (
    AgentNotFoundError,
    LessonNotFoundError,
    ScoresError,
    ScoresValidationError,
)
from .lessons import Lesson, LessonCategory, LessonStatus, Severity
from .review import build_review, render_markdown
from .scores import ScoresStore, merge_bug_counts
from .utils import parse_iso_date
from .workspace import Workspace

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================


def get_config() -> dict:
    """Get server configuration from environment."""
    workspace = os.environ.get("CODEBAKERS_WORKSPACE")
    return {
        "workspace": Path(workspace) if workspace else find_workspace_root(),
        "port": int(os.environ.get("CODEBAKERS_PORT", "8082")),
        "host": os.environ.get("CODEBAKERS_HOST", "127.0.0.1"),
    }


# =============================================================================
# Request Models
# =============================================================================


class CaptureLessonRequest(BaseModel):
    """Request to capture a new lesson."""
    title: str
    agent: str
    category: str = LessonCategory.BUG_PATTERN.value
    severity: str = Severity.MEDIUM.value
    project: Optional[str] = None
    problem: str = ""
    root_cause: str = ""
    fix: str = ""
    prevention: str = ""


class RecordScoresRequest(BaseModel):
    """Request to record metrics for a project."""
    name: Optional[str] = None
    scores: dict[str, StrictFloat | StrictInt] = {}
    bugs_open: Optional[StrictInt] = None
    bugs_resolved: Optional[StrictInt] = None
    by_severity: Optional[dict[str, StrictInt]] = None
    agents: list[str] = []
    on: Optional[str] = None  # YYYY-MM-DD, defaults to today


# =============================================================================
# Helpers
# =============================================================================


def get_workspace(request: Request) -> Workspace:
    try:
        return Workspace.open(request.app.state.workspace_root)
    except FileNotFoundError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _load_scores(workspace: Workspace) -> ScoresStore:
    try:
        return workspace.scores()
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ScoresValidationError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": "scores.json is invalid; fix it before using the API.", **e.report.to_dict()},
        )
    except ScoresError as e:
        raise HTTPException(status_code=409, detail=str(e))


def _parse_date(value: Optional[str], field_name: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name} '{value}', expected YYYY-MM-DD")


# =============================================================================
# App
# =============================================================================


def create_app(workspace_root: Optional[Path] = None) -> FastAPI:
    """Build the dashboard app for a workspace."""
    app = FastAPI(
        title="CodeBakers Dashboard",
        description="Agents, lessons and project scores",
        version=__version__,
    )
    app.state.workspace_root = workspace_root or get_config()["workspace"]

    @app.get("/api")
    async def api_index():
        """List available endpoints."""
        return {
            "name": "CodeBakers Dashboard",
            "version": __version__,
            "endpoints": {
                "GET /api/status": "Workspace summary",
                "GET /api/agents": "List agents",
                "GET /api/agents/match?q=": "Agents whose triggers match a task",
                "GET /api/agents/{name}": "Agent details",
                "GET /api/lessons": "List lessons (?status=&agent=)",
                "GET /api/lessons/{id}": "Lesson details",
                "POST /api/lessons": "Capture a lesson",
                "POST /api/lessons/{id}/apply": "Fold a lesson into its agent",
                "GET /api/scores": "Project ranking",
                "GET /api/scores/validate": "Validate scores.json",
                "GET /api/scores/{project}": "Project scores and history",
                "POST /api/scores/{project}": "Record project metrics",
                "GET /api/review": "Monthly review",
            },
        }

    @app.get("/api/status")
    async def workspace_status(workspace: Workspace = Depends(get_workspace)):
        """Workspace summary."""
        library = workspace.library()
        lint = library.lint_all()
        status = {
            "workspace": workspace.name,
            "agents": len(library.list_agents()),
            "agents_with_errors": sum(1 for r in lint.values() if not r.ok),
            "lessons": workspace.lessons().get_stats(),
            "scores": None,
        }
        try:
            status["scores"] = workspace.scores().get_stats()
        except (FileNotFoundError, ScoresError) as e:
            status["scores_error"] = str(e)
        return status

    # Agents

    @app.get("/api/agents")
    async def list_agents(workspace: Workspace = Depends(get_workspace)):
        """List agents with their triggers."""
        return {
            "agents": [
                {
                    "name": a.name,
                    "title": a.title,
                    "summary": a.summary,
                    "triggers": a.triggers,
                    "lessons": len(a.lesson_ids),
                }
                for a in workspace.library().list_agents()
            ]
        }

    @app.get("/api/agents/match")
    async def match_agents(q: str, limit: int = 3, workspace: Workspace = Depends(get_workspace)):
        """Agents whose triggers occur in the task description."""
        matches = workspace.library().match(q, limit=limit)
        return {
            "query": q,
            "matches": [
                {"name": m.agent.name, "title": m.agent.title, "score": m.score, "matched": m.matched}
                for m in matches
            ],
        }

    @app.get("/api/agents/{name}")
    async def get_agent(name: str, workspace: Workspace = Depends(get_workspace)):
        """Agent details and lint results."""
        from .agents import lint_agent

        try:
            agent = workspace.library().get_agent(name)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        return {**agent.to_dict(), "lint": lint_agent(agent).to_dict()}

    # Lessons

    @app.get("/api/lessons")
    async def list_lessons(
        status: Optional[str] = None,
        agent: Optional[str] = None,
        workspace: Workspace = Depends(get_workspace),
    ):
        """List lessons, optionally filtered."""
        try:
            status_enum = LessonStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

        lessons = workspace.lessons().list_lessons(status=status_enum, agent=agent)
        return {"lessons": [lesson.to_dict() for lesson in lessons]}

    @app.get("/api/lessons/{lesson_id}")
    async def get_lesson(lesson_id: str, workspace: Workspace = Depends(get_workspace)):
        try:
            return workspace.lessons().get_lesson(lesson_id).to_dict()
        except LessonNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/api/lessons", status_code=201)
    async def capture_lesson(request: CaptureLessonRequest, workspace: Workspace = Depends(get_workspace)):
        """Capture a new pending lesson."""
        try:
            lesson = Lesson(
                title=request.title,
                agent=request.agent,
                category=LessonCategory(request.category),
                severity=Severity(request.severity),
                project=request.project,
                problem=request.problem,
                root_cause=request.root_cause,
                fix=request.fix,
                prevention=request.prevention,
            )
            lesson = workspace.lessons().capture(lesson)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        result = lesson.to_dict()
        if not workspace.library().has_agent(lesson.agent):
            result["warning"] = f"No agent named '{lesson.agent}' yet"
        return result

    @app.post("/api/lessons/{lesson_id}/apply")
    async def apply_lesson(lesson_id: str, workspace: Workspace = Depends(get_workspace)):
        """Fold a lesson into its agent document."""
        try:
            lesson = workspace.lessons().apply(lesson_id, workspace.library())
        except LessonNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except AgentNotFoundError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return lesson.to_dict()

    # Scores

    @app.get("/api/scores")
    async def list_scores(workspace: Workspace = Depends(get_workspace)):
        """Projects ranked by overall score."""
        store = _load_scores(workspace)
        return {
            "weights": store.weights,
            "stats": store.get_stats(),
            "projects": [
                {
                    "id": p.id,
                    "name": p.name,
                    "overall": p.overall,
                    "trend": store.trend(p.id),
                    "bugs_open": p.bugs.open if p.bugs else 0,
                }
                for p in store.ranking()
            ],
        }

    @app.get("/api/scores/validate")
    async def validate_scores_file(workspace: Workspace = Depends(get_workspace)):
        """Validate scores.json as it is on disk."""
        from .scores import validate_scores

        try:
            data = ScoresStore.read_raw(workspace.scores_path)
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ScoresError as e:
            return {"ok": False, "errors": 1, "warnings": 0,
                    "issues": [{"path": "$", "message": str(e), "level": "error"}]}
        return validate_scores(data).to_dict()

    @app.get("/api/scores/{project_id}")
    async def get_project_scores(project_id: str, workspace: Workspace = Depends(get_workspace)):
        store = _load_scores(workspace)
        project = store.get_project(project_id)
        if not project:
            raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
        return {**project.to_dict(), "id": project.id, "trend": store.trend(project.id)}

    @app.post("/api/scores/{project_id}")
    async def record_project_scores(
        project_id: str,
        request: RecordScoresRequest,
        workspace: Workspace = Depends(get_workspace),
    ):
        """Record metrics for a project; rejected if the result would be invalid."""
        store = _load_scores(workspace)
        on = _parse_date(request.on, "on")

        existing = store.get_project(project_id)
        bugs = merge_bug_counts(
            existing.bugs if existing else None,
            open=request.bugs_open,
            resolved=request.bugs_resolved,
            by_severity=request.by_severity,
        )

        try:
            project = store.record(
                project_id,
                scores=request.scores,
                bugs=bugs,
                name=request.name,
                agents=request.agents,
                on=on,
            )
        except ScoresValidationError as e:
            raise HTTPException(status_code=400, detail={"message": str(e), **e.report.to_dict()})
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {**project.to_dict(), "id": project.id}

    # Review

    @app.get("/api/review")
    async def monthly_review(
        since: Optional[str] = None,
        format: str = "json",
        workspace: Workspace = Depends(get_workspace),
    ):
        """The monthly review report."""
        since_date = _parse_date(since, "since") or date.today().replace(day=1)

        try:
            store = workspace.scores()
        except (FileNotFoundError, ScoresError) as e:
            logger.warning(f"Review without scores: {e}")
            store = None

        report = build_review(
            workspace.library(),
            workspace.lessons(),
            store,
            since=since_date,
            threshold=workspace.config.workspace.score_threshold,
        )
        if format == "markdown":
            return {"period": report.period, "markdown": render_markdown(report)}
        return report.to_dict()

    return app


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================


def main(host: Optional[str] = None, port: Optional[int] = None, reload: bool = False):
    """Run the CodeBakers dashboard server."""
    import uvicorn

    config = get_config()
    os.environ["CODEBAKERS_WORKSPACE"] = str(config["workspace"])
    uvicorn.run(
        "codebakers.server:app",
        host=host or config["host"],
        port=port or config["port"],
        reload=reload,
    )


if __name__ == "__main__":
    main()
