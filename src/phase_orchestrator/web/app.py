"""Read-only status API for the current project."""

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from phase_orchestrator.config import get_config
from phase_orchestrator.core import dependencies
from phase_orchestrator.core import history as history_mod
from phase_orchestrator.core.dependencies import DependencyError
from phase_orchestrator.core.workflow import NoProjectError, Workflow
from phase_orchestrator.db.document import project_to_dict
from phase_orchestrator.db.engine import get_db
from phase_orchestrator.db.store import FileStore
from phase_orchestrator.projects.registry import default_registry


def _load() -> Workflow:
    config = get_config()
    return Workflow.load(FileStore(config.state_path), default_registry())


def _no_project() -> JSONResponse:
    return JSONResponse({"error": "No active project"}, status_code=404)


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_project(request: Request):
    try:
        workflow = _load()
    except NoProjectError:
        return _no_project()
    data = project_to_dict(workflow.project)
    data["current_phase"] = workflow.current_phase_name
    data["permitted_events"] = workflow.permitted_events()
    return JSONResponse(data)


async def api_phase_tasks(request: Request):
    phase_name = request.path_params["phase"]
    status_filter = request.query_params.get("status")
    try:
        workflow = _load()
    except NoProjectError:
        return _no_project()
    if phase_name not in workflow.project.phases:
        return JSONResponse({"error": f"Phase not found: {phase_name}"}, status_code=404)
    tasks = workflow.project.phases[phase_name].tasks
    if status_filter:
        tasks = [t for t in tasks if t.status == status_filter]
    return JSONResponse([_task_dict(t) for t in tasks])


async def api_phase_order(request: Request):
    phase_name = request.path_params["phase"]
    try:
        workflow = _load()
    except NoProjectError:
        return _no_project()
    if phase_name not in workflow.project.phases:
        return JSONResponse({"error": f"Phase not found: {phase_name}"}, status_code=404)
    try:
        ordered = dependencies.resolve(workflow.project.phases[phase_name].tasks)
    except DependencyError as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return JSONResponse({"order": ordered})


async def api_history(request: Request):
    config = get_config()
    limit = int(request.query_params.get("limit", 50))
    with get_db(config.history_db_path) as db:
        events = history_mod.list_events(db, limit=limit)
    return JSONResponse([_event_dict(e) for e in events])


# ── Helpers ───────────────────────────────────────────────────────────────────


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "name": task.name,
        "status": task.status,
        "dependencies": task.dependencies,
        "assigned_agent": task.assigned_agent,
        "session_id": task.session_id,
        "metadata": dict(task.metadata),
    }


def _event_dict(e) -> dict:
    return {
        "id": e.id,
        "project": e.project,
        "action": e.action,
        "detail": e.detail,
        "from_state": e.from_state,
        "to_state": e.to_state,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    routes = [
        Route("/api/project", api_project),
        Route("/api/phases/{phase}/tasks", api_phase_tasks),
        Route("/api/phases/{phase}/order", api_phase_order),
        Route("/api/history", api_history),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
