"""MCP server exposing the workflow operations as tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from phase_orchestrator.config import Config, get_config
from phase_orchestrator.core import dependencies
from phase_orchestrator.core import history as history_mod
from phase_orchestrator.core.machine import WorkflowError
from phase_orchestrator.core.workflow import ProjectTypeRegistry, Workflow
from phase_orchestrator.db.document import (
    artifact_to_dict,
    feedback_to_dict,
    project_to_dict,
    task_to_dict,
)
from phase_orchestrator.db.engine import get_db
from phase_orchestrator.db.models import Artifact, Feedback, MetadataTypeError, Task
from phase_orchestrator.db.schema import SchemaError
from phase_orchestrator.db.store import FileStore, StoreError
from phase_orchestrator.projects.registry import default_registry

OPERATION_ERRORS = (WorkflowError, ValueError, MetadataTypeError, StoreError, SchemaError)


@dataclass
class AppContext:
    config: Config
    store: FileStore
    registry: ProjectTypeRegistry


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the store and project type registry once per server."""
    config = get_config()
    yield AppContext(
        config=config,
        store=FileStore(config.state_path),
        registry=default_registry(),
    )


mcp = FastMCP("phase-orchestrator", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _load(ctx: Context) -> Workflow:
    app = _ctx(ctx)
    return Workflow.load(app.store, app.registry)


def _operate(ctx: Context, action: str, operation, phase: str | None = None,
             detail: str | None = None) -> dict:
    """Run one phase operation against a freshly loaded project."""
    try:
        workflow = _load(ctx)
        before = workflow.state
        result, prompt = workflow.run(operation, phase=phase)
    except OPERATION_ERRORS as e:
        return {"error": str(e)}

    with get_db(_ctx(ctx).config.history_db_path) as db:
        history_mod.record(db, workflow.project.name, action, detail, before, workflow.state)

    response = {
        "state": workflow.state,
        "transitioned": workflow.state != before,
    }
    if prompt:
        response["guidance"] = prompt
    if isinstance(result, Task):
        response["task"] = task_to_dict(result)
    elif isinstance(result, Artifact):
        response["artifact"] = artifact_to_dict(result)
    elif isinstance(result, Feedback):
        response["feedback"] = feedback_to_dict(result)
    return response


# ── Project Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def project_status(ctx: Context) -> dict:
    """Get the full project state, current phase and the events that can fire now."""
    try:
        workflow = _load(ctx)
    except OPERATION_ERRORS as e:
        return {"error": str(e)}
    data = project_to_dict(workflow.project)
    data["current_phase"] = workflow.current_phase_name
    data["permitted_events"] = workflow.permitted_events()
    return data


@mcp.tool()
def advance(ctx: Context, phase: str | None = None) -> dict:
    """Advance to the next state within the current phase."""
    return _operate(ctx, "advance", lambda ops: ops.advance(), phase)


@mcp.tool()
def complete_phase(ctx: Context, phase: str | None = None) -> dict:
    """Complete a phase once its exit criteria are met. Defaults to the current phase."""
    return _operate(ctx, "complete", lambda ops: ops.complete(), phase)


@mcp.tool()
def enable_phase(ctx: Context, phase: str) -> dict:
    """Enable an optional phase."""
    return _operate(ctx, "enable", lambda ops: ops.enable(), phase, detail=phase)


@mcp.tool()
def skip_phase(ctx: Context, phase: str) -> dict:
    """Skip an optional phase."""
    return _operate(ctx, "skip", lambda ops: ops.skip(), phase, detail=phase)


@mcp.tool()
def set_field(ctx: Context, field: str, value: str | int | bool, phase: str | None = None) -> dict:
    """Set a phase metadata field. Fields like tasks_approved or decomposition_complete may trigger a transition."""
    return _operate(ctx, "set", lambda ops: ops.set(field, value), phase, detail=f"{field}={value!r}")


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def add_task(
    ctx: Context,
    name: str,
    description: str = "",
    dependencies: list[str] | None = None,
    parallel: bool = False,
    metadata: dict | None = None,
    phase: str | None = None,
) -> dict:
    """Add a task to a phase. Task IDs are assigned as 010, 020, ..."""
    return _operate(
        ctx, "task add",
        lambda ops: ops.add_task(name, description, dependencies, parallel, metadata=metadata),
        phase, detail=name,
    )


@mcp.tool()
def update_task(
    ctx: Context,
    task_id: str,
    status: str | None = None,
    metadata: dict | None = None,
    dependencies: list[str] | None = None,
    phase: str | None = None,
) -> dict:
    """Update a task. Valid statuses: pending, in_progress, needs_review, completed, abandoned."""
    return _operate(
        ctx, "task update",
        lambda ops: ops.update_task(task_id, status, metadata, dependencies),
        phase, detail=task_id,
    )


@mcp.tool()
def list_tasks(ctx: Context, phase: str | None = None, status: str | None = None) -> list[dict]:
    """List the tasks of a phase, optionally filtered by status."""
    try:
        tasks = _load(ctx).phase(phase).data.tasks
    except OPERATION_ERRORS as e:
        return [{"error": str(e)}]
    return [task_to_dict(t) for t in tasks if status is None or t.status == status]


@mcp.tool()
def add_task_feedback(
    ctx: Context,
    task_id: str,
    message: str,
    increment_iteration: bool = False,
    phase: str | None = None,
) -> dict:
    """Record human feedback on a task for its next iteration. Feedback IDs are 001, 002, ..."""
    return _operate(
        ctx, "task feedback add",
        lambda ops: ops.add_feedback(task_id, message, increment_iteration),
        phase, detail=task_id,
    )


@mcp.tool()
def mark_feedback_addressed(
    ctx: Context, task_id: str, feedback_id: str, phase: str | None = None
) -> dict:
    """Mark a pending feedback entry on a task as addressed."""
    return _operate(
        ctx, "task feedback mark-addressed",
        lambda ops: ops.mark_feedback_addressed(task_id, feedback_id),
        phase, detail=f"{task_id} {feedback_id}",
    )


@mcp.tool()
def dependency_order(ctx: Context, phase: str | None = None) -> dict:
    """Order the completed tasks of a phase so every task follows its dependencies."""
    try:
        tasks = _load(ctx).phase(phase).data.tasks
        return {"order": dependencies.resolve(tasks)}
    except OPERATION_ERRORS as e:
        return {"error": str(e)}


# ── Artifact Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def add_artifact(
    ctx: Context,
    path: str,
    type: str = "",
    description: str = "",
    is_input: bool = False,
    metadata: dict | None = None,
    phase: str | None = None,
) -> dict:
    """Track a file as a phase output (default) or input."""
    return _operate(
        ctx, "artifact add",
        lambda ops: ops.add_artifact(path, type, description, not is_input, metadata),
        phase, detail=path,
    )


@mcp.tool()
def approve_artifact(ctx: Context, path: str, phase: str | None = None) -> dict:
    """Approve an output artifact."""
    return _operate(ctx, "artifact approve", lambda ops: ops.approve_artifact(path), phase, detail=path)


# ── History Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def project_history(ctx: Context, limit: int = 20) -> list[dict]:
    """Recent operations and transitions, newest first."""
    with get_db(_ctx(ctx).config.history_db_path) as db:
        events = history_mod.list_events(db, limit=limit)
    return [
        {
            "project": e.project,
            "action": e.action,
            "detail": e.detail,
            "from_state": e.from_state,
            "to_state": e.to_state,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in events
    ]
