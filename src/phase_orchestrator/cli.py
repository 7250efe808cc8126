"""CLI entry point for the phase orchestrator."""

import json
import logging
import sys
from contextlib import contextmanager

import click
import yaml

from phase_orchestrator.config import get_config
from phase_orchestrator.core import dependencies
from phase_orchestrator.core import history as history_mod
from phase_orchestrator.core import prompts
from phase_orchestrator.core.executors import (
    AgentRegistry,
    ClaudeExecutor,
    CursorExecutor,
    ExecutorError,
    ExecutorRegistry,
)
from phase_orchestrator.core.machine import WorkflowError
from phase_orchestrator.core.publishing import publish
from phase_orchestrator.core.sessions import SessionManager
from phase_orchestrator.core.workflow import Workflow
from phase_orchestrator.db.document import project_to_dict
from phase_orchestrator.db.engine import get_db
from phase_orchestrator.db.models import TASK_STATUSES, MetadataTypeError
from phase_orchestrator.db.schema import SchemaError
from phase_orchestrator.db.store import FileStore, StoreError
from phase_orchestrator.integrations.git import GitError, get_current_branch
from phase_orchestrator.integrations.github import GitHubError, GitHubIssues
from phase_orchestrator.projects.registry import default_registry

HANDLED_ERRORS = (
    WorkflowError,
    ValueError,
    MetadataTypeError,
    StoreError,
    SchemaError,
    GitError,
    GitHubError,
    ExecutorError,
)


@contextmanager
def _errors():
    """Report failures on stderr and exit non-zero."""
    try:
        yield
    except HANDLED_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _store():
    return FileStore(get_config().state_path)


def _load() -> Workflow:
    return Workflow.load(_store(), default_registry())


def _record(workflow: Workflow, action: str, detail: str | None, from_state: str) -> None:
    config = get_config()
    with get_db(config.history_db_path) as db:
        history_mod.record(
            db, workflow.project.name, action, detail, from_state, workflow.state
        )


def _parse_value(raw: str, param_hint: str = "VALUE"):
    """Interpret a command-line value as a YAML scalar (true, 3, 'text')."""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        reason = " ".join(str(e).split())
        raise click.BadParameter(f"cannot parse {raw!r}: {reason}", param_hint=param_hint) from e


def _parse_meta(pairs: tuple[str, ...]) -> dict:
    meta = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--meta")
        key, value = pair.split("=", 1)
        meta[key.strip()] = _parse_value(value, param_hint="--meta")
    return meta


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _run(action: str, operation, phase: str | None = None, detail: str | None = None):
    """Load the project, run one phase operation, report the outcome."""
    with _errors():
        workflow = _load()
        before = workflow.state
        result, prompt = workflow.run(operation, phase=phase)
        _record(workflow, action, detail, before)
        if workflow.state != before:
            click.echo(f"{before} -> {workflow.state}")
        if prompt:
            click.echo(prompt)
        return result


@click.group()
def main():
    """po - Phase Orchestrator CLI"""
    logging.basicConfig(
        level=get_config().log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ── Project Commands ──────────────────────────────────────────────────────────


@main.command("init")
@click.argument("name")
@click.option("--description", "-d", required=True, help="What the project is for")
@click.option("--type", "type_name", type=click.Choice(["standard", "exploration", "design", "breakdown"]),
              default=None, help="Project type (detected from the branch when omitted)")
@click.option("--branch", default=None, help="Branch name (defaults to the current branch)")
def init_project(name, description, type_name, branch):
    """Initialize a new project."""
    config = get_config()
    with _errors():
        if branch is None:
            branch = get_current_branch(config.root)
        workflow = Workflow.create(
            _store(), default_registry(), name, description, branch, type_name
        )
        _record(workflow, "init", workflow.project.type, "")
        click.echo(f"Project created: {workflow.project.name} ({workflow.project.type})")
        click.echo(f"  Branch: {workflow.project.branch}")
        click.echo(f"  State: {workflow.state}")


@main.command("status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def status(json_output):
    """Show the project state, phases and tasks."""
    with _errors():
        workflow = _load()
        data = _status_dict(workflow)

    if json_output:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"Project: {data['name']} ({data['type']})")
    click.echo(f"  Branch: {data['branch']}")
    click.echo(f"  State: {data['state']}")
    if data["phase"]:
        click.echo(f"  Phase: {data['phase']}")
    if data["permitted_events"]:
        click.echo(f"  Ready: {', '.join(data['permitted_events'])}")

    status_icons = {
        "pending": "○",
        "in_progress": "●",
        "needs_review": "◐",
        "completed": "✓",
        "abandoned": "✗",
    }
    for name, phase in data["phases"].items():
        enabled = "" if phase["enabled"] else " (disabled)"
        click.echo(f"\n{name}: {phase['status']}{enabled}")
        for artifact in phase["outputs"]:
            mark = {True: "approved", False: "pending approval", None: "no approval needed"}
            click.echo(f"  [{artifact['type']}] {artifact['path']} ({mark[artifact['approved']]})")
        for task in phase["tasks"]:
            icon = status_icons.get(task["status"], "?")
            deps = f" [depends: {', '.join(task['dependencies'])}]" if task["dependencies"] else ""
            click.echo(f"  {icon} {task['id']}: {task['name']} ({task['status']}){deps}")


@main.command("advance")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def advance(phase):
    """Move to the next state within the current phase."""
    _run("advance", lambda ops: ops.advance(), phase)


@main.command("complete")
@click.argument("phase", required=False)
def complete(phase):
    """Complete a phase (defaults to the current phase)."""
    _run("complete", lambda ops: ops.complete(), phase)


@main.command("enable")
@click.argument("phase")
def enable(phase):
    """Enable an optional phase."""
    _run("enable", lambda ops: ops.enable(), phase, detail=phase)


@main.command("skip")
@click.argument("phase")
def skip(phase):
    """Skip an optional phase."""
    _run("skip", lambda ops: ops.skip(), phase, detail=phase)


@main.command("set")
@click.argument("field")
@click.argument("value")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def set_field(field, value, phase):
    """Set a phase metadata field. Some fields trigger a transition."""
    parsed = _parse_value(value)
    _run("set", lambda ops: ops.set(field, parsed), phase, detail=f"{field}={parsed!r}")
    click.echo(f"Set {field} = {parsed!r}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("name")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--depends-on", default=None, help="Comma-separated task IDs this depends on")
@click.option("--parallel", is_flag=True, help="Task can run alongside others")
@click.option("--reference", "references", multiple=True, help="Reference path (repeatable)")
@click.option("--meta", multiple=True, help="Metadata KEY=VALUE (repeatable)")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def task_add(name, description, depends_on, parallel, references, meta, phase):
    """Add a task to a phase."""
    metadata = _parse_meta(meta)
    task = _run(
        "task add",
        lambda ops: ops.add_task(
            name, description, _split(depends_on), parallel, list(references), metadata
        ),
        phase,
        detail=name,
    )
    click.echo(f"Created task: {task.id}")
    click.echo(f"  Name: {task.name}")
    if task.dependencies:
        click.echo(f"  Depends on: {', '.join(task.dependencies)}")


@task_group.command("update")
@click.argument("task_id")
@click.option("--status", type=click.Choice(TASK_STATUSES), default=None)
@click.option("--depends-on", default=None, help="Comma-separated task IDs (replaces existing)")
@click.option("--meta", multiple=True, help="Metadata KEY=VALUE (repeatable)")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def task_update(task_id, status, depends_on, meta, phase):
    """Update a task's status, dependencies or metadata."""
    metadata = _parse_meta(meta)
    task = _run(
        "task update",
        lambda ops: ops.update_task(task_id, status, metadata, _split(depends_on)),
        phase,
        detail=f"{task_id} {status or ''}".strip(),
    )
    click.echo(f"Updated task: {task.id} ({task.status})")


@task_group.command("list")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def task_list(phase):
    """List tasks in a phase."""
    with _errors():
        workflow = _load()
        tasks = workflow.phase(phase).data.tasks
    if not tasks:
        click.echo("No tasks found.")
        return
    for task in tasks:
        deps = f" [depends: {', '.join(task.dependencies)}]" if task.dependencies else ""
        agent = f" [agent: {task.assigned_agent}]" if task.assigned_agent else ""
        click.echo(f"  {task.id}: {task.name} ({task.status}){deps}{agent}")


@task_group.group("feedback")
def feedback_group():
    """Record human feedback on a task."""
    pass


@feedback_group.command("add")
@click.argument("task_id")
@click.argument("message")
@click.option("--increment-iteration", "-i", is_flag=True, help="Bump the task's iteration")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def feedback_add(task_id, message, increment_iteration, phase):
    """Add feedback for a task's next iteration."""
    entry = _run(
        "task feedback add",
        lambda ops: ops.add_feedback(task_id, message, increment_iteration),
        phase,
        detail=task_id,
    )
    click.echo(f"Added feedback {entry.id} to task {task_id}")


@feedback_group.command("mark-addressed")
@click.argument("task_id")
@click.argument("feedback_id")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def feedback_mark_addressed(task_id, feedback_id, phase):
    """Mark a feedback entry as addressed."""
    _run(
        "task feedback mark-addressed",
        lambda ops: ops.mark_feedback_addressed(task_id, feedback_id),
        phase,
        detail=f"{task_id} {feedback_id}",
    )
    click.echo(f"Feedback {feedback_id} on task {task_id} addressed")


@task_group.command("iterate")
@click.argument("task_id")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def task_iterate(task_id, phase):
    """Increment a task's iteration counter."""
    task = _run("task iterate", lambda ops: ops.increment_iteration(task_id), phase, detail=task_id)
    click.echo(f"Task {task.id} is on iteration {task.iteration}")


@task_group.command("show")
@click.argument("task_id")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def task_show(task_id, phase):
    """Show one task with its feedback."""
    with _errors():
        task = _load().phase(phase).get_task(task_id)
    click.echo(f"{task.id}: {task.name} ({task.status})")
    click.echo(f"  Iteration: {task.iteration}")
    if task.assigned_agent:
        click.echo(f"  Agent: {task.assigned_agent}")
    for entry in task.feedback:
        click.echo(f"  [{entry.id}] ({entry.status}) {entry.message}")


@main.command("order")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def order(phase):
    """Show the dependency order of completed tasks."""
    with _errors():
        workflow = _load()
        data = workflow.phase(phase).data
        ordered = dependencies.resolve(data.tasks)
    if not ordered:
        click.echo("No completed tasks.")
        return
    for i, task_id in enumerate(ordered, 1):
        click.echo(f"  {i}. {task_id}: {data.get_task(task_id).name}")


# ── Artifact Commands ─────────────────────────────────────────────────────────


@main.group("artifact")
def artifact_group():
    """Manage phase inputs and outputs."""
    pass


@artifact_group.command("add")
@click.argument("path")
@click.option("--type", "artifact_type", default="", help="Artifact type, e.g. task_list or review")
@click.option("--description", "-d", default="", help="Artifact description")
@click.option("--input", "is_input", is_flag=True, help="Add as an input instead of an output")
@click.option("--meta", multiple=True, help="Metadata KEY=VALUE (repeatable)")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def artifact_add(path, artifact_type, description, is_input, meta, phase):
    """Track a file as a phase input or output."""
    metadata = _parse_meta(meta)
    artifact = _run(
        "artifact add",
        lambda ops: ops.add_artifact(path, artifact_type, description, not is_input, metadata),
        phase,
        detail=path,
    )
    kind = "input" if is_input else "output"
    click.echo(f"Added {kind}: {artifact.path}")


@artifact_group.command("approve")
@click.argument("path")
@click.option("--phase", default=None, help="Phase (defaults to the current phase)")
def artifact_approve(path, phase):
    """Approve an output artifact."""
    _run("artifact approve", lambda ops: ops.approve_artifact(path), phase, detail=path)
    click.echo(f"Approved: {path}")


# ── Agent Commands ────────────────────────────────────────────────────────────


def _executors(config) -> ExecutorRegistry:
    options = dict(
        cwd=config.root,
        output_dir=config.agent_output_dir,
        skip_permissions=config.skip_permissions,
        model=config.agent_model,
    )
    registry = ExecutorRegistry()
    registry.register(ClaudeExecutor(**options))
    registry.register(CursorExecutor(**options))
    return registry


def _sessions(workflow: Workflow) -> SessionManager:
    config = get_config()
    executor = _executors(config).get(config.executor)
    return SessionManager(workflow, executor, AgentRegistry.with_defaults())


@main.group("agent")
def agent_group():
    """Spawn and resume agents."""
    pass


@agent_group.command("roles")
def agent_roles():
    """List agent roles."""
    for role in AgentRegistry.with_defaults().list():
        click.echo(f"  {role.name}: {role.description}")


@agent_group.command("spawn")
@click.argument("role")
@click.option("--task", "task_id", default=None, help="Task the agent works on")
@click.option("--phase", default=None, help="Phase containing the task")
@click.option("--prompt", default="", help="Additional instructions")
def agent_spawn(role, task_id, phase, prompt):
    """Spawn an agent and wait for it to exit."""
    with _errors():
        workflow = _load()
        manager = _sessions(workflow)
        manager.executor.validate_availability()
        if task_id:
            task = manager.find_task(task_id, phase)
            prompt = f"Task {task.id}: {task.name}\n\n{task.description}\n\n{prompt}".strip()
        else:
            prompt = prompt or prompts.render(workflow.state, workflow.project)
        before = workflow.state
        session_id = manager.spawn(role, prompt, task_id, phase)
        _record(workflow, "agent spawn", f"{role} {session_id}", before)
    click.echo(f"Agent {role} finished (session {session_id})")


@agent_group.command("resume")
@click.argument("role")
@click.option("--task", "task_id", default=None, help="Task the agent worked on")
@click.option("--phase", default=None, help="Phase containing the task")
@click.option("--prompt", required=True, help="Feedback for the agent")
@click.option("--feedback", is_flag=True, help="Record the prompt as task feedback and bump the iteration")
def agent_resume(role, task_id, phase, prompt, feedback):
    """Resume an agent's session with feedback."""
    with _errors():
        workflow = _load()
        manager = _sessions(workflow)
        before = workflow.state
        session_id = manager.resume(role, prompt, task_id, phase, feedback=feedback)
        _record(workflow, "agent resume", f"{role} {session_id}", before)
    click.echo(f"Agent {role} finished (session {session_id})")


# ── Publishing ────────────────────────────────────────────────────────────────


@main.command("publish")
def publish_command():
    """Publish breakdown work units as GitHub issues."""
    config = get_config()
    with _errors():
        workflow = _load()
        before = workflow.state
        results = publish(workflow, GitHubIssues(config.root), config.issue_label, config.root)
        _record(workflow, "publish", f"{len(results)} work units", before)
    for r in results:
        note = " (already published)" if r.skipped else ""
        click.echo(f"  {r.task_id}: #{r.number} {r.url}{note}")
    click.echo(f"{before} -> {workflow.state}")


# ── History ───────────────────────────────────────────────────────────────────


@main.command("log")
@click.option("--limit", default=20, type=int, help="Number of entries")
@click.option("--all", "all_projects", is_flag=True, help="Include earlier projects")
def log_command(limit, all_projects):
    """Show recent operations."""
    config = get_config()
    project = None
    if not all_projects and Workflow.exists(_store()):
        with _errors():
            project = _load().project.name
    with get_db(config.history_db_path) as db:
        events = history_mod.list_events(db, project, limit)
    if not events:
        click.echo("No history.")
        return
    for e in events:
        move = f" {e.from_state} -> {e.to_state}" if e.from_state != e.to_state else ""
        detail = f" {e.detail}" if e.detail else ""
        click.echo(f"  [{e.created_at}] {e.project} {e.action}{detail}{move}")


# ── Dashboard Command ─────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def ui_command(host, port):
    """Serve the read-only status API."""
    from phase_orchestrator.web.app import run_server

    click.echo(f"Serving status API at http://{host}:{port}")
    run_server(host=host, port=port)


# ── MCP Server Command ────────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from phase_orchestrator.mcp.server import mcp
    from phase_orchestrator.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _status_dict(workflow: Workflow) -> dict:
    data = project_to_dict(workflow.project)
    phases = {}
    for name, phase in data["phases"].items():
        phases[name] = {
            "status": phase["status"],
            "enabled": phase["enabled"],
            "outputs": [
                {"path": a["path"], "type": a.get("type", ""), "approved": a.get("approved")}
                for a in phase.get("outputs", [])
            ],
            "tasks": [
                {
                    "id": t["id"],
                    "name": t["name"],
                    "status": t["status"],
                    "dependencies": t.get("dependencies", []),
                }
                for t in phase.get("tasks", [])
            ],
        }
    return {
        "name": workflow.project.name,
        "type": workflow.project.type,
        "branch": workflow.project.branch,
        "state": workflow.state,
        "phase": workflow.current_phase_name,
        "permitted_events": workflow.permitted_events(),
        "phases": phases,
    }


if __name__ == "__main__":
    main()
