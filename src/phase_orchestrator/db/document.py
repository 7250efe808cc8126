"""YAML serialization of the project state document."""

from datetime import datetime

import yaml

from phase_orchestrator.db.models import (
    ApprovalState,
    Artifact,
    Feedback,
    Metadata,
    Phase,
    Project,
    Task,
)


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _compact(data: dict) -> dict:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


# ── To plain data ─────────────────────────────────────────────────────────────


def artifact_to_dict(artifact: Artifact) -> dict:
    return _compact({
        "path": artifact.path,
        "type": artifact.type or None,
        "description": artifact.description or None,
        "approved": artifact.approval.to_flag(),
        "created_at": _dt(artifact.created_at),
        "metadata": dict(artifact.metadata) or None,
    })


def feedback_to_dict(entry: Feedback) -> dict:
    return _compact({
        "id": entry.id,
        "message": entry.message,
        "status": entry.status,
        "created_at": _dt(entry.created_at),
    })


def task_to_dict(task: Task) -> dict:
    return _compact({
        "id": task.id,
        "name": task.name,
        "description": task.description or None,
        "status": task.status,
        "parallel": task.parallel,
        "dependencies": list(task.dependencies) or None,
        "assigned_agent": task.assigned_agent,
        "session_id": task.session_id,
        "iteration": task.iteration,
        "references": list(task.references) or None,
        "feedback": [feedback_to_dict(f) for f in task.feedback] or None,
        "created_at": _dt(task.created_at),
        "updated_at": _dt(task.updated_at),
        "metadata": dict(task.metadata) or None,
    })


def phase_to_dict(phase: Phase) -> dict:
    return _compact({
        "status": phase.status,
        "enabled": phase.enabled,
        "created_at": _dt(phase.created_at),
        "started_at": _dt(phase.started_at),
        "completed_at": _dt(phase.completed_at),
        "inputs": [artifact_to_dict(a) for a in phase.inputs],
        "outputs": [artifact_to_dict(a) for a in phase.outputs],
        "tasks": [task_to_dict(t) for t in phase.tasks],
        "metadata": dict(phase.metadata),
    })


def project_to_dict(project: Project) -> dict:
    return _compact({
        "name": project.name,
        "type": project.type,
        "branch": project.branch,
        "description": project.description,
        "created_at": _dt(project.created_at),
        "updated_at": _dt(project.updated_at),
        "statechart": {"current_state": project.state},
        "phases": {name: phase_to_dict(p) for name, p in project.phases.items()},
        "agent_sessions": dict(project.agent_sessions) or None,
    })


# ── From plain data ───────────────────────────────────────────────────────────


def artifact_from_dict(data: dict) -> Artifact:
    return Artifact(
        path=data["path"],
        type=data.get("type", ""),
        description=data.get("description", ""),
        approval=ApprovalState.from_flag(data.get("approved")),
        created_at=_parse_dt(data.get("created_at")),
        metadata=Metadata(data.get("metadata") or {}),
    )


def feedback_from_dict(data: dict) -> Feedback:
    return Feedback(
        id=data["id"],
        message=data["message"],
        status=data.get("status", "pending"),
        created_at=_parse_dt(data.get("created_at")),
    )


def task_from_dict(data: dict) -> Task:
    return Task(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        status=data.get("status", "pending"),
        parallel=data.get("parallel", False),
        dependencies=list(data.get("dependencies") or []),
        assigned_agent=data.get("assigned_agent"),
        session_id=data.get("session_id"),
        iteration=data.get("iteration", 1),
        references=list(data.get("references") or []),
        feedback=[feedback_from_dict(f) for f in data.get("feedback") or []],
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
        metadata=Metadata(data.get("metadata") or {}),
    )


def phase_from_dict(name: str, data: dict) -> Phase:
    return Phase(
        name=name,
        status=data.get("status", "pending"),
        enabled=data.get("enabled", False),
        created_at=_parse_dt(data.get("created_at")),
        started_at=_parse_dt(data.get("started_at")),
        completed_at=_parse_dt(data.get("completed_at")),
        inputs=[artifact_from_dict(a) for a in data.get("inputs") or []],
        outputs=[artifact_from_dict(a) for a in data.get("outputs") or []],
        tasks=[task_from_dict(t) for t in data.get("tasks") or []],
        metadata=Metadata(data.get("metadata") or {}),
    )


def project_from_dict(data: dict) -> Project:
    return Project(
        name=data["name"],
        type=data["type"],
        branch=data["branch"],
        description=data.get("description", ""),
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
        state=data.get("statechart", {}).get("current_state", ""),
        phases={
            name: phase_from_dict(name, p) for name, p in (data.get("phases") or {}).items()
        },
        agent_sessions=dict(data.get("agent_sessions") or {}),
    )


# ── YAML ──────────────────────────────────────────────────────────────────────


def parse(document: bytes) -> dict:
    """Parse document bytes into plain data."""
    data = yaml.safe_load(document)
    if not isinstance(data, dict):
        raise ValueError("state document must be a mapping")
    return data


def dumps(project: Project) -> bytes:
    return yaml.safe_dump(
        project_to_dict(project),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    ).encode("utf-8")


def loads(document: bytes) -> Project:
    return project_from_dict(parse(document))
