"""Phase operations and their results.

A phase operation validates its preconditions, mutates the phase, and
returns an OperationResult. When the operation satisfied the exit
criteria of the current state, the result carries the event the caller
should fire on the state machine. Phases never fire events themselves.
"""

from dataclasses import dataclass
from typing import Any

from phase_orchestrator.core.machine import WorkflowError
from phase_orchestrator.db.models import (
    TASK_STATUSES,
    ApprovalState,
    Artifact,
    Feedback,
    Metadata,
    Phase,
    Project,
    Task,
    utcnow,
)


class PhaseValidationError(WorkflowError, ValueError):
    """A phase precondition failed. Fix the condition and retry."""


class NotSupportedError(WorkflowError):
    """The phase or backend does not implement the operation."""


@dataclass(frozen=True)
class OperationResult:
    event: str | None = None


NO_EVENT = OperationResult()


def plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def next_task_id(tasks: list[Task]) -> str:
    """Gap-numbered IDs: 010, 020, ... leaving room for insertions."""
    highest = 0
    for task in tasks:
        if task.id.isdigit():
            highest = max(highest, int(task.id))
    return f"{highest + 10:03d}"


def unresolved_summary(phase: Phase) -> str:
    pending = phase.unresolved_tasks()
    ids = ", ".join(t.id for t in pending)
    return f"{plural(len(pending), 'unresolved task')} ({ids})" if pending else "no unresolved tasks"


def all_resolved(phase: Phase, require_completed: bool = True) -> bool:
    """Every task completed or abandoned, and at least one task exists.

    With ``require_completed`` at least one task must be completed.
    """
    if not phase.tasks or phase.unresolved_tasks():
        return False
    if require_completed:
        return any(t.status == "completed" for t in phase.tasks)
    return True


class PhaseOperations:
    """Operations on one phase of a project.

    Subclasses set ``name`` and ``statuses`` and override the operations
    their workflow supports. Unsupported operations raise NotSupportedError.
    """

    name: str = ""
    statuses: tuple[str, ...] = ("pending", "in_progress", "completed")
    output_types: tuple[str, ...] = ()
    input_types: tuple[str, ...] = ()
    has_tasks: bool = True
    optional: bool = False

    def __init__(self, project: Project):
        self.project = project

    @property
    def data(self) -> Phase:
        return self.project.phase(self.name)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        phase = self.data
        phase.enabled = True
        phase.status = "in_progress"
        phase.started_at = phase.started_at or utcnow()

    def finish(self, status: str = "completed") -> None:
        phase = self.data
        phase.status = status
        phase.completed_at = utcnow()

    def ensure_open(self) -> None:
        if self.data.status in ("completed", "skipped"):
            raise PhaseValidationError(f"phase {self.name} is already {self.data.status}")

    # ── Transition operations ─────────────────────────────────────────────────

    def complete(self) -> OperationResult:
        raise NotSupportedError(f"phase {self.name} cannot be completed directly")

    def advance(self) -> OperationResult:
        raise NotSupportedError(f"phase {self.name} has no internal states to advance")

    def enable(self) -> OperationResult:
        raise NotSupportedError(f"phase {self.name} is not optional")

    def skip(self) -> OperationResult:
        raise NotSupportedError(f"phase {self.name} is not optional")

    def set(self, field: str, value: Any) -> OperationResult:
        """Write a phase metadata field; some fields signal a transition."""
        self.ensure_open()
        self.validate_field(field, value)
        self.data.metadata[field] = value
        return self.on_field_set(field, value)

    def validate_field(self, field: str, value: Any) -> None:
        pass

    def on_field_set(self, field: str, value: Any) -> OperationResult:
        return NO_EVENT

    # ── Artifacts ─────────────────────────────────────────────────────────────

    def check_can_add_output(self) -> None:
        pass

    def add_artifact(
        self,
        path: str,
        type: str = "",
        description: str = "",
        output: bool = True,
        metadata: dict | None = None,
    ) -> Artifact:
        phase = self.data
        self.ensure_open()
        if output:
            # evaluated before anything else about the artifact
            self.check_can_add_output()
        allowed = self.output_types if output else self.input_types
        if allowed and type not in allowed:
            kind = "output" if output else "input"
            raise PhaseValidationError(
                f"phase {self.name} does not accept {kind} type '{type}' "
                f"(allowed: {', '.join(allowed)})"
            )
        collection = phase.outputs if output else phase.inputs
        if any(a.path == path for a in collection):
            raise PhaseValidationError(f"artifact already exists in {self.name}: {path}")

        artifact = Artifact(
            path=path,
            type=type,
            description=description,
            approval=ApprovalState.PENDING if output else ApprovalState.NOT_REQUIRED,
            created_at=utcnow(),
            metadata=Metadata(metadata or {}),
        )
        collection.append(artifact)
        return artifact

    def approve_artifact(self, path: str) -> OperationResult:
        artifact = self.data.get_output(path)
        if artifact is None:
            raise PhaseValidationError(f"output artifact not found in {self.name}: {path}")
        if artifact.approval is ApprovalState.NOT_REQUIRED:
            raise PhaseValidationError(f"artifact does not require approval: {path}")
        artifact.approval = ApprovalState.APPROVED
        return self.on_artifact_approved(artifact)

    def on_artifact_approved(self, artifact: Artifact) -> OperationResult:
        return NO_EVENT

    # ── Tasks ─────────────────────────────────────────────────────────────────

    def check_can_add_task(self) -> None:
        pass

    def add_task(
        self,
        name: str,
        description: str = "",
        dependencies: list[str] | None = None,
        parallel: bool = False,
        references: list[str] | None = None,
        metadata: dict | None = None,
    ) -> Task:
        if not self.has_tasks:
            raise NotSupportedError(f"phase {self.name} does not track tasks")
        phase = self.data
        self.ensure_open()
        self.check_can_add_task()
        if not name.strip():
            raise PhaseValidationError("task name must not be empty")
        for dep in dependencies or []:
            if phase.get_task(dep) is None:
                raise PhaseValidationError(f"dependency not found in {self.name}: {dep}")

        now = utcnow()
        task = Task(
            id=next_task_id(phase.tasks),
            name=name,
            description=description,
            parallel=parallel,
            dependencies=list(dependencies or []),
            references=list(references or []),
            created_at=now,
            updated_at=now,
            metadata=Metadata(metadata or {}),
        )
        phase.tasks.append(task)
        return task

    def get_task(self, task_id: str) -> Task:
        task = self.data.get_task(task_id)
        if task is None:
            raise PhaseValidationError(f"task not found in {self.name}: {task_id}")
        return task

    def check_task_update(self, task: Task, status: str | None, metadata: dict) -> None:
        pass

    def after_task_update(self, task: Task, old_status: str) -> None:
        pass

    def update_task(
        self,
        task_id: str,
        status: str | None = None,
        metadata: dict | None = None,
        dependencies: list[str] | None = None,
        assigned_agent: str | None = None,
    ) -> Task:
        task = self.get_task(task_id)
        phase = self.data
        metadata = metadata or {}
        if status is not None and status not in TASK_STATUSES:
            raise PhaseValidationError(
                f"invalid task status '{status}' (expected one of: {', '.join(TASK_STATUSES)})"
            )
        if dependencies is not None:
            for dep in dependencies:
                if dep == task.id:
                    continue  # left to cycle detection
                if phase.get_task(dep) is None:
                    raise PhaseValidationError(f"dependency not found in {self.name}: {dep}")
        self.check_task_update(task, status, metadata)

        old_status = task.status
        if status is not None:
            task.status = status
        if dependencies is not None:
            task.dependencies = list(dependencies)
        if assigned_agent is not None:
            task.assigned_agent = assigned_agent
        task.metadata.update(metadata)
        task.updated_at = utcnow()
        self.after_task_update(task, old_status)
        return task

    # ── Feedback ──────────────────────────────────────────────────────────────

    def add_feedback(self, task_id: str, message: str, increment_iteration: bool = False) -> Feedback:
        """Record human feedback for the task's next iteration.

        Feedback IDs count up per task: 001, 002, ...
        """
        task = self.get_task(task_id)
        if not message.strip():
            raise PhaseValidationError("feedback message must not be empty")
        now = utcnow()
        entry = Feedback(
            id=f"{len(task.feedback) + 1:03d}",
            message=message,
            created_at=now,
        )
        task.feedback.append(entry)
        if increment_iteration:
            task.iteration += 1
        task.updated_at = now
        return entry

    def mark_feedback_addressed(self, task_id: str, feedback_id: str) -> Feedback:
        task = self.get_task(task_id)
        entry = task.get_feedback(feedback_id)
        if entry is None:
            raise PhaseValidationError(f"feedback {feedback_id} not found on task {task_id}")
        if entry.status != "pending":
            raise PhaseValidationError(f"feedback {feedback_id} is already {entry.status}")
        entry.status = "addressed"
        task.updated_at = utcnow()
        return entry

    def increment_iteration(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        task.iteration += 1
        task.updated_at = utcnow()
        return task

    def resolved_or_raise(self, require_completed: bool = True) -> None:
        phase = self.data
        if not phase.tasks:
            raise PhaseValidationError(f"phase {self.name} has no tasks")
        if phase.unresolved_tasks():
            raise PhaseValidationError(
                f"cannot complete {self.name}: {unresolved_summary(phase)}"
            )
        if require_completed and not any(t.status == "completed" for t in phase.tasks):
            raise PhaseValidationError(
                f"cannot complete {self.name}: at least one task must be completed"
            )
