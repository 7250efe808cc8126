"""Design project type: plan and draft design documents."""

from phase_orchestrator.core.builder import MachineBuilder
from phase_orchestrator.core.machine import Guard
from phase_orchestrator.core.phases import (
    OperationResult,
    PhaseOperations,
    PhaseValidationError,
    all_resolved,
    unresolved_summary,
)
from phase_orchestrator.core.workflow import ProjectType, new_phase
from phase_orchestrator.db.models import ApprovalState, Project, Task
from phase_orchestrator.projects.exploration import (
    COMPLETE_FINALIZATION,
    FinalizationPhase,
    all_finalization_tasks_complete,
)

ACTIVE = "Active"
FINALIZING = "Finalizing"
COMPLETED = "Completed"

COMPLETE_DESIGN = "complete_design"

DOCUMENT_TYPES = ("design", "adr", "architecture", "diagram", "requirements")


def all_documents_approved(p: Project) -> bool:
    return all_resolved(p.phase("design"))


def _design_reason(p: Project) -> str:
    phase = p.phase("design")
    if not phase.tasks:
        return "no document tasks planned"
    if phase.unresolved_tasks():
        return unresolved_summary(phase)
    return "no document task completed"


def _finish_design(p: Project) -> None:
    DesignPhase(p).finish()


def _start_finalization(p: Project) -> None:
    FinalizationPhase(p).start()


def _finish_finalization(p: Project) -> None:
    FinalizationPhase(p).finish()


class DesignPhase(PhaseOperations):
    name = "design"
    statuses = ("active", "completed")
    output_types = DOCUMENT_TYPES
    input_types = ("reference", "notes", "exploration")

    def check_can_add_output(self) -> None:
        if not self.data.tasks:
            raise PhaseValidationError(
                "plan documents as tasks before adding design outputs"
            )

    def check_task_update(self, task: Task, status: str | None, metadata: dict) -> None:
        if status != "completed":
            return
        path = metadata.get("artifact_path", task.metadata.get("artifact_path"))
        if not path:
            raise PhaseValidationError(
                f"task {task.id} needs metadata artifact_path before it can be completed"
            )
        if self.data.get_output(path) is None:
            raise PhaseValidationError(
                f"task {task.id} links to {path}, which is not a design output"
            )

    def after_task_update(self, task: Task, old_status: str) -> None:
        if task.status == "completed" and old_status != "completed":
            artifact = self.data.get_output(task.metadata.get_str("artifact_path"))
            artifact.approval = ApprovalState.APPROVED

    def complete(self) -> OperationResult:
        self.ensure_open()
        self.resolved_or_raise()
        return OperationResult(COMPLETE_DESIGN)


def configure(builder: MachineBuilder) -> MachineBuilder:
    return (
        builder
        .add_transition(
            ACTIVE, FINALIZING, COMPLETE_DESIGN,
            guard=Guard("all documents approved", all_documents_approved, _design_reason),
            on_exit=_finish_design,
            on_entry=_start_finalization,
        )
        .add_transition(
            FINALIZING, COMPLETED, COMPLETE_FINALIZATION,
            guard=Guard("all finalization tasks complete", all_finalization_tasks_complete),
            on_entry=_finish_finalization,
        )
    )


def initialize(project: Project) -> None:
    project.phases["design"] = new_phase("design", status="active", enabled=True)
    project.phases["finalization"] = new_phase("finalization")


DESIGN = ProjectType(
    name="design",
    initial_state=ACTIVE,
    phases=(DesignPhase, FinalizationPhase),
    configure=configure,
    initialize=initialize,
    branch_prefix="design/",
    state_phases={
        ACTIVE: "design",
        FINALIZING: "finalization",
    },
)
