"""Exploration project type: research a topic and summarize the findings."""

from phase_orchestrator.core.builder import MachineBuilder
from phase_orchestrator.core.machine import Guard
from phase_orchestrator.core.phases import (
    OperationResult,
    PhaseOperations,
    PhaseValidationError,
    plural,
    unresolved_summary,
)
from phase_orchestrator.core.workflow import ProjectType, new_phase
from phase_orchestrator.db.models import Project

ACTIVE = "Active"
SUMMARIZING = "Summarizing"
FINALIZING = "Finalizing"
COMPLETED = "Completed"

BEGIN_SUMMARIZING = "begin_summarizing"
COMPLETE_SUMMARIZING = "complete_summarizing"
COMPLETE_FINALIZATION = "complete_finalization"


def count_unresolved_tasks(p: Project) -> int:
    return len(p.phase("exploration").unresolved_tasks())


def count_unapproved_summaries(p: Project) -> int:
    return sum(1 for a in p.phase("exploration").outputs_of_type("summary") if not a.approved)


def all_tasks_resolved(p: Project) -> bool:
    phase = p.phase("exploration")
    return bool(phase.tasks) and count_unresolved_tasks(p) == 0


def all_summaries_approved(p: Project) -> bool:
    summaries = p.phase("exploration").outputs_of_type("summary")
    return bool(summaries) and count_unapproved_summaries(p) == 0


def _summaries_reason(p: Project) -> str:
    if not p.phase("exploration").outputs_of_type("summary"):
        return "no summary outputs"
    count = count_unapproved_summaries(p)
    noun = "summary" if count == 1 else "summaries"
    return f"{count} {noun} awaiting approval"


def all_finalization_tasks_complete(p: Project) -> bool:
    """Abandoned finalization tasks do not count as done."""
    tasks = p.phase("finalization").tasks
    return bool(tasks) and all(t.status == "completed" for t in tasks)


def _finalization_reason(p: Project) -> str:
    tasks = p.phase("finalization").tasks
    if not tasks:
        return "no finalization tasks"
    remaining = [t.id for t in tasks if t.status != "completed"]
    return f"{plural(len(remaining), 'task')} not completed ({', '.join(remaining)})"


def _begin_summarizing(p: Project) -> None:
    p.phase("exploration").status = "summarizing"


def _finish_exploration(p: Project) -> None:
    ExplorationPhase(p).finish()


def _start_finalization(p: Project) -> None:
    FinalizationPhase(p).start()


def _finish_finalization(p: Project) -> None:
    FinalizationPhase(p).finish()


class ExplorationPhase(PhaseOperations):
    name = "exploration"
    statuses = ("active", "summarizing", "completed")
    output_types = ("summary", "findings")
    input_types = ("reference", "notes")

    def check_can_add_task(self) -> None:
        if self.data.status == "summarizing":
            raise PhaseValidationError("cannot add tasks while summarizing")

    def advance(self) -> OperationResult:
        self.ensure_open()
        if self.data.status != "active":
            raise PhaseValidationError(f"exploration is already {self.data.status}")
        if not self.data.tasks:
            raise PhaseValidationError("cannot begin summarizing: no research tasks")
        if self.data.unresolved_tasks():
            raise PhaseValidationError(
                f"cannot begin summarizing: {unresolved_summary(self.data)}"
            )
        return OperationResult(BEGIN_SUMMARIZING)

    def complete(self) -> OperationResult:
        self.ensure_open()
        if self.data.status != "summarizing":
            raise PhaseValidationError("exploration must be summarizing before it completes")
        if not all_summaries_approved(self.project):
            raise PhaseValidationError(f"cannot complete exploration: {_summaries_reason(self.project)}")
        return OperationResult(COMPLETE_SUMMARIZING)


class FinalizationPhase(PhaseOperations):
    name = "finalization"
    output_types = ("pr", "notes")

    def check_can_add_task(self) -> None:
        if not self.data.enabled:
            raise PhaseValidationError("finalization has not started")

    def complete(self) -> OperationResult:
        self.ensure_open()
        if not self.data.enabled:
            raise PhaseValidationError("finalization has not started")
        if not all_finalization_tasks_complete(self.project):
            raise PhaseValidationError(
                f"cannot complete finalization: {_finalization_reason(self.project)}"
            )
        return OperationResult(COMPLETE_FINALIZATION)


def configure(builder: MachineBuilder) -> MachineBuilder:
    return (
        builder
        .add_transition(
            ACTIVE, SUMMARIZING, BEGIN_SUMMARIZING,
            guard=Guard(
                "all tasks resolved", all_tasks_resolved,
                lambda p: unresolved_summary(p.phase("exploration")),
            ),
            on_entry=_begin_summarizing,
        )
        .add_transition(
            SUMMARIZING, FINALIZING, COMPLETE_SUMMARIZING,
            guard=Guard("all summaries approved", all_summaries_approved, _summaries_reason),
            on_exit=_finish_exploration,
            on_entry=_start_finalization,
        )
        .add_transition(
            FINALIZING, COMPLETED, COMPLETE_FINALIZATION,
            guard=Guard(
                "all finalization tasks complete", all_finalization_tasks_complete,
                _finalization_reason,
            ),
            on_entry=_finish_finalization,
        )
    )


def initialize(project: Project) -> None:
    project.phases["exploration"] = new_phase("exploration", status="active", enabled=True)
    project.phases["finalization"] = new_phase("finalization")


EXPLORATION = ProjectType(
    name="exploration",
    initial_state=ACTIVE,
    phases=(ExplorationPhase, FinalizationPhase),
    configure=configure,
    initialize=initialize,
    branch_prefix="explore/",
    state_phases={
        ACTIVE: "exploration",
        SUMMARIZING: "exploration",
        FINALIZING: "finalization",
    },
)
