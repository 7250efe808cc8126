"""Breakdown project type: decompose work into units and publish them as issues."""

from phase_orchestrator.core import dependencies
from phase_orchestrator.core.builder import MachineBuilder
from phase_orchestrator.core.dependencies import DependencyError
from phase_orchestrator.core.machine import Guard
from phase_orchestrator.core.phases import (
    NO_EVENT,
    OperationResult,
    PhaseOperations,
    PhaseValidationError,
    all_resolved,
    plural,
    unresolved_summary,
)
from phase_orchestrator.core.workflow import ProjectType, new_phase
from phase_orchestrator.db.models import Project

DISCOVERY = "Discovery"
ACTIVE = "Active"
PUBLISHING = "Publishing"
COMPLETED = "Completed"

SKIP_DISCOVERY = "skip_discovery"
BEGIN_DECOMPOSITION = "begin_decomposition"
BEGIN_PUBLISHING = "begin_publishing"
COMPLETE_BREAKDOWN = "complete_breakdown"


# ── Guards ────────────────────────────────────────────────────────────────────


def has_approved_discovery_document(p: Project) -> bool:
    return any(a.approved for a in p.phase("discovery").outputs_of_type("discovery"))


def all_work_units_approved(p: Project) -> bool:
    return all_resolved(p.phase("breakdown"))


def dependencies_valid(p: Project) -> bool:
    return dependencies.is_valid(dependencies.build_graph(p.phase("breakdown").tasks))


def ready_to_publish(p: Project) -> bool:
    return all_work_units_approved(p) and dependencies_valid(p)


def _publish_reason(p: Project) -> str:
    phase = p.phase("breakdown")
    if not phase.tasks:
        return "no work units"
    if phase.unresolved_tasks():
        return unresolved_summary(phase)
    if not all_work_units_approved(p):
        return "no work unit completed"
    try:
        dependencies.validate(dependencies.build_graph(phase.tasks))
    except DependencyError as e:
        return str(e)
    return "unknown"


def unpublished_units(p: Project) -> list[str]:
    return [
        t.id for t in p.phase("breakdown").tasks
        if t.status == "completed" and not t.metadata.get_bool("published")
    ]


def all_work_units_published(p: Project) -> bool:
    return not unpublished_units(p)


def _published_reason(p: Project) -> str:
    remaining = unpublished_units(p)
    return f"{plural(len(remaining), 'work unit')} unpublished ({', '.join(remaining)})"


# ── Entry actions ─────────────────────────────────────────────────────────────


def _start_breakdown(p: Project) -> None:
    BreakdownPhase(p).start()


def _finish_discovery(p: Project) -> None:
    phase = p.phase("discovery")
    if phase.status != "skipped":
        DiscoveryPhase(p).finish()


def _begin_publishing(p: Project) -> None:
    p.phase("breakdown").status = "publishing"


def _finish_breakdown(p: Project) -> None:
    BreakdownPhase(p).finish()


# ── Phases ────────────────────────────────────────────────────────────────────


class DiscoveryPhase(PhaseOperations):
    name = "discovery"
    statuses = ("pending", "in_progress", "completed", "skipped")
    output_types = ("discovery",)
    input_types = ("reference", "design", "notes")
    has_tasks = False
    optional = True

    def _require_undecided(self) -> None:
        if self.project.state != DISCOVERY:
            raise PhaseValidationError("discovery can only change before decomposition starts")

    def enable(self) -> OperationResult:
        self._require_undecided()
        if self.data.enabled:
            raise PhaseValidationError("discovery is already enabled")
        self.start()
        return NO_EVENT

    def skip(self) -> OperationResult:
        self._require_undecided()
        self.ensure_open()
        self.data.status = "skipped"
        return OperationResult(SKIP_DISCOVERY)

    def check_can_add_output(self) -> None:
        if not self.data.enabled:
            raise PhaseValidationError("enable discovery before adding discovery outputs")

    def complete(self) -> OperationResult:
        self._require_undecided()
        self.ensure_open()
        if not self.data.enabled:
            raise PhaseValidationError("discovery is not enabled; enable or skip it first")
        if not has_approved_discovery_document(self.project):
            raise PhaseValidationError("cannot complete discovery: no approved discovery output")
        return OperationResult(BEGIN_DECOMPOSITION)


class BreakdownPhase(PhaseOperations):
    name = "breakdown"
    statuses = ("pending", "in_progress", "publishing", "completed")
    output_types = ("work_unit",)
    input_types = ("reference", "design", "discovery")

    def check_can_add_task(self) -> None:
        if self.data.status != "in_progress":
            raise PhaseValidationError(f"cannot add work units while breakdown is {self.data.status}")

    def _publish_event(self) -> OperationResult:
        if self.data.status != "in_progress":
            raise PhaseValidationError(f"breakdown is already {self.data.status}")
        if not all_work_units_approved(self.project):
            raise PhaseValidationError(f"cannot publish: {_publish_reason(self.project)}")
        # raises the specific cycle or missing-reference error
        dependencies.resolve(self.data.tasks)
        return OperationResult(BEGIN_PUBLISHING)

    def advance(self) -> OperationResult:
        return self._publish_event()

    def on_field_set(self, field, value) -> OperationResult:
        if field == "decomposition_complete" and value is True:
            return self._publish_event()
        return NO_EVENT

    def complete(self) -> OperationResult:
        self.ensure_open()
        if self.data.status != "publishing":
            raise PhaseValidationError("breakdown must be publishing before it completes")
        if not all_work_units_published(self.project):
            raise PhaseValidationError(f"cannot complete breakdown: {_published_reason(self.project)}")
        return OperationResult(COMPLETE_BREAKDOWN)


# ── Configuration ─────────────────────────────────────────────────────────────


def configure(builder: MachineBuilder) -> MachineBuilder:
    return (
        builder
        .add_transition(
            DISCOVERY, ACTIVE, SKIP_DISCOVERY,
            on_entry=_start_breakdown,
        )
        .add_transition(
            DISCOVERY, ACTIVE, BEGIN_DECOMPOSITION,
            guard=Guard("approved discovery document", has_approved_discovery_document),
            on_exit=_finish_discovery,
            on_entry=_start_breakdown,
        )
        .add_transition(
            ACTIVE, PUBLISHING, BEGIN_PUBLISHING,
            guard=Guard(
                "all work units approved and dependencies valid", ready_to_publish,
                _publish_reason,
            ),
            on_entry=_begin_publishing,
        )
        .add_transition(
            PUBLISHING, COMPLETED, COMPLETE_BREAKDOWN,
            guard=Guard("all work units published", all_work_units_published, _published_reason),
            on_entry=_finish_breakdown,
        )
    )


def initialize(project: Project) -> None:
    project.phases["discovery"] = new_phase("discovery")
    project.phases["breakdown"] = new_phase("breakdown")


BREAKDOWN = ProjectType(
    name="breakdown",
    initial_state=DISCOVERY,
    phases=(DiscoveryPhase, BreakdownPhase),
    configure=configure,
    initialize=initialize,
    branch_prefix="breakdown/",
    state_phases={
        DISCOVERY: "discovery",
        ACTIVE: "breakdown",
        PUBLISHING: "breakdown",
    },
)
