"""Standard project type: plan, implement, review, finalize."""

from phase_orchestrator.core.builder import MachineBuilder
from phase_orchestrator.core.machine import Guard
from phase_orchestrator.core.phases import (
    NO_EVENT,
    OperationResult,
    PhaseOperations,
    PhaseValidationError,
    all_resolved,
    unresolved_summary,
)
from phase_orchestrator.core.workflow import ProjectType, new_phase
from phase_orchestrator.db.models import Artifact, Project

# States
NO_PROJECT = "NoProject"
PLANNING_ACTIVE = "PlanningActive"
IMPLEMENTATION_PLANNING = "ImplementationPlanning"
IMPLEMENTATION_EXECUTING = "ImplementationExecuting"
REVIEW_ACTIVE = "ReviewActive"
FINALIZE_DOCUMENTATION = "FinalizeDocumentation"
FINALIZE_CHECKS = "FinalizeChecks"
FINALIZE_DELETE = "FinalizeDelete"
COMPLETED = "Completed"

# Events
PROJECT_INIT = "project_init"
COMPLETE_PLANNING = "complete_planning"
TASKS_APPROVED = "tasks_approved"
ALL_TASKS_COMPLETE = "all_tasks_complete"
REVIEW_PASS = "review_pass"
REVIEW_FAIL = "review_fail"
DOCUMENTATION_DONE = "documentation_done"
CHECKS_DONE = "checks_done"
PROJECT_DELETE = "project_delete"

ASSESSMENTS = {"pass": REVIEW_PASS, "fail": REVIEW_FAIL}


# ── Guards ────────────────────────────────────────────────────────────────────


def task_list_approved(p: Project) -> bool:
    return any(a.approved for a in p.phase("planning").outputs_of_type("task_list"))


def tasks_approved(p: Project) -> bool:
    phase = p.phase("implementation")
    return phase.metadata.get_bool("tasks_approved") and len(phase.tasks) > 0


def _tasks_approved_reason(p: Project) -> str:
    phase = p.phase("implementation")
    if not phase.tasks:
        return "no implementation tasks planned"
    return "tasks_approved is not set"


def all_tasks_complete(p: Project) -> bool:
    return all_resolved(p.phase("implementation"))


def latest_review(p: Project) -> Artifact | None:
    reviews = p.phase("review").outputs_of_type("review")
    return reviews[-1] if reviews else None


def latest_review_approved(p: Project) -> bool:
    review = latest_review(p)
    return review is not None and review.approved


def project_deleted(p: Project) -> bool:
    return p.phase("finalize").metadata.get_bool("project_deleted")


# ── Entry actions ─────────────────────────────────────────────────────────────


def _start_planning(p: Project) -> None:
    PlanningPhase(p).start()


def _finish_planning(p: Project) -> None:
    PlanningPhase(p).finish()


def _start_implementation(p: Project) -> None:
    ImplementationPhase(p).start()


def _finish_implementation(p: Project) -> None:
    ImplementationPhase(p).finish()


def _start_review(p: Project) -> None:
    ReviewPhase(p).start()


def _pass_review(p: Project) -> None:
    ReviewPhase(p).finish()


def _rework(p: Project) -> None:
    """Send the project back to planning for another iteration."""
    review = p.phase("review")
    review.status = "in_progress"
    implementation = p.phase("implementation")
    implementation.status = "in_progress"
    implementation.completed_at = None
    implementation.metadata["tasks_approved"] = False
    implementation.metadata["iteration"] = implementation.metadata.get_int("iteration", 1) + 1


def _start_finalize(p: Project) -> None:
    FinalizePhase(p).start()


# ── Phases ────────────────────────────────────────────────────────────────────


class PlanningPhase(PhaseOperations):
    name = "planning"
    output_types = ("task_list", "notes")
    input_types = ("reference", "notes", "issue")

    def complete(self) -> OperationResult:
        self.ensure_open()
        if not task_list_approved(self.project):
            raise PhaseValidationError("cannot complete planning: no approved task_list output")
        return OperationResult(COMPLETE_PLANNING)


class ImplementationPhase(PhaseOperations):
    name = "implementation"

    def advance(self) -> OperationResult:
        self.ensure_open()
        if not self.data.tasks:
            raise PhaseValidationError("cannot approve tasks: no implementation tasks planned")
        self.data.metadata["tasks_approved"] = True
        return OperationResult(TASKS_APPROVED)

    def validate_field(self, field, value) -> None:
        if field == "tasks_approved" and not isinstance(value, bool):
            raise PhaseValidationError("tasks_approved must be true or false")

    def on_field_set(self, field, value) -> OperationResult:
        if field == "tasks_approved" and value is True:
            return OperationResult(TASKS_APPROVED)
        return NO_EVENT

    def complete(self) -> OperationResult:
        self.ensure_open()
        self.resolved_or_raise()
        return OperationResult(ALL_TASKS_COMPLETE)


class ReviewPhase(PhaseOperations):
    name = "review"
    output_types = ("review",)
    input_types = ("reference",)

    def set(self, field, value) -> OperationResult:
        """``assessment`` is written to the latest review, not the phase."""
        if field != "assessment":
            return super().set(field, value)
        self.ensure_open()
        if value not in ASSESSMENTS:
            raise PhaseValidationError("assessment must be 'pass' or 'fail'")
        review = latest_review(self.project)
        if review is None:
            raise PhaseValidationError("cannot set assessment: no review output")
        review.metadata["assessment"] = value
        return NO_EVENT

    def add_artifact(self, path, type="", description="", output=True, metadata=None):
        if output and type == "review":
            assessment = (metadata or {}).get("assessment")
            if assessment not in ASSESSMENTS:
                raise PhaseValidationError(
                    "review outputs need an assessment of 'pass' or 'fail'"
                )
        return super().add_artifact(path, type, description, output, metadata)

    def complete(self) -> OperationResult:
        self.ensure_open()
        review = latest_review(self.project)
        if review is None:
            raise PhaseValidationError("cannot complete review: no review output")
        if not review.approved:
            raise PhaseValidationError(f"cannot complete review: {review.path} is not approved")
        assessment = review.metadata.get_str("assessment")
        return OperationResult(ASSESSMENTS[assessment])


class FinalizePhase(PhaseOperations):
    name = "finalize"
    output_types = ("documentation", "notes")
    has_tasks = False

    def advance(self) -> OperationResult:
        self.ensure_open()
        state = self.project.state
        if state == FINALIZE_DOCUMENTATION:
            self.data.metadata["documentation_updated"] = True
            return OperationResult(DOCUMENTATION_DONE)
        if state == FINALIZE_CHECKS:
            self.data.metadata["checks_passed"] = True
            return OperationResult(CHECKS_DONE)
        raise PhaseValidationError(f"nothing to advance in {state}; run 'po complete'")

    def complete(self) -> OperationResult:
        self.ensure_open()
        if self.project.state != FINALIZE_DELETE:
            raise PhaseValidationError(
                f"finalize cannot complete from {self.project.state}; run 'po advance'"
            )
        self.data.metadata["project_deleted"] = True
        self.finish()
        return OperationResult(PROJECT_DELETE)


# ── Configuration ─────────────────────────────────────────────────────────────


def configure(builder: MachineBuilder) -> MachineBuilder:
    return (
        builder
        .add_transition(NO_PROJECT, PLANNING_ACTIVE, PROJECT_INIT, on_entry=_start_planning)
        .add_transition(
            PLANNING_ACTIVE, IMPLEMENTATION_PLANNING, COMPLETE_PLANNING,
            guard=Guard("task list approved", task_list_approved),
            on_exit=_finish_planning,
            on_entry=_start_implementation,
        )
        .add_transition(
            IMPLEMENTATION_PLANNING, IMPLEMENTATION_EXECUTING, TASKS_APPROVED,
            guard=Guard("tasks approved", tasks_approved, _tasks_approved_reason),
        )
        .add_transition(
            IMPLEMENTATION_EXECUTING, REVIEW_ACTIVE, ALL_TASKS_COMPLETE,
            guard=Guard(
                "all tasks complete", all_tasks_complete,
                lambda p: unresolved_summary(p.phase("implementation")),
            ),
            on_exit=_finish_implementation,
            on_entry=_start_review,
        )
        .add_transition(
            REVIEW_ACTIVE, FINALIZE_DOCUMENTATION, REVIEW_PASS,
            guard=Guard("latest review approved", latest_review_approved),
            on_exit=_pass_review,
            on_entry=_start_finalize,
        )
        .add_transition(
            REVIEW_ACTIVE, IMPLEMENTATION_PLANNING, REVIEW_FAIL,
            guard=Guard("latest review approved", latest_review_approved),
            on_entry=_rework,
        )
        .add_transition(FINALIZE_DOCUMENTATION, FINALIZE_CHECKS, DOCUMENTATION_DONE)
        .add_transition(FINALIZE_CHECKS, FINALIZE_DELETE, CHECKS_DONE)
        .add_transition(
            FINALIZE_DELETE, COMPLETED, PROJECT_DELETE,
            guard=Guard("project deleted", project_deleted),
        )
    )


def initialize(project: Project) -> None:
    for name in ("planning", "implementation", "review", "finalize"):
        project.phases[name] = new_phase(name)


STANDARD = ProjectType(
    name="standard",
    initial_state=NO_PROJECT,
    phases=(PlanningPhase, ImplementationPhase, ReviewPhase, FinalizePhase),
    configure=configure,
    initialize=initialize,
    init_event=PROJECT_INIT,
    cleanup_on_terminal=True,
    state_phases={
        PLANNING_ACTIVE: "planning",
        IMPLEMENTATION_PLANNING: "implementation",
        IMPLEMENTATION_EXECUTING: "implementation",
        REVIEW_ACTIVE: "review",
        FINALIZE_DOCUMENTATION: "finalize",
        FINALIZE_CHECKS: "finalize",
        FINALIZE_DELETE: "finalize",
    },
)
