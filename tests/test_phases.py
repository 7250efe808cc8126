"""Tests for phase operations and the typed metadata accessors."""

import pytest

from phase_orchestrator.core.phases import (
    NO_EVENT,
    NotSupportedError,
    OperationResult,
    PhaseValidationError,
    next_task_id,
)
from phase_orchestrator.db.models import (
    ApprovalState,
    Metadata,
    MetadataTypeError,
    Project,
    Task,
)
from phase_orchestrator.projects import design, exploration, standard


def _standard(state: str = standard.IMPLEMENTATION_EXECUTING) -> Project:
    project = Project(name="demo", type="standard", branch="feat/demo", state=state)
    standard.initialize(project)
    return project


class TestTasks:
    def test_ids_are_gap_numbered(self):
        ops = standard.ImplementationPhase(_standard())
        first = ops.add_task("Write parser")
        second = ops.add_task("Write tests", dependencies=[first.id])
        assert (first.id, second.id) == ("010", "020")
        assert second.dependencies == ["010"]
        assert first.status == "pending"

    def test_next_id_after_manual_insertion(self):
        tasks = [Task(id="010", name="a"), Task(id="015", name="b")]
        assert next_task_id(tasks) == "025"
        assert next_task_id([]) == "010"

    def test_unknown_dependency_rejected(self):
        ops = standard.ImplementationPhase(_standard())
        with pytest.raises(PhaseValidationError, match="dependency not found in implementation: 999"):
            ops.add_task("Orphan", dependencies=["999"])
        assert ops.data.tasks == []

    def test_empty_name_rejected(self):
        ops = standard.ImplementationPhase(_standard())
        with pytest.raises(PhaseValidationError, match="must not be empty"):
            ops.add_task("   ")

    def test_invalid_status_rejected(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Write parser")
        with pytest.raises(PhaseValidationError, match="invalid task status 'done'"):
            ops.update_task(task.id, status="done")
        assert task.status == "pending"

    def test_update_merges_metadata(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Write parser", metadata={"size": "small"})
        ops.update_task(task.id, status="in_progress", metadata={"owner": "sam"})
        assert task.status == "in_progress"
        assert task.metadata == {"size": "small", "owner": "sam"}

    def test_unknown_task(self):
        ops = standard.ImplementationPhase(_standard())
        with pytest.raises(PhaseValidationError, match="task not found in implementation: 010"):
            ops.update_task("010", status="completed")

    def test_self_dependency_accepted_on_update(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Loop")
        ops.update_task(task.id, dependencies=[task.id])
        assert task.dependencies == ["010"]

    def test_phase_without_tasks(self):
        ops = standard.FinalizePhase(_standard(standard.FINALIZE_DOCUMENTATION))
        with pytest.raises(NotSupportedError):
            ops.add_task("Nope")


class TestComplete:
    def test_one_unresolved_task_blocks_completion(self):
        ops = standard.ImplementationPhase(_standard())
        ops.start()
        first = ops.add_task("Write parser")
        ops.add_task("Write tests")
        ops.update_task(first.id, status="completed")

        with pytest.raises(PhaseValidationError, match=r"1 unresolved task \(020\)"):
            ops.complete()

    def test_abandoned_counts_as_resolved(self):
        ops = standard.ImplementationPhase(_standard())
        ops.start()
        first = ops.add_task("Write parser")
        second = ops.add_task("Write tests")
        ops.update_task(first.id, status="completed")
        ops.update_task(second.id, status="abandoned")
        assert ops.complete() == OperationResult(standard.ALL_TASKS_COMPLETE)

    def test_all_abandoned_is_not_enough(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Write parser")
        ops.update_task(task.id, status="abandoned")
        with pytest.raises(PhaseValidationError, match="at least one task must be completed"):
            ops.complete()

    def test_completed_phase_cannot_complete_again(self):
        ops = standard.ImplementationPhase(_standard())
        ops.finish()
        with pytest.raises(PhaseValidationError, match="already completed"):
            ops.complete()

    def test_completion_returns_event_without_transitioning(self):
        project = _standard(standard.PLANNING_ACTIVE)
        ops = standard.PlanningPhase(project)
        ops.start()
        ops.add_artifact("plan.md", type="task_list")
        ops.approve_artifact("plan.md")
        assert ops.complete().event == standard.COMPLETE_PLANNING
        assert project.state == standard.PLANNING_ACTIVE

    def test_unsupported_operations(self):
        ops = standard.PlanningPhase(_standard(standard.PLANNING_ACTIVE))
        with pytest.raises(NotSupportedError):
            ops.advance()
        with pytest.raises(NotSupportedError):
            ops.skip()


class TestArtifacts:
    def test_approval_states(self):
        ops = standard.PlanningPhase(_standard(standard.PLANNING_ACTIVE))
        output = ops.add_artifact("plan.md", type="task_list")
        source = ops.add_artifact("notes.md", type="notes", output=False)
        assert output.approval is ApprovalState.PENDING
        assert source.approval is ApprovalState.NOT_REQUIRED

        assert ops.approve_artifact("plan.md") is NO_EVENT
        assert output.approved

    def test_inputs_cannot_be_approved(self):
        ops = standard.PlanningPhase(_standard(standard.PLANNING_ACTIVE))
        ops.add_artifact("notes.md", type="notes", output=False)
        with pytest.raises(PhaseValidationError, match="output artifact not found"):
            ops.approve_artifact("notes.md")

    def test_type_must_be_allowed(self):
        ops = standard.PlanningPhase(_standard(standard.PLANNING_ACTIVE))
        with pytest.raises(PhaseValidationError, match="does not accept output type 'review'"):
            ops.add_artifact("review.md", type="review")

    def test_duplicate_path_rejected(self):
        ops = standard.PlanningPhase(_standard(standard.PLANNING_ACTIVE))
        ops.add_artifact("plan.md", type="task_list")
        with pytest.raises(PhaseValidationError, match="already exists"):
            ops.add_artifact("plan.md", type="task_list")

    def test_review_needs_assessment(self):
        ops = standard.ReviewPhase(_standard(standard.REVIEW_ACTIVE))
        with pytest.raises(PhaseValidationError, match="assessment"):
            ops.add_artifact("review.md", type="review")
        ops.add_artifact("review.md", type="review", metadata={"assessment": "fail"})
        ops.approve_artifact("review.md")
        assert ops.complete().event == standard.REVIEW_FAIL


class TestReviewAssessment:
    def test_set_assessment_updates_latest_review(self):
        ops = standard.ReviewPhase(_standard(standard.REVIEW_ACTIVE))
        ops.add_artifact("review-1.md", type="review", metadata={"assessment": "fail"})
        ops.add_artifact("review-2.md", type="review", metadata={"assessment": "fail"})

        assert ops.set("assessment", "pass") is NO_EVENT

        assert ops.data.outputs[0].metadata["assessment"] == "fail"
        assert ops.data.outputs[1].metadata["assessment"] == "pass"
        assert "assessment" not in ops.data.metadata
        ops.approve_artifact("review-2.md")
        assert ops.complete().event == standard.REVIEW_PASS

    def test_set_assessment_without_review(self):
        ops = standard.ReviewPhase(_standard(standard.REVIEW_ACTIVE))
        with pytest.raises(PhaseValidationError, match="no review output"):
            ops.set("assessment", "pass")

    def test_set_assessment_rejects_other_values(self):
        ops = standard.ReviewPhase(_standard(standard.REVIEW_ACTIVE))
        ops.add_artifact("review.md", type="review", metadata={"assessment": "fail"})
        with pytest.raises(PhaseValidationError, match="'pass' or 'fail'"):
            ops.set("assessment", "maybe")
        assert ops.data.outputs[0].metadata["assessment"] == "fail"

    def test_other_fields_go_to_phase_metadata(self):
        ops = standard.ReviewPhase(_standard(standard.REVIEW_ACTIVE))
        ops.set("reviewer", "alice")
        assert ops.data.metadata["reviewer"] == "alice"

    def test_tasks_approved_must_be_bool(self):
        ops = standard.ImplementationPhase(_standard(standard.IMPLEMENTATION_PLANNING))
        with pytest.raises(PhaseValidationError, match="tasks_approved must be true or false"):
            ops.set("tasks_approved", "soon")
        assert "tasks_approved" not in ops.data.metadata


class TestFeedback:
    def test_ids_count_up_per_task(self):
        ops = standard.ImplementationPhase(_standard())
        ops.add_task("Sign tokens")
        other = ops.add_task("Verify tokens")

        first = ops.add_feedback("010", "Use RS256 not HS256")
        second = ops.add_feedback("010", "Rotate keys")
        assert (first.id, second.id) == ("001", "002")
        assert first.status == "pending"
        assert ops.add_feedback("020", "Check expiry").id == "001"
        assert other.iteration == 1

    def test_increment_iteration(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Sign tokens")
        ops.add_feedback("010", "Use RS256", increment_iteration=True)
        assert task.iteration == 2
        assert ops.increment_iteration("010").iteration == 3

    def test_mark_addressed(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Sign tokens")
        ops.add_feedback("010", "Use RS256")
        ops.add_feedback("010", "Rotate keys")

        assert ops.mark_feedback_addressed("010", "001").status == "addressed"
        assert [f.id for f in task.pending_feedback()] == ["002"]
        with pytest.raises(PhaseValidationError, match="feedback 001 is already addressed"):
            ops.mark_feedback_addressed("010", "001")
        with pytest.raises(PhaseValidationError, match="feedback 009 not found on task 010"):
            ops.mark_feedback_addressed("010", "009")

    def test_empty_message_rejected(self):
        ops = standard.ImplementationPhase(_standard())
        task = ops.add_task("Sign tokens")
        with pytest.raises(PhaseValidationError, match="must not be empty"):
            ops.add_feedback("010", "  ", increment_iteration=True)
        assert task.feedback == []
        assert task.iteration == 1

    def test_unknown_task(self):
        ops = standard.ImplementationPhase(_standard())
        with pytest.raises(PhaseValidationError, match="task not found in implementation: 010"):
            ops.add_feedback("010", "Anything")


class TestDesignPhase:
    def _ops(self) -> design.DesignPhase:
        project = Project(name="docs", type="design", branch="design/docs", state=design.ACTIVE)
        design.initialize(project)
        return design.DesignPhase(project)

    def test_outputs_need_planned_tasks(self):
        ops = self._ops()
        with pytest.raises(PhaseValidationError, match="plan documents as tasks"):
            ops.add_artifact("docs/api.md", type="design")

        ops.add_task("API design")
        artifact = ops.add_artifact("docs/api.md", type="design")
        assert artifact.approval is ApprovalState.PENDING

    def test_no_tasks_checked_before_type(self):
        ops = self._ops()
        with pytest.raises(PhaseValidationError, match="plan documents as tasks"):
            ops.add_artifact("docs/api.md", type="unknown")

    def test_completing_task_approves_linked_document(self):
        ops = self._ops()
        task = ops.add_task("API design")
        artifact = ops.add_artifact("docs/api.md", type="design")

        with pytest.raises(PhaseValidationError, match="needs metadata artifact_path"):
            ops.update_task(task.id, status="completed")
        with pytest.raises(PhaseValidationError, match="not a design output"):
            ops.update_task(task.id, status="completed", metadata={"artifact_path": "docs/other.md"})

        ops.update_task(task.id, status="completed", metadata={"artifact_path": "docs/api.md"})
        assert artifact.approved
        assert ops.complete().event == design.COMPLETE_DESIGN


class TestExplorationPhase:
    def test_summarizing_blocks_new_tasks(self):
        project = Project(name="research", type="exploration", branch="explore/research",
                          state=exploration.ACTIVE)
        exploration.initialize(project)
        ops = exploration.ExplorationPhase(project)
        task = ops.add_task("Survey libraries")

        with pytest.raises(PhaseValidationError, match=r"1 unresolved task \(010\)"):
            ops.advance()
        ops.update_task(task.id, status="abandoned")
        assert ops.advance().event == exploration.BEGIN_SUMMARIZING

        ops.data.status = "summarizing"
        with pytest.raises(PhaseValidationError, match="while summarizing"):
            ops.add_task("One more")

    def test_summary_reason_counts(self):
        project = Project(name="research", type="exploration", branch="explore/research",
                          state=exploration.SUMMARIZING)
        exploration.initialize(project)
        ops = exploration.ExplorationPhase(project)
        ops.data.status = "summarizing"
        ops.add_artifact("a.md", type="summary")
        with pytest.raises(PhaseValidationError, match="1 summary awaiting approval"):
            ops.complete()
        ops.add_artifact("b.md", type="summary")
        with pytest.raises(PhaseValidationError, match="2 summaries awaiting approval"):
            ops.complete()


class TestMetadata:
    def test_typed_accessors(self):
        meta = Metadata({"count": 3, "flag": True, "name": "x", "tags": ["a", "b"]})
        assert meta.get_int("count") == 3
        assert meta.get_bool("flag") is True
        assert meta.get_str("name") == "x"
        assert meta.get_str_list("tags") == ["a", "b"]

    def test_absent_keys_return_defaults(self):
        meta = Metadata()
        assert meta.get_int("count") is None
        assert meta.get_int("count", 1) == 1
        assert meta.get_bool("flag") is False
        assert meta.get_list("tags") == []

    def test_mismatched_type_raises(self):
        meta = Metadata({"count": "3", "flag": "yes", "tags": ["a", 1]})
        with pytest.raises(MetadataTypeError, match="'count' is str, expected int"):
            meta.get_int("count")
        with pytest.raises(MetadataTypeError):
            meta.get_bool("flag")
        with pytest.raises(MetadataTypeError, match="contains int"):
            meta.get_str_list("tags")

    def test_bool_is_not_an_int(self):
        with pytest.raises(MetadataTypeError, match="is a bool"):
            Metadata({"count": True}).get_int("count")
