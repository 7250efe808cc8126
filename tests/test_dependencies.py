"""Tests for dependency validation and ordering."""

import pytest

from phase_orchestrator.core import dependencies
from phase_orchestrator.core.dependencies import (
    CycleError,
    DuplicateTaskError,
    MissingDependencyError,
)
from phase_orchestrator.core.phases import PhaseValidationError
from phase_orchestrator.db.models import Task


def _task(task_id: str, deps=(), status: str = "completed") -> Task:
    return Task(id=task_id, name=f"Task {task_id}", status=status, dependencies=list(deps))


class TestOrder:
    def test_chain(self):
        tasks = [_task("001"), _task("002", ["001"]), _task("003", ["002"])]
        assert dependencies.resolve(tasks) == ["001", "002", "003"]

    def test_dependency_declared_later(self):
        tasks = [_task("003", ["002"]), _task("002", ["001"]), _task("001")]
        assert dependencies.resolve(tasks) == ["001", "002", "003"]

    def test_independent_tasks_keep_insertion_order(self):
        tasks = [_task("020"), _task("010"), _task("030")]
        assert dependencies.resolve(tasks) == ["020", "010", "030"]
        # same input, same answer
        assert dependencies.resolve(tasks) == ["020", "010", "030"]

    def test_diamond(self):
        tasks = [
            _task("010"),
            _task("020", ["010"]),
            _task("030", ["010"]),
            _task("040", ["030", "020"]),
        ]
        order = dependencies.resolve(tasks)
        assert order == ["010", "020", "030", "040"]
        for task in tasks:
            for dep in task.dependencies:
                assert order.index(dep) < order.index(task.id)

    def test_empty(self):
        assert dependencies.resolve([]) == []

    def test_only_completed_tasks_are_ordered(self):
        tasks = [_task("010"), _task("020", status="abandoned"), _task("030", ["010"])]
        assert dependencies.resolve(tasks) == ["010", "030"]

    def test_all_statuses(self):
        tasks = [_task("010", status="pending"), _task("020", ["010"], status="in_progress")]
        assert dependencies.resolve(tasks, status=None) == ["010", "020"]


class TestValidation:
    def test_two_node_cycle(self):
        tasks = [_task("001", ["002"]), _task("002", ["001"])]
        with pytest.raises(CycleError, match="dependency cycle"):
            dependencies.resolve(tasks)

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CycleError) as exc:
            dependencies.resolve([_task("010", ["010"])])
        assert exc.value.cycle == ["010", "010"]

    def test_longer_cycle_reports_path(self):
        tasks = [_task("010", ["030"]), _task("020", ["010"]), _task("030", ["020"])]
        with pytest.raises(CycleError) as exc:
            dependencies.resolve(tasks)
        assert exc.value.cycle[0] == exc.value.cycle[-1]
        assert set(exc.value.cycle) == {"010", "020", "030"}

    def test_missing_reference_names_both_tasks(self):
        tasks = [_task("010", ["099"])]
        with pytest.raises(MissingDependencyError, match="task 010 depends on 099"):
            dependencies.resolve(tasks)

    def test_dependency_on_unfinished_task_is_invalid(self):
        tasks = [_task("010", status="pending"), _task("020", ["010"])]
        with pytest.raises(MissingDependencyError):
            dependencies.resolve(tasks)

    def test_errors_are_validation_errors(self):
        with pytest.raises(PhaseValidationError):
            dependencies.resolve([_task("010", ["010"])])

    def test_is_valid(self):
        assert dependencies.is_valid({"010": [], "020": ["010"]})
        assert not dependencies.is_valid({"010": ["020"], "020": ["010"]})
        assert not dependencies.is_valid({"010": ["missing"]})

    def test_duplicate_ids_rejected(self):
        tasks = [_task("010"), _task("020"), _task("010", status="pending")]
        with pytest.raises(DuplicateTaskError, match="duplicate task id: 010"):
            dependencies.resolve(tasks)

    def test_long_chain(self):
        tasks = [_task(f"{i:05d}", [f"{i - 1:05d}"] if i else []) for i in range(5000)]
        # declared last-first, so the search descends the whole chain
        assert dependencies.is_valid(dependencies.build_graph(reversed(tasks)))
        ordered = dependencies.resolve(tasks)
        assert ordered[:3] == ["00000", "00001", "00002"]
        assert ordered[-1] == "04999"

    def test_long_cycle(self):
        tasks = [_task(f"{i:05d}", [f"{(i + 1) % 3000:05d}"]) for i in range(3000)]
        with pytest.raises(CycleError) as exc:
            dependencies.resolve(tasks)
        assert len(exc.value.cycle) == 3001
