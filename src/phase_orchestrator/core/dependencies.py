"""Dependency validation and ordering for tasks."""

from collections.abc import Iterable

from phase_orchestrator.core.phases import PhaseValidationError
from phase_orchestrator.db.models import Task


class DependencyError(PhaseValidationError):
    """Base class for dependency graph errors."""


class MissingDependencyError(DependencyError):
    def __init__(self, task_id: str, dependency_id: str):
        self.task_id = task_id
        self.dependency_id = dependency_id
        super().__init__(
            f"task {task_id} depends on {dependency_id}, which is not an eligible task"
        )


class CycleError(DependencyError):
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"dependency cycle detected: {' -> '.join(cycle)}")


class DuplicateTaskError(DependencyError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"duplicate task id: {task_id}")


def build_graph(tasks: Iterable[Task], status: str | None = "completed") -> dict[str, list[str]]:
    """Adjacency map of task ID to dependency IDs, in insertion order.

    With ``status`` set, only tasks in that status are included. Task IDs
    must be unique across all tasks, included or not.
    """
    graph: dict[str, list[str]] = {}
    seen: set[str] = set()
    for t in tasks:
        if t.id in seen:
            raise DuplicateTaskError(t.id)
        seen.add(t.id)
        if status is None or t.status == status:
            graph[t.id] = list(t.dependencies)
    return graph


def validate(graph: dict[str, list[str]]) -> None:
    """Raise if any edge is dangling or the graph has a cycle."""
    for task_id, deps in graph.items():
        for dep in deps:
            if dep not in graph:
                raise MissingDependencyError(task_id, dep)

    visiting: set[str] = set()
    visited: set[str] = set()

    for root in graph:
        if root in visited:
            continue
        # path[i] is the node whose dependencies stack[i] iterates
        path = [root]
        stack = [iter(graph[root])]
        visiting.add(root)
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                node = path.pop()
                visiting.discard(node)
                visited.add(node)
                continue
            if dep in visiting:
                raise CycleError(path[path.index(dep):] + [dep])
            if dep not in visited:
                visiting.add(dep)
                path.append(dep)
                stack.append(iter(graph[dep]))


def order(graph: dict[str, list[str]]) -> list[str]:
    """Topological order; ties among eligible tasks keep insertion order."""
    validate(graph)

    ordered: list[str] = []
    done: set[str] = set()
    remaining = list(graph)
    while remaining:
        for task_id in remaining:
            if all(dep in done for dep in graph[task_id]):
                break
        else:  # pragma: no cover - validate() rules this out
            raise CycleError(remaining)
        remaining.remove(task_id)
        done.add(task_id)
        ordered.append(task_id)
    return ordered


def is_valid(graph: dict[str, list[str]]) -> bool:
    try:
        validate(graph)
    except DependencyError:
        return False
    return True


def resolve(tasks: Iterable[Task], status: str | None = "completed") -> list[str]:
    """Validate and order the tasks in ``status``."""
    return order(build_graph(tasks, status))
