"""Publishing breakdown work units as issues, in dependency order."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from phase_orchestrator.core import dependencies
from phase_orchestrator.core.phases import PhaseValidationError
from phase_orchestrator.core.workflow import Workflow
from phase_orchestrator.db.models import Task, utcnow
from phase_orchestrator.integrations.github import Issue

logger = logging.getLogger(__name__)

PUBLISHING = "Publishing"


class IssueCreator(Protocol):
    def create_issue(self, title: str, body: str, labels: list[str]) -> Issue: ...


@dataclass
class PublishResult:
    task_id: str
    number: int
    url: str
    skipped: bool = False


def issue_body(task: Task, tasks: dict[str, Task], root: Path | None = None) -> str:
    """Issue body from the unit's document, or its description."""
    body = task.description
    document_path = task.metadata.get_str("document_path")
    if document_path:
        path = Path(document_path)
        if root is not None and not path.is_absolute():
            path = root / path
        try:
            body = path.read_text()
        except OSError as e:
            logger.warning("Could not read %s, using description: %s", path, e)

    linked = [
        tasks[dep].metadata.get_int("github_issue_number")
        for dep in task.dependencies
        if dep in tasks and tasks[dep].metadata.get_int("github_issue_number")
    ]
    if linked:
        body += "\n\n## Dependencies\n" + "\n".join(f"- Depends on #{n}" for n in linked)
    return body


def publish(
    workflow: Workflow,
    issues: IssueCreator,
    label: str = "po",
    root: Path | None = None,
) -> list[PublishResult]:
    """Create an issue for every unpublished work unit.

    The task is updated and the document saved after each issue, so a
    failure part way through resumes from the first unpublished unit.
    When every unit is published the breakdown phase is completed.
    """
    if workflow.state != PUBLISHING:
        raise PhaseValidationError(f"work units can only be published in {PUBLISHING} (now {workflow.state})")

    phase = workflow.project.phase("breakdown")
    tasks = {t.id: t for t in phase.tasks}
    results = []
    for task_id in dependencies.resolve(phase.tasks):
        task = tasks[task_id]
        if task.metadata.get_bool("published"):
            results.append(PublishResult(
                task_id,
                task.metadata.get_int("github_issue_number"),
                task.metadata.get_str("github_issue_url"),
                skipped=True,
            ))
            continue

        issue = issues.create_issue(task.name, issue_body(task, tasks, root), [label])
        task.metadata["github_issue_number"] = issue.number
        task.metadata["github_issue_url"] = issue.url
        task.metadata["published"] = True
        task.updated_at = utcnow()
        workflow.save()
        logger.info("Published %s as issue #%d", task_id, issue.number)
        results.append(PublishResult(task_id, issue.number, issue.url))

    workflow.run(lambda ops: ops.complete(), phase="breakdown")
    return results
