"""Crash-safe spawning and resumption of agent sessions.

A session ID is generated on first spawn and saved to the state document
before the agent process starts. If this process dies while the agent
runs, the next invocation finds the saved ID and resumes the same
session. Resuming never changes the stored ID.
"""

import logging
import uuid

from phase_orchestrator.core.executors import AgentRegistry, Executor
from phase_orchestrator.core.machine import WorkflowError
from phase_orchestrator.core.phases import NotSupportedError
from phase_orchestrator.core.workflow import Workflow
from phase_orchestrator.db.models import Task, utcnow

logger = logging.getLogger(__name__)


class SessionError(WorkflowError):
    """Raised when a session cannot be resolved."""


class SessionManager:
    def __init__(self, workflow: Workflow, executor: Executor, agents: AgentRegistry):
        self.workflow = workflow
        self.executor = executor
        self.agents = agents

    def task_phase(self, task_id: str, phase: str | None = None) -> str:
        """Name of the phase holding ``task_id``.

        Task IDs repeat across phases, so without an explicit phase the
        current phase wins; a task elsewhere must be unambiguous.
        """
        project = self.workflow.project
        if phase:
            if project.phase(phase).get_task(task_id) is None:
                raise SessionError(f"task not found in {phase}: {task_id}")
            return phase

        current = self.workflow.current_phase_name
        if current and project.phase(current).get_task(task_id) is not None:
            return current
        matches = [name for name, p in project.phases.items() if p.get_task(task_id) is not None]
        if not matches:
            raise SessionError(f"task not found: {task_id}")
        if len(matches) > 1:
            raise SessionError(
                f"task {task_id} exists in several phases ({', '.join(matches)}); pass a phase"
            )
        return matches[0]

    def find_task(self, task_id: str, phase: str | None = None) -> Task:
        name = self.task_phase(task_id, phase)
        return self.workflow.project.phase(name).get_task(task_id)

    def session_id(self, role: str, task_id: str | None = None, phase: str | None = None) -> str | None:
        if task_id:
            return self.find_task(task_id, phase).session_id
        return self.workflow.project.agent_sessions.get(role)

    def spawn(
        self,
        role: str,
        prompt: str,
        task_id: str | None = None,
        phase: str | None = None,
    ) -> str:
        """Start (or restart) the agent for a task or a taskless role.

        Returns the session ID, which is persisted before the agent runs.
        """
        agent = self.agents.get(role)
        project = self.workflow.project

        if task_id:
            task = self.find_task(task_id, phase)
            if not task.session_id:
                task.session_id = str(uuid.uuid4())
            task.assigned_agent = role
            if task.status == "pending":
                task.status = "in_progress"
            task.updated_at = utcnow()
            session_id = task.session_id
        else:
            session_id = project.agent_sessions.get(role)
            if not session_id:
                session_id = str(uuid.uuid4())
                project.agent_sessions[role] = session_id

        self.workflow.save()
        logger.info("Spawning %s (session %s)", role, session_id)
        self.executor.spawn(agent, prompt, session_id)
        return session_id

    def resume(
        self,
        role: str,
        prompt: str,
        task_id: str | None = None,
        phase: str | None = None,
        feedback: bool = False,
    ) -> str:
        """Resume a previously spawned session with new instructions.

        With ``feedback`` the prompt is recorded as task feedback and the
        task's iteration is bumped. Pending feedback on the task is always
        listed after the prompt the agent receives.
        """
        self.agents.get(role)
        if not self.executor.supports_resumption():
            raise NotSupportedError(
                f"{self.executor.name} executor does not support session resumption"
            )
        if feedback and not task_id:
            raise SessionError("feedback requires a task")
        session_id = self.session_id(role, task_id, phase)
        if not session_id:
            key = f"task {task_id}" if task_id else f"role {role}"
            raise SessionError(f"no session found for {key} (spawn first)")

        if task_id:
            name = self.task_phase(task_id, phase)
            if feedback:
                self.workflow.run(
                    lambda ops: ops.add_feedback(task_id, prompt, increment_iteration=True),
                    name,
                )
                prompt = f"Address the pending feedback on task {task_id}."
            prompt = self.with_feedback(self.workflow.project.phase(name).get_task(task_id), prompt)

        logger.info("Resuming %s (session %s)", role, session_id)
        self.executor.resume(session_id, prompt)
        return session_id

    @staticmethod
    def with_feedback(task: Task, prompt: str) -> str:
        pending = task.pending_feedback()
        if not pending:
            return prompt
        lines = [prompt, "", f"Pending feedback (iteration {task.iteration}):"]
        lines.extend(f"- [{f.id}] {f.message}" for f in pending)
        return "\n".join(lines)
