"""Fluent construction of state machines."""

from phase_orchestrator.core.machine import (
    Action,
    Guard,
    PromptFunc,
    StateMachine,
    Transition,
    WorkflowError,
)
from phase_orchestrator.db.models import Project


class BuilderError(WorkflowError, ValueError):
    """Raised when a transition table is ambiguous or incomplete."""


class MachineBuilder:
    """Accumulates transitions and prompt hooks, then builds a StateMachine.

    Each method returns the builder so calls chain::

        machine = (
            MachineBuilder("Gathering")
            .add_transition("Gathering", "Researching", "event_x", guard=enough_tasks)
            .build(project)
        )
    """

    def __init__(self, initial_state: str | None = None):
        self.initial_state = initial_state
        self._transitions: dict[tuple[str, str], Transition] = {}
        self._prompts: dict[str, PromptFunc] = {}

    def add_transition(
        self,
        source: str,
        target: str,
        event: str,
        guard: Guard | None = None,
        on_entry: Action | list[Action] | None = None,
        on_exit: Action | list[Action] | None = None,
    ) -> "MachineBuilder":
        key = (source, event)
        if key in self._transitions:
            existing = self._transitions[key]
            raise BuilderError(
                f"duplicate transition for '{event}' from '{source}' "
                f"(already targets '{existing.target}')"
            )
        self._transitions[key] = Transition(
            source=source,
            event=event,
            target=target,
            guard=guard,
            on_exit=_actions(on_exit),
            on_entry=_actions(on_entry),
        )
        return self

    def with_prompt(self, state: str, func: PromptFunc) -> "MachineBuilder":
        self._prompts[state] = func
        return self

    def states(self) -> list[str]:
        seen: dict[str, None] = {}
        if self.initial_state:
            seen[self.initial_state] = None
        for t in self._transitions.values():
            seen[t.source] = None
            seen[t.target] = None
        return list(seen)

    def build(self, project: Project) -> StateMachine:
        """Build a machine positioned at the project's persisted state.

        A project without a recorded state starts at the initial state.
        """
        state = project.state or self.initial_state
        if not state:
            raise BuilderError("no initial state configured")
        if state not in self.states():
            raise BuilderError(f"unknown state: {state}")
        return StateMachine(state, self._transitions, project, self._prompts)


def _actions(value) -> tuple:
    if value is None:
        return ()
    if callable(value):
        return (value,)
    return tuple(value)
