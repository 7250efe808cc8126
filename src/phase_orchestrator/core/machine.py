"""Guarded finite-state machine over a project's state."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from phase_orchestrator.db.models import Project

logger = logging.getLogger(__name__)

Action = Callable[[Project], None]
PromptFunc = Callable[[str, Project], str]


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class IllegalTransitionError(WorkflowError):
    """No transition exists for the (state, event) pair."""

    def __init__(self, state: str, event: str):
        self.state = state
        self.event = event
        super().__init__(f"illegal transition: no '{event}' transition from '{state}'")


class GuardRejectedError(WorkflowError):
    """A transition exists but its guard does not currently hold."""

    def __init__(self, state: str, event: str, description: str, detail: str | None = None):
        self.state = state
        self.event = event
        self.description = description
        self.detail = detail
        message = f"cannot fire '{event}' from '{state}': guard not met: {description}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


@dataclass(frozen=True)
class Guard:
    """A side-effect free predicate over the project.

    ``explain`` returns a short reason for a failed check, e.g.
    "3 tasks remain unresolved".
    """

    description: str
    check: Callable[[Project], bool]
    explain: Callable[[Project], str] | None = None

    def __call__(self, project: Project) -> bool:
        return bool(self.check(project))


@dataclass(frozen=True)
class Transition:
    source: str
    event: str
    target: str
    guard: Guard | None = None
    on_exit: tuple[Action, ...] = field(default_factory=tuple)
    on_entry: tuple[Action, ...] = field(default_factory=tuple)


class StateMachine:
    """Holds the current state and fires events against a transition table.

    Entry actions and the prompt hook run after the state has changed;
    exit actions run before. A rejected fire leaves state untouched.
    """

    def __init__(
        self,
        initial_state: str,
        transitions: Mapping[tuple[str, str], Transition],
        project: Project,
        prompts: Mapping[str, PromptFunc] | None = None,
    ):
        self._state = initial_state
        self._transitions = dict(transitions)
        self._prompts = dict(prompts or {})
        self.project = project

    @property
    def state(self) -> str:
        return self._state

    @property
    def transitions(self) -> list[Transition]:
        return list(self._transitions.values())

    def is_terminal(self) -> bool:
        return not any(source == self._state for source, _ in self._transitions)

    def _check(self, transition: Transition) -> None:
        guard = transition.guard
        if guard is None:
            return
        passed = guard(self.project)
        logger.debug(
            "Guard '%s' for %s -> %s: %s",
            guard.description, transition.source, transition.event, passed,
        )
        if not passed:
            detail = guard.explain(self.project) if guard.explain else None
            raise GuardRejectedError(transition.source, transition.event, guard.description, detail)

    def can_fire(self, event: str) -> bool:
        transition = self._transitions.get((self._state, event))
        if transition is None:
            return False
        return transition.guard is None or transition.guard(self.project)

    def permitted_events(self) -> list[str]:
        """Events with a transition from the current state whose guard holds now."""
        return [
            event for (source, event) in self._transitions
            if source == self._state and self.can_fire(event)
        ]

    def fire(self, event: str) -> str:
        """Fire an event and return the destination state's prompt text."""
        transition = self._transitions.get((self._state, event))
        if transition is None:
            raise IllegalTransitionError(self._state, event)
        self._check(transition)

        for action in transition.on_exit:
            action(self.project)

        self._state = transition.target
        self.project.state = transition.target
        logger.info("Transition %s --%s--> %s", transition.source, event, transition.target)

        for action in transition.on_entry:
            action(self.project)

        prompt = self._prompts.get(transition.target)
        if prompt is None:
            return ""
        return prompt(transition.target, self.project)
