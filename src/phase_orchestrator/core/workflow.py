"""Loading, operating on, and persisting a project's workflow.

Every command follows the same sequence: load the state document, run one
phase operation, persist, fire the event the operation returned (if any),
persist again. A failure at any step restores the document as it was
before the command started.
"""

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from phase_orchestrator.core import prompts
from phase_orchestrator.core.builder import MachineBuilder
from phase_orchestrator.core.machine import StateMachine, WorkflowError
from phase_orchestrator.core.phases import OperationResult, PhaseOperations
from phase_orchestrator.db import document
from phase_orchestrator.db.models import Phase, Project, utcnow
from phase_orchestrator.db.schema import SchemaValidator, Vocabulary
from phase_orchestrator.db.store import FileStore, StoreError

logger = logging.getLogger(__name__)

PROJECT_DIR = "project"
STATE_FILE = "state.yaml"
PROTECTED_BRANCHES = ("main", "master")
NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


class NoProjectError(WorkflowError):
    """Raised when no project exists in the working copy."""


class ProjectExistsError(WorkflowError):
    """Raised when initializing over an existing project."""


class NoActivePhaseError(WorkflowError):
    """Raised when the current state has no phase to operate on."""


@dataclass(frozen=True)
class ProjectType:
    """Everything that distinguishes one kind of project from another.

    ``configure`` adds the type's transitions to a builder, ``initialize``
    creates its phases on a new project, and ``state_phases`` maps each
    non-terminal state to the phase that is active in it.
    """

    name: str
    initial_state: str
    phases: tuple[type[PhaseOperations], ...]
    configure: Callable[[MachineBuilder], MachineBuilder]
    initialize: Callable[[Project], None]
    state_phases: Mapping[str, str]
    init_event: str | None = None
    branch_prefix: str | None = None
    cleanup_on_terminal: bool = False

    def builder(self) -> MachineBuilder:
        builder = self.configure(MachineBuilder(self.initial_state))
        for state in builder.states():
            builder.with_prompt(state, prompts.render)
        return builder

    def build_machine(self, project: Project) -> StateMachine:
        return self.builder().build(project)

    def vocabulary(self) -> Vocabulary:
        return Vocabulary(
            states=tuple(self.builder().states()),
            phases={cls.name: cls.statuses for cls in self.phases},
        )

    def phase_class(self, name: str) -> type[PhaseOperations]:
        for cls in self.phases:
            if cls.name == name:
                return cls
        known = ", ".join(cls.name for cls in self.phases)
        raise ValueError(f"{self.name} projects have no phase '{name}' (phases: {known})")


def new_phase(name: str, status: str = "pending", enabled: bool = False) -> Phase:
    now = utcnow()
    return Phase(
        name=name,
        status=status,
        enabled=enabled,
        created_at=now,
        started_at=now if status != "pending" else None,
    )


@dataclass
class ProjectTypeRegistry:
    types: dict[str, ProjectType] = field(default_factory=dict)
    default: str = "standard"

    def register(self, project_type: ProjectType) -> None:
        if project_type.name in self.types:
            raise ValueError(f"project type already registered: {project_type.name}")
        self.types[project_type.name] = project_type

    def get(self, name: str) -> ProjectType:
        if name not in self.types:
            known = ", ".join(sorted(self.types))
            raise ValueError(f"unknown project type '{name}' (known: {known})")
        return self.types[name]

    def detect(self, branch: str) -> ProjectType:
        """Pick the project type from the branch prefix."""
        for project_type in self.types.values():
            if project_type.branch_prefix and branch.startswith(project_type.branch_prefix):
                return project_type
        return self.get(self.default)

    def vocabularies(self) -> dict[str, Vocabulary]:
        return {name: t.vocabulary() for name, t in self.types.items()}

    def validator(self) -> SchemaValidator:
        return SchemaValidator(self.vocabularies())


class Workflow:
    """A loaded project bound to its state machine and document store."""

    def __init__(
        self,
        project: Project,
        project_type: ProjectType,
        store: FileStore,
        validator: SchemaValidator,
        project_dir: str = PROJECT_DIR,
        document_bytes: bytes | None = None,
    ):
        self.project = project
        self.project_type = project_type
        self.store = store
        self.validator = validator
        self.project_dir = project_dir
        self.deleted = False
        self._persisted = document_bytes
        self.machine = project_type.build_machine(project)

    @property
    def path(self) -> str:
        return f"{self.project_dir}/{STATE_FILE}"

    @property
    def state(self) -> str:
        return self.machine.state

    # ── Loading ───────────────────────────────────────────────────────────────

    @staticmethod
    def exists(store: FileStore, project_dir: str = PROJECT_DIR) -> bool:
        return store.exists(f"{project_dir}/{STATE_FILE}")

    @classmethod
    def load(
        cls,
        store: FileStore,
        registry: ProjectTypeRegistry,
        project_dir: str = PROJECT_DIR,
    ) -> "Workflow":
        path = f"{project_dir}/{STATE_FILE}"
        if not store.exists(path):
            raise NoProjectError("no active project (run 'po init' first)")
        raw = store.read(path)
        validator = registry.validator()
        validator.validate(raw)
        project = document.loads(raw)
        return cls(
            project,
            registry.get(project.type),
            store,
            validator,
            project_dir=project_dir,
            document_bytes=raw,
        )

    @classmethod
    def create(
        cls,
        store: FileStore,
        registry: ProjectTypeRegistry,
        name: str,
        description: str,
        branch: str,
        type_name: str | None = None,
        project_dir: str = PROJECT_DIR,
    ) -> "Workflow":
        """Initialize and persist a new project."""
        if not NAME_PATTERN.match(name):
            raise ValueError(f"project name must be kebab-case: {name!r}")
        if not description.strip():
            raise ValueError("project description must not be empty")
        if not branch:
            raise ValueError("a branch is required")
        if branch in PROTECTED_BRANCHES:
            raise ValueError(f"cannot create a project on protected branch '{branch}'")
        if cls.exists(store, project_dir):
            raise ProjectExistsError("a project already exists in this working copy")

        project_type = registry.get(type_name) if type_name else registry.detect(branch)
        now = utcnow()
        project = Project(
            name=name,
            type=project_type.name,
            branch=branch,
            description=description,
            created_at=now,
            updated_at=now,
            state=project_type.initial_state,
        )
        project_type.initialize(project)

        workflow = cls(project, project_type, store, registry.validator(), project_dir=project_dir)
        if project_type.init_event:
            workflow.machine.fire(project_type.init_event)
        workflow.save()
        logger.info("Created %s project %s on %s", project_type.name, name, branch)
        return workflow

    # ── Persistence ───────────────────────────────────────────────────────────

    def save(self) -> None:
        if self.deleted:
            return
        self.project.state = self.machine.state
        self.project.updated_at = utcnow()
        raw = document.dumps(self.project)
        self.validator.validate(raw)
        self.store.write(self.path, raw)
        self._persisted = raw

    def _restore(self, original: bytes | None) -> None:
        """Put back the document and in-memory state from before a command."""
        if original is None:
            return
        if self._persisted != original:
            self.store.write(self.path, original)
            self._persisted = original
        self.project = document.loads(original)
        self.machine = self.project_type.build_machine(self.project)

    # ── Phases ────────────────────────────────────────────────────────────────

    @property
    def current_phase_name(self) -> str | None:
        return self.project_type.state_phases.get(self.state)

    def phase(self, name: str | None = None) -> PhaseOperations:
        """Operations for the named phase, or the current one."""
        if name is None:
            name = self.current_phase_name
            if name is None:
                raise NoActivePhaseError(f"no active phase in state {self.state}")
        cls = self.project_type.phase_class(name)
        return cls(self.project)

    # ── Operations ────────────────────────────────────────────────────────────

    def fire(self, event: str) -> str:
        """Fire an event, persist the new state, and return its prompt."""
        original = self._persisted
        try:
            prompt = self.machine.fire(event)
        except Exception:
            self._restore(original)
            raise
        if self.project_type.cleanup_on_terminal and self.machine.is_terminal():
            self.cleanup()
        else:
            self.save()
        return prompt

    def run(
        self,
        operation: Callable[[PhaseOperations], object],
        phase: str | None = None,
    ) -> tuple[object, str | None]:
        """Run one phase operation and fire the event it returns.

        Returns the operation's return value and the prompt of the new
        state, or None when no transition happened.
        """
        original = self._persisted
        try:
            ops = self.phase(phase)
            result = operation(ops)
            self.save()
            prompt = None
            if isinstance(result, OperationResult) and result.event:
                prompt = self.fire(result.event)
        except Exception:
            self._restore(original)
            raise
        return result, prompt

    def cleanup(self) -> None:
        """Delete the project directory. Failures are logged, not raised."""
        self.deleted = True
        try:
            self.store.delete_tree(self.project_dir)
        except StoreError as e:
            logger.warning("Project cleanup failed: %s", e)

    def permitted_events(self) -> list[str]:
        return self.machine.permitted_events()
