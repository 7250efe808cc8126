"""Data models for the project state document."""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

TASK_STATUSES = ("pending", "in_progress", "needs_review", "completed", "abandoned")
RESOLVED_STATUSES = ("completed", "abandoned")
FEEDBACK_STATUSES = ("pending", "addressed", "superseded")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class MetadataTypeError(TypeError):
    """Raised when a metadata value does not have the requested type."""


class Metadata(dict):
    """String-keyed metadata with typed accessors.

    Accessors return the default when the key is absent and raise
    MetadataTypeError when the stored value has a different type.
    """

    def _get(self, key: str, kind: type | tuple, default):
        if key not in self or self[key] is None:
            return default
        value = self[key]
        # bool is an int subclass; never accept it for numeric lookups
        if isinstance(value, bool) and kind is not bool:
            raise MetadataTypeError(f"metadata '{key}' is a bool, expected {_kind_name(kind)}")
        if not isinstance(value, kind):
            raise MetadataTypeError(
                f"metadata '{key}' is {type(value).__name__}, expected {_kind_name(kind)}"
            )
        return value

    def get_str(self, key: str, default: str | None = None) -> str | None:
        return self._get(key, str, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self._get(key, bool, default)

    def get_int(self, key: str, default: int | None = None) -> int | None:
        return self._get(key, int, default)

    def get_list(self, key: str) -> list:
        return list(self._get(key, list, []))

    def get_str_list(self, key: str) -> list[str]:
        values = self.get_list(key)
        for v in values:
            if not isinstance(v, str):
                raise MetadataTypeError(
                    f"metadata '{key}' contains {type(v).__name__}, expected str"
                )
        return values


def _kind_name(kind) -> str:
    if isinstance(kind, tuple):
        return " or ".join(k.__name__ for k in kind)
    return kind.__name__


class ApprovalState(enum.Enum):
    """Approval of an artifact.

    NOT_REQUIRED is stored by omitting the flag, PENDING as false,
    APPROVED as true.
    """

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"

    @classmethod
    def from_flag(cls, flag: bool | None) -> "ApprovalState":
        if flag is None:
            return cls.NOT_REQUIRED
        return cls.APPROVED if flag else cls.PENDING

    def to_flag(self) -> bool | None:
        if self is ApprovalState.NOT_REQUIRED:
            return None
        return self is ApprovalState.APPROVED


@dataclass
class Artifact:
    path: str
    type: str = ""
    description: str = ""
    approval: ApprovalState = ApprovalState.PENDING
    created_at: datetime | None = None
    metadata: Metadata = field(default_factory=Metadata)

    @property
    def approved(self) -> bool:
        return self.approval is ApprovalState.APPROVED


@dataclass
class Feedback:
    """Human feedback on a task, addressed in a later iteration."""

    id: str
    message: str
    status: str = "pending"
    created_at: datetime | None = None


@dataclass
class Task:
    id: str
    name: str
    description: str = ""
    status: str = "pending"
    parallel: bool = False
    dependencies: list[str] = field(default_factory=list)
    assigned_agent: str | None = None
    session_id: str | None = None
    iteration: int = 1
    references: list[str] = field(default_factory=list)
    feedback: list[Feedback] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    metadata: Metadata = field(default_factory=Metadata)

    @property
    def resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def get_feedback(self, feedback_id: str) -> Feedback | None:
        for entry in self.feedback:
            if entry.id == feedback_id:
                return entry
        return None

    def pending_feedback(self) -> list[Feedback]:
        return [f for f in self.feedback if f.status == "pending"]


@dataclass
class Phase:
    name: str
    status: str = "pending"
    enabled: bool = False
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    inputs: list[Artifact] = field(default_factory=list)
    outputs: list[Artifact] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata)

    def get_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_output(self, path: str) -> Artifact | None:
        for artifact in self.outputs:
            if artifact.path == path:
                return artifact
        return None

    def outputs_of_type(self, artifact_type: str) -> list[Artifact]:
        return [a for a in self.outputs if a.type == artifact_type]

    def unresolved_tasks(self) -> list[Task]:
        return [t for t in self.tasks if not t.resolved]


@dataclass
class Project:
    name: str
    type: str
    branch: str
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    state: str = ""
    phases: dict[str, Phase] = field(default_factory=dict)
    agent_sessions: dict[str, str] = field(default_factory=dict)

    def phase(self, name: str) -> Phase:
        if name not in self.phases:
            raise ValueError(f"Phase not found: {name}")
        return self.phases[name]
