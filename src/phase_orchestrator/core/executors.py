"""Agent roles and the external processes that run them."""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from phase_orchestrator.core.phases import NotSupportedError

logger = logging.getLogger(__name__)


class ExecutorError(Exception):
    """Raised when an agent process cannot be started or exits non-zero."""


# ── Roles ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AgentRole:
    name: str
    description: str
    capabilities: str


DEFAULT_ROLES = (
    AgentRole(
        "implementer",
        "Code implementation using test-driven development",
        "read/write files, execute shell commands, search the codebase",
    ),
    AgentRole(
        "architect",
        "System design and architecture decisions",
        "read/write files, search the codebase",
    ),
    AgentRole(
        "reviewer",
        "Code review and quality assessment",
        "read files, search the codebase, execute shell commands",
    ),
    AgentRole(
        "planner",
        "Research the codebase and produce an implementation task breakdown",
        "read files, search the codebase, write task descriptions",
    ),
    AgentRole(
        "researcher",
        "Focused research with source investigation and citation",
        "read files, search the codebase, access web resources",
    ),
    AgentRole(
        "decomposer",
        "Decompose large features into implementable work units",
        "read files, search the codebase, write work unit specifications",
    ),
)


@dataclass
class AgentRegistry:
    roles: dict[str, AgentRole] = field(default_factory=dict)

    @classmethod
    def with_defaults(cls) -> "AgentRegistry":
        registry = cls()
        for role in DEFAULT_ROLES:
            registry.register(role)
        return registry

    def register(self, role: AgentRole) -> None:
        if role.name in self.roles:
            raise ValueError(f"agent role already registered: {role.name}")
        self.roles[role.name] = role

    def get(self, name: str) -> AgentRole:
        if name not in self.roles:
            known = ", ".join(sorted(self.roles))
            raise ValueError(f"unknown agent role '{name}' (known: {known})")
        return self.roles[name]

    def list(self) -> list[AgentRole]:
        return sorted(self.roles.values(), key=lambda r: r.name)


# ── Executors ─────────────────────────────────────────────────────────────────


class Executor(Protocol):
    name: str

    def spawn(self, role: AgentRole, prompt: str, session_id: str) -> None: ...

    def resume(self, session_id: str, prompt: str) -> None: ...

    def supports_resumption(self) -> bool: ...


class CommandExecutor:
    """Runs an agent CLI and blocks until it exits.

    The prompt is written to the process's stdin. With ``output_dir`` set,
    stdout and stderr go to ``<output_dir>/<session_id>.log``.
    """

    name = ""
    binary = ""

    def __init__(
        self,
        cwd: str | Path | None = None,
        output_dir: str | Path | None = None,
        skip_permissions: bool = False,
        model: str | None = None,
        extra_args: list[str] | None = None,
    ):
        self.cwd = cwd
        self.output_dir = Path(output_dir) if output_dir else None
        self.skip_permissions = skip_permissions
        self.model = model
        self.extra_args = list(extra_args or [])

    def validate_availability(self) -> None:
        if shutil.which(self.binary) is None:
            raise ExecutorError(f"{self.binary} not found on PATH")

    def supports_resumption(self) -> bool:
        return False

    def spawn_args(self, session_id: str) -> list[str]:
        raise NotImplementedError

    def resume_args(self, session_id: str) -> list[str]:
        raise NotSupportedError(f"{self.name} executor does not support session resumption")

    def spawn(self, role: AgentRole, prompt: str, session_id: str) -> None:
        full_prompt = f"You are the {role.name} agent: {role.description}.\n\n{prompt}"
        self._run(self.spawn_args(session_id), full_prompt, session_id, "spawn")

    def resume(self, session_id: str, prompt: str) -> None:
        if not self.supports_resumption():
            raise NotSupportedError(f"{self.name} executor does not support session resumption")
        self._run(self.resume_args(session_id), prompt, session_id, "resume")

    def _run(self, args: list[str], prompt: str, session_id: str, action: str) -> None:
        cmd = [self.binary] + args + self.extra_args
        logger.info("Running %s %s for session %s", self.name, action, session_id)

        log_file = None
        if self.output_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            log_file = open(self.output_dir / f"{session_id}.log", "a")
        try:
            result = subprocess.run(
                cmd,
                input=prompt,
                text=True,
                cwd=self.cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT if log_file else None,
            )
        except OSError as e:
            raise ExecutorError(f"{self.binary} {action} failed: {e}") from e
        finally:
            if log_file:
                log_file.close()

        if result.returncode != 0:
            raise ExecutorError(f"{self.binary} {action} exited with code {result.returncode}")


class ClaudeExecutor(CommandExecutor):
    name = "claude"
    binary = "claude"

    def _base_args(self) -> list[str]:
        args = [
            "--print", "--verbose",
            "--output-format", "stream-json",
            "--permission-mode", "acceptEdits",
        ]
        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")
        if self.model:
            args += ["--model", self.model]
        return args

    def supports_resumption(self) -> bool:
        return True

    def spawn_args(self, session_id: str) -> list[str]:
        return self._base_args() + ["--session-id", session_id]

    def resume_args(self, session_id: str) -> list[str]:
        return self._base_args() + ["--resume", session_id]


class CursorExecutor(CommandExecutor):
    name = "cursor"
    binary = "cursor-agent"

    def spawn_args(self, session_id: str) -> list[str]:
        args = ["agent", "--print", "--output-format", "stream-json"]
        if self.skip_permissions:
            args.append("--force")
        if self.model:
            args += ["--model", self.model]
        return args + ["--chat-id", session_id]


@dataclass
class ExecutorRegistry:
    executors: dict[str, Executor] = field(default_factory=dict)

    def register(self, executor: Executor) -> None:
        if executor.name in self.executors:
            raise ValueError(f"executor already registered: {executor.name}")
        self.executors[executor.name] = executor

    def get(self, name: str) -> Executor:
        if name not in self.executors:
            known = ", ".join(sorted(self.executors))
            raise ValueError(f"unknown executor '{name}' (known: {known})")
        return self.executors[name]

    def list(self) -> list[str]:
        return sorted(self.executors)
