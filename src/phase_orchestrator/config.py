"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class Config:
    root: Path = field(default_factory=lambda: Path.cwd())
    state_dir: str = ".po"
    executor: str = "claude"
    agent_model: str | None = None
    agent_output_dir: str | None = None
    skip_permissions: bool = False
    issue_label: str = "po"
    log_level: str = "WARNING"

    @property
    def state_path(self) -> Path:
        return self.root / self.state_dir

    @property
    def history_db_path(self) -> Path:
        return self.state_path / "history.db"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if root := os.environ.get("PO_ROOT"):
            config.root = Path(root)

        if state_dir := os.environ.get("PO_STATE_DIR"):
            config.state_dir = state_dir

        if executor := os.environ.get("PO_EXECUTOR"):
            config.executor = executor

        config.agent_model = os.environ.get("PO_AGENT_MODEL") or None
        config.agent_output_dir = os.environ.get("PO_AGENT_OUTPUT_DIR") or None

        if skip := os.environ.get("PO_SKIP_PERMISSIONS"):
            config.skip_permissions = skip.lower() in TRUE_VALUES

        if label := os.environ.get("PO_ISSUE_LABEL"):
            config.issue_label = label

        if level := os.environ.get("PO_LOG_LEVEL"):
            config.log_level = level.upper()

        return config


def get_config() -> Config:
    return Config.from_env()
