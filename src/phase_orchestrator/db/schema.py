"""JSON Schema validation of state documents."""

from collections.abc import Mapping
from dataclasses import dataclass

import jsonschema
import yaml

from phase_orchestrator.db.models import FEEDBACK_STATUSES, TASK_STATUSES


class SchemaError(Exception):
    """Raised when a state document does not match its project type's schema."""


@dataclass(frozen=True)
class Vocabulary:
    """Names a project type allows in its state document."""

    states: tuple[str, ...]
    phases: Mapping[str, tuple[str, ...]]


_TIMESTAMP = {"type": "string"}

_METADATA = {"type": "object"}

ARTIFACT_SCHEMA = {
    "type": "object",
    "required": ["path"],
    "properties": {
        "path": {"type": "string", "minLength": 1},
        "type": {"type": "string"},
        "description": {"type": "string"},
        "approved": {"type": "boolean"},
        "created_at": _TIMESTAMP,
        "metadata": _METADATA,
    },
    "additionalProperties": False,
}

FEEDBACK_SCHEMA = {
    "type": "object",
    "required": ["id", "message", "status"],
    "properties": {
        "id": {"type": "string", "pattern": "^[0-9]{3,}$"},
        "message": {"type": "string", "minLength": 1},
        "status": {"enum": list(FEEDBACK_STATUSES)},
        "created_at": _TIMESTAMP,
    },
    "additionalProperties": False,
}

TASK_SCHEMA = {
    "type": "object",
    "required": ["id", "name", "status"],
    "properties": {
        "id": {"type": "string", "pattern": "^[0-9]{3,}$"},
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "status": {"enum": list(TASK_STATUSES)},
        "parallel": {"type": "boolean"},
        "dependencies": {"type": "array", "items": {"type": "string"}},
        "assigned_agent": {"type": "string"},
        "session_id": {"type": "string"},
        "iteration": {"type": "integer", "minimum": 1},
        "references": {"type": "array", "items": {"type": "string"}},
        "feedback": {"type": "array", "items": FEEDBACK_SCHEMA},
        "created_at": _TIMESTAMP,
        "updated_at": _TIMESTAMP,
        "metadata": _METADATA,
    },
    "additionalProperties": False,
}


def phase_schema(statuses: tuple[str, ...]) -> dict:
    return {
        "type": "object",
        "required": ["status", "enabled"],
        "properties": {
            "status": {"enum": list(statuses)},
            "enabled": {"type": "boolean"},
            "created_at": _TIMESTAMP,
            "started_at": _TIMESTAMP,
            "completed_at": _TIMESTAMP,
            "inputs": {"type": "array", "items": ARTIFACT_SCHEMA},
            "outputs": {"type": "array", "items": ARTIFACT_SCHEMA},
            "tasks": {"type": "array", "items": TASK_SCHEMA},
            "metadata": _METADATA,
        },
        "additionalProperties": False,
    }


def project_schema(type_name: str, vocabulary: Vocabulary) -> dict:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": f"{type_name} project",
        "type": "object",
        "required": ["name", "type", "branch", "statechart", "phases"],
        "properties": {
            "name": {"type": "string", "pattern": "^[a-z0-9]+(-[a-z0-9]+)*$"},
            "type": {"const": type_name},
            "branch": {"type": "string", "minLength": 1},
            "description": {"type": "string"},
            "created_at": _TIMESTAMP,
            "updated_at": _TIMESTAMP,
            "statechart": {
                "type": "object",
                "required": ["current_state"],
                "properties": {"current_state": {"enum": list(vocabulary.states)}},
                "additionalProperties": False,
            },
            "phases": {
                "type": "object",
                "properties": {
                    name: phase_schema(statuses)
                    for name, statuses in vocabulary.phases.items()
                },
                "additionalProperties": False,
            },
            "agent_sessions": {
                "type": "object",
                "additionalProperties": {"type": "string"},
            },
        },
        "additionalProperties": False,
    }


class SchemaValidator:
    """Validates serialized state documents against per-type schemas."""

    def __init__(self, vocabularies: Mapping[str, Vocabulary]):
        self._schemas = {
            name: project_schema(name, vocab) for name, vocab in vocabularies.items()
        }

    def validate(self, document: bytes) -> None:
        try:
            data = yaml.safe_load(document)
        except yaml.YAMLError as e:
            raise SchemaError(f"state document is not valid YAML: {e}") from e
        self.validate_data(data)

    def validate_data(self, data) -> None:
        if not isinstance(data, dict):
            raise SchemaError("state document must be a mapping")
        type_name = data.get("type")
        schema = self._schemas.get(type_name)
        if schema is None:
            raise SchemaError(f"unknown project type: {type_name!r}")
        try:
            jsonschema.validate(instance=data, schema=schema)
        except jsonschema.ValidationError as e:
            where = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise SchemaError(f"invalid {type_name} project at {where}: {e.message}") from e
