"""Tests for the document store, YAML documents and configuration."""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from phase_orchestrator.config import Config
from phase_orchestrator.db import document
from phase_orchestrator.db.models import ApprovalState, Artifact, Phase, Project, Task
from phase_orchestrator.db.store import FileStore, StoreError


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmp:
        yield FileStore(tmp)


class TestFileStore:
    def test_write_and_read(self, store):
        store.write("project/state.yaml", b"name: demo\n")
        assert store.read("project/state.yaml") == b"name: demo\n"
        assert store.exists("project/state.yaml")

    def test_write_leaves_no_temp_files(self, store):
        store.write("project/state.yaml", b"one")
        store.write("project/state.yaml", b"two")
        assert os.listdir(store.root / "project") == ["state.yaml"]

    def test_failed_replace_keeps_old_document(self, store):
        store.write("project/state.yaml", b"old")
        with patch("phase_orchestrator.db.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreError, match="disk full"):
                store.write("project/state.yaml", b"new")
        assert store.read("project/state.yaml") == b"old"
        assert os.listdir(store.root / "project") == ["state.yaml"]

    def test_read_missing(self, store):
        with pytest.raises(StoreError, match="read"):
            store.read("project/state.yaml")

    def test_delete_tree(self, store):
        store.write("project/state.yaml", b"x")
        store.delete_tree("project")
        assert not store.exists("project")
        # deleting again is a no-op
        store.delete_tree("project")


class TestDocument:
    def _project(self) -> Project:
        phase = Phase(name="planning", status="in_progress", enabled=True)
        phase.outputs.append(Artifact("plan.md", "task_list", approval=ApprovalState.PENDING))
        phase.inputs.append(Artifact("notes.md", "notes", approval=ApprovalState.NOT_REQUIRED))
        phase.tasks.append(Task(id="010", name="Read the code"))
        return Project(
            name="demo", type="standard", branch="feat/demo",
            state="PlanningActive", phases={"planning": phase},
        )

    def test_approval_flags(self):
        data = yaml.safe_load(document.dumps(self._project()))
        planning = data["phases"]["planning"]
        assert planning["outputs"][0]["approved"] is False
        assert "approved" not in planning["inputs"][0]
        assert data["statechart"] == {"current_state": "PlanningActive"}

    def test_task_ids_stay_strings(self):
        project = document.loads(document.dumps(self._project()))
        assert project.phase("planning").tasks[0].id == "010"
        assert project.phase("planning").inputs[0].approval is ApprovalState.NOT_REQUIRED

    def test_not_a_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            document.loads(b"- just\n- a list\n")


class TestConfig:
    @patch.dict(os.environ, {
        "PO_ROOT": "/work/repo",
        "PO_STATE_DIR": ".state",
        "PO_EXECUTOR": "cursor",
        "PO_SKIP_PERMISSIONS": "yes",
        "PO_LOG_LEVEL": "debug",
    })
    def test_from_env(self):
        config = Config.from_env()
        assert config.state_path == Path("/work/repo/.state")
        assert config.history_db_path == Path("/work/repo/.state/history.db")
        assert config.executor == "cursor"
        assert config.skip_permissions is True
        assert config.log_level == "DEBUG"

    def test_defaults(self):
        config = Config(root=Path("/work/repo"))
        assert config.state_path == Path("/work/repo/.po")
        assert config.issue_label == "po"
        assert config.skip_permissions is False
