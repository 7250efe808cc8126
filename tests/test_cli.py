"""Tests for the CLI."""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from phase_orchestrator.cli import main


@pytest.fixture
def cli_env():
    """Set up a temp working copy for CLI testing."""
    with tempfile.TemporaryDirectory() as tmp:
        env = {
            "PO_ROOT": tmp,
            "PO_EXECUTOR": "claude",
        }
        old_env = {}
        for k, v in env.items():
            old_env[k] = os.environ.get(k)
            os.environ[k] = v

        yield CliRunner(), Path(tmp)

        for k, v in old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _init(runner, branch="feat/parser"):
    return runner.invoke(main, ["init", "parser", "-d", "Rewrite the parser", "--branch", branch])


class TestCLI:
    def test_help(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Phase Orchestrator" in result.output

    def test_init_writes_state(self, cli_env):
        runner, root = cli_env
        result = _init(runner)
        assert result.exit_code == 0
        assert "Project created: parser (standard)" in result.output
        assert "State: PlanningActive" in result.output
        assert (root / ".po" / "project" / "state.yaml").exists()

    def test_init_on_protected_branch(self, cli_env):
        runner, root = cli_env
        result = _init(runner, branch="main")
        assert result.exit_code == 1
        assert "Error: cannot create a project on protected branch 'main'" in result.output
        assert not (root / ".po" / "project").exists()

    def test_status_without_project(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["status"])
        assert result.exit_code == 1
        assert "no active project" in result.output

    def test_planning_to_implementation(self, cli_env):
        runner, _ = cli_env
        _init(runner)

        result = runner.invoke(main, ["complete"])
        assert result.exit_code == 1
        assert "no approved task_list" in result.output

        result = runner.invoke(main, ["artifact", "add", "plan.md", "--type", "task_list"])
        assert result.exit_code == 0
        assert "Added output: plan.md" in result.output

        runner.invoke(main, ["artifact", "approve", "plan.md"])
        result = runner.invoke(main, ["complete"])
        assert result.exit_code == 0
        assert "PlanningActive -> ImplementationPlanning" in result.output

        result = runner.invoke(main, ["task", "add", "Write lexer"])
        assert result.exit_code == 0
        assert "Created task: 010" in result.output

        result = runner.invoke(main, ["task", "add", "Write parser", "--depends-on", "010"])
        assert "Created task: 020" in result.output
        assert "Depends on: 010" in result.output

        result = runner.invoke(main, ["set", "tasks_approved", "true"])
        assert result.exit_code == 0
        assert "ImplementationPlanning -> ImplementationExecuting" in result.output

        result = runner.invoke(main, ["task", "update", "010", "--status", "completed", "--meta", "pr=12"])
        assert result.exit_code == 0
        assert "Updated task: 010 (completed)" in result.output

        result = runner.invoke(main, ["complete"])
        assert result.exit_code == 1
        assert "1 unresolved task (020)" in result.output

        result = runner.invoke(main, ["task", "list"])
        assert "010: Write lexer (completed)" in result.output
        assert "020: Write parser (pending) [depends: 010]" in result.output

        result = runner.invoke(main, ["order"])
        assert "1. 010: Write lexer" in result.output

    def test_status_json(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["status", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["state"] == "PlanningActive"
        assert data["phase"] == "planning"
        assert data["phases"]["planning"]["status"] == "in_progress"

    def test_invalid_meta(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["task", "add", "x", "--meta", "novalue", "--phase", "implementation"])
        assert result.exit_code != 0
        assert "KEY=VALUE" in result.output

    def test_breakdown_skip_discovery(self, cli_env):
        runner, _ = cli_env
        _init(runner, branch="breakdown/parser")
        result = runner.invoke(main, ["skip", "discovery"])
        assert result.exit_code == 0
        assert "Discovery -> Active" in result.output

    def test_log(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        runner.invoke(main, ["artifact", "add", "plan.md", "--type", "task_list"])
        result = runner.invoke(main, ["log"])
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert "artifact add plan.md" in lines[0]
        assert "init standard" in lines[1]

    def test_agent_roles(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["agent", "roles"])
        assert result.exit_code == 0
        assert "implementer:" in result.output
        assert "decomposer:" in result.output

    def test_resume_before_spawn(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["agent", "resume", "planner", "--prompt", "Continue"])
        assert result.exit_code == 1
        assert "no session found for role planner" in result.output

    @patch("phase_orchestrator.cli.get_current_branch", return_value="explore/caching")
    def test_init_detects_type_from_current_branch(self, _branch, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["init", "caching", "-d", "Compare caches"])
        assert result.exit_code == 0
        assert "Project created: caching (exploration)" in result.output
        assert "Branch: explore/caching" in result.output

    def test_set_unparseable_value(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["set", "note", "[unclosed"])
        assert result.exit_code == 2
        assert "cannot parse '[unclosed'" in result.output
        assert isinstance(result.exception, SystemExit)

    def test_unparseable_meta_value(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["artifact", "add", "plan.md", "--type", "task_list", "--meta", "k={oops"])
        assert result.exit_code == 2
        assert "--meta" in result.output

    def test_task_feedback(self, cli_env):
        runner, _ = cli_env
        _init(runner, branch="design/parser")
        runner.invoke(main, ["task", "add", "Draft grammar"])

        result = runner.invoke(main, ["task", "feedback", "add", "010", "Cover error recovery", "-i"])
        assert result.exit_code == 0
        assert "Added feedback 001 to task 010" in result.output

        result = runner.invoke(main, ["task", "show", "010"])
        assert "Iteration: 2" in result.output
        assert "[001] (pending) Cover error recovery" in result.output

        result = runner.invoke(main, ["task", "feedback", "mark-addressed", "010", "001"])
        assert result.exit_code == 0
        assert "Feedback 001 on task 010 addressed" in result.output

        result = runner.invoke(main, ["task", "feedback", "mark-addressed", "010", "001"])
        assert result.exit_code == 1
        assert "Error: feedback 001 is already addressed" in result.output

        result = runner.invoke(main, ["task", "iterate", "010"])
        assert "Task 010 is on iteration 3" in result.output

    def test_resume_feedback_needs_task(self, cli_env):
        runner, _ = cli_env
        _init(runner)
        result = runner.invoke(main, ["agent", "resume", "planner", "--prompt", "More", "--feedback"])
        assert result.exit_code == 1
        assert "feedback requires a task" in result.output
