"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from issue_forge.generation.inputs import WorkflowInputs, load_workflow_inputs

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m issue_forge.generation.backend.echo_agent --prompt-file {{prompt_file}}"
)


@pytest.fixture()
def echo_agent(monkeypatch):
    """Point the agent settings at the local echo agent and keep retries instant."""

    monkeypatch.setenv("ISSUE_FORGE_AGENT", "echo")
    monkeypatch.setenv("ISSUE_FORGE_MODEL", "echo-model")
    monkeypatch.setenv("ISSUE_FORGE_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("ISSUE_FORGE_INITIAL_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("ISSUE_FORGE_MAX_BACKOFF_SECONDS", "0")
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def plan_dir(tmp_path: Path) -> Path:
    """A main analysis document plus two task files."""

    root = tmp_path / "plan"
    tasks = root / "tasks"
    tasks.mkdir(parents=True)
    (root / "analysis.md").write_text("# Consolidated analysis\n\nDetails.\n", "utf-8")
    (tasks / "01-auth-login.md").write_text("# Add login endpoint\n\nSteps.\n", "utf-8")
    (tasks / "02-db-schema.md").write_text("# Create user table\n\nSteps.\n", "utf-8")
    return root


@pytest.fixture()
def workflow_inputs(plan_dir: Path) -> WorkflowInputs:
    return load_workflow_inputs(plan_dir / "analysis.md", plan_dir / "tasks")
