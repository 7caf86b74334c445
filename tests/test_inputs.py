from __future__ import annotations

from pathlib import Path

import allure
import pytest

from issue_forge.generation.inputs import (
    WorkflowInputs,
    load_workflow_inputs,
    parse_task_file_name,
)

pytestmark = [
    allure.epic("Generation Inputs"),
    allure.feature("Task Plan Loading"),
]


def test_loads_tasks_sorted_by_number_with_titles(workflow_inputs: WorkflowInputs) -> None:
    assert [task.task_id for task in workflow_inputs.tasks] == ["task-1", "task-2"]
    assert [task.artifact_name for task in workflow_inputs.tasks] == [
        "01-auth-login.md",
        "02-db-schema.md",
    ]
    assert workflow_inputs.tasks[0].title == "Add login endpoint"
    assert workflow_inputs.main_path is not None
    assert workflow_inputs.main_path.name == "analysis.md"


def test_parse_task_file_name_variants() -> None:
    assert parse_task_file_name("3-Cache-Layer.md") == (3, "cache-layer")
    assert parse_task_file_name("task-12-retry.md") == (12, "retry")
    assert parse_task_file_name("notes.md") is None
    assert parse_task_file_name("01-setup.txt") is None


def test_title_defaults_to_slug_and_other_files_are_ignored(tmp_path: Path) -> None:
    (tmp_path / "10-cache-layer.md").write_text("no heading here\n", "utf-8")
    (tmp_path / "README.txt").write_text("ignored\n", "utf-8")

    inputs = load_workflow_inputs(None, tmp_path)

    assert inputs.main_path is None
    assert [(task.task_id, task.title) for task in inputs.tasks] == [("task-10", "cache layer")]
    assert inputs.tasks[0].artifact_name == "10-cache-layer.md"


def test_duplicate_task_numbers_are_rejected(tmp_path: Path) -> None:
    (tmp_path / "01-a.md").write_text("# A\n", "utf-8")
    (tmp_path / "task-1-b.md").write_text("# B\n", "utf-8")

    with pytest.raises(ValueError, match="Duplicate task number 1"):
        load_workflow_inputs(None, tmp_path)


def test_missing_inputs_raise(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Main input file"):
        load_workflow_inputs(tmp_path / "missing.md", None)
    with pytest.raises(FileNotFoundError, match="Tasks directory"):
        load_workflow_inputs(None, tmp_path / "missing")
