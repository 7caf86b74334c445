"""Per-workflow directory layout under the state root."""

from __future__ import annotations

import shutil
from pathlib import Path

STATE_FILE_NAME = ".generation-state.json"
DRAFTS_DIR_NAME = "draft"


class WorkflowWorkdir:
    """Creates deterministic per-workflow directory layout.

    ``<root>/<workflow_id>/.generation-state.json`` holds the idempotency record
    and ``<root>/<workflow_id>/draft/`` receives the generated issue files.
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def workflow_dir(self, workflow_id: str) -> Path:
        return self.root_dir / validate_workflow_id(workflow_id)

    def state_path(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / STATE_FILE_NAME

    def drafts_dir(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / DRAFTS_DIR_NAME

    def clean_drafts(self, workflow_id: str) -> bool:
        """Remove the drafts directory; return whether anything was removed."""

        drafts = self.drafts_dir(workflow_id)
        if not drafts.exists():
            return False
        shutil.rmtree(drafts)
        return True


def validate_workflow_id(workflow_id: str) -> str:
    value = workflow_id.strip()
    if not value:
        raise ValueError("workflow id must be a non-empty string")
    if "/" in value or "\\" in value or value in {".", ".."}:
        raise ValueError(f"workflow id must be a single path segment: {workflow_id!r}")
    return value


def clean_drafts_directory(state_root: Path, workflow_id: str) -> bool:
    """Remove the draft directory of one workflow. A missing directory is not an error."""

    return WorkflowWorkdir(state_root).clean_drafts(workflow_id)
