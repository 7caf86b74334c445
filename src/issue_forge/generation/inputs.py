"""Workflow inputs: the main analysis document and the per-task plan files."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from issue_forge.generation.file_matcher import normalize_slug

MAIN_TASK_ID = "main"
MAIN_ARTIFACT_NAME = "00-main-issue.md"

_TASK_FILE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?P<number>\d+)-(?P<slug>.+)\.md$", re.IGNORECASE),
    re.compile(r"^task-(?P<number>\d+)-(?P<slug>.+)\.md$", re.IGNORECASE),
)
_HEADING = re.compile(r"^#{1,6}\s+(?P<title>.+?)\s*$", re.MULTILINE)


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """One planned task that should become one issue draft."""

    task_id: str
    number: int
    slug: str
    title: str
    path: Path

    @property
    def artifact_name(self) -> str:
        return f"{self.number:02d}-{self.slug}.md"


@dataclass(slots=True)
class WorkflowInputs:
    """Everything the generation step reads; also the checksum domain."""

    main_path: Path | None
    tasks: list[TaskSpec] = field(default_factory=list)

    @property
    def task_paths(self) -> list[Path]:
        return [task.path for task in self.tasks]


def parse_task_file_name(name: str) -> tuple[int, str] | None:
    for pattern in _TASK_FILE_PATTERNS:
        match = pattern.match(name)
        if match is not None:
            return int(match.group("number")), normalize_slug(match.group("slug"))
    return None


def read_title(path: Path, default: str) -> str:
    match = _HEADING.search(path.read_text("utf-8", errors="replace"))
    if match is None:
        return default
    return match.group("title")


def load_workflow_inputs(main_path: Path | None, tasks_dir: Path | None) -> WorkflowInputs:
    """Load the main document path and task files sorted by task number."""

    if main_path is not None and not main_path.is_file():
        raise FileNotFoundError(f"Main input file not found: {main_path}")

    tasks: list[TaskSpec] = []
    if tasks_dir is not None:
        if not tasks_dir.is_dir():
            raise FileNotFoundError(f"Tasks directory not found: {tasks_dir}")
        seen: set[int] = set()
        for path in sorted(tasks_dir.iterdir()):
            if not path.is_file():
                continue
            parsed = parse_task_file_name(path.name)
            if parsed is None:
                continue
            number, slug = parsed
            if number in seen:
                raise ValueError(f"Duplicate task number {number} in {tasks_dir}")
            seen.add(number)
            tasks.append(
                TaskSpec(
                    task_id=f"task-{number}",
                    number=number,
                    slug=slug,
                    title=read_title(path, default=slug.replace("-", " ")),
                    path=path,
                ),
            )
    tasks.sort(key=lambda task: task.number)
    return WorkflowInputs(main_path=main_path, tasks=tasks)
