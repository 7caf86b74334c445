from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from issue_forge.generation.backend.base import AgentRunRequest, AgentRunResult
from issue_forge.generation.backend.echo_agent import parse_prompt
from issue_forge.generation.context import CallContext, GenerationCancelledError
from issue_forge.generation.inputs import WorkflowInputs, load_workflow_inputs
from issue_forge.generation.progress import ArtifactDescriptor, ProgressStage
from issue_forge.generation.resilience import ResilienceConfig, ResilientExecutor
from issue_forge.generation.scheduler import (
    BatchScheduler,
    MissingArtifactsError,
    SchedulerConfig,
    build_batch_prompt,
    build_manifest,
    split_into_batches,
)

pytestmark = [
    allure.epic("Generation Scheduling"),
    allure.feature("Adaptive Batch Scheduler"),
]


class WritingAgent:
    """Writes listed drafts; ``per_call`` limits files per call, ``skip`` never appears."""

    def __init__(
        self,
        *,
        per_call: int = 0,
        skip: tuple[str, ...] = (),
        fail_calls: tuple[int, ...] = (),
        write_when_batch_at_most: int = 0,
        error: Exception | None = None,
    ) -> None:
        self.per_call = per_call
        self.skip = skip
        self.fail_calls = fail_calls
        self.write_when_batch_at_most = write_when_batch_at_most
        self.error = error
        self.batches: list[list[str]] = []

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        output_dir, files = parse_prompt(request.prompt)
        assert output_dir == request.workdir
        names = [name for name, _note in files]
        self.batches.append(names)
        if len(self.batches) in self.fail_calls:
            raise self.error or ValueError("agent rejected the prompt")
        if self.write_when_batch_at_most and len(names) > self.write_when_batch_at_most:
            return AgentRunResult(output_text="too many files")
        writable = [name for name in names if name not in self.skip]
        if self.per_call:
            writable = writable[: self.per_call]
        for name in writable:
            (output_dir / name).write_text(f"# {name}\n\nbody\n", "utf-8")
        return AgentRunResult(output_text="ok")


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[ProgressStage, int, int, ArtifactDescriptor | None]] = []

    def on_progress(  # noqa: PLR0913
        self,
        workflow_id: str,
        stage: ProgressStage,
        current: int,
        total: int,
        artifact: ArtifactDescriptor | None,
        message: str,
    ) -> None:
        self.events.append((stage, current, total, artifact))


def _scheduler(agent: WritingAgent, sink: RecordingSink | None = None, **config) -> BatchScheduler:
    executor = ResilientExecutor(
        agent,
        config=ResilienceConfig(max_retries=0, failure_threshold=100),
        sleeper=lambda seconds, context: None,
    )
    return BatchScheduler(executor, config=SchedulerConfig(**config), progress_sink=sink)


def test_manifest_lists_main_then_tasks(workflow_inputs: WorkflowInputs) -> None:
    manifest = build_manifest(workflow_inputs)

    assert [(item.file_name, item.task_id, item.is_main) for item in manifest] == [
        ("00-main-issue.md", "main", True),
        ("01-auth-login.md", "task-1", False),
        ("02-db-schema.md", "task-2", False),
    ]


def test_split_into_batches_clamps_to_ceiling() -> None:
    items = list(range(7))

    assert split_into_batches(items, 3, ceiling=10) == [[0, 1, 2], [3, 4, 5], [6]]
    assert split_into_batches(items, 50, ceiling=4) == [[0, 1, 2, 3], [4, 5, 6]]
    assert split_into_batches(items, 0, ceiling=5) == [[0, 1, 2, 3, 4], [5, 6]]
    assert split_into_batches([], 3) == []


def test_prompt_round_trips_through_echo_parser(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    manifest = build_manifest(workflow_inputs)
    prompt = build_batch_prompt(
        workflow_id="wf-1",
        batch=manifest[1:],
        inputs=workflow_inputs,
        output_dir=tmp_path / "out",
    )

    output_dir, files = parse_prompt(prompt)

    assert output_dir == tmp_path / "out"
    assert files == [
        ("01-auth-login.md", "task-1: Add login endpoint"),
        ("02-db-schema.md", "task-2: Create user table"),
    ]
    assert str(workflow_inputs.tasks[0].path) in prompt


def test_end_to_end_all_artifacts_generated_with_monotonic_progress(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    agent = WritingAgent()
    sink = RecordingSink()
    output_dir = tmp_path / "draft"

    outcome = _scheduler(agent, sink).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=output_dir,
    )

    assert outcome.rounds == 1
    assert outcome.batch_errors == []
    assert [artifact.expected.task_id for artifact in outcome.artifacts] == [
        "main",
        "task-1",
        "task-2",
    ]
    assert all(artifact.path.is_file() for artifact in outcome.artifacts)
    assert agent.batches == [["00-main-issue.md", "01-auth-login.md", "02-db-schema.md"]]

    currents = [current for _stage, current, _total, _artifact in sink.events]
    assert currents == sorted(currents)
    assert sink.events[0][0] == ProgressStage.STARTED
    assert sink.events[-1][:3] == (ProgressStage.COMPLETED, 3, 3)
    observed = [
        artifact.task_id
        for stage, _current, _total, artifact in sink.events
        if stage == ProgressStage.FILE_OBSERVED and artifact is not None
    ]
    assert observed == ["main", "task-1", "task-2"]


def test_partial_output_converges_over_rounds(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    agent = WritingAgent(per_call=1)

    outcome = _scheduler(agent, max_generation_retries=2).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=tmp_path / "draft",
    )

    assert outcome.rounds == 3
    assert agent.batches == [
        ["00-main-issue.md", "01-auth-login.md", "02-db-schema.md"],
        ["01-auth-login.md", "02-db-schema.md"],
        ["02-db-schema.md"],
    ]


def test_batch_size_halves_each_round(tmp_path: Path) -> None:
    tasks_dir = tmp_path / "tasks"
    tasks_dir.mkdir()
    for number in range(1, 5):
        (tasks_dir / f"0{number}-step-{number}.md").write_text(f"# Step {number}\n", "utf-8")
    inputs = load_workflow_inputs(None, tasks_dir)
    agent = WritingAgent(write_when_batch_at_most=1)

    outcome = _scheduler(agent, max_tasks_per_batch=4, max_generation_retries=2).run(
        workflow_id="wf-1",
        inputs=inputs,
        output_dir=tmp_path / "draft",
    )

    assert [len(batch) for batch in agent.batches] == [4, 2, 2, 1, 1, 1, 1]
    assert outcome.rounds == 3
    assert len(outcome.artifacts) == 4


def test_missing_artifacts_are_named_after_rounds_exhausted(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    agent = WritingAgent(skip=("02-db-schema.md",))

    with pytest.raises(MissingArtifactsError) as exc_info:
        _scheduler(agent, max_generation_retries=1).run(
            workflow_id="wf-1",
            inputs=workflow_inputs,
            output_dir=tmp_path / "draft",
        )

    error = exc_info.value
    assert error.missing == ["02-db-schema.md"]
    assert error.missing_task_ids == ["task-2"]
    assert "02-db-schema.md" in str(error)
    assert len(agent.batches) == 2


def test_failed_batch_is_recorded_and_later_round_recovers(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    agent = WritingAgent(fail_calls=(1,))

    outcome = _scheduler(agent).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=tmp_path / "draft",
    )

    assert outcome.rounds == 2
    assert len(outcome.batch_errors) == 1
    batch_error = outcome.batch_errors[0]
    assert (batch_error.round_no, batch_error.batch_no) == (1, 1)
    assert "agent rejected the prompt" in batch_error.error


def test_transient_failure_of_lone_batch_recovers_at_halved_size(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    agent = WritingAgent(fail_calls=(2,), error=RuntimeError("503 service unavailable"))
    sink = RecordingSink()

    outcome = _scheduler(agent, sink, max_tasks_per_batch=2, max_generation_retries=2).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=tmp_path / "draft",
    )

    assert agent.batches == [
        ["00-main-issue.md", "01-auth-login.md"],
        ["02-db-schema.md"],
        ["02-db-schema.md"],
    ]
    assert outcome.rounds == 2
    assert [(item.round_no, item.batch_no) for item in outcome.batch_errors] == [(1, 2)]
    assert "503" in outcome.batch_errors[0].error
    assert all(artifact.path.is_file() for artifact in outcome.artifacts)

    currents = [current for _stage, current, _total, _artifact in sink.events]
    assert currents == sorted(currents)
    assert sink.events[-1][:3] == (ProgressStage.COMPLETED, 3, 3)
    observed = [
        (artifact.task_id, current)
        for stage, current, _total, artifact in sink.events
        if stage == ProgressStage.FILE_OBSERVED and artifact is not None
    ]
    assert observed[-1] == ("task-2", 3)
    assert observed[:2] == [("main", 1), ("task-1", 2)]
    round_one_done = next(
        index
        for index, (_stage, _current, _total, artifact) in enumerate(sink.events)
        if artifact is not None and artifact.task_id == "task-1"
    )
    assert min(currents[round_one_done:]) >= 2


def test_rewritten_files_count_when_prescan_is_off(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    output_dir = tmp_path / "draft"
    output_dir.mkdir()
    for name in ("00-main-issue.md", "01-auth-login.md", "02-db-schema.md"):
        path = output_dir / name
        path.write_text("# existing\n", "utf-8")
        os.utime(path, (path.stat().st_atime - 60, path.stat().st_mtime - 60))
    agent = WritingAgent()

    outcome = _scheduler(agent).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=output_dir,
        prescan=False,
    )

    assert agent.batches == [["00-main-issue.md", "01-auth-login.md", "02-db-schema.md"]]
    assert outcome.rounds == 1
    assert (output_dir / "02-db-schema.md").read_text("utf-8").endswith("body\n")


def test_existing_drafts_are_reused_without_agent_calls(
    workflow_inputs: WorkflowInputs,
    tmp_path: Path,
) -> None:
    output_dir = tmp_path / "draft"
    output_dir.mkdir()
    for name in ("00-main-issue.md", "1-auth-login.md", "02-db-schema.md"):
        (output_dir / name).write_text("# existing\n", "utf-8")
    agent = WritingAgent()

    outcome = _scheduler(agent).run(
        workflow_id="wf-1",
        inputs=workflow_inputs,
        output_dir=output_dir,
    )

    assert agent.batches == []
    assert outcome.rounds == 0
    assert outcome.artifacts[1].file_name == "1-auth-login.md"


def test_cancelled_context_aborts_run(workflow_inputs: WorkflowInputs, tmp_path: Path) -> None:
    context = CallContext()
    context.cancel()
    agent = WritingAgent()

    with pytest.raises(GenerationCancelledError):
        _scheduler(agent).run(
            workflow_id="wf-1",
            inputs=workflow_inputs,
            output_dir=tmp_path / "draft",
            context=context,
        )

    assert agent.batches == []
