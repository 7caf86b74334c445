"""Adaptive batch scheduler driving the agent until every expected draft exists.

Each round splits the still-missing artifacts into batches, invokes the agent
once per batch, then scans the output directory. A failed batch is recorded
and the round continues. While artifacts are missing and rounds remain, the
batch size is halved for the next round.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar

from issue_forge.generation.backend.base import AgentRunRequest
from issue_forge.generation.context import (
    CallContext,
    GenerationCancelledError,
    effective_timeout,
)
from issue_forge.generation.inputs import (
    MAIN_ARTIFACT_NAME,
    MAIN_TASK_ID,
    WorkflowInputs,
    utc_now,
)
from issue_forge.generation.progress import (
    ArtifactDescriptor,
    MonotonicProgress,
    ProgressSink,
    ProgressStage,
)
from issue_forge.generation.resilience import ResilientExecutor
from issue_forge.generation.tracker import ExpectedArtifact, GenerationTracker

logger = logging.getLogger(__name__)

DEFAULT_MAX_TASKS_PER_BATCH = 10
# Filesystem mtimes come from a coarser clock than datetime.now().
MTIME_SLACK = timedelta(seconds=1)
FILES_SECTION_HEADER = "Files to write:"
OUTPUT_DIR_PREFIX = "Output directory: "

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Batching and invocation settings for one generation run."""

    max_tasks_per_batch: int = DEFAULT_MAX_TASKS_PER_BATCH
    max_generation_retries: int = 2
    fallback_timeout_seconds: float = 600.0
    model: str = ""
    output_format: str = "markdown"
    reasoning_effort: str | None = None

    @property
    def max_attempts(self) -> int:
        return max(0, self.max_generation_retries) + 1


@dataclass(frozen=True, slots=True)
class BatchError:
    round_no: int
    batch_no: int
    file_names: tuple[str, ...]
    error: str

    def describe(self) -> str:
        return (
            f"round {self.round_no} batch {self.batch_no} "
            f"({', '.join(self.file_names)}): {self.error}"
        )


@dataclass(frozen=True, slots=True)
class GeneratedArtifact:
    """A manifest entry together with the file that satisfied it."""

    expected: ExpectedArtifact
    file_name: str
    path: Path


@dataclass(slots=True)
class GenerationOutcome:
    workflow_id: str
    output_dir: Path
    artifacts: list[GeneratedArtifact]
    rounds: int
    batch_errors: list[BatchError] = field(default_factory=list)
    reused: bool = False


class MissingArtifactsError(RuntimeError):
    """Rounds were exhausted while some expected artifacts never appeared."""

    def __init__(
        self,
        *,
        workflow_id: str,
        missing: Sequence[str],
        missing_task_ids: Sequence[str],
        batch_errors: Sequence[BatchError],
        output_dir: Path | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.output_dir = output_dir
        self.missing = list(missing)
        self.missing_task_ids = list(missing_task_ids)
        self.batch_errors = list(batch_errors)
        message = (
            f"workflow {workflow_id}: {len(self.missing)} artifact(s) missing after retries: "
            f"{', '.join(self.missing)}"
        )
        if self.batch_errors:
            message += "; batch errors: " + "; ".join(
                batch_error.describe() for batch_error in self.batch_errors
            )
        super().__init__(message)


def build_manifest(inputs: WorkflowInputs) -> list[ExpectedArtifact]:
    """Main artifact (when a main document exists) then one entry per task, in task order."""

    manifest: list[ExpectedArtifact] = []
    if inputs.main_path is not None:
        manifest.append(
            ExpectedArtifact(file_name=MAIN_ARTIFACT_NAME, task_id=MAIN_TASK_ID, is_main=True),
        )
    manifest.extend(
        ExpectedArtifact(
            file_name=task.artifact_name,
            task_id=task.task_id,
            is_main=False,
            task=task,
        )
        for task in inputs.tasks
    )
    return manifest


def split_into_batches(
    items: Sequence[T],
    batch_size: int,
    *,
    ceiling: int = DEFAULT_MAX_TASKS_PER_BATCH,
) -> list[list[T]]:
    """Chunk items; non-positive sizes fall back to the ceiling, larger ones are clamped."""

    ceiling = max(1, ceiling)
    size = ceiling if batch_size <= 0 else min(batch_size, ceiling)
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def build_batch_prompt(
    *,
    workflow_id: str,
    batch: Sequence[ExpectedArtifact],
    inputs: WorkflowInputs,
    output_dir: Path,
) -> str:
    """Prompt asking the agent to write exactly the files of one batch."""

    source_lines: list[str] = []
    file_lines: list[str] = []
    for artifact in batch:
        if artifact.is_main:
            source_lines.append(f"- main issue: {inputs.main_path}")
            file_lines.append(f"- {artifact.file_name} (main issue summarising the analysis)")
        elif artifact.task is not None:
            source_lines.append(f"- {artifact.task_id}: {artifact.task.path}")
            file_lines.append(
                f"- {artifact.file_name} ({artifact.task_id}: {artifact.task.title})",
            )

    return "\n".join(
        [
            f"Generate GitHub issue drafts for workflow {workflow_id}.",
            "",
            "Read these source documents:",
            *source_lines,
            "",
            f"{OUTPUT_DIR_PREFIX}{output_dir}",
            FILES_SECTION_HEADER,
            *file_lines,
            "",
            "Each file must start with a '# <title>' heading followed by the issue body.",
            "Write only the files listed above. Do not modify the source documents.",
            "",
        ],
    )


class BatchScheduler:
    """Runs rounds of batched agent calls until the manifest is satisfied."""

    def __init__(
        self,
        executor: ResilientExecutor,
        *,
        config: SchedulerConfig | None = None,
        progress_sink: ProgressSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.executor = executor
        self.config = config or SchedulerConfig()
        self.progress_sink = progress_sink
        self._clock = clock

    def run(
        self,
        *,
        workflow_id: str,
        inputs: WorkflowInputs,
        output_dir: Path,
        context: CallContext | None = None,
        prescan: bool = True,
    ) -> GenerationOutcome:
        """Generate every missing manifest artifact into ``output_dir``.

        With ``prescan`` off, files already in the directory count only once rewritten.
        """

        # Agents run with the output directory as cwd, so relative paths would drift.
        output_dir = output_dir.resolve()
        manifest = build_manifest(inputs)
        by_name = {artifact.file_name: artifact for artifact in manifest}
        tracker = GenerationTracker(workflow_id, start_time=self._clock() - MTIME_SLACK)
        for artifact in manifest:
            tracker.add_expected(artifact.file_name, artifact.task_id)
        progress = MonotonicProgress(
            self.progress_sink,
            workflow_id=workflow_id,
            total=len(manifest),
        )

        output_dir.mkdir(parents=True, exist_ok=True)
        if prescan:
            tracker.prescan(output_dir)
        else:
            tracker.baseline(output_dir)
        progress.confirm(len(manifest) - len(tracker.get_missing_files()))
        progress.report(
            ProgressStage.STARTED,
            message=f"{len(manifest)} artifact(s) expected, "
            f"{len(tracker.get_missing_files())} missing",
        )

        batch_errors: list[BatchError] = []
        batch_size = max(1, self.config.max_tasks_per_batch)
        rounds = 0
        for round_no in range(1, self.config.max_attempts + 1):
            missing = tracker.get_missing_files()
            if not missing:
                break
            rounds = round_no
            missing_set = set(missing)
            pending = [artifact for artifact in manifest if artifact.file_name in missing_set]
            batches = split_into_batches(
                pending,
                batch_size,
                ceiling=self.config.max_tasks_per_batch,
            )
            logger.info(
                "Generation round %d/%d: workflow=%s missing=%d batches=%d batch_size=%d",
                round_no,
                self.config.max_attempts,
                workflow_id,
                len(pending),
                len(batches),
                batch_size,
            )
            for batch_no, batch in enumerate(batches, start=1):
                error = self._run_batch(
                    workflow_id=workflow_id,
                    inputs=inputs,
                    output_dir=output_dir,
                    batch=batch,
                    batch_label=f"round {round_no} batch {batch_no}/{len(batches)}",
                    progress=progress,
                    context=context,
                )
                if error is not None:
                    batch_errors.append(
                        BatchError(
                            round_no=round_no,
                            batch_no=batch_no,
                            file_names=tuple(artifact.file_name for artifact in batch),
                            error=str(error),
                        ),
                    )

            self._scan(tracker, output_dir, by_name, progress)
            if tracker.get_missing_files() and round_no < self.config.max_attempts:
                batch_size = max(1, batch_size // 2)

        self._scan(tracker, output_dir, by_name, progress)
        missing = tracker.get_missing_files()
        if missing:
            raise MissingArtifactsError(
                workflow_id=workflow_id,
                missing=missing,
                missing_task_ids=tracker.missing_task_ids(),
                batch_errors=batch_errors,
                output_dir=output_dir,
            )

        artifacts = [
            GeneratedArtifact(
                expected=artifact,
                file_name=tracker.actual_names[artifact.file_name],
                path=output_dir / tracker.actual_names[artifact.file_name],
            )
            for artifact in manifest
        ]
        progress.report(
            ProgressStage.COMPLETED,
            current=len(manifest),
            message=f"all {len(manifest)} artifact(s) generated",
        )
        return GenerationOutcome(
            workflow_id=workflow_id,
            output_dir=output_dir,
            artifacts=artifacts,
            rounds=rounds,
            batch_errors=batch_errors,
        )

    def _run_batch(  # noqa: PLR0913
        self,
        *,
        workflow_id: str,
        inputs: WorkflowInputs,
        output_dir: Path,
        batch: Sequence[ExpectedArtifact],
        batch_label: str,
        progress: MonotonicProgress,
        context: CallContext | None,
    ) -> Exception | None:
        if context is not None:
            context.check()
        progress.report(
            ProgressStage.BATCH_STARTED,
            message=f"{batch_label}: {len(batch)} file(s)",
        )
        request = AgentRunRequest(
            prompt=build_batch_prompt(
                workflow_id=workflow_id,
                batch=batch,
                inputs=inputs,
                output_dir=output_dir,
            ),
            model=self.config.model,
            output_format=self.config.output_format,
            timeout_seconds=effective_timeout(context, self.config.fallback_timeout_seconds),
            workdir=output_dir,
            reasoning_effort=self.config.reasoning_effort,
        )
        try:
            self.executor.execute(request, context)
        except GenerationCancelledError:
            raise
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Generation %s failed: workflow=%s error=%s",
                batch_label,
                workflow_id,
                error,
            )
            progress.report(ProgressStage.BATCH_FAILED, message=f"{batch_label}: {error}")
            return error
        progress.report(ProgressStage.BATCH_COMPLETED, message=batch_label)
        return None

    def _scan(
        self,
        tracker: GenerationTracker,
        output_dir: Path,
        by_name: dict[str, ExpectedArtifact],
        progress: MonotonicProgress,
    ) -> None:
        before = set(tracker.generated_files)
        confirmed = len(by_name) - len(tracker.get_missing_files())
        tracker.scan(output_dir)
        for name in sorted(set(tracker.generated_files) - before):
            expected = by_name.get(name)
            if expected is None:
                continue
            confirmed = progress.confirm(confirmed + 1)
            progress.report(
                ProgressStage.FILE_OBSERVED,
                current=confirmed,
                artifact=ArtifactDescriptor(
                    file_name=tracker.actual_names.get(name, name),
                    title=expected.task.title if expected.task is not None else "",
                    task_id=expected.task_id,
                    is_main=expected.is_main,
                ),
                message=f"observed {name}",
            )
