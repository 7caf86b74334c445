"""Controllers for issue generation CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from issue_forge.config import Settings
from issue_forge.generation.backend import CliAgentBackend
from issue_forge.generation.context import CallContext, GenerationCancelledError
from issue_forge.generation.file_matcher import FileMatcher, MatchTarget
from issue_forge.generation.idempotency import (
    IdempotencyStore,
    RecordStoreError,
    truncate_checksum,
)
from issue_forge.generation.inputs import WorkflowInputs, load_workflow_inputs
from issue_forge.generation.metrics import render_metrics_lines
from issue_forge.generation.progress import LoggingProgressSink, ProgressSink
from issue_forge.generation.resilience import ResilienceConfig, ResilientExecutor
from issue_forge.generation.scheduler import (
    BatchScheduler,
    MissingArtifactsError,
    SchedulerConfig,
)
from issue_forge.generation.service import GenerationService
from issue_forge.generation.workdir import WorkflowWorkdir


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for draft generation."""

    state_root: Path | None
    workflow_id: str
    main_path: Path | None
    tasks_dir: Path | None
    output_dir: Path | None = None
    force: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class WorkflowCommand:
    """CLI input for commands addressing one workflow record."""

    state_root: Path | None
    workflow_id: str


@dataclass(slots=True)
class CommandResult:
    """Report lines to render in CLI plus the failure message, if any."""

    lines: list[str]
    success: bool = True
    error: str = ""


class IssueForgeCliController:
    """Coordinates generation, status and reset CLI operations."""

    def __init__(self, progress_sink: ProgressSink | None = None) -> None:
        self.progress_sink = progress_sink or LoggingProgressSink()

    def generate(self, command: GenerateCommand) -> CommandResult:
        try:
            settings = Settings.from_env(state_root=command.state_root)
            settings.validate()
            inputs = load_workflow_inputs(command.main_path, command.tasks_dir)
        except (ValueError, FileNotFoundError) as error:
            return CommandResult(lines=[], success=False, error=str(error))

        executor = build_executor(settings)
        service = build_generation_service(
            settings,
            executor=executor,
            progress_sink=self.progress_sink,
        )
        context = (
            CallContext.with_timeout(command.timeout_seconds)
            if command.timeout_seconds is not None
            else None
        )

        try:
            outcome = service.ensure_generated(
                command.workflow_id,
                inputs,
                output_dir=command.output_dir,
                context=context,
                force=command.force,
            )
        except MissingArtifactsError as error:
            lines = [f"Missing artifact: {name}" for name in error.missing]
            lines.extend(f"Batch error: {batch.describe()}" for batch in error.batch_errors)
            if error.output_dir is not None:
                lines.extend(_unrecognized_file_lines(inputs, error.output_dir))
            lines.extend(render_metrics_lines(executor.metrics.snapshot()))
            return CommandResult(
                lines=lines,
                success=False,
                error=(
                    f"Generation incomplete for workflow {command.workflow_id}: "
                    f"missing {', '.join(error.missing)}"
                ),
            )
        except (GenerationCancelledError, RecordStoreError, ValueError) as error:
            return CommandResult(
                lines=render_metrics_lines(executor.metrics.snapshot()),
                success=False,
                error=str(error),
            )

        status = "reused" if outcome.reused else f"generated in {outcome.rounds} round(s)"
        lines = [
            f"Workflow {outcome.workflow_id}: {len(outcome.artifacts)} draft(s) {status}",
            f"Output directory: {outcome.output_dir}",
        ]
        lines.extend(
            f"- {artifact.expected.task_id}: {artifact.path}" for artifact in outcome.artifacts
        )
        if outcome.batch_errors:
            lines.append(f"Recovered batch errors: {len(outcome.batch_errors)}")
        if not outcome.reused:
            lines.extend(render_metrics_lines(executor.metrics.snapshot()))
        return CommandResult(lines=lines)

    def status(self, command: WorkflowCommand) -> CommandResult:
        try:
            settings = Settings.from_env(state_root=command.state_root)
            store = IdempotencyStore(WorkflowWorkdir(settings.generation.state_root))
            record = store.load(command.workflow_id)
        except (RecordStoreError, ValueError) as error:
            return CommandResult(lines=[], success=False, error=str(error))
        if record is None:
            return CommandResult(
                lines=[f"No generation record for workflow {command.workflow_id}."],
            )

        state = "complete" if record.is_complete() else "incomplete"
        lines = [
            f"Workflow: {record.workflow_id}",
            f"State: {state}",
            f"Input checksum: {truncate_checksum(record.input_checksum)}",
            f"Started at: {record.started_at.isoformat()}",
            "Completed at: "
            + (record.completed_at.isoformat() if record.completed_at else "-"),
        ]
        if record.error_message:
            lines.append(f"Error: {record.error_message}")
        lines.append(f"Generated files: {len(record.generated_files)}")
        lines.extend(
            f"- {info.file_name} task={info.task_id} checksum={truncate_checksum(info.checksum)}"
            for info in record.generated_files
        )
        lines.append(f"Created issues: {len(record.created_issues)}")
        lines.extend(
            f"- #{issue.number} task={issue.task_id} {issue.url}".rstrip()
            for issue in record.created_issues
        )
        return CommandResult(lines=lines)

    def reset(self, command: WorkflowCommand) -> CommandResult:
        try:
            settings = Settings.from_env(state_root=command.state_root)
            workdir = WorkflowWorkdir(settings.generation.state_root)
            store = IdempotencyStore(workdir)
            record_removed = store.delete(command.workflow_id)
            drafts_removed = workdir.clean_drafts(command.workflow_id)
        except (RecordStoreError, ValueError, OSError) as error:
            return CommandResult(lines=[], success=False, error=str(error))
        return CommandResult(
            lines=[
                f"Workflow {command.workflow_id} reset: "
                f"record_removed={record_removed} drafts_removed={drafts_removed}",
            ],
        )


def build_executor(settings: Settings) -> ResilientExecutor:
    resilience = settings.resilience
    return ResilientExecutor(
        CliAgentBackend(
            command_template=settings.agent.command_template,
            agent=settings.agent.agent,
        ),
        config=ResilienceConfig(
            enabled=resilience.enabled,
            max_retries=resilience.max_retries,
            initial_backoff_seconds=resilience.initial_backoff_seconds,
            max_backoff_seconds=resilience.max_backoff_seconds,
            backoff_multiplier=resilience.backoff_multiplier,
            failure_threshold=resilience.failure_threshold,
            reset_timeout_seconds=resilience.reset_timeout_seconds,
        ),
    )


def build_generation_service(
    settings: Settings,
    *,
    executor: ResilientExecutor,
    progress_sink: ProgressSink | None = None,
) -> GenerationService:
    generation = settings.generation
    scheduler = BatchScheduler(
        executor,
        config=SchedulerConfig(
            max_tasks_per_batch=generation.max_tasks_per_batch,
            max_generation_retries=generation.max_generation_retries,
            fallback_timeout_seconds=generation.fallback_timeout_seconds,
            model=settings.agent.model,
            output_format=generation.output_format,
            reasoning_effort=generation.reasoning_effort,
        ),
        progress_sink=progress_sink,
    )
    return GenerationService(
        scheduler=scheduler,
        store=IdempotencyStore(WorkflowWorkdir(generation.state_root)),
    )


def _unrecognized_file_lines(inputs: WorkflowInputs, output_dir: Path) -> list[str]:
    """Name draft files that belong to neither the main issue nor any task."""

    if not output_dir.is_dir():
        return []
    matcher = FileMatcher(
        [MatchTarget(task_id=task.task_id, slug=task.slug) for task in inputs.tasks],
    )
    names = sorted(
        path.name for path in output_dir.iterdir() if path.is_file() and path.suffix == ".md"
    )
    _main, _tasks, unmatched = matcher.match_all(names)
    return [f"Unrecognized file: {name}" for name in unmatched]
