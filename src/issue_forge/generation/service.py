"""Use-case service: generate issue drafts at most once per input checksum."""

from __future__ import annotations

import logging
from pathlib import Path

from issue_forge.generation.context import CallContext
from issue_forge.generation.idempotency import (
    GenerationRecord,
    IdempotencyStore,
    calculate_input_checksum,
    truncate_checksum,
)
from issue_forge.generation.inputs import WorkflowInputs
from issue_forge.generation.scheduler import (
    BatchScheduler,
    GeneratedArtifact,
    GenerationOutcome,
    MissingArtifactsError,
)
from issue_forge.generation.tracker import ExpectedArtifact
from issue_forge.generation.workdir import WorkflowWorkdir

logger = logging.getLogger(__name__)


class GenerationService:
    """Coordinates the idempotency record around one scheduler run."""

    def __init__(
        self,
        *,
        scheduler: BatchScheduler,
        store: IdempotencyStore,
    ) -> None:
        self.scheduler = scheduler
        self.store = store

    @property
    def workdir(self) -> WorkflowWorkdir:
        return self.store.workdir

    def ensure_generated(  # noqa: PLR0913
        self,
        workflow_id: str,
        inputs: WorkflowInputs,
        output_dir: Path | None = None,
        context: CallContext | None = None,
        force: bool = False,
    ) -> GenerationOutcome:
        """Return drafts for the inputs, reusing a complete record when checksums match.

        ``output_dir`` defaults to the directory of a reusable record, then to the
        workflow draft directory. A record is reused only while every recorded draft
        still exists in the directory it was written to. ``force`` ignores a complete
        record, clears the workflow draft directory and disregards drafts already
        present in a custom ``output_dir`` until the agent rewrites them.
        """

        target_dir = (output_dir or self.workdir.drafts_dir(workflow_id)).resolve()
        checksum = calculate_input_checksum(inputs.main_path, inputs.task_paths)
        record, existing = self.store.get_or_create_record(workflow_id, checksum)

        if existing and record.is_complete() and not force:
            requested = target_dir if output_dir is not None else None
            reuse_dir = self._reusable_dir(record, requested)
            if reuse_dir is not None:
                logger.info(
                    "Reusing generated drafts: workflow=%s checksum=%s files=%d",
                    workflow_id,
                    truncate_checksum(checksum),
                    len(record.generated_files),
                )
                return _outcome_from_record(record, reuse_dir)
            logger.info(
                "Recorded drafts not reusable, regenerating: workflow=%s dir=%s",
                workflow_id,
                record.output_dir or "-",
            )

        if force and self.workdir.clean_drafts(workflow_id):
            logger.info("Cleared draft directory before forced generation: workflow=%s", workflow_id)

        record.generated_files.clear()
        record.completed_at = None
        record.error_message = ""
        record.output_dir = str(target_dir)

        try:
            outcome = self.scheduler.run(
                workflow_id=workflow_id,
                inputs=inputs,
                output_dir=target_dir,
                context=context,
                prescan=not force,
            )
        except MissingArtifactsError as error:
            self.store.mark_failed(record, error)
            self.store.save(record)
            raise

        for artifact in outcome.artifacts:
            self.store.mark_file_generated(
                record,
                artifact.file_name,
                task_id=artifact.expected.task_id,
                is_main=artifact.expected.is_main,
                content=artifact.path.read_bytes(),
            )
        self.store.mark_complete(record)
        self.store.save(record)
        logger.info(
            "Generation complete: workflow=%s files=%d rounds=%d",
            workflow_id,
            len(outcome.artifacts),
            outcome.rounds,
        )
        return outcome

    def _reusable_dir(self, record: GenerationRecord, requested: Path | None) -> Path | None:
        """Directory holding every recorded draft, or None when they must be regenerated."""

        recorded = (
            Path(record.output_dir)
            if record.output_dir
            else self.workdir.drafts_dir(record.workflow_id).resolve()
        )
        if requested is not None and requested != recorded:
            return None
        if not all(path.is_file() for path in record.generated_file_paths(recorded)):
            return None
        return recorded


def _outcome_from_record(record: GenerationRecord, output_dir: Path) -> GenerationOutcome:
    artifacts = [
        GeneratedArtifact(
            expected=ExpectedArtifact(
                file_name=info.file_name,
                task_id=info.task_id,
                is_main=info.is_main,
            ),
            file_name=info.file_name,
            path=output_dir / info.file_name,
        )
        for info in record.generated_files
    ]
    return GenerationOutcome(
        workflow_id=record.workflow_id,
        output_dir=output_dir,
        artifacts=artifacts,
        rounds=0,
        reused=True,
    )
