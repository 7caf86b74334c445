"""Progress reporting for issue draft generation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class ProgressStage(str, Enum):
    STARTED = "started"
    BATCH_STARTED = "batch_started"
    BATCH_COMPLETED = "batch_completed"
    BATCH_FAILED = "batch_failed"
    FILE_OBSERVED = "file_observed"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ArtifactDescriptor:
    """Display data for one artifact mentioned in a progress event."""

    file_name: str
    title: str = ""
    task_id: str = ""
    is_main: bool = False


class ProgressSink(Protocol):
    """Receives generation progress notifications."""

    def on_progress(  # noqa: PLR0913
        self,
        workflow_id: str,
        stage: ProgressStage,
        current: int,
        total: int,
        artifact: ArtifactDescriptor | None,
        message: str,
    ) -> None:
        """Handle one progress event."""


class NullProgressSink:
    def on_progress(  # noqa: PLR0913
        self,
        workflow_id: str,
        stage: ProgressStage,
        current: int,
        total: int,
        artifact: ArtifactDescriptor | None,
        message: str,
    ) -> None:
        return None


class LoggingProgressSink:
    """Writes progress events to the module logger."""

    def on_progress(  # noqa: PLR0913
        self,
        workflow_id: str,
        stage: ProgressStage,
        current: int,
        total: int,
        artifact: ArtifactDescriptor | None,
        message: str,
    ) -> None:
        logger.info(
            "[%s] %s %d/%d%s %s",
            workflow_id,
            stage.value,
            current,
            total,
            f" {artifact.file_name}" if artifact is not None else "",
            message,
        )


class MonotonicProgress:
    """Forwards events to a sink with ``current`` clamped to a non-decreasing floor.

    The floor is the number of artifacts already confirmed on disk, so retried
    rounds never report fewer artifacts than an earlier round did.
    """

    def __init__(self, sink: ProgressSink | None, *, workflow_id: str, total: int) -> None:
        self.sink = sink or NullProgressSink()
        self.workflow_id = workflow_id
        self.total = total
        self._lock = threading.Lock()
        self._floor = 0

    @property
    def confirmed(self) -> int:
        with self._lock:
            return self._floor

    def confirm(self, count: int) -> int:
        """Raise the floor to ``count`` (never lowers it) and return the new floor."""

        with self._lock:
            self._floor = max(self._floor, min(count, self.total))
            return self._floor

    def report(
        self,
        stage: ProgressStage,
        *,
        current: int | None = None,
        artifact: ArtifactDescriptor | None = None,
        message: str = "",
    ) -> int:
        with self._lock:
            value = self._floor if current is None else max(self._floor, min(current, self.total))
            self._floor = value
        self.sink.on_progress(self.workflow_id, stage, value, self.total, artifact, message)
        return value
