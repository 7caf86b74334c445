"""Durable generation records deciding whether earlier work can be reused."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from issue_forge.generation.inputs import utc_now
from issue_forge.generation.workdir import WorkflowWorkdir

logger = logging.getLogger(__name__)

_HASH_CHUNK_BYTES = 64 * 1024


class RecordStoreError(RuntimeError):
    """Reading or writing a generation record failed."""


@dataclass(slots=True)
class GeneratedFileInfo:
    file_name: str
    task_id: str
    is_main: bool
    checksum: str
    created_at: datetime


@dataclass(slots=True)
class CreatedIssueInfo:
    number: int
    url: str
    task_id: str
    is_main: bool
    created_at: datetime


@dataclass(slots=True)
class GenerationRecord:
    """Idempotency state for one workflow.

    Complete means ``completed_at`` is set and ``error_message`` is empty.
    """

    workflow_id: str
    input_checksum: str
    started_at: datetime
    completed_at: datetime | None = None
    generated_files: list[GeneratedFileInfo] = field(default_factory=list)
    created_issues: list[CreatedIssueInfo] = field(default_factory=list)
    error_message: str = ""
    output_dir: str = ""

    def is_complete(self) -> bool:
        return self.completed_at is not None and not self.error_message

    def generated_file_paths(self, base_dir: Path) -> list[Path]:
        return [base_dir / info.file_name for info in self.generated_files]

    def to_payload(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "input_checksum": self.input_checksum,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "generated_files": [
                {
                    "file_name": info.file_name,
                    "task_id": info.task_id,
                    "is_main": info.is_main,
                    "checksum": info.checksum,
                    "created_at": info.created_at.isoformat(),
                }
                for info in self.generated_files
            ],
            "created_issues": [
                {
                    "number": info.number,
                    "url": info.url,
                    "task_id": info.task_id,
                    "is_main": info.is_main,
                    "created_at": info.created_at.isoformat(),
                }
                for info in self.created_issues
            ],
            "error_message": self.error_message,
            "output_dir": self.output_dir,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> GenerationRecord:
        completed_raw = raw.get("completed_at")
        return cls(
            workflow_id=str(raw["workflow_id"]),
            input_checksum=str(raw["input_checksum"]),
            started_at=from_iso(str(raw["started_at"])),
            completed_at=from_iso(str(completed_raw)) if completed_raw else None,
            generated_files=[
                GeneratedFileInfo(
                    file_name=str(item["file_name"]),
                    task_id=str(item.get("task_id", "")),
                    is_main=bool(item.get("is_main", False)),
                    checksum=str(item["checksum"]),
                    created_at=from_iso(str(item["created_at"])),
                )
                for item in raw.get("generated_files") or []
            ],
            created_issues=[
                CreatedIssueInfo(
                    number=int(item["number"]),
                    url=str(item.get("url", "")),
                    task_id=str(item.get("task_id", "")),
                    is_main=bool(item.get("is_main", False)),
                    created_at=from_iso(str(item["created_at"])),
                )
                for item in raw.get("created_issues") or []
            ],
            error_message=str(raw.get("error_message") or ""),
            output_dir=str(raw.get("output_dir") or ""),
        )


class IdempotencyStore:
    """Loads, mutates and persists generation records keyed by workflow id."""

    def __init__(
        self,
        workdir: WorkflowWorkdir,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.workdir = workdir
        self._clock = clock

    def load(self, workflow_id: str) -> GenerationRecord | None:
        path = self.workdir.state_path(workflow_id)
        try:
            text = path.read_text("utf-8")
        except FileNotFoundError:
            return None
        except OSError as error:
            raise RecordStoreError(f"Reading generation record {path} failed: {error}") from error
        try:
            raw = json.loads(text)
            if not isinstance(raw, dict):
                raise TypeError(f"Expected JSON object in {path}")
            return GenerationRecord.from_payload(raw)
        except (ValueError, TypeError, KeyError) as error:
            raise RecordStoreError(f"Invalid generation record at {path}: {error}") from error

    def get_or_create_record(
        self,
        workflow_id: str,
        input_checksum: str,
    ) -> tuple[GenerationRecord, bool]:
        """Return (record, existing). A checksum mismatch yields a fresh record."""

        existing = self.load(workflow_id)
        if existing is not None:
            if existing.input_checksum == input_checksum:
                logger.info(
                    "Found generation record with matching checksum: workflow=%s complete=%s",
                    workflow_id,
                    existing.is_complete(),
                )
                return existing, True
            logger.info(
                "Input checksum changed, will regenerate: workflow=%s old=%s new=%s",
                workflow_id,
                truncate_checksum(existing.input_checksum),
                truncate_checksum(input_checksum),
            )

        return (
            GenerationRecord(
                workflow_id=workflow_id,
                input_checksum=input_checksum,
                started_at=self._clock(),
            ),
            False,
        )

    def mark_file_generated(  # noqa: PLR0913
        self,
        record: GenerationRecord,
        file_name: str,
        *,
        task_id: str,
        is_main: bool,
        content: bytes,
    ) -> None:
        record.generated_files.append(
            GeneratedFileInfo(
                file_name=file_name,
                task_id=task_id,
                is_main=is_main,
                checksum=checksum_bytes(content),
                created_at=self._clock(),
            ),
        )

    def mark_issue_created(  # noqa: PLR0913
        self,
        record: GenerationRecord,
        number: int,
        url: str,
        *,
        task_id: str,
        is_main: bool,
    ) -> None:
        record.created_issues.append(
            CreatedIssueInfo(
                number=number,
                url=url,
                task_id=task_id,
                is_main=is_main,
                created_at=self._clock(),
            ),
        )

    def mark_complete(self, record: GenerationRecord) -> None:
        record.completed_at = self._clock()
        record.error_message = ""

    def mark_failed(self, record: GenerationRecord, error: BaseException | str) -> None:
        record.error_message = str(error)

    def save(self, record: GenerationRecord) -> Path:
        path = self.workdir.state_path(record.workflow_id)
        tmp_path = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(record.to_payload(), ensure_ascii=False, indent=2, sort_keys=True),
                "utf-8",
            )
            os.replace(tmp_path, path)
        except OSError as error:
            raise RecordStoreError(f"Writing generation record {path} failed: {error}") from error
        logger.debug(
            "Saved generation record: workflow=%s files=%d issues=%d",
            record.workflow_id,
            len(record.generated_files),
            len(record.created_issues),
        )
        return path

    def delete(self, workflow_id: str) -> bool:
        path = self.workdir.state_path(workflow_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as error:
            raise RecordStoreError(
                f"Removing generation record for workflow {workflow_id} failed: {error}",
            ) from error
        return True

    def has_existing_issues(self, workflow_id: str) -> tuple[bool, int]:
        record = self.load(workflow_id)
        if record is None or record.workflow_id != workflow_id:
            return False, 0
        count = len(record.created_issues)
        return count > 0, count

    def get_existing_issue_numbers(self, workflow_id: str) -> list[int]:
        record = self.load(workflow_id)
        if record is None or record.workflow_id != workflow_id:
            return []
        return [issue.number for issue in record.created_issues]


def calculate_input_checksum(main_path: Path | None, task_paths: Sequence[Path]) -> str:
    """SHA-256 over (path, NUL, content) of the main file then sorted task files."""

    digest = hashlib.sha256()
    if main_path is not None:
        _hash_file(digest, main_path)
    for path in sorted(task_paths, key=str):
        _hash_file(digest, path)
    return digest.hexdigest()


def checksum_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def truncate_checksum(checksum: str) -> str:
    if len(checksum) <= 16:
        return checksum
    return checksum[:16] + "..."


def from_iso(value: str) -> datetime:
    """Parse ISO datetime, assuming UTC when no offset is present."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _hash_file(digest: Any, path: Path) -> None:
    digest.update(str(path).encode("utf-8"))
    digest.update(b"\0")
    with path.open("rb") as handle:
        while chunk := handle.read(_HASH_CHUNK_BYTES):
            digest.update(chunk)
