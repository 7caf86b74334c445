"""Reconciles the expected artifact manifest against files on disk."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from issue_forge.generation.file_matcher import FUZZY_MATCHERS, base_name
from issue_forge.generation.inputs import TaskSpec, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT_SUFFIXES: tuple[str, ...] = (".md",)


@dataclass(frozen=True, slots=True)
class ExpectedArtifact:
    """One manifest entry: a file the agent is expected to write."""

    file_name: str
    task_id: str
    is_main: bool
    task: TaskSpec | None = None


@dataclass(frozen=True, slots=True)
class DestinationEntry:
    """One directory entry as seen by a scan."""

    name: str
    is_dir: bool
    size: int
    modified_at: datetime


@dataclass(frozen=True, slots=True)
class ObservedFile:
    """A file accepted by a scan, with the manifest key it satisfies."""

    name: str
    path: Path
    expected_name: str | None
    modified_at: datetime
    size: int


def list_destination(directory: Path) -> list[DestinationEntry]:
    """List directory entries; a missing directory yields an empty list."""

    try:
        children = sorted(directory.iterdir())
    except FileNotFoundError:
        return []

    entries: list[DestinationEntry] = []
    for child in children:
        try:
            stat = child.stat()
        except FileNotFoundError:
            continue
        entries.append(
            DestinationEntry(
                name=child.name,
                is_dir=child.is_dir(),
                size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            ),
        )
    return entries


class GenerationTracker:
    """Tracks which manifest entries have been observed on disk for one attempt.

    An empty manifest means accept-all: any file written after ``start_time`` is
    valid. Observations are keyed by manifest name even when the file on disk
    only fuzzy-matches it.
    """

    def __init__(
        self,
        workflow_id: str,
        *,
        start_time: datetime | None = None,
        suffixes: tuple[str, ...] = DEFAULT_ARTIFACT_SUFFIXES,
        lister: Callable[[Path], list[DestinationEntry]] = list_destination,
    ) -> None:
        self.workflow_id = workflow_id
        self.start_time = start_time or utc_now()
        self.suffixes = tuple(suffix.lower() for suffix in suffixes)
        self.expected_files: dict[str, str] = {}
        self.generated_files: dict[str, datetime] = {}
        self.actual_names: dict[str, str] = {}
        self.assigned: dict[str, str] = {}
        self.prescanned: set[str] = set()
        self.stale: dict[str, datetime] = {}
        self._lister = lister

    def add_expected(self, name: str, task_id: str) -> None:
        self.expected_files[name] = task_id

    def mark_generated(self, name: str, timestamp: datetime) -> None:
        self.generated_files[name] = timestamp

    def is_valid_file(self, name: str, timestamp: datetime) -> bool:
        if timestamp < self.start_time:
            return False
        if not self.expected_files:
            return True
        return self.resolve_expected(name) is not None

    def get_missing_files(self) -> list[str]:
        return sorted(name for name in self.expected_files if name not in self.generated_files)

    def missing_task_ids(self) -> list[str]:
        return [self.expected_files[name] for name in self.get_missing_files()]

    def resolve_expected(self, name: str) -> str | None:
        """Manifest key satisfied by ``name``, preferring keys not yet observed."""

        if name in self.expected_files:
            return name
        for _rule, matcher in FUZZY_MATCHERS:
            candidates = [
                expected
                for expected in sorted(self.expected_files)
                if matcher(base_name(name), base_name(expected))
            ]
            if not candidates:
                continue
            pending = [expected for expected in candidates if expected not in self.generated_files]
            return (pending or candidates)[0]
        return None

    def prescan(self, directory: Path) -> list[ObservedFile]:
        """Accept files already satisfying the manifest, whatever their timestamp."""

        observed: list[ObservedFile] = []
        if not self.expected_files:
            return observed
        for entry in self._candidate_entries(directory):
            expected = self._key_for(entry.name)
            if expected is None:
                continue
            self.prescanned.add(entry.name)
            self._record(expected, entry)
            observed.append(self._observed(directory, entry, expected))
        if observed:
            logger.info(
                "Pre-scan found %d existing artifact(s) for workflow %s",
                len(observed),
                self.workflow_id,
            )
        return observed

    def baseline(self, directory: Path) -> None:
        """Remember files already present so scans accept them only once rewritten."""

        for entry in self._candidate_entries(directory):
            self.stale[entry.name] = entry.modified_at
        if self.stale:
            logger.info(
                "Ignoring %d existing file(s) until rewritten for workflow %s",
                len(self.stale),
                self.workflow_id,
            )

    def scan(self, directory: Path) -> list[ObservedFile]:
        """Accept pre-scanned files and valid files written since the attempt started."""

        observed: list[ObservedFile] = []
        for entry in self._candidate_entries(directory):
            if entry.name in self.stale and entry.modified_at <= self.stale[entry.name]:
                logger.debug("Scan skipped %s (unchanged since run start)", entry.name)
                continue
            if entry.name not in self.prescanned and not self.is_valid_file(
                entry.name,
                entry.modified_at,
            ):
                logger.debug("Scan skipped %s (stale or not in manifest)", entry.name)
                continue
            expected = self._key_for(entry.name) if self.expected_files else None
            self._record(expected or entry.name, entry)
            observed.append(self._observed(directory, entry, expected))
        return observed

    def _candidate_entries(self, directory: Path) -> list[DestinationEntry]:
        candidates: list[DestinationEntry] = []
        for entry in self._lister(directory):
            if entry.is_dir:
                continue
            if not entry.name.lower().endswith(self.suffixes):
                continue
            if entry.size == 0:
                logger.debug("Scan skipped %s (empty, still being written)", entry.name)
                continue
            candidates.append(entry)
        return candidates

    def _key_for(self, name: str) -> str | None:
        if name in self.assigned:
            return self.assigned[name]
        return self.resolve_expected(name)

    def _record(self, key: str, entry: DestinationEntry) -> None:
        self.assigned.setdefault(entry.name, key)
        if key not in self.generated_files:
            self.mark_generated(key, entry.modified_at)
            self.actual_names[key] = entry.name

    def _observed(
        self,
        directory: Path,
        entry: DestinationEntry,
        expected: str | None,
    ) -> ObservedFile:
        return ObservedFile(
            name=entry.name,
            path=directory / entry.name,
            expected_name=expected,
            modified_at=entry.modified_at,
            size=entry.size,
        )
