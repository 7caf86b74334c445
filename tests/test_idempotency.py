from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from issue_forge.generation.idempotency import (
    IdempotencyStore,
    RecordStoreError,
    calculate_input_checksum,
    checksum_bytes,
    truncate_checksum,
)
from issue_forge.generation.workdir import WorkflowWorkdir, clean_drafts_directory

pytestmark = [
    allure.epic("Generation Records"),
    allure.feature("Idempotency Store"),
]


class SteppingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _write_inputs(tmp_path: Path) -> tuple[Path, list[Path]]:
    main = tmp_path / "analysis.md"
    main.write_text("# Analysis\n", "utf-8")
    tasks_dir = tmp_path / "tasks"
    tasks_dir.mkdir()
    first = tasks_dir / "01-foo.md"
    second = tasks_dir / "02-bar.md"
    first.write_text("# Foo\n", "utf-8")
    second.write_text("# Bar\n", "utf-8")
    return main, [first, second]


def _store(tmp_path: Path) -> IdempotencyStore:
    return IdempotencyStore(WorkflowWorkdir(tmp_path / "state"), clock=SteppingClock())


def test_checksum_ignores_task_order_but_tracks_content(tmp_path: Path) -> None:
    main, tasks = _write_inputs(tmp_path)

    forward = calculate_input_checksum(main, tasks)
    backward = calculate_input_checksum(main, list(reversed(tasks)))
    assert forward == backward
    assert len(forward) == 64

    tasks[1].write_text("# Bar!\n", "utf-8")
    assert calculate_input_checksum(main, tasks) != forward


def test_checksum_includes_paths(tmp_path: Path) -> None:
    main, tasks = _write_inputs(tmp_path)
    before = calculate_input_checksum(main, tasks[:1])
    renamed = tasks[0].rename(tasks[0].with_name("03-foo.md"))

    assert calculate_input_checksum(main, [renamed]) != before


def test_missing_input_file_fails_checksum(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        calculate_input_checksum(tmp_path / "missing.md", [])


def test_new_record_then_existing_complete_record(tmp_path: Path) -> None:
    store = _store(tmp_path)

    record, existing = store.get_or_create_record("wf-1", "abc")
    assert existing is False
    assert not record.is_complete()

    store.mark_file_generated(
        record,
        "01-foo.md",
        task_id="task-1",
        is_main=False,
        content=b"# Foo\n",
    )
    record.output_dir = str(tmp_path / "custom")
    store.mark_complete(record)
    path = store.save(record)

    assert path == tmp_path / "state" / "wf-1" / ".generation-state.json"
    reloaded, existing = store.get_or_create_record("wf-1", "abc")
    assert existing is True
    assert reloaded.is_complete()
    assert reloaded.generated_files[0].checksum == checksum_bytes(b"# Foo\n")
    assert reloaded.generated_file_paths(tmp_path) == [tmp_path / "01-foo.md"]
    assert reloaded.output_dir == str(tmp_path / "custom")


def test_checksum_mismatch_returns_fresh_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record, _ = store.get_or_create_record("wf-1", "old")
    store.mark_complete(record)
    store.save(record)

    fresh, existing = store.get_or_create_record("wf-1", "new")

    assert existing is False
    assert fresh.input_checksum == "new"
    assert fresh.completed_at is None
    assert fresh.generated_files == []


def test_failed_record_is_not_complete(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record, _ = store.get_or_create_record("wf-1", "abc")
    store.mark_complete(record)
    store.mark_failed(record, RuntimeError("missing 02-bar.md"))
    store.save(record)

    reloaded = store.load("wf-1")

    assert reloaded is not None
    assert reloaded.error_message == "missing 02-bar.md"
    assert not reloaded.is_complete()


def test_issue_mapping_queries(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.has_existing_issues("wf-1") == (False, 0)

    record, _ = store.get_or_create_record("wf-1", "abc")
    store.mark_issue_created(record, 10, "https://example.test/10", task_id="main", is_main=True)
    store.mark_issue_created(record, 11, "https://example.test/11", task_id="task-1", is_main=False)
    store.save(record)

    assert store.has_existing_issues("wf-1") == (True, 2)
    assert store.get_existing_issue_numbers("wf-1") == [10, 11]


def test_corrupt_record_raises_store_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    path = store.workdir.state_path("wf-1")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", "utf-8")

    with pytest.raises(RecordStoreError, match="Invalid generation record"):
        store.load("wf-1")

    path.write_text(json.dumps(["list"]), "utf-8")
    with pytest.raises(RecordStoreError):
        store.load("wf-1")


def test_delete_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record, _ = store.get_or_create_record("wf-1", "abc")
    store.save(record)

    assert store.delete("wf-1") is True
    assert store.delete("wf-1") is False
    assert store.load("wf-1") is None


def test_truncate_checksum() -> None:
    assert truncate_checksum("a" * 64) == "a" * 16 + "..."
    assert truncate_checksum("short") == "short"


def test_clean_drafts_directory(tmp_path: Path) -> None:
    drafts = WorkflowWorkdir(tmp_path).drafts_dir("wf-1")
    drafts.mkdir(parents=True)
    (drafts / "01-foo.md").write_text("# Foo\n", "utf-8")

    assert clean_drafts_directory(tmp_path, "wf-1") is True
    assert not drafts.exists()
    assert clean_drafts_directory(tmp_path, "wf-1") is False
    with pytest.raises(ValueError, match="non-empty"):
        clean_drafts_directory(tmp_path, " ")
    with pytest.raises(ValueError, match="single path segment"):
        clean_drafts_directory(tmp_path, "../escape")
