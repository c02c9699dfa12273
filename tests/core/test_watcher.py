from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from mcp_wandb_run_server.core.config import RegistryConfig
from mcp_wandb_run_server.core.identity import read_identity
from mcp_wandb_run_server.core.models import ChangeType, FileChangeEvent, RunData
from mcp_wandb_run_server.core.registry import RunRegistry
from mcp_wandb_run_server.core.watcher import (
    Debouncer,
    RunFolderWatcher,
    apply_change_event,
)


def test_debouncer_pushes_deadline_back() -> None:
    debouncer = Debouncer(1.5, lambda key: None)
    debouncer.schedule("a", now=0.0)
    debouncer.schedule("a", now=1.0)
    debouncer.schedule("b", now=0.5)

    assert debouncer.pop_due(2.0) == ["b"]
    assert debouncer.pending() == ["a"]
    assert debouncer.pop_due(2.4) == []
    assert debouncer.pop_due(2.5) == ["a"]
    assert debouncer.pending() == []


def test_debouncer_thread_coalesces_bursts() -> None:
    fired: list[str] = []
    done = threading.Event()

    def callback(key: str) -> None:
        fired.append(key)
        done.set()

    debouncer = Debouncer(0.05, callback)
    debouncer.start()
    try:
        for _ in range(20):
            debouncer.trigger("/runs/run-a.wandb")
        assert done.wait(timeout=5)
    finally:
        debouncer.stop()
    assert fired == ["/runs/run-a.wandb"]


def test_debouncer_survives_callback_errors() -> None:
    calls: list[str] = []
    done = threading.Event()

    def callback(key: str) -> None:
        calls.append(key)
        if key == "boom":
            raise RuntimeError("handler failed")
        done.set()

    debouncer = Debouncer(0.01, callback)
    debouncer.start()
    try:
        debouncer.trigger("boom")
        debouncer.trigger("ok")
        assert done.wait(timeout=5)
    finally:
        debouncer.stop()
    assert "ok" in calls


@pytest.fixture
def make_watcher(tmp_path: Path):
    def _make(*, known=()):
        events: list[FileChangeEvent] = []
        watcher = RunFolderWatcher(tmp_path, events.append, known=known)
        return watcher, events

    return _make


def test_check_path_added_modified_deleted(tmp_path: Path, make_watcher, write_run_log, records) -> None:
    watcher, _ = make_watcher()
    path = write_run_log(tmp_path / "run-x.wandb", [records.run("x1")], mtime=100)

    added = watcher.check_path(str(path))
    assert added.type is ChangeType.ADDED
    assert added.metadata.run_id == "x1"

    # Same mtime: nothing to report.
    assert watcher.check_path(str(path)) is None

    write_run_log(path, [records.run("x1", display_name="renamed")], mtime=200)
    modified = watcher.check_path(str(path))
    assert modified.type is ChangeType.MODIFIED
    assert modified.metadata.run_name == "renamed"

    path.unlink()
    deleted = watcher.check_path(str(path))
    assert deleted == FileChangeEvent(type=ChangeType.DELETED, file_path=str(path))
    assert watcher.check_path(str(path)) is None


def test_known_files_report_modified(tmp_path: Path, make_watcher, write_run_log, records) -> None:
    path = write_run_log(tmp_path / "run-k.wandb", [records.run("k")], mtime=100)
    watcher, _ = make_watcher(known=[read_identity(path)])

    assert watcher.check_path(str(path)) is None
    os.utime(path, (300, 300))
    assert watcher.check_path(str(path)).type is ChangeType.MODIFIED


def test_unknown_missing_path_is_ignored(tmp_path: Path, make_watcher) -> None:
    watcher, _ = make_watcher()
    assert watcher.check_path(str(tmp_path / "run-never.wandb")) is None


def test_watcher_reports_new_file(tmp_path: Path, write_run_log, records) -> None:
    seen = threading.Event()
    events: list[FileChangeEvent] = []

    def on_event(event: FileChangeEvent) -> None:
        events.append(event)
        seen.set()

    with RunFolderWatcher(tmp_path, on_event, RegistryConfig(debounce_seconds=0.05)):
        write_run_log(tmp_path / "run-live.wandb", [records.run("live")])
        assert seen.wait(timeout=10)

    assert events[0].type is ChangeType.ADDED
    assert events[0].metadata.run_id == "live"


def _registry() -> RunRegistry:
    return RunRegistry("/runs", parser=lambda path: RunData(run_id="unused"))


def test_apply_change_event_lifecycle(tmp_path: Path, write_run_log, records) -> None:
    registry = _registry()
    path = write_run_log(tmp_path / "run-file.wandb", [records.history(0, loss=1.0)], mtime=100)

    apply_change_event(registry, FileChangeEvent(ChangeType.ADDED, str(path), read_identity(path)))
    assert [r.run_id for r in registry.get_runs()] == ["file"]

    # The run record shows up later: identity moves from the filename to the record.
    write_run_log(path, [records.run("real", display_name="Real")], mtime=200)
    apply_change_event(registry, FileChangeEvent(ChangeType.MODIFIED, str(path), read_identity(path)))
    assert [r.run_id for r in registry.get_runs()] == ["real"]
    assert registry.is_run_selected("real")

    os.utime(path, (300, 300))
    apply_change_event(registry, FileChangeEvent(ChangeType.MODIFIED, str(path), read_identity(path)))
    assert registry.get_run("real").last_modified == pytest.approx(300)

    apply_change_event(registry, FileChangeEvent(ChangeType.DELETED, str(path)))
    assert registry.total_count() == 0


def test_delete_of_unregistered_path_is_ignored() -> None:
    registry = _registry()
    apply_change_event(registry, FileChangeEvent(ChangeType.DELETED, "/runs/run-x.wandb"))
    assert registry.total_count() == 0
