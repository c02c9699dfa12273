"""Watch a run folder and turn filesystem noise into debounced change events."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import RegistryConfig
from .identity import read_identity
from .models import ChangeType, FileChangeEvent, RunScanResult
from .registry import RunRegistry
from .scanning import is_run_file

logger = logging.getLogger(__name__)

_STOP = object()


class Debouncer:
    """Coalesce repeated triggers per key into one callback after ``delay`` seconds.

    Triggers are queued to a single worker thread which owns the per-key
    deadlines; each new trigger for a key pushes its deadline back.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[str], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.delay = delay
        self._callback = callback
        self._clock = clock
        self._queue: queue.Queue[object] = queue.Queue()
        self._deadlines: dict[str, float] = {}
        self._thread: threading.Thread | None = None

    def trigger(self, key: str) -> None:
        self._queue.put(key)

    def schedule(self, key: str, now: float) -> None:
        self._deadlines[key] = now + self.delay

    def pop_due(self, now: float) -> list[str]:
        due = [key for key, deadline in self._deadlines.items() if deadline <= now]
        for key in due:
            del self._deadlines[key]
        return due

    def pending(self) -> list[str]:
        return list(self._deadlines)

    def _next_timeout(self, now: float) -> float | None:
        if not self._deadlines:
            return None
        return max(0.0, min(self._deadlines.values()) - now)

    def _fire(self, key: str) -> None:
        try:
            self._callback(key)
        except Exception:
            logger.exception("Change handler failed for %s", key)

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=self._next_timeout(self._clock()))
            except queue.Empty:
                item = None
            if item is _STOP:
                return
            if isinstance(item, str):
                self.schedule(item, self._clock())
            for key in self.pop_due(self._clock()):
                self._fire(key)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="run-debouncer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None
        self._deadlines.clear()


class _RunFileHandler(FileSystemEventHandler):
    def __init__(self, on_path: Callable[[str], None]) -> None:
        self._on_path = on_path

    def _maybe(self, path: str | bytes) -> None:
        path = os.fsdecode(path)
        if is_run_file(path):
            self._on_path(path)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._maybe(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._maybe(dest)


class RunFolderWatcher:
    """Recursive watch of ``folder`` emitting added/modified/deleted run events.

    ``known`` seeds the path -> mtime table (normally from an initial scan) so a
    pre-existing file is reported as modified rather than added.
    """

    def __init__(
        self,
        folder: str | Path,
        callback: Callable[[FileChangeEvent], None],
        cfg: RegistryConfig | None = None,
        *,
        known: Iterable[RunScanResult] = (),
    ) -> None:
        self.folder = str(folder)
        self.cfg = cfg or RegistryConfig()
        self._callback = callback
        self._known: dict[str, float] = {run.file_path: run.last_modified for run in known}
        self._debouncer = Debouncer(self.cfg.debounce_seconds, self._on_settled)
        self._observer: Observer | None = None

    def check_path(self, file_path: str) -> FileChangeEvent | None:
        """Classify the current state of ``file_path`` against what was last seen."""
        if not os.path.exists(file_path):
            if self._known.pop(file_path, None) is None:
                return None
            return FileChangeEvent(type=ChangeType.DELETED, file_path=file_path)

        previous = self._known.get(file_path)
        if previous is not None and os.stat(file_path).st_mtime <= previous:
            return None

        metadata = read_identity(
            file_path,
            window_bytes=self.cfg.identity_window_bytes,
            max_records=self.cfg.identity_max_records,
        )
        self._known[file_path] = metadata.last_modified
        change = ChangeType.ADDED if previous is None else ChangeType.MODIFIED
        return FileChangeEvent(type=change, file_path=file_path, metadata=metadata)

    def _on_settled(self, file_path: str) -> None:
        try:
            event = self.check_path(file_path)
        except OSError as exc:
            logger.warning("Error processing change for %s: %s", file_path, exc)
            return
        if event is not None:
            logger.debug("Run file %s: %s", event.type.value, file_path)
            self._callback(event)

    def start(self) -> None:
        if self._observer is not None:
            return
        self._debouncer.start()
        observer = Observer()
        observer.schedule(_RunFileHandler(self._debouncer.trigger), self.folder, recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for run changes", self.folder)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        self._debouncer.stop()
        logger.info("Stopped watching %s", self.folder)

    def __enter__(self) -> RunFolderWatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def apply_change_event(registry: RunRegistry, event: FileChangeEvent) -> None:
    """Apply one watcher event to the registry."""
    registry.apply_change(event)
