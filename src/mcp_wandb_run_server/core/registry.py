"""Multi-run registry: discovered runs, selection, colors and a bounded parse cache."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from .accumulator import parse_run_file
from .config import RegistryConfig
from .models import (
    ChangeType,
    FileChangeEvent,
    MergedDataset,
    MergedMetric,
    MergedMetrics,
    MetricSeries,
    RunData,
    RunScanResult,
)

logger = logging.getLogger(__name__)

RunParser = Callable[[str], RunData]


class RunRegistry:
    """Owns the runs found under one folder.

    Every mutation runs under a single re-entrant lock so a background watcher and
    a foreground caller never interleave. Full parses run outside the lock; their
    result is inserted only if the run is still registered, unchanged, when the
    parse ends.
    """

    def __init__(
        self,
        folder: str | Path,
        cfg: RegistryConfig | None = None,
        *,
        parser: RunParser = parse_run_file,
    ) -> None:
        self.folder = str(folder)
        self.cfg = cfg or RegistryConfig()
        self._parser = parser
        self._lock = threading.RLock()

        self._runs: dict[str, RunScanResult] = {}
        # Insertion-ordered set.
        self._selected: dict[str, None] = {}
        self._colors: dict[str, str] = {}
        # Least recently used first.
        self._cache: OrderedDict[str, RunData] = OrderedDict()
        self.errors: dict[str, str] = {}

    # Run set

    def add_run(self, run: RunScanResult) -> None:
        with self._lock:
            self._runs[run.run_id] = run
            if run.visible:
                self._selected[run.run_id] = None
            self._reassign_colors()

    def add_runs(self, runs: Iterable[RunScanResult]) -> None:
        with self._lock:
            for run in runs:
                self.add_run(run)

    def remove_run(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)
            self._selected.pop(run_id, None)
            self._cache.pop(run_id, None)
            self._colors.pop(run_id, None)
            self.errors.pop(run_id, None)
            self._reassign_colors()

    def update_run(self, run: RunScanResult) -> None:
        """Replace a known run's scan result; a new mtime drops its cached parse."""
        with self._lock:
            existing = self._runs.get(run.run_id)
            if existing is None:
                return
            self._runs[run.run_id] = run
            if existing.last_modified != run.last_modified:
                self._cache.pop(run.run_id, None)

    def sync_runs(self, runs: Iterable[RunScanResult]) -> None:
        """Make the run set match a fresh scan, keeping selection of surviving runs."""
        fresh = {run.run_id: run for run in runs}
        with self._lock:
            for run_id in [r for r in self._runs if r not in fresh]:
                self.remove_run(run_id)
            for run_id, run in fresh.items():
                if run_id in self._runs:
                    self.update_run(run)
                else:
                    self.add_run(run)

    def apply_change(self, event: FileChangeEvent) -> None:
        """Apply one watcher event as a single step under the registry lock."""
        with self._lock:
            previous_id = self.run_id_for_path(event.file_path)
            if event.type is ChangeType.DELETED:
                if previous_id is not None:
                    self.remove_run(previous_id)
                return

            if event.metadata is None:
                return

            if previous_id is not None and previous_id != event.metadata.run_id:
                # Identity moved from the filename to the run record.
                self.remove_run(previous_id)
                previous_id = None

            if previous_id is None:
                self.add_run(event.metadata)
            else:
                self.update_run(event.metadata)

    def _reassign_colors(self) -> None:
        palette = self.cfg.palette
        self._colors = {
            run_id: palette[i % len(palette)] for i, run_id in enumerate(sorted(self._runs))
        }

    # Selection

    def toggle_run(self, run_id: str) -> bool:
        """Flip selection and return the new state; unknown runs stay unselected."""
        with self._lock:
            if run_id in self._selected:
                del self._selected[run_id]
                return False
            if run_id not in self._runs:
                return False
            self._selected[run_id] = None
            return True

    def select_all(self) -> None:
        with self._lock:
            for run_id in self._runs:
                self._selected[run_id] = None

    def deselect_all(self) -> None:
        with self._lock:
            self._selected.clear()

    # Parsing and cache

    def _touch(self, run_id: str) -> None:
        self._cache.move_to_end(run_id)

    def _evict(self) -> None:
        while len(self._cache) > self.cfg.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Evicted parsed run %s from cache", evicted)

    def _requested(self, run_ids: Iterable[str] | None) -> list[str]:
        if run_ids is None:
            return list(self._selected)
        return list(dict.fromkeys(run_ids))

    def parse_selected(self, run_ids: Iterable[str] | None = None) -> list[str]:
        """Parse every selected run (or every run in ``run_ids``) missing from the cache.

        Returns the run ids parsed by this call. A failing run is recorded in
        ``errors`` and logged; the other runs are unaffected. A parse whose file
        changed (new mtime) or vanished meanwhile is discarded.
        """
        with self._lock:
            selection = self._requested(run_ids)

        parsed: list[str] = []
        for run_id in selection:
            with self._lock:
                if run_id in self._cache:
                    self._touch(run_id)
                    continue
                run = self._runs.get(run_id)
            if run is None:
                continue

            start = time.perf_counter()
            try:
                data = self._parser(run.file_path)
            except Exception as exc:
                logger.warning("Failed to parse run %s (%s): %s", run_id, run.file_path, exc)
                with self._lock:
                    if run_id in self._runs:
                        self.errors[run_id] = str(exc)
                continue
            elapsed_ms = (time.perf_counter() - start) * 1000

            with self._lock:
                current = self._runs.get(run_id)
                if current is None or current.last_modified != run.last_modified:
                    # Removed or updated while parsing.
                    logger.debug("Discarding parse of %s: run changed meanwhile", run_id)
                    continue
                self._cache[run_id] = data
                self._touch(run_id)
                self.errors.pop(run_id, None)
                self._evict()
            parsed.append(run_id)
            logger.info(
                "Parsed run %s: %.0fms (%d metrics, %d data points)",
                run.run_name,
                elapsed_ms,
                len(data.metrics),
                data.point_count(),
            )
        return parsed

    def merge_metrics(self, run_ids: Iterable[str] | None = None) -> MergedMetrics:
        """Group the parsed series of the selection (or of ``run_ids``) by metric name."""
        training: dict[str, MergedMetric] = {}
        system: dict[str, MergedMetric] = {}

        def add(target: dict[str, MergedMetric], name: str, dataset: MergedDataset) -> None:
            target.setdefault(name, MergedMetric(metric_name=name)).datasets.append(dataset)

        with self._lock:
            for run_id in self._requested(run_ids):
                data = self._cache.get(run_id)
                run = self._runs.get(run_id)
                if data is None or run is None:
                    continue
                color = self.get_run_color(run_id)

                def dataset(series: MetricSeries) -> MergedDataset:
                    return MergedDataset(
                        run_id=run_id, run_name=run.run_name, color=color, data=series
                    )

                for name, series in data.metrics.items():
                    add(training, name, dataset(series))
                for name, series in data.system_metrics.items():
                    add(system, name, dataset(series))

        return MergedMetrics(training=list(training.values()), system=list(system.values()))

    # Queries

    def get_runs(self) -> list[RunScanResult]:
        with self._lock:
            return list(self._runs.values())

    def get_run(self, run_id: str) -> RunScanResult | None:
        with self._lock:
            return self._runs.get(run_id)

    def run_id_for_path(self, file_path: str) -> str | None:
        with self._lock:
            for run_id, run in self._runs.items():
                if run.file_path == file_path:
                    return run_id
        return None

    def get_selected_run_ids(self) -> list[str]:
        with self._lock:
            return list(self._selected)

    def is_run_selected(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._selected

    def get_run_color(self, run_id: str) -> str:
        with self._lock:
            return self._colors.get(run_id, self.cfg.fallback_color)

    def get_parsed_data(self, run_id: str) -> RunData | None:
        with self._lock:
            return self._cache.get(run_id)

    def selected_count(self) -> int:
        with self._lock:
            return len(self._selected)

    def total_count(self) -> int:
        with self._lock:
            return len(self._runs)

    def cache_keys(self) -> list[str]:
        """Cached run ids, least recently used first."""
        with self._lock:
            return list(self._cache)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "folder": self.folder,
                "runs": [
                    {
                        "run_id": run.run_id,
                        "run_name": run.run_name,
                        "project": run.project,
                        "file_path": run.file_path,
                        "last_modified": run.last_modified,
                        "selected": run.run_id in self._selected,
                        "color": self._colors.get(run.run_id, self.cfg.fallback_color),
                        "parsed": run.run_id in self._cache,
                        "error": self.errors.get(run.run_id),
                    }
                    for run in sorted(self._runs.values(), key=lambda r: r.run_id)
                ],
                "selected_count": len(self._selected),
                "total_count": len(self._runs),
                "cache_keys": list(self._cache),
            }
