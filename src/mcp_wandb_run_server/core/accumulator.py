"""Fold decoded records into a RunData aggregate."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .errors import MalformedRecord
from .framing import iter_logical_records, validate_file_header
from .identity import run_id_from_filename
from .models import MetricPoint, MetricSeries, RunConfig, RunData
from .records import (
    ConfigBranch,
    DecodedRecord,
    EnvironmentBranch,
    GitInfo,
    HistoryBranch,
    RunBranch,
    StatsBranch,
    SummaryBranch,
    as_finite_number,
    decode_record,
    is_scalar,
    parse_value_json,
)
from .records.decoder import MISSING

logger = logging.getLogger(__name__)

RESERVED_HISTORY_KEYS = frozenset({"_step", "_runtime", "_timestamp"})
INTERNAL_CONFIG_KEYS = ("_wandb", "wandb_version")
MIN_SERIES_POINTS = 2
SUMMARY_PREFIX = "summary/"


def dedupe_and_sort(points: Iterable[MetricPoint]) -> MetricSeries:
    """Sort by step and keep the last point seen for each step."""
    by_step: dict[int, MetricPoint] = {}
    for point in sorted(points, key=lambda p: p.step):
        by_step[point.step] = point
    return list(by_step.values())


def unwrap_config_value(value: Any) -> Any:
    """Unwrap the ``{"value": X}`` config convention into ``X``."""
    if isinstance(value, dict) and len(value) == 1 and "value" in value:
        return value["value"]
    return value


class RunAccumulator:
    """Accumulates one run's records; call :meth:`finish` once at the end."""

    def __init__(self, run_id: str) -> None:
        self._data = RunData(run_id=run_id)
        self._run_git: GitInfo | None = None
        self._finished = False

    @property
    def data(self) -> RunData:
        return self._data

    def add(self, record: DecodedRecord) -> None:
        if record.history is not None:
            self._add_history(record.history)
        if record.config is not None:
            self._add_config(record.config)
        if record.summary is not None:
            self._add_summary(record.summary)
        if record.run is not None:
            self._add_run(record.run)
        if record.stats is not None:
            self._add_stats(record.stats)
        if record.environment is not None:
            self._add_environment(record.environment)
        if record.exit is not None:
            meta = self._data.metadata
            # Exit code 0 is meaningful, so it bypasses set_once.
            if meta.exit_code is None:
                meta.exit_code = record.exit.exit_code
            meta.set_once("runtime_seconds", record.exit.runtime)

    def _add_history(self, history: HistoryBranch) -> None:
        step = history.step if history.step is not None else 0
        for item in history.items:
            if item.key in RESERVED_HISTORY_KEYS:
                continue
            value = as_finite_number(parse_value_json(item.value_json))
            if value is None:
                continue
            self._data.metrics.setdefault(item.key, []).append(MetricPoint(step=step, value=value))

    def _add_config(self, config: ConfigBranch, *, keep_existing: bool = False) -> None:
        cfg = self._data.config
        for item in config.updates:
            if keep_existing and item.key in cfg:
                continue
            # Unparseable values are kept verbatim.
            cfg[item.key] = parse_value_json(item.value_json, default=item.value_json)
        if not keep_existing:
            for key in config.removals:
                cfg.pop(key, None)

    def _add_summary(self, summary: SummaryBranch) -> None:
        cfg = self._data.config
        for item in summary.updates:
            if item.key in cfg or item.key in self._data.metrics:
                continue
            value = parse_value_json(item.value_json)
            if value is MISSING or not is_scalar(value):
                continue
            cfg[SUMMARY_PREFIX + item.key] = value

    def _add_run(self, run: RunBranch) -> None:
        data = self._data
        if run.project and not data.project:
            data.project = run.project
        if run.display_name and not data.run_name:
            data.run_name = run.display_name
        if run.run_id:
            data.run_id = run.run_id
        if run.config is not None:
            self._add_config(run.config, keep_existing=True)

        meta = data.metadata
        meta.set_once("entity", run.entity)
        meta.set_once("group", run.run_group)
        meta.set_once("job_type", run.job_type)
        meta.set_once("tags", run.tags)
        meta.set_once("host", run.host)
        if run.git is not None and self._run_git is None:
            self._run_git = run.git

    def _add_stats(self, stats: StatsBranch) -> None:
        for item in stats.items:
            value = as_finite_number(parse_value_json(item.value_json))
            if value is None:
                continue
            series = self._data.system_metrics.setdefault(item.key, [])
            series.append(MetricPoint(step=len(series), value=value))

    def _add_environment(self, env: EnvironmentBranch) -> None:
        meta = self._data.metadata
        meta.set_once("os", env.os)
        meta.set_once("python", env.python)
        meta.set_once("host", env.host)
        meta.set_once("program", env.program)
        meta.set_once("gpu", env.gpu_type or (env.gpu_names[0] if env.gpu_names else ""))
        meta.set_once("gpu_count", env.gpu_count or len(env.gpu_names))
        meta.set_once("cpu_count", env.cpu_count)
        meta.set_once("cuda_version", env.cuda_version)
        if env.git is not None:
            meta.set_once("git_remote", env.git.remote_url)
            meta.set_once("git_commit", env.git.commit)

    def finish(self) -> RunData:
        """Run post-processing once and return the aggregate."""
        if self._finished:
            return self._data
        self._finished = True

        data = self._data
        if self._run_git is not None:
            data.metadata.set_once("git_remote", self._run_git.remote_url)
            data.metadata.set_once("git_commit", self._run_git.commit)

        data.metrics = {
            name: series
            for name, series in ((n, dedupe_and_sort(s)) for n, s in data.metrics.items())
            if len(series) >= MIN_SERIES_POINTS
        }
        data.system_metrics = {
            name: dedupe_and_sort(series) for name, series in data.system_metrics.items()
        }
        data.config = clean_config(data.config)
        return data


def clean_config(config: Mapping[str, Any]) -> RunConfig:
    """Strip internal keys and unwrap ``{"value": X}`` entries."""
    return {
        key: unwrap_config_value(value)
        for key, value in config.items()
        if key not in INTERNAL_CONFIG_KEYS
    }


def accumulate(records: Iterable[bytes], *, run_id: str) -> RunData:
    """Decode and fold logical record payloads, skipping malformed ones."""
    acc = RunAccumulator(run_id)
    skipped = 0
    for payload in records:
        try:
            record = decode_record(payload)
        except MalformedRecord as exc:
            skipped += 1
            logger.debug("Skipping malformed record for run %s: %s", run_id, exc)
            continue
        acc.add(record)
    if skipped:
        logger.debug("Run %s: skipped %d malformed records", run_id, skipped)
    return acc.finish()


def parse_run_bytes(data: bytes, *, run_id: str, verify_checksums: bool = False) -> RunData:
    """Parse a whole run log held in memory.

    Raises InvalidFormat for a bad magic token or a truncated file header.
    """
    validate_file_header(data)
    return accumulate(iter_logical_records(data, verify_checksums=verify_checksums), run_id=run_id)


def parse_run_file(path: str | Path, *, verify_checksums: bool = False) -> RunData:
    """Parse a run log file into RunData."""
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Run log not found: {p}")
    return parse_run_bytes(
        p.read_bytes(),
        run_id=run_id_from_filename(p),
        verify_checksums=verify_checksums,
    )
