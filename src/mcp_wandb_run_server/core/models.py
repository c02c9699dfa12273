"""Core data models for run logs and the multi-run registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class MetricPoint:
    """One step-indexed observation of a metric."""

    step: int
    value: float


MetricSeries = list[MetricPoint]
RunConfig = dict[str, Any]


@dataclass(slots=True)
class RunMetadata:
    """Host, environment and provenance details collected while parsing a run."""

    os: str | None = None
    python: str | None = None
    host: str | None = None
    program: str | None = None
    gpu: str | None = None
    gpu_count: int | None = None
    cpu_count: int | None = None
    cuda_version: str | None = None
    git_remote: str | None = None
    git_commit: str | None = None
    exit_code: int | None = None
    runtime_seconds: int | None = None
    entity: str | None = None
    group: str | None = None
    job_type: str | None = None
    tags: tuple[str, ...] = ()

    def set_once(self, name: str, value: Any) -> None:
        """Assign a field only when it is still unset and the value is non-empty."""
        if value is None or value == "" or value == 0 or value == ():
            return
        if getattr(self, name) in (None, ()):
            setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        """Return the populated fields only."""
        out: dict[str, Any] = {}
        for name in self.__slots__:
            value = getattr(self, name)
            if value is None or value == ():
                continue
            out[name] = list(value) if isinstance(value, tuple) else value
        return out


@dataclass(slots=True)
class RunData:
    """Canonical aggregate produced by one full parse of a run log."""

    run_id: str
    run_name: str | None = None
    project: str | None = None
    config: RunConfig = field(default_factory=dict)
    metrics: dict[str, MetricSeries] = field(default_factory=dict)
    system_metrics: dict[str, MetricSeries] = field(default_factory=dict)
    metadata: RunMetadata = field(default_factory=RunMetadata)

    @property
    def display_name(self) -> str:
        return self.run_name or self.run_id

    def point_count(self) -> int:
        return sum(len(series) for series in self.metrics.values())


@dataclass(frozen=True, slots=True)
class RunScanResult:
    """Lightweight identity of a run file, cheap enough to keep for every run."""

    file_path: str
    run_id: str
    run_name: str
    last_modified: float
    project: str | None = None
    visible: bool = True


@dataclass(frozen=True, slots=True)
class MergedDataset:
    """One run's contribution to a cross-run metric."""

    run_id: str
    run_name: str
    color: str
    data: MetricSeries


@dataclass(slots=True)
class MergedMetric:
    """A metric name with one dataset per selected, parsed run."""

    metric_name: str
    datasets: list[MergedDataset] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MergedMetrics:
    """Result of merging the current selection: training and system metrics."""

    training: list[MergedMetric]
    system: list[MergedMetric]


class ChangeType(str, Enum):
    """Kinds of run-file changes surfaced by the folder watcher."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class FileChangeEvent:
    """A debounced change to a run file, optionally with fresh identity."""

    type: ChangeType
    file_path: str
    metadata: RunScanResult | None = None
