"""Response models for tool output and published JSON schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .models import MetricSeries, RunData
from .summarize import Trend, compare_configs, summarize_metric


class SeriesStats(BaseModel):
    points: int = Field(description="Number of points after step de-duplication.")
    first_step: int
    last_step: int
    initial: float
    final: float
    min: float
    max: float
    mean: float
    trend: Trend = Field(description="↑ increasing, ↓ decreasing, → stable, ~ converged.")


class RunSummary(BaseModel):
    run_id: str
    run_name: str | None = None
    project: str | None = None
    file_path: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, SeriesStats] = Field(
        default_factory=dict, description="User-logged series keyed by metric name."
    )
    system_metrics: dict[str, SeriesStats] = Field(
        default_factory=dict, description="Host telemetry series keyed by metric name."
    )
    summary: dict[str, Any] = Field(
        default_factory=dict, description="Final values from wandb-summary.json, when present."
    )


class MetricComparison(BaseModel):
    metric: str
    runs: dict[str, SeriesStats] = Field(description="Per-run statistics keyed by run id.")


class RunComparison(BaseModel):
    folder: str
    run_ids: list[str]
    metrics: list[MetricComparison] = Field(default_factory=list)
    config_common: dict[str, Any] = Field(default_factory=dict)
    config_differences: dict[str, dict[str, Any]] = Field(default_factory=dict)
    errors: dict[str, str] = Field(
        default_factory=dict, description="Runs that failed to parse, with the error message."
    )


def series_stats(series: MetricSeries) -> SeriesStats | None:
    summary = summarize_metric(series)
    if summary is None:
        return None
    return SeriesStats(
        points=len(series),
        first_step=series[0].step,
        last_step=series[-1].step,
        initial=summary.initial,
        final=summary.final,
        min=summary.min,
        max=summary.max,
        mean=summary.mean,
        trend=summary.trend,
    )


def _stats_map(metrics: dict[str, MetricSeries]) -> dict[str, SeriesStats]:
    out: dict[str, SeriesStats] = {}
    for name, series in sorted(metrics.items()):
        stats = series_stats(series)
        if stats is not None:
            out[name] = stats
    return out


def run_summary(
    data: RunData,
    *,
    file_path: str | None = None,
    summary: dict[str, Any] | None = None,
) -> RunSummary:
    return RunSummary(
        run_id=data.run_id,
        run_name=data.run_name,
        project=data.project,
        file_path=file_path,
        config=data.config,
        metadata=data.metadata.to_dict(),
        metrics=_stats_map(data.metrics),
        system_metrics=_stats_map(data.system_metrics),
        summary=dict(summary or {}),
    )


def run_comparison(
    folder: str,
    parsed: dict[str, RunData],
    *,
    metrics: list[str] | None = None,
    errors: dict[str, str] | None = None,
) -> RunComparison:
    """Per-metric stats side by side, plus the config split, for parsed runs."""
    names: dict[str, None] = {}
    for data in parsed.values():
        for name in data.metrics:
            names[name] = None
    wanted = [m for m in names if metrics is None or m in metrics]

    rows: list[MetricComparison] = []
    for name in sorted(wanted):
        per_run: dict[str, SeriesStats] = {}
        for run_id, data in parsed.items():
            stats = series_stats(data.metrics.get(name, []))
            if stats is not None:
                per_run[run_id] = stats
        rows.append(MetricComparison(metric=name, runs=per_run))

    comparison = compare_configs({run_id: data.config for run_id, data in parsed.items()})
    return RunComparison(
        folder=folder,
        run_ids=list(parsed),
        metrics=rows,
        config_common=comparison.common,
        config_differences=comparison.differences,
        errors=dict(errors or {}),
    )
