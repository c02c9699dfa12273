"""Per-metric statistics, cross-run CSV export and config comparison."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import MergedMetric, MetricPoint, MetricSeries

MIN_TREND_POINTS = 10
CONVERGED_VARIANCE_RATIO = 0.01
STABLE_CHANGE_RATIO = 0.05
DEFAULT_MAX_POINTS = 500

_TRAILING_ZEROS_RE = re.compile(r"\.?0+$")


class Trend(str, Enum):
    INCREASING = "↑"
    DECREASING = "↓"
    STABLE = "→"
    CONVERGED = "~"


@dataclass(frozen=True, slots=True)
class MetricSummary:
    initial: float
    final: float
    min: float
    max: float
    mean: float
    trend: Trend


@dataclass(frozen=True, slots=True)
class ConfigComparison:
    """Parameters equal across every run that has them vs. those that differ.

    ``differences`` maps parameter -> run id -> value, listing only the runs
    that carry the parameter.
    """

    common: dict[str, Any] = field(default_factory=dict)
    differences: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def total_params(self) -> int:
        return len(self.common) + len(self.differences)

    @property
    def common_count(self) -> int:
        return len(self.common)

    @property
    def differing_count(self) -> int:
        return len(self.differences)


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    m = _mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


def _relative_change(first: float, second: float) -> float:
    if first == 0:
        if second == first:
            return 0.0
        return math.copysign(math.inf, second - first)
    return (second - first) / abs(first)


def detect_trend(series: Sequence[MetricPoint]) -> Trend:
    """Classify a series by comparing the means of its two halves.

    Short series (fewer than 10 points) are reported as stable.
    """
    if len(series) < MIN_TREND_POINTS:
        return Trend.STABLE

    values = [p.value for p in series]
    mid = len(values) // 2
    first, second = values[:mid], values[mid:]
    first_mean = _mean(first)
    second_mean = _mean(second)

    if _variance(second) < CONVERGED_VARIANCE_RATIO * abs(second_mean):
        return Trend.CONVERGED

    change = _relative_change(first_mean, second_mean)
    if abs(change) < STABLE_CHANGE_RATIO:
        return Trend.STABLE
    if change < 0:
        return Trend.DECREASING
    return Trend.INCREASING


def summarize_metric(series: Sequence[MetricPoint]) -> MetricSummary | None:
    if not series:
        return None
    values = [p.value for p in series]
    return MetricSummary(
        initial=values[0],
        final=values[-1],
        min=min(values),
        max=max(values),
        mean=_mean(values),
        trend=detect_trend(series),
    )


# Number formatting


def _non_finite(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    return "Infinity" if value > 0 else "-Infinity"


def _exponential(value: float, digits: int) -> str:
    """``1.23e+5`` style: no zero padding in the exponent."""
    mantissa, exponent = f"{value:.{digits}e}".split("e")
    return f"{mantissa}e{int(exponent):+d}"


def _fixed(value: float, digits: int) -> str:
    return _TRAILING_ZEROS_RE.sub("", f"{value:.{digits}f}")


def format_number(value: float) -> str:
    """Compact human formatting: about four significant figures, scientific at the extremes."""
    if not math.isfinite(value):
        return _non_finite(value)

    magnitude = abs(value)
    if 0 < magnitude < 1e-4 or magnitude >= 1e4:
        return _exponential(value, 2)
    if magnitude == 0:
        return "0"
    if magnitude >= 100:
        text = f"{value:.1f}"
        return text[:-2] if text.endswith(".0") else text
    if magnitude >= 10:
        return _fixed(value, 2)
    if magnitude >= 1:
        return _fixed(value, 3)
    return _fixed(value, 4)


def format_number_for_csv(value: float) -> str:
    if not math.isfinite(value):
        return _non_finite(value)
    magnitude = abs(value)
    if 0 < magnitude < 1e-4 or magnitude >= 1e4:
        return _exponential(value, 6)
    return _fixed(value, 6) or "0"


def format_value(value: Any, *, max_len: int = 40) -> str:
    """Short display form of a config value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(float(value))
    if isinstance(value, str):
        return value if len(value) <= max_len else value[: max_len - 3] + "..."
    if isinstance(value, list):
        if not value:
            return "[]"
        shown = ", ".join(format_value(v, max_len=max_len) for v in value[:3])
        return f"[{shown}]" if len(value) <= 3 else f"[{shown}, ...]"
    text = json.dumps(value, separators=(",", ":"), default=str)
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


# CSV export


def dataset_label(run_id: str, run_name: str | None) -> str:
    return run_name or run_id[:8]


def generate_csv(merged: MergedMetric) -> str:
    """Outer join of every dataset on step; missing points are empty cells."""
    if not merged.datasets:
        return ""

    columns = [{p.step: p.value for p in ds.data} for ds in merged.datasets]
    steps = sorted({step for column in columns for step in column})

    lines = ["step," + ",".join(dataset_label(ds.run_id, ds.run_name) for ds in merged.datasets)]
    for step in steps:
        cells = [
            format_number_for_csv(column[step]) if step in column else "" for column in columns
        ]
        lines.append(f"{step}," + ",".join(cells))
    return "\n".join(lines) + "\n"


def decimate_points(series: MetricSeries, max_points: int = DEFAULT_MAX_POINTS) -> MetricSeries:
    """Keep every n-th point so at most about ``max_points`` remain, always keeping the last."""
    if len(series) <= max_points:
        return series
    stride = math.ceil(len(series) / max_points)
    out = series[::stride]
    if out[-1] is not series[-1]:
        out.append(series[-1])
    return out


# Config comparison


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def compare_configs(run_configs: Mapping[str, Mapping[str, Any]]) -> ConfigComparison:
    """Split parameters into common and differing across runs (keyed by run id)."""
    per_key: dict[str, dict[str, Any]] = {}
    for run_id, config in run_configs.items():
        for key, value in config.items():
            per_key.setdefault(key, {})[run_id] = value

    common: dict[str, Any] = {}
    differences: dict[str, dict[str, Any]] = {}
    for key, values in per_key.items():
        if len({_canonical(v) for v in values.values()}) == 1:
            common[key] = next(iter(values.values()))
        else:
            differences[key] = values
    return ConfigComparison(common=common, differences=differences)


# Metric naming


def metric_group(name: str) -> str:
    """``loss/train`` -> ``loss``, ``train_loss`` -> ``train``, ``gpu.0.memory`` -> ``gpu.0``."""
    if "/" in name:
        return name.split("/", 1)[0]
    if "_" in name:
        return name.split("_", 1)[0]
    if "." in name:
        return ".".join(name.split(".")[:2])
    return name


def group_metrics_by_prefix(names: Iterable[str]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for name in names:
        groups.setdefault(metric_group(name), []).append(name)
    return groups


def metric_sort_key(name: str) -> tuple[bool, bool, str]:
    """Loss metrics first, then accuracy, then alphabetical."""
    lower = name.lower()
    return ("loss" not in lower, "acc" not in lower, name)
