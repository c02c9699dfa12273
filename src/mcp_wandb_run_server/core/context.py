"""Markdown context for pasting a set of runs into an AI assistant."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path

from .models import MergedDataset, MergedMetric, RunData, RunScanResult
from .scanning import CONFIG_YAML, FILES_DIR, METADATA_JSON, OUTPUT_LOG, SUMMARY_JSON
from .summarize import (
    compare_configs,
    dataset_label,
    decimate_points,
    format_number,
    format_value,
    generate_csv,
    metric_sort_key,
    summarize_metric,
)

TITLE = "# W&B Training Runs Context"
MAX_SUMMARY_METRICS = 15
MAX_DETAIL_METRICS = 10
MAX_COMMON_PARAMS = 15
KEY_METRIC_PATTERNS = ("loss", "accuracy", "acc")

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_TOKEN_SPLIT_RE = re.compile(r"[\s,.;:!?()\[\]{}]+")


def _training_metric_names(runs: Sequence[RunScanResult], parsed: Mapping[str, RunData]) -> list[str]:
    names: dict[str, None] = {}
    for run in runs:
        data = parsed.get(run.run_id)
        if data is None:
            continue
        for name in data.metrics:
            if not name.startswith("system.") and not name.startswith("_"):
                names[name] = None
    return list(names)


def _key_metrics(data: RunData) -> str:
    found: list[str] = []
    for pattern in KEY_METRIC_PATTERNS:
        name = next(
            (n for n in data.metrics if pattern in n.lower() and "system" not in n),
            None,
        )
        if name is None or name in found or not data.metrics[name]:
            continue
        found.append(name)

    if not found:
        return f"{len(data.metrics)} metrics"
    parts = []
    for name in found:
        series = data.metrics[name]
        parts.append(f"{name}: {format_number(series[0].value)} → {format_number(series[-1].value)}")
    return ", ".join(parts)


def _run_summary_table(runs: Sequence[RunScanResult], parsed: Mapping[str, RunData]) -> str:
    lines = ["| Run ID | Name | Key Metrics |", "|--------|------|-------------|"]
    for run in runs:
        data = parsed.get(run.run_id)
        key_metrics = _key_metrics(data) if data is not None else "-"
        lines.append(f"| {run.run_id[:8]} | {run.run_name or 'unnamed'} | {key_metrics} |")
    return "\n".join(lines) + "\n"


def _config_comparison(runs: Sequence[RunScanResult], parsed: Mapping[str, RunData]) -> str:
    configs = {}
    names = {}
    for run in runs:
        data = parsed.get(run.run_id)
        if data is not None:
            configs[run.run_id] = data.config
            names[run.run_id] = dataset_label(run.run_id, run.run_name)
    if not configs:
        return "*No configuration data available*\n"

    comparison = compare_configs(configs)
    out = ["### Common Parameters", ""]
    if comparison.common:
        items = list(comparison.common.items())
        out += [f"- {key}: {format_value(value)}" for key, value in items[:MAX_COMMON_PARAMS]]
        if len(items) > MAX_COMMON_PARAMS:
            out.append(f"- *...and {len(items) - MAX_COMMON_PARAMS} more*")
    else:
        out.append("*No common parameters*")
    out += ["", "### Differences", ""]

    if not comparison.differences:
        out.append("*No differences found (all configurations identical)*")
        return "\n".join(out) + "\n"

    run_ids = sorted(names)
    headers = [names[run_id] for run_id in run_ids]
    out.append(f"| Parameter | {' | '.join(headers)} |")
    out.append(f"|{'-' * 11}|" + "|".join("-" * 10 for _ in headers) + "|")
    for key, values in comparison.differences.items():
        cells = [format_value(values[r]) if r in values else "-" for r in run_ids]
        out.append(f"| {key} | {' | '.join(cells)} |")
    return "\n".join(out) + "\n"


def _single_config(data: RunData | None) -> str:
    if data is None:
        return "*No configuration data available*\n"
    if not data.config:
        return "*No configuration parameters*\n"
    return "".join(
        f"- **{key}**: {format_value(value, max_len=50)}\n" for key, value in data.config.items()
    )


def _metrics_section(runs: Sequence[RunScanResult], parsed: Mapping[str, RunData]) -> str:
    names = sorted(_training_metric_names(runs, parsed), key=metric_sort_key)
    if not names:
        return "*No training metrics available*\n"

    out: list[str] = []
    for name in names[:MAX_SUMMARY_METRICS]:
        out += [f"### {name}", ""]
        for run in runs:
            data = parsed.get(run.run_id)
            if data is None or name not in data.metrics:
                continue
            s = summarize_metric(data.metrics[name])
            if s is None:
                out.append(f"- **{run.run_name}**: No data")
                continue
            out.append(
                f"- **{run.run_name}**: initial={format_number(s.initial)}, "
                f"final={format_number(s.final)}, min={format_number(s.min)}, "
                f"max={format_number(s.max)}, trend={s.trend.value}"
            )
        out.append("")
    if len(names) > MAX_SUMMARY_METRICS:
        extra = len(names) - MAX_SUMMARY_METRICS
        out += [f"*...and {extra} more metrics (see detailed data below)*", ""]
    return "\n".join(out) + "\n"


def _detailed_data(runs: Sequence[RunScanResult], parsed: Mapping[str, RunData]) -> str:
    names = _training_metric_names(runs, parsed)
    if not names:
        return "*No detailed metric data available*\n"

    out: list[str] = []
    for name in names[:MAX_DETAIL_METRICS]:
        datasets = [
            MergedDataset(
                run_id=run.run_id,
                run_name=dataset_label(run.run_id, run.run_name),
                color="",
                data=decimate_points(parsed[run.run_id].metrics[name]),
            )
            for run in runs
            if run.run_id in parsed and name in parsed[run.run_id].metrics
        ]
        if not datasets:
            continue
        csv = generate_csv(MergedMetric(metric_name=name, datasets=datasets))
        out.append(
            f"<details>\n<summary>{name} - Full Data (CSV)</summary>\n\n"
            f"```csv\n{csv}```\n\n</details>\n"
        )
    if len(names) > MAX_DETAIL_METRICS:
        extra = len(names) - MAX_DETAIL_METRICS
        out.append(f"*Additional {extra} metrics available in the original .wandb files*\n")
    return "\n".join(out)


def _file_references(runs: Sequence[RunScanResult]) -> str:
    out: list[str] = []
    for run in runs:
        files = Path(run.file_path).parent / FILES_DIR
        out += [
            f"### {dataset_label(run.run_id, run.run_name)}",
            "",
            f"- Output log: `@{files / OUTPUT_LOG}`",
            f"- Config: `@{files / CONFIG_YAML}`",
            f"- Metadata: `@{files / METADATA_JSON}`",
            f"- Summary: `@{files / SUMMARY_JSON}`",
            "",
        ]
    return "\n".join(out) + "\n"


def generate_ai_context(
    runs: Sequence[RunScanResult],
    parsed: Mapping[str, RunData],
    folder: str,
    *,
    generated_at: datetime | None = None,
) -> str:
    """Render the selected runs (and whatever of them is parsed) as Markdown."""
    if not runs:
        return f"{TITLE}\n\nNo runs selected."

    stamp = (generated_at or datetime.now(timezone.utc)).isoformat()
    sections = [
        f"{TITLE}\n\nGenerated: {stamp}\nRuns: {len(runs)} selected from `{folder}`\n",
        "## Run Summary\n\n" + _run_summary_table(runs, parsed),
    ]
    if len(runs) > 1:
        sections.append("## Configuration Comparison\n\n" + _config_comparison(runs, parsed))
    else:
        sections.append("## Configuration\n\n" + _single_config(parsed.get(runs[0].run_id)))
    sections += [
        "## Metrics Summary\n\n" + _metrics_section(runs, parsed),
        "## Detailed Metric Data\n\n" + _detailed_data(runs, parsed),
        "## File References\n\n" + _file_references(runs),
    ]
    return "\n".join(sections)


def calculate_token_estimate(text: str) -> int:
    """Rough token count: about 1.3 tokens per word, fenced code excluded."""
    stripped = _CODE_BLOCK_RE.sub("", text)
    words = [t for t in _TOKEN_SPLIT_RE.split(stripped) if t]
    return math.ceil(len(words) * 1.3)
