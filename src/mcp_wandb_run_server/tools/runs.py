"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from mcp_wandb_run_server.core.config import resolve_registry_config
from mcp_wandb_run_server.core.context import calculate_token_estimate, generate_ai_context
from mcp_wandb_run_server.core.registry import RunRegistry
from mcp_wandb_run_server.core.scanning import load_run_with_sidecars, scan_folder_for_runs
from mcp_wandb_run_server.core.schemas import run_comparison, run_summary
from mcp_wandb_run_server.core.summarize import generate_csv

_REGISTRIES: dict[str, RunRegistry] = {}
_REGISTRIES_LOCK = threading.Lock()


def _resolve_folder(folder: str) -> Path:
    p = Path(folder).expanduser().resolve()
    if not p.is_dir():
        raise FileNotFoundError(f"Run folder not found: {p}")
    return p


async def get_registry(folder: str) -> RunRegistry:
    """Return the registry for ``folder``, rescanned so it matches the disk."""
    root = _resolve_folder(folder)
    cfg = resolve_registry_config()
    with _REGISTRIES_LOCK:
        registry = _REGISTRIES.get(str(root))
        if registry is None:
            registry = RunRegistry(root, cfg)
            _REGISTRIES[str(root)] = registry
    registry.sync_runs(await scan_folder_for_runs(root, registry.cfg))
    return registry


def clear_registries() -> None:
    with _REGISTRIES_LOCK:
        _REGISTRIES.clear()


def _resolve_run_ids(registry: RunRegistry, run_ids: Sequence[str] | None) -> list[str]:
    """Validate ``run_ids`` (all runs when omitted) without touching the shared selection."""
    known = [run.run_id for run in registry.get_runs()]
    if not run_ids:
        return known

    unknown = [r for r in run_ids if r not in known]
    if unknown:
        valid = ", ".join(sorted(known)) or "(none)"
        raise ValueError(f"Unknown run id(s): {', '.join(unknown)}. Known runs: {valid}.")
    return list(dict.fromkeys(run_ids))


async def _parse_runs(registry: RunRegistry, run_ids: Sequence[str] | None) -> list[str]:
    resolved = _resolve_run_ids(registry, run_ids)
    await asyncio.to_thread(registry.parse_selected, resolved)
    return resolved


async def list_runs_impl(*, folder: str) -> dict[str, Any]:
    """Implementation for the `list_runs` MCP tool."""
    registry = await get_registry(folder)
    snapshot = registry.snapshot()
    return {"folder": snapshot["folder"], "count": snapshot["total_count"], "runs": snapshot["runs"]}


async def run_summary_impl(*, run_path: str) -> dict[str, Any]:
    """Implementation for the `run_summary` MCP tool."""
    data, sidecars = await asyncio.to_thread(load_run_with_sidecars, run_path)
    summary = run_summary(data, file_path=str(Path(run_path)), summary=sidecars.summary)
    return summary.model_dump(mode="json")


async def compare_runs_impl(
    *,
    folder: str,
    run_ids: Sequence[str] | None = None,
    metrics: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Implementation for the `compare_runs` MCP tool."""
    registry = await get_registry(folder)
    selected = await _parse_runs(registry, run_ids)
    parsed = {
        run_id: data
        for run_id in selected
        if (data := registry.get_parsed_data(run_id)) is not None
    }
    errors = {run_id: registry.errors[run_id] for run_id in selected if run_id in registry.errors}
    result = run_comparison(
        registry.folder,
        parsed,
        metrics=list(metrics) if metrics else None,
        errors=errors,
    )
    return result.model_dump(mode="json")


async def export_metric_csv_impl(
    *,
    folder: str,
    metric: str,
    run_ids: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Implementation for the `export_metric_csv` MCP tool.

    Looks in training metrics first, then system metrics.
    """
    if not metric.strip():
        raise ValueError("metric must be a non-empty metric name, e.g. 'loss' or 'train/acc'.")

    registry = await get_registry(folder)
    selected = await _parse_runs(registry, run_ids)
    merged = registry.merge_metrics(selected)

    for group in (merged.training, merged.system):
        for item in group:
            if item.metric_name == metric:
                return {
                    "metric": metric,
                    "runs": [ds.run_id for ds in item.datasets],
                    "csv": generate_csv(item),
                }

    available = sorted({m.metric_name for m in merged.training})
    hint = ", ".join(available[:20]) or "(none)"
    raise ValueError(f"Metric '{metric}' not found in the selected runs. Available: {hint}.")


async def ai_context_impl(*, folder: str, run_ids: Sequence[str] | None = None) -> dict[str, Any]:
    """Implementation for the `ai_context` MCP tool."""
    registry = await get_registry(folder)
    selected = set(await _parse_runs(registry, run_ids))
    runs = [run for run in registry.get_runs() if run.run_id in selected]
    parsed = {
        run.run_id: data
        for run in runs
        if (data := registry.get_parsed_data(run.run_id)) is not None
    }
    markdown = generate_ai_context(runs, parsed, registry.folder)
    return {
        "run_count": len(runs),
        "token_estimate": calculate_token_estimate(markdown),
        "markdown": markdown,
    }
