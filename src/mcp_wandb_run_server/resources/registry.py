"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from mcp_wandb_run_server.core.config import resolve_registry_config
from mcp_wandb_run_server.core.identity import RUN_FILE_SUFFIX
from mcp_wandb_run_server.core.scanning import load_run_with_sidecars
from mcp_wandb_run_server.core.schemas import RunSummary, run_summary

BASE_DIR_ENV = "WANDB_RUNS_BASE_DIR"


def _base_dir() -> Path:
    """Return the resolved base directory for file resources."""
    raw = os.getenv(BASE_DIR_ENV, os.getcwd())
    return Path(raw).resolve()


def _safe_resolve(path: str) -> Path:
    """Resolve a path under the configured base directory."""
    base = _base_dir()
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    if base not in p.parents and p != base:
        raise ValueError("Path escapes base dir")
    return p


def _resolve_run_path(path: str) -> Path:
    """Resolve and validate a run log path."""
    resolved = _safe_resolve(path)
    if not resolved.is_file():
        raise FileNotFoundError(f"File not found: {resolved}")
    if resolved.suffix != RUN_FILE_SUFFIX:
        raise ValueError(f"Not a run log: expected a {RUN_FILE_SUFFIX} file.")
    return resolved


def _summarize(path: Path) -> dict[str, Any]:
    data, sidecars = load_run_with_sidecars(path)
    return run_summary(data, file_path=str(path), summary=sidecars.summary).model_dump(mode="json")


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://wandb-runs/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        base = _base_dir()
        return (
            "Resources:\n"
            "- app://wandb-runs/help\n"
            "- app://wandb-runs/config/palette\n"
            "- app://wandb-runs/schemas/run-summary\n"
            f"- run://{{path}} (restricted to {BASE_DIR_ENV}; {RUN_FILE_SUFFIX} files only)\n"
            "\nTools: list_runs, run_summary, compare_runs, export_metric_csv, ai_context\n"
            f"\nBase directory: {base}\n"
        )

    @mcp.resource("app://wandb-runs/config/palette")
    def palette() -> dict[str, Any]:
        """Return the run color palette and registry limits."""
        cfg = resolve_registry_config()
        return {
            "palette": list(cfg.palette),
            "fallback_color": cfg.fallback_color,
            "cache_size": cfg.cache_size,
            "debounce_seconds": cfg.debounce_seconds,
        }

    @mcp.resource("app://wandb-runs/schemas/run-summary")
    def run_summary_schema() -> dict[str, Any]:
        """Return the JSON schema for run summaries."""
        return RunSummary.model_json_schema()

    @mcp.resource("run://{path}")
    async def read_run(path: str) -> dict[str, Any]:
        """Parse a run log within WANDB_RUNS_BASE_DIR and return its summary."""
        p = _resolve_run_path(path)
        return await asyncio.to_thread(_summarize, p)
