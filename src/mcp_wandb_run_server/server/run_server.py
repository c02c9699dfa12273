"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: callable actions (e.g., compare the runs in a folder)
- Resources: addressable data blobs (e.g., a run summary via URI)
- Prompts: reusable conversation templates that clients can invoke

Run locally (stdio):
    python -m mcp_wandb_run_server.server.run_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from mcp_wandb_run_server.prompts.registry import register_prompts
from mcp_wandb_run_server.resources.registry import register_resources
from mcp_wandb_run_server.tools.runs import (
    ai_context_impl,
    compare_runs_impl,
    export_metric_csv_impl,
    list_runs_impl,
    run_summary_impl,
)

LOGGER = logging.getLogger(__name__)
LOG_LEVEL_ENV = "WANDB_RUNS_LOG_LEVEL"


def _configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; stdout carries the protocol.
    """
    level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


mcp = FastMCP("wandb-runs", json_response=True)

register_resources(mcp)
register_prompts(mcp)


@mcp.tool()
async def list_runs(folder: str) -> dict[str, Any]:
    """List the W&B runs found under a folder.

    Parameters
    ----------
    folder:
        Directory to scan recursively for ``.wandb`` run logs.

    Returns
    -------
    dict:
        {"folder": str, "count": int, "runs": list[dict]} where each run carries
        run_id, run_name, project, file_path, selected, color, parsed and error.
    """
    return await list_runs_impl(folder=folder)


@mcp.tool()
async def run_summary(run_path: str) -> dict[str, Any]:
    """Parse one run log and summarize its config, metadata and metrics.

    Each metric is reported with point count, step range, initial/final/min/max/mean
    and a trend marker (↑ increasing, ↓ decreasing, → stable, ~ converged).
    """
    return await run_summary_impl(run_path=run_path)


@mcp.tool()
async def compare_runs(
    folder: str,
    run_ids: Sequence[str] | None = None,
    metrics: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Compare runs in a folder side by side.

    Parameters
    ----------
    folder:
        Directory containing the runs.
    run_ids:
        Runs to compare (see list_runs). Default: every run in the folder.
    metrics:
        Metric names to include. Default: every training metric.
    """
    return await compare_runs_impl(folder=folder, run_ids=run_ids, metrics=metrics)


@mcp.tool()
async def export_metric_csv(
    folder: str,
    metric: str,
    run_ids: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Export one metric across runs as CSV (``step,<run>...``, blank cells for missing steps)."""
    return await export_metric_csv_impl(folder=folder, metric=metric, run_ids=run_ids)


@mcp.tool()
async def ai_context(folder: str, run_ids: Sequence[str] | None = None) -> dict[str, Any]:
    """Render a Markdown briefing of the selected runs for an AI assistant.

    Returns {"run_count": int, "token_estimate": int, "markdown": str}.
    """
    return await ai_context_impl(folder=folder, run_ids=run_ids)


def main() -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
