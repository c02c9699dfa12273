"""MCP prompt registry.

Prompts are predefined conversation/workflow templates that the client can invoke explicitly.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP


def _format_list(items: Sequence[str] | str | None) -> str:
    """Return items as a JSON array literal for prompt display."""
    if items is None:
        return "null"
    if isinstance(items, str):
        values = [s.strip() for s in items.split(",") if s.strip()]
    else:
        values = [str(s).strip() for s in items if str(s).strip()]
    if not values:
        return "null"
    quoted = ", ".join(f'"{v}"' for v in values)
    return f"[{quoted}]"


def register_prompts(mcp: FastMCP) -> None:
    """Register prompt templates on the MCP server."""

    @mcp.prompt()
    def compare_training_runs(
        folder: str,
        run_ids: Sequence[str] | str | None = None,
        metrics: Sequence[str] | str | None = None,
    ) -> list[dict[str, Any]]:
        """Build a prompt that compares the runs in a folder."""
        return [
            {
                "role": "system",
                "content": (
                    "You are an ML experiment analyst. Compare training runs using only the "
                    "numbers returned by the tools. Do not invent metrics or values; if data "
                    "is missing for a run, say so."
                ),
            },
            {
                "role": "user",
                "content": (
                    "Compare the training runs in this folder. Follow this workflow:\n"
                    "- Call list_runs first to see which runs exist.\n"
                    "- Call compare_runs with the parameters below.\n"
                    "- If a metric needs a closer look, call export_metric_csv for it.\n"
                    "- Runs listed under errors failed to parse; mention them but do not guess "
                    "their results.\n\n"
                    "Call compare_runs with:\n"
                    f"- folder: {folder}\n"
                    f"- run_ids: {_format_list(run_ids)}\n"
                    f"- metrics: {_format_list(metrics)}\n\n"
                    "Return this structure:\n"
                    "1) Best run and why (1-2 bullets, cite final values)\n"
                    "2) Config differences that plausibly explain the gap (2-4 bullets)\n"
                    "3) Convergence notes per run (use the trend field)\n"
                    "4) Suggested next experiments (2-3 bullets)\n"
                ),
            },
        ]

    @mcp.prompt()
    def diagnose_run(run_path: str) -> list[dict[str, Any]]:
        """Build a prompt that looks for training problems in one run."""
        return [
            {
                "role": "system",
                "content": (
                    "You are an ML training debugger. Ground every claim in the run summary; "
                    "if the evidence is insufficient, say so."
                ),
            },
            {
                "role": "user",
                "content": (
                    f"Diagnose the run logged at {run_path}.\n"
                    "- Call run_summary with run_path first.\n"
                    "- Check loss trends (diverging, flat, converged too early), "
                    "exit_code and runtime in metadata, and GPU/system metrics for "
                    "under-utilization.\n\n"
                    "Return:\n"
                    "1) Health verdict (one line)\n"
                    "2) Evidence (metric name, initial/final/min/max, trend)\n"
                    "3) Likely causes (1-3 bullets; say 'Unknown' if unclear)\n"
                    "4) Next actions (2-4 bullets)\n"
                ),
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "The parsed summary is also available as a resource:"},
                    {"type": "resource", "uri": f"run://{run_path}"},
                ],
            },
        ]
