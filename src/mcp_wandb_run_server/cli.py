from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path

from mcp_wandb_run_server.core.config import resolve_registry_config
from mcp_wandb_run_server.core.context import calculate_token_estimate, generate_ai_context
from mcp_wandb_run_server.core.models import FileChangeEvent
from mcp_wandb_run_server.core.registry import RunRegistry
from mcp_wandb_run_server.core.scanning import load_run_with_sidecars, scan_folder_for_runs
from mcp_wandb_run_server.core.schemas import run_summary
from mcp_wandb_run_server.core.summarize import (
    format_number,
    generate_csv,
    group_metrics_by_prefix,
    summarize_metric,
)
from mcp_wandb_run_server.core.watcher import RunFolderWatcher, apply_change_event


def _load_registry(folder: str, run_ids: Sequence[str] | None) -> RunRegistry:
    root = Path(folder)
    cfg = resolve_registry_config()
    registry = RunRegistry(root, cfg)
    registry.add_runs(asyncio.run(scan_folder_for_runs(root, cfg)))
    if run_ids:
        registry.deselect_all()
        for run_id in dict.fromkeys(run_ids):
            if not registry.toggle_run(run_id):
                raise ValueError(f"Unknown run id: {run_id}")
    registry.parse_selected()
    return registry


def _cmd_inspect(args: argparse.Namespace) -> None:
    data, sidecars = load_run_with_sidecars(args.run_path, verify_checksums=args.verify_checksums)
    if args.json:
        summary = run_summary(data, file_path=args.run_path, summary=sidecars.summary)
        print(json.dumps(summary.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return

    print(f"Run {data.run_id} ({data.display_name})  project={data.project or '-'}")
    for key, value in data.metadata.to_dict().items():
        print(f"  {key}: {value}")
    print(f"Config: {len(data.config)} keys")
    for group, names in group_metrics_by_prefix(sorted(data.metrics)).items():
        indent = "  "
        if len(names) > 1:
            print(f"  [{group}]")
            indent = "    "
        for name in names:
            s = summarize_metric(data.metrics[name])
            if s is None:
                continue
            print(
                f"{indent}{name}: {len(data.metrics[name])} pts"
                f"  {format_number(s.initial)} -> {format_number(s.final)}"
                f"  min={format_number(s.min)} max={format_number(s.max)} {s.trend.value}"
            )
    print(f"System metrics: {len(data.system_metrics)}")
    if sidecars.summary:
        print(f"Summary: {len(sidecars.summary)} keys")


def _cmd_scan(args: argparse.Namespace) -> None:
    runs = asyncio.run(scan_folder_for_runs(args.folder, resolve_registry_config()))
    for run in runs:
        print(f"{run.run_id}\t{run.run_name}\t{run.project or '-'}\t{run.file_path}")
    print(f"\nFound {len(runs)} runs.")


def _cmd_compare(args: argparse.Namespace) -> None:
    registry = _load_registry(args.folder, args.run_ids)
    merged = registry.merge_metrics()
    metrics = [m for m in merged.training if not args.metric or m.metric_name == args.metric]
    if args.metric and not metrics:
        raise ValueError(f"Metric '{args.metric}' not found in the selected runs")

    for metric in metrics:
        if args.csv:
            sys.stdout.write(generate_csv(metric))
            continue
        print(f"{metric.metric_name}")
        for ds in metric.datasets:
            s = summarize_metric(ds.data)
            if s is None:
                continue
            print(
                f"  {ds.run_name:<24} final={format_number(s.final):<10}"
                f" min={format_number(s.min):<10} max={format_number(s.max):<10} {s.trend.value}"
            )

    for run_id, error in sorted(registry.errors.items()):
        print(f"Failed to parse {run_id}: {error}", file=sys.stderr)


def _cmd_context(args: argparse.Namespace) -> None:
    registry = _load_registry(args.folder, args.run_ids)
    selected = set(registry.get_selected_run_ids())
    runs = [run for run in registry.get_runs() if run.run_id in selected]
    parsed = {}
    for run in runs:
        data = registry.get_parsed_data(run.run_id)
        if data is not None:
            parsed[run.run_id] = data
    markdown = generate_ai_context(runs, parsed, registry.folder)
    if args.output:
        Path(args.output).write_text(markdown, encoding="utf-8")
        print(f"Wrote {args.output} (~{calculate_token_estimate(markdown)} tokens)")
    else:
        sys.stdout.write(markdown)


def _cmd_watch(args: argparse.Namespace) -> None:
    cfg = resolve_registry_config()
    registry = RunRegistry(args.folder, cfg)
    registry.add_runs(asyncio.run(scan_folder_for_runs(args.folder, cfg)))

    def on_change(event: FileChangeEvent) -> None:
        apply_change_event(registry, event)
        print(f"{event.type.value}\t{event.file_path}\t(runs: {registry.total_count()})", flush=True)

    with RunFolderWatcher(args.folder, on_change, cfg, known=registry.get_runs()):
        print(f"Watching {args.folder} ({registry.total_count()} runs). Ctrl-C to stop.", flush=True)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass


def main(argv: Sequence[str] | None = None) -> None:
    p = argparse.ArgumentParser(description="Offline reader for W&B run logs (.wandb).")
    p.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = p.add_subparsers(dest="command", required=True)

    ins = sub.add_parser("inspect", help="Parse one run log and print a summary")
    ins.add_argument("run_path")
    ins.add_argument("--json", action="store_true", help="Print the summary as JSON")
    ins.add_argument(
        "--verify-checksums",
        action="store_true",
        help="Drop fragments whose CRC does not match",
    )
    ins.set_defaults(func=_cmd_inspect)

    sc = sub.add_parser("scan", help="List run logs under a folder")
    sc.add_argument("folder")
    sc.set_defaults(func=_cmd_scan)

    cmp_ = sub.add_parser("compare", help="Compare metrics across runs in a folder")
    cmp_.add_argument("folder")
    cmp_.add_argument("--run", dest="run_ids", action="append", help="Run id (repeatable)")
    cmp_.add_argument("--metric", default=None, help="Only this metric")
    cmp_.add_argument("--csv", action="store_true", help="Print outer-joined CSV per metric")
    cmp_.set_defaults(func=_cmd_compare)

    ctx = sub.add_parser("context", help="Write a Markdown briefing of the runs")
    ctx.add_argument("folder")
    ctx.add_argument("--run", dest="run_ids", action="append", help="Run id (repeatable)")
    ctx.add_argument("--output", "-o", default=None, help="Write to a file instead of stdout")
    ctx.set_defaults(func=_cmd_context)

    w = sub.add_parser("watch", help="Print run changes under a folder as they happen")
    w.add_argument("folder")
    w.set_defaults(func=_cmd_watch)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        args.func(args)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)


if __name__ == "__main__":
    main()
