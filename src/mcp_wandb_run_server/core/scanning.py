"""Locate run logs on disk and read their companion files.

Companions (``files/wandb-metadata.json``, ``config.yaml``, ``wandb-summary.json``)
only fill gaps left by the binary log. ``merge_fallback_metrics`` is exported for
callers that bring their own metric source, such as a parsed ``output.log``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .accumulator import clean_config, parse_run_file
from .config import RegistryConfig
from .identity import RUN_FILE_SUFFIX, quick_read_identity
from .models import MetricSeries, RunData, RunScanResult

logger = logging.getLogger(__name__)

FILES_DIR = "files"
OUTPUT_LOG = "output.log"
METADATA_JSON = "wandb-metadata.json"
CONFIG_YAML = "config.yaml"
SUMMARY_JSON = "wandb-summary.json"


@dataclass(frozen=True, slots=True)
class RunFiles:
    """Paths belonging to one run directory; companions are optional."""

    run_file: Path | None
    output_log: Path | None = None
    metadata_json: Path | None = None
    config_yaml: Path | None = None
    summary_json: Path | None = None


@dataclass(frozen=True, slots=True)
class RunSidecars:
    metadata: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)


def is_run_file(path: str | Path) -> bool:
    return str(path).endswith(RUN_FILE_SUFFIX)


def find_run_file(run_dir: str | Path) -> Path | None:
    """Return the first run log in ``run_dir`` (by name), or None."""
    try:
        names = sorted(os.listdir(run_dir))
    except OSError:
        return None
    for name in names:
        candidate = Path(run_dir) / name
        if is_run_file(name) and candidate.is_file():
            return candidate
    return None


def is_run_directory(run_dir: str | Path) -> bool:
    return find_run_file(run_dir) is not None


def _optional(path: Path) -> Path | None:
    return path if path.is_file() else None


def get_run_files(run_dir: str | Path) -> RunFiles:
    root = Path(run_dir)
    files = root / FILES_DIR
    return RunFiles(
        run_file=find_run_file(root),
        output_log=_optional(files / OUTPUT_LOG),
        metadata_json=_optional(files / METADATA_JSON),
        config_yaml=_optional(files / CONFIG_YAML),
        summary_json=_optional(files / SUMMARY_JSON),
    )


def _load_mapping(path: Path | None, loader) -> dict[str, Any]:
    if path is None:
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = loader(f)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.debug("Ignoring unreadable sidecar %s: %s", path, exc)
        return {}
    if not isinstance(loaded, dict):
        logger.debug("Ignoring sidecar %s: top level is not a mapping", path)
        return {}
    return loaded


def load_sidecars(files: RunFiles) -> RunSidecars:
    """Best-effort load of the JSON/YAML companions of a run."""
    return RunSidecars(
        metadata=_load_mapping(files.metadata_json, json.load),
        summary=_load_mapping(files.summary_json, json.load),
        config=clean_config(_load_mapping(files.config_yaml, yaml.safe_load)),
    )


# wandb-metadata.json key -> RunMetadata field.
_SIDECAR_METADATA_KEYS = {
    "os": "os",
    "python": "python",
    "host": "host",
    "program": "program",
    "gpu": "gpu",
    "gpu_count": "gpu_count",
    "cpu_count": "cpu_count",
    "cuda": "cuda_version",
}


def apply_sidecars(data: RunData, sidecars: RunSidecars) -> RunData:
    """Fill metadata and config gaps of a parsed run from its companion files.

    Values decoded from the run log always win; companions only fill fields
    that are still empty.
    """
    meta = data.metadata
    for key, name in _SIDECAR_METADATA_KEYS.items():
        value = sidecars.metadata.get(key)
        if name.endswith("_count"):
            if isinstance(value, int) and not isinstance(value, bool):
                meta.set_once(name, value)
        elif isinstance(value, str):
            meta.set_once(name, value)
    git = sidecars.metadata.get("git")
    if isinstance(git, dict):
        meta.set_once("git_remote", git.get("remote") or "")
        meta.set_once("git_commit", git.get("commit") or "")
    for key, value in sidecars.config.items():
        data.config.setdefault(key, value)
    return data


def load_run_with_sidecars(
    run_path: str | Path, *, verify_checksums: bool = False
) -> tuple[RunData, RunSidecars]:
    """Parse ``run_path`` and complete it from the companions in its directory."""
    data = parse_run_file(run_path, verify_checksums=verify_checksums)
    sidecars = load_sidecars(get_run_files(Path(run_path).parent))
    return apply_sidecars(data, sidecars), sidecars


def merge_fallback_metrics(
    binary: Mapping[str, MetricSeries],
    fallback: Mapping[str, MetricSeries],
) -> dict[str, MetricSeries]:
    """Add fallback series only where the binary log has no data for that name."""
    merged = dict(binary)
    for name, series in fallback.items():
        if not merged.get(name):
            merged[name] = list(series)
    return merged


def _list_dir(path: Path) -> tuple[list[Path], list[Path]]:
    dirs: list[Path] = []
    run_files: list[Path] = []
    with os.scandir(path) as it:
        for entry in it:
            if entry.is_dir(follow_symlinks=False):
                dirs.append(Path(entry.path))
            elif entry.is_file() and is_run_file(entry.name):
                run_files.append(Path(entry.path))
    return dirs, run_files


async def scan_folder_for_runs(
    folder: str | Path,
    cfg: RegistryConfig | None = None,
) -> list[RunScanResult]:
    """Recursively find run logs under ``folder`` and read their identities.

    Directory listings that fail are logged and skipped. Results are sorted by
    file path so callers can apply them in a stable order.
    """
    cfg = cfg or RegistryConfig()
    root = Path(folder)
    if not root.is_dir():
        raise FileNotFoundError(f"Run folder not found: {root}")

    sem = asyncio.Semaphore(cfg.max_workers)
    results: list[RunScanResult] = []

    async def read_one(path: Path) -> None:
        async with sem:
            try:
                results.append(
                    await quick_read_identity(
                        path,
                        window_bytes=cfg.identity_window_bytes,
                        max_records=cfg.identity_max_records,
                    )
                )
            except OSError as exc:
                logger.warning("Failed to read identity from %s: %s", path, exc)

    async def scan_dir(path: Path) -> None:
        try:
            dirs, run_files = await asyncio.to_thread(_list_dir, path)
        except OSError as exc:
            logger.warning("Failed to scan directory %s: %s", path, exc)
            return
        await asyncio.gather(
            *(read_one(p) for p in run_files),
            *(scan_dir(d) for d in dirs),
        )

    await scan_dir(root)
    results.sort(key=lambda r: r.file_path)
    logger.debug("Found %d run logs under %s", len(results), root)
    return results
