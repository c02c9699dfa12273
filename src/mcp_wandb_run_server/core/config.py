"""Registry configuration and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

CACHE_SIZE_ENV = "WANDB_RUNS_CACHE_SIZE"
DEBOUNCE_MS_ENV = "WANDB_RUNS_DEBOUNCE_MS"
MAX_WORKERS_ENV = "WANDB_RUNS_MAX_WORKERS"

DEFAULT_PALETTE: tuple[str, ...] = (
    "#4dc9f6",
    "#f67019",
    "#f53794",
    "#537bc4",
    "#acc236",
    "#166a8f",
    "#00a950",
    "#58595b",
    "#8549ba",
    "#ff6384",
)


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    cache_size: int = 20
    palette: tuple[str, ...] = DEFAULT_PALETTE
    fallback_color: str = "#888888"

    # Quick identity reads.
    identity_window_bytes: int = 16 * 1024
    identity_max_records: int = 10

    debounce_seconds: float = 1.5
    max_workers: int = 8


def _env_int(name: str) -> int | None:
    env = os.getenv(name)
    if env is None or env == "":
        return None
    try:
        value = int(env)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def resolve_registry_config(cfg: RegistryConfig | None = None) -> RegistryConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = RegistryConfig()

    changes: dict[str, object] = {}
    cache_size = _env_int(CACHE_SIZE_ENV)
    if cache_size is not None:
        changes["cache_size"] = cache_size
    debounce_ms = _env_int(DEBOUNCE_MS_ENV)
    if debounce_ms is not None:
        changes["debounce_seconds"] = debounce_ms / 1000.0
    max_workers = _env_int(MAX_WORKERS_ENV)
    if max_workers is not None:
        changes["max_workers"] = max_workers

    if not changes:
        return cfg
    return replace(cfg, **changes)
