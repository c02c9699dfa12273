"""Decoded record branches.

A decoded record is a closed set of optional branches, each a plain frozen struct.
Only the branches that feed run data are decoded field by field; the remaining
record kinds are identified by name.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ItemEntry:
    """A key/value item with the key already resolved and the value still JSON."""

    key: str
    value_json: str


@dataclass(frozen=True, slots=True)
class GitInfo:
    remote_url: str = ""
    commit: str = ""


@dataclass(frozen=True, slots=True)
class HistoryBranch:
    """One ``wandb.log`` call: an optional step and its metric items."""

    step: int | None
    items: tuple[ItemEntry, ...]


@dataclass(frozen=True, slots=True)
class ConfigBranch:
    updates: tuple[ItemEntry, ...]
    removals: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SummaryBranch:
    updates: tuple[ItemEntry, ...]
    removals: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StatsBranch:
    """System telemetry sample; items carry no step."""

    timestamp: float | None
    items: tuple[ItemEntry, ...]


@dataclass(frozen=True, slots=True)
class RunBranch:
    """Run identity plus the config/summary snapshot embedded in it."""

    run_id: str = ""
    entity: str = ""
    project: str = ""
    display_name: str = ""
    run_group: str = ""
    job_type: str = ""
    notes: str = ""
    tags: tuple[str, ...] = ()
    host: str = ""
    sweep_id: str = ""
    start_time: float | None = None
    config: ConfigBranch | None = None
    summary: SummaryBranch | None = None
    git: GitInfo | None = None


@dataclass(frozen=True, slots=True)
class EnvironmentBranch:
    os: str = ""
    python: str = ""
    host: str = ""
    program: str = ""
    username: str = ""
    executable: str = ""
    gpu_type: str = ""
    gpu_count: int = 0
    gpu_names: tuple[str, ...] = ()
    cpu_count: int = 0
    cpu_count_logical: int = 0
    cuda_version: str = ""
    git: GitInfo | None = None


@dataclass(frozen=True, slots=True)
class ExitBranch:
    exit_code: int = 0
    runtime: int = 0


@dataclass(frozen=True, slots=True)
class DecodedRecord:
    """A logical record after decoding.

    ``kind`` names the populated member of the record-type union (``None`` when the
    record carries none); the typed branch attributes are filled for the kinds this
    package consumes.
    """

    kind: str | None
    num: int = 0
    history: HistoryBranch | None = None
    config: ConfigBranch | None = None
    summary: SummaryBranch | None = None
    stats: StatsBranch | None = None
    run: RunBranch | None = None
    environment: EnvironmentBranch | None = None
    exit: ExitBranch | None = None
