"""Decode logical record payloads into typed branches."""

from __future__ import annotations

import json
import math
from typing import Any

from google.protobuf.message import DecodeError

from ..errors import MalformedRecord
from .models import (
    ConfigBranch,
    DecodedRecord,
    EnvironmentBranch,
    ExitBranch,
    GitInfo,
    HistoryBranch,
    ItemEntry,
    RunBranch,
    StatsBranch,
    SummaryBranch,
)
from .schema import Record

MISSING: Any = object()


def resolve_key(item: Any) -> str:
    """Return the direct key, or the nested key path joined with ``/``."""
    if item.key:
        return item.key
    nested = getattr(item, "nested_key", None)
    if nested:
        return "/".join(nested)
    return ""


def _items(raw_items: Any) -> tuple[ItemEntry, ...]:
    out: list[ItemEntry] = []
    for item in raw_items:
        key = resolve_key(item)
        if not key or not item.value_json:
            continue
        out.append(ItemEntry(key=key, value_json=item.value_json))
    return tuple(out)


def _removed_keys(raw_items: Any) -> tuple[str, ...]:
    return tuple(k for k in (resolve_key(item) for item in raw_items) if k)


def _timestamp(msg: Any, field_name: str) -> float | None:
    if not msg.HasField(field_name):
        return None
    ts = getattr(msg, field_name)
    return ts.seconds + ts.nanos / 1e9


def _git(msg: Any) -> GitInfo | None:
    if not msg.HasField("git"):
        return None
    return GitInfo(remote_url=msg.git.remote_url, commit=msg.git.commit)


def _config(msg: Any) -> ConfigBranch:
    return ConfigBranch(updates=_items(msg.update), removals=_removed_keys(msg.remove))


def _summary(msg: Any) -> SummaryBranch:
    return SummaryBranch(updates=_items(msg.update), removals=_removed_keys(msg.remove))


def _history(msg: Any) -> HistoryBranch:
    step = msg.step.num if msg.HasField("step") else None
    return HistoryBranch(step=step, items=_items(msg.item))


def _stats(msg: Any) -> StatsBranch:
    return StatsBranch(timestamp=_timestamp(msg, "timestamp"), items=_items(msg.item))


def _run(msg: Any) -> RunBranch:
    return RunBranch(
        run_id=msg.run_id,
        entity=msg.entity,
        project=msg.project,
        display_name=msg.display_name,
        run_group=msg.run_group,
        job_type=msg.job_type,
        notes=msg.notes,
        tags=tuple(msg.tags),
        host=msg.host,
        sweep_id=msg.sweep_id,
        start_time=_timestamp(msg, "start_time"),
        config=_config(msg.config) if msg.HasField("config") else None,
        summary=_summary(msg.summary) if msg.HasField("summary") else None,
        git=_git(msg),
    )


def _environment(msg: Any) -> EnvironmentBranch:
    return EnvironmentBranch(
        os=msg.os,
        python=msg.python,
        host=msg.host,
        program=msg.program,
        username=msg.username,
        executable=msg.executable,
        gpu_type=msg.gpu_type,
        gpu_count=msg.gpu_count,
        gpu_names=tuple(gpu.name for gpu in msg.gpu_nvidia if gpu.name),
        cpu_count=msg.cpu_count or (msg.cpu.count if msg.HasField("cpu") else 0),
        cpu_count_logical=msg.cpu_count_logical,
        cuda_version=msg.cuda_version,
        git=_git(msg),
    )


def decode_record(payload: bytes) -> DecodedRecord:
    """Decode one logical record.

    Raises MalformedRecord when the payload is not a valid record message.
    """
    try:
        msg = Record.FromString(payload)
    except (DecodeError, ValueError) as exc:
        raise MalformedRecord(f"Undecodable record ({len(payload)} bytes): {exc}") from exc

    kind = msg.WhichOneof("record_type")
    return DecodedRecord(
        kind=kind,
        num=msg.num,
        history=_history(msg.history) if kind == "history" else None,
        config=_config(msg.config) if kind == "config" else None,
        summary=_summary(msg.summary) if kind == "summary" else None,
        stats=_stats(msg.stats) if kind == "stats" else None,
        run=_run(msg.run) if kind == "run" else None,
        environment=_environment(msg.environment) if kind == "environment" else None,
        exit=ExitBranch(exit_code=msg.exit.exit_code, runtime=msg.exit.runtime)
        if kind == "exit"
        else None,
    )


def parse_value_json(value_json: str, default: Any = MISSING) -> Any:
    """Parse a JSON-encoded item value, returning ``default`` on failure."""
    try:
        return json.loads(value_json)
    except (json.JSONDecodeError, RecursionError):
        return default


def as_finite_number(value: Any) -> float | None:
    """Return ``value`` as a float if it is a finite JSON number (booleans excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (bool, int, float, str))
