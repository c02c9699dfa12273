from __future__ import annotations

import json
import os
import struct
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from mcp_wandb_run_server.core.framing import (
    BLOCK_SIZE,
    FRAGMENT_HEADER_SIZE,
    FragmentType,
    fragment_checksum,
)
from mcp_wandb_run_server.core.records import Record

FILE_HEADER = b":W&B" + struct.pack("<HB", 0xBEE1, 0)


def _fragment(fragment_type: FragmentType, payload: bytes) -> bytes:
    header = struct.pack(
        "<IHB", fragment_checksum(fragment_type, payload), len(payload), fragment_type
    )
    return header + payload


def frame_payloads(payloads: Sequence[bytes], *, header: bytes = FILE_HEADER) -> bytes:
    """Lay out payloads the way the log writer does: 32 KiB blocks, split at block ends."""
    out = bytearray(header)
    for payload in payloads:
        remaining = payload
        first = True
        while True:
            leftover = BLOCK_SIZE - len(out) % BLOCK_SIZE
            if leftover < FRAGMENT_HEADER_SIZE:
                out += b"\x00" * leftover
                leftover = BLOCK_SIZE
            avail = leftover - FRAGMENT_HEADER_SIZE
            chunk, remaining = remaining[:avail], remaining[avail:]
            last = not remaining
            if first and last:
                kind = FragmentType.FULL
            elif first:
                kind = FragmentType.FIRST
            elif last:
                kind = FragmentType.LAST
            else:
                kind = FragmentType.MIDDLE
            out += _fragment(kind, chunk)
            first = False
            if last:
                break
    return bytes(out)


def _items(container: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        container.add(key=key, value_json=json.dumps(value))


class RecordBuilder:
    """Serialized ``Record`` payloads for the branches the reader consumes."""

    @staticmethod
    def history(step: int | None = None, **values: Any) -> bytes:
        rec = Record()
        rec.history.SetInParent()
        if step is not None:
            rec.history.step.num = step
        _items(rec.history.item, values)
        return rec.SerializeToString()

    @staticmethod
    def history_raw(step: int, items: Sequence[tuple[str, str]]) -> bytes:
        rec = Record()
        rec.history.step.num = step
        for key, value_json in items:
            rec.history.item.add(key=key, value_json=value_json)
        return rec.SerializeToString()

    @staticmethod
    def config(values: dict[str, Any] | None = None, *, raw: dict[str, str] | None = None,
               remove: Sequence[str] = ()) -> bytes:
        rec = Record()
        rec.config.SetInParent()
        _items(rec.config.update, values or {})
        for key, value_json in (raw or {}).items():
            rec.config.update.add(key=key, value_json=value_json)
        for key in remove:
            rec.config.remove.add(key=key)
        return rec.SerializeToString()

    @staticmethod
    def summary(**values: Any) -> bytes:
        rec = Record()
        rec.summary.SetInParent()
        _items(rec.summary.update, values)
        return rec.SerializeToString()

    @staticmethod
    def run(
        run_id: str = "",
        *,
        project: str = "",
        display_name: str = "",
        entity: str = "",
        config: dict[str, Any] | None = None,
        tags: Sequence[str] = (),
        git: tuple[str, str] | None = None,
    ) -> bytes:
        rec = Record()
        run = rec.run
        run.SetInParent()
        run.run_id = run_id
        run.project = project
        run.display_name = display_name
        run.entity = entity
        run.tags.extend(tags)
        if config:
            _items(run.config.update, config)
        if git:
            run.git.remote_url, run.git.commit = git
        return rec.SerializeToString()

    @staticmethod
    def stats(**values: Any) -> bytes:
        rec = Record()
        rec.stats.SetInParent()
        rec.stats.timestamp.seconds = 1_700_000_000
        _items(rec.stats.item, values)
        return rec.SerializeToString()

    @staticmethod
    def environment(**fields: Any) -> bytes:
        rec = Record()
        env = rec.environment
        env.SetInParent()
        git = fields.pop("git", None)
        gpus = fields.pop("gpu_names", ())
        for name, value in fields.items():
            setattr(env, name, value)
        if git:
            env.git.remote_url, env.git.commit = git
        for gpu in gpus:
            env.gpu_nvidia.add(name=gpu)
        return rec.SerializeToString()

    @staticmethod
    def exit(exit_code: int = 0, runtime: int = 0) -> bytes:
        rec = Record()
        rec.exit.SetInParent()
        rec.exit.exit_code = exit_code
        rec.exit.runtime = runtime
        return rec.SerializeToString()

    @staticmethod
    def output(line: str) -> bytes:
        rec = Record()
        rec.output.line = line
        return rec.SerializeToString()


@pytest.fixture
def records() -> type[RecordBuilder]:
    return RecordBuilder


@pytest.fixture
def frame() -> Callable[..., bytes]:
    return frame_payloads


@pytest.fixture
def write_run_log() -> Callable[..., Path]:
    def _write(path: Path, payloads: Sequence[bytes], *, mtime: float | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(frame_payloads(payloads))
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def sample_run(records) -> list[bytes]:
    """A small but complete run: identity, config, history, stats, summary, exit."""
    return [
        records.run("abc123", project="demo", display_name="brisk-sun-1", entity="team"),
        records.config({"lr": {"value": 0.001}, "_wandb": {"value": {"cli_version": "0.16"}},
                        "batch_size": {"value": 32}}),
        records.environment(os="Linux", python="3.11.4", host="node-1", gpu_names=("A100",),
                            cpu_count=16, git=("git@github.com:org/repo.git", "deadbeef")),
        records.history(0, loss=1.0, acc=0.2, _runtime=1.5),
        records.history(1, loss=0.8, acc=0.4, _runtime=2.5),
        records.history(2, loss=0.5, acc=0.6, _runtime=3.5),
        records.stats(**{"gpu.0.gpu": 55.0, "cpu": 12.5}),
        records.stats(**{"gpu.0.gpu": 60.0, "cpu": 13.0}),
        records.summary(loss=0.5, best_epoch=2, table={"rows": 3}),
        records.exit(0, 42),
    ]
