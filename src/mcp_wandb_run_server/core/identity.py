"""Cheap run identity from the first few kilobytes of a run log.

Scanning a folder must not parse whole files, so identity comes from a bounded
prefix: the first run record found within a handful of logical records. Any
failure falls back to the identity encoded in the file name.
"""

from __future__ import annotations

import logging
import os
from itertools import islice
from pathlib import Path

import aiofiles

from .errors import MalformedRecord
from .framing import MAGIC, iter_logical_records
from .models import RunScanResult
from .records import decode_record

logger = logging.getLogger(__name__)

RUN_FILE_SUFFIX = ".wandb"
RUN_FILE_PREFIX = "run-"
DEFAULT_WINDOW_BYTES = 16 * 1024
DEFAULT_MAX_RECORDS = 10


def run_id_from_filename(path: str | os.PathLike[str]) -> str:
    """``run-abc123.wandb`` -> ``abc123``."""
    name = Path(path).name
    if name.endswith(RUN_FILE_SUFFIX):
        name = name[: -len(RUN_FILE_SUFFIX)]
    if name.startswith(RUN_FILE_PREFIX):
        name = name[len(RUN_FILE_PREFIX) :]
    return name


def read_identity_from_bytes(
    data: bytes,
    file_path: str,
    last_modified: float,
    *,
    max_records: int = DEFAULT_MAX_RECORDS,
) -> RunScanResult:
    """Build a RunScanResult from a (possibly truncated) prefix of a run log.

    Never raises for bad content: an unrecognized header, truncated fragments and
    undecodable records all leave the filename-derived identity in place.
    """
    run_id = run_id_from_filename(file_path)
    run_name = run_id
    project: str | None = None

    if data[: len(MAGIC)] != MAGIC:
        logger.debug("No run-log header in %s; using filename identity", file_path)
    else:
        for payload in islice(iter_logical_records(data), max_records):
            try:
                record = decode_record(payload)
            except MalformedRecord:
                continue
            if record.run is None:
                continue
            run = record.run
            run_id = run.run_id or run_id
            run_name = run.display_name or run.run_id or run_id
            project = run.project or None
            break

    return RunScanResult(
        file_path=file_path,
        run_id=run_id,
        run_name=run_name,
        last_modified=last_modified,
        project=project,
    )


def read_identity(
    path: str | os.PathLike[str],
    *,
    window_bytes: int = DEFAULT_WINDOW_BYTES,
    max_records: int = DEFAULT_MAX_RECORDS,
) -> RunScanResult:
    """Blocking variant of :func:`quick_read_identity` for worker threads."""
    file_path = str(path)
    last_modified = os.stat(file_path).st_mtime

    data = b""
    try:
        with open(file_path, "rb") as f:
            data = f.read(window_bytes)
    except OSError as exc:
        logger.warning("Could not read %s, using filename identity: %s", file_path, exc)

    return read_identity_from_bytes(data, file_path, last_modified, max_records=max_records)


async def quick_read_identity(
    path: str | os.PathLike[str],
    *,
    window_bytes: int = DEFAULT_WINDOW_BYTES,
    max_records: int = DEFAULT_MAX_RECORDS,
) -> RunScanResult:
    """Read at most ``window_bytes`` of a run log and extract its identity.

    ``OSError`` from stat propagates (the file is gone); read errors only degrade
    the result to the filename identity.
    """
    file_path = str(path)
    last_modified = os.stat(file_path).st_mtime

    data = b""
    try:
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read(window_bytes)
    except OSError as exc:
        logger.warning("Could not read %s, using filename identity: %s", file_path, exc)

    return read_identity_from_bytes(data, file_path, last_modified, max_records=max_records)
