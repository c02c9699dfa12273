"""Record decoding for run logs.

Turns logical record payloads into typed branches (history, config, summary,
stats, run identity, environment).
"""

from __future__ import annotations

from .decoder import as_finite_number, decode_record, is_scalar, parse_value_json, resolve_key
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
from .schema import MESSAGES, RECORD_TYPE_FIELDS, Record

__all__ = [
    "ConfigBranch",
    "DecodedRecord",
    "EnvironmentBranch",
    "ExitBranch",
    "GitInfo",
    "HistoryBranch",
    "ItemEntry",
    "MESSAGES",
    "RECORD_TYPE_FIELDS",
    "Record",
    "RunBranch",
    "StatsBranch",
    "SummaryBranch",
    "as_finite_number",
    "decode_record",
    "is_scalar",
    "parse_value_json",
    "resolve_key",
]
