from __future__ import annotations

import struct

import pytest

from mcp_wandb_run_server.core.errors import InvalidFormat, RunLogError
from mcp_wandb_run_server.core.framing import (
    BLOCK_SIZE,
    FILE_HEADER_SIZE,
    FragmentType,
    fragment_checksum,
    iter_fragments,
    iter_logical_records,
    read_logical_records,
    validate_file_header,
)

HEADER = b":W&B\xe1\xbe\x00"


def _frag(kind: int, payload: bytes, checksum: int | None = None) -> bytes:
    crc = fragment_checksum(kind, payload) if checksum is None else checksum
    return struct.pack("<IHB", crc, len(payload), kind) + payload


def test_full_records_recovered_in_order(frame) -> None:
    payloads = [b"alpha", b"", b"x" * 1000, b"omega"]
    assert read_logical_records(frame(payloads)) == payloads


def test_large_payload_split_across_blocks_is_reassembled(frame) -> None:
    payload = bytes(range(256)) * 300  # ~77 KiB: FIRST, MIDDLE, LAST
    data = frame([b"before", payload, b"after"])

    kinds = [f.type for f in iter_fragments(data)]
    assert FragmentType.FIRST in kinds
    assert FragmentType.MIDDLE in kinds
    assert FragmentType.LAST in kinds
    assert read_logical_records(data) == [b"before", payload, b"after"]


@pytest.mark.parametrize("middles", [0, 1, 3])
def test_fragment_chain_matches_unfragmented_payload(middles: int) -> None:
    payload = b"0123456789" * (middles + 2)
    pieces = [payload[i : i + 10] for i in range(0, len(payload), 10)]
    data = HEADER + _frag(FragmentType.FIRST, pieces[0])
    for piece in pieces[1:-1]:
        data += _frag(FragmentType.MIDDLE, piece)
    data += _frag(FragmentType.LAST, pieces[-1])

    assert read_logical_records(data) == [payload]


def test_short_block_tail_is_skipped(frame) -> None:
    # Fill block 0 so that fewer than 7 bytes remain; the writer pads with zeros.
    filler = b"f" * (BLOCK_SIZE - FILE_HEADER_SIZE - 7 - 3)
    data = frame([filler, b"next-block"])
    assert len(data) > BLOCK_SIZE
    assert read_logical_records(data) == [filler, b"next-block"]


def test_zero_header_skips_rest_of_block() -> None:
    data = HEADER + _frag(FragmentType.FULL, b"one") + b"\x00" * 20
    data += b"\x00" * (BLOCK_SIZE - len(data))
    data += _frag(FragmentType.FULL, b"two")
    assert read_logical_records(data) == [b"one", b"two"]


def test_invalid_type_byte_resynchronizes() -> None:
    data = HEADER + b"\x09" + _frag(FragmentType.FULL, b"payload")
    # The stray byte shifts the header by one; the scan walks forward until it lines up.
    assert read_logical_records(data) == [b"payload"]


def test_truncated_trailing_fragment_is_dropped() -> None:
    full = _frag(FragmentType.FULL, b"complete")
    partial = _frag(FragmentType.FULL, b"this one is cut")[:-4]
    assert read_logical_records(HEADER + full + partial) == [b"complete"]


def test_unterminated_chain_is_dropped() -> None:
    data = HEADER + _frag(FragmentType.FIRST, b"start") + _frag(FragmentType.MIDDLE, b"mid")
    assert read_logical_records(data) == []


def test_first_replaces_unterminated_chain() -> None:
    data = (
        HEADER
        + _frag(FragmentType.FIRST, b"lost")
        + _frag(FragmentType.FIRST, b"kept-")
        + _frag(FragmentType.LAST, b"tail")
    )
    assert read_logical_records(data) == [b"kept-tail"]


def test_orphan_middle_and_last_are_ignored() -> None:
    data = (
        HEADER
        + _frag(FragmentType.MIDDLE, b"orphan")
        + _frag(FragmentType.LAST, b"orphan")
        + _frag(FragmentType.FULL, b"ok")
    )
    assert read_logical_records(data) == [b"ok"]


def test_checksum_ignored_by_default_and_enforced_on_request() -> None:
    data = HEADER + _frag(FragmentType.FULL, b"bad", checksum=0) + _frag(FragmentType.FULL, b"good")

    assert list(iter_logical_records(data)) == [b"bad", b"good"]
    assert list(iter_logical_records(data, verify_checksums=True)) == [b"good"]


def test_checksum_failure_discards_pending_chain() -> None:
    data = (
        HEADER
        + _frag(FragmentType.FIRST, b"a")
        + _frag(FragmentType.MIDDLE, b"b", checksum=1)
        + _frag(FragmentType.LAST, b"c")
    )
    assert list(iter_logical_records(data, verify_checksums=True)) == []


def test_header_only_has_no_records() -> None:
    assert read_logical_records(HEADER) == []


@pytest.mark.parametrize("data", [b"", b":W&B", b":W&", b"XXXXXXXXXX"])
def test_bad_header_is_invalid_format(data: bytes) -> None:
    with pytest.raises(InvalidFormat):
        validate_file_header(data)


def test_invalid_format_is_value_error() -> None:
    with pytest.raises(ValueError):
        read_logical_records(b"PK\x03\x04 not a run log")
    assert issubclass(InvalidFormat, RunLogError)
