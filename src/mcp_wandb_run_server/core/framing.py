"""Block-structured log framing.

A run log starts with a 7-byte file header (``":W&B"``, a 2-byte magic short and a
version byte) followed by 32 KiB blocks. Each block holds back-to-back physical
fragments, every fragment prefixed by a 7-byte header: CRC-32 (``<I``), payload
length (``<H``) and fragment type (``B``). Logical records are either a single FULL
fragment or a FIRST, MIDDLE*, LAST chain.
"""

from __future__ import annotations

import struct
import zlib
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum

from .errors import InvalidFormat

MAGIC = b":W&B"
FILE_HEADER_SIZE = 7
FRAGMENT_HEADER_SIZE = 7
BLOCK_SIZE = 32 * 1024

_FRAGMENT_HEADER = struct.Struct("<IHB")


class FragmentType(IntEnum):
    """Physical fragment types."""

    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4


@dataclass(frozen=True, slots=True)
class PhysicalFragment:
    """A fragment recovered at ``offset`` (start of its header)."""

    type: FragmentType
    payload: bytes
    offset: int
    checksum: int


def fragment_checksum(fragment_type: int, payload: bytes) -> int:
    """CRC-32 over the type byte followed by the payload."""
    return zlib.crc32(payload, zlib.crc32(bytes((fragment_type,)))) & 0xFFFFFFFF


def validate_file_header(data: bytes) -> None:
    """Raise InvalidFormat unless ``data`` starts with a run-log file header."""
    if len(data) < FILE_HEADER_SIZE:
        raise InvalidFormat(
            f"Invalid run log: {len(data)} bytes is shorter than the {FILE_HEADER_SIZE}-byte header"
        )
    if data[:4] != MAGIC:
        raise InvalidFormat(f"Invalid run log: bad magic {data[:4]!r} (want {MAGIC!r})")


def iter_fragments(data: bytes, *, start: int = FILE_HEADER_SIZE) -> Iterator[PhysicalFragment]:
    """Yield physical fragments in file order.

    Truncated trailing data (a header or payload running past the end of ``data``)
    ends the scan silently, so a partial buffer can be read safely.
    """
    offset = start
    size = len(data)

    while offset < size:
        remaining_in_block = BLOCK_SIZE - (offset % BLOCK_SIZE)
        if remaining_in_block < FRAGMENT_HEADER_SIZE:
            # End-of-block padding.
            offset += remaining_in_block
            continue

        if offset + FRAGMENT_HEADER_SIZE > size:
            return

        checksum, length, type_byte = _FRAGMENT_HEADER.unpack_from(data, offset)

        if length == 0 and type_byte == 0:
            # Zero-filled remainder of a block.
            offset += remaining_in_block
            continue

        if type_byte not in (1, 2, 3, 4):
            # Resynchronize one byte at a time instead of abandoning the file.
            offset += 1
            continue

        end = offset + FRAGMENT_HEADER_SIZE + length
        if end > size:
            return

        yield PhysicalFragment(
            type=FragmentType(type_byte),
            payload=bytes(data[offset + FRAGMENT_HEADER_SIZE : end]),
            offset=offset,
            checksum=checksum,
        )
        offset = end


def iter_logical_records(
    data: bytes,
    *,
    verify_checksums: bool = False,
    start: int = FILE_HEADER_SIZE,
) -> Iterator[bytes]:
    """Reassemble logical record payloads from the framed byte stream.

    The fragment checksum is read but, by default, not validated. With
    ``verify_checksums=True`` a mismatching fragment is dropped together with any
    chain it belonged to.
    """
    pending: list[bytes] | None = None

    for frag in iter_fragments(data, start=start):
        if verify_checksums and frag.checksum != fragment_checksum(frag.type, frag.payload):
            pending = None
            continue

        if frag.type is FragmentType.FULL:
            yield frag.payload
        elif frag.type is FragmentType.FIRST:
            pending = [frag.payload]
        elif frag.type is FragmentType.MIDDLE:
            if pending is not None:
                pending.append(frag.payload)
        else:
            if pending is not None:
                pending.append(frag.payload)
                yield b"".join(pending)
            pending = None


def read_logical_records(data: bytes, *, verify_checksums: bool = False) -> list[bytes]:
    """Validate the file header and return every logical record payload."""
    validate_file_header(data)
    return list(iter_logical_records(data, verify_checksums=verify_checksums))
