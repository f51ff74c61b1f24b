"""Wallet key tag convention.

Every wallet key starts with a length-prefixed tag string naming the record
type, followed by a type-specific suffix:

    [compact_size(len(tag))][tag][suffix]

Compact size encoding (all multi-byte forms little-endian):
    0x00-0xFC         the byte itself is the value (1 byte)
    0xFD + uint16     3 bytes
    0xFE + uint32     5 bytes
    0xFF + uint64     9 bytes
"""

import struct
from typing import Self

from pydantic import BaseModel, ConfigDict

from models.storage import Provenance, RecordPair

COMPACT_SIZE_U16 = 0xFD
COMPACT_SIZE_U32 = 0xFE
COMPACT_SIZE_U64 = 0xFF

_COMPACT_SIZE_WIDE = {
    COMPACT_SIZE_U16: "<H",
    COMPACT_SIZE_U32: "<I",
    COMPACT_SIZE_U64: "<Q",
}


def read_compact_size(data: bytes, offset: int = 0) -> tuple[int, int] | None:
    """Decode a compact size at offset.

    Returns (value, bytes_consumed), or None if data ends mid-integer.
    """
    if offset >= len(data):
        return None

    first = data[offset]
    fmt = _COMPACT_SIZE_WIDE.get(first)
    if fmt is None:
        return first, 1

    width = 1 + struct.calcsize(fmt)
    if len(data) < offset + width:
        return None
    (value,) = struct.unpack_from(fmt, data, offset + 1)
    return value, width


def write_compact_size(value: int) -> bytes:
    """Encode value with the narrowest compact size prefix."""
    if value < 0 or value > 0xFFFFFFFFFFFFFFFF:
        raise ValueError(f"compact size out of range: {value}")
    if value < COMPACT_SIZE_U16:
        return bytes([value])
    if value <= 0xFFFF:
        return bytes([COMPACT_SIZE_U16]) + struct.pack("<H", value)
    if value <= 0xFFFFFFFF:
        return bytes([COMPACT_SIZE_U32]) + struct.pack("<I", value)
    return bytes([COMPACT_SIZE_U64]) + struct.pack("<Q", value)


def split_wallet_key(key: bytes) -> tuple[str, bytes] | None:
    """Split a raw wallet key into (tag, suffix).

    Returns None when the prefix is truncated, the tag runs past the key, or
    the tag is not valid UTF-8.
    """
    decoded = read_compact_size(key)
    if decoded is None:
        return None
    length, width = decoded
    if len(key) < width + length:
        return None
    try:
        tag = key[width : width + length].decode("utf-8")
    except UnicodeDecodeError:
        return None
    return tag, key[width + length :]


def make_wallet_key(tag: str, suffix: bytes = b"") -> bytes:
    encoded = tag.encode("utf-8")
    return write_compact_size(len(encoded)) + encoded + suffix


class WalletRecord(BaseModel):
    """The (tag, key_suffix, value) triple handed to record decoders."""

    model_config = ConfigDict(frozen=True)

    tag: str
    key_suffix: bytes
    value: bytes
    provenance: Provenance | None = None

    @classmethod
    def from_key_value(cls, key: bytes, value: bytes, provenance: Provenance | None = None) -> Self | None:
        """Classify a raw record, or None if its key carries no tag."""
        split = split_wallet_key(key)
        if split is None:
            return None
        tag, suffix = split
        return cls(tag=tag, key_suffix=suffix, value=value, provenance=provenance)

    @classmethod
    def from_pair(cls, pair: RecordPair) -> Self | None:
        return cls.from_key_value(pair.key, pair.value, pair.provenance)
