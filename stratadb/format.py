"""Binary encodings and key formats shared by the database components."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from stratadb.port import sha1_hash

__all__ = [
    "CorruptionError",
    "ValueType",
    "CompressionType",
    "LargeValueRef",
    "LARGE_VALUE_REF_SIZE",
    "MAX_SEQUENCE_NUMBER",
    "ParsedInternalKey",
    "encode_varint",
    "decode_varint",
    "encode_fixed32",
    "decode_fixed32",
    "encode_fixed64",
    "decode_fixed64",
    "encode_length_prefixed",
    "decode_length_prefixed",
    "escape_bytes",
    "make_internal_key",
    "parse_internal_key",
    "user_key_of",
    "compare_internal_keys",
    "bytewise_compare",
]

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_MASK64 = (1 << 64) - 1

MAX_SEQUENCE_NUMBER = (1 << 56) - 1
LARGE_VALUE_REF_SIZE = 29


class CorruptionError(Exception):
    """Stored data could not be decoded."""


class ValueType(enum.IntEnum):
    """Kind of entry stored under an internal key."""

    DELETION = 0
    VALUE = 1
    LARGE_VALUE_REF = 2


class CompressionType(enum.IntEnum):
    NONE = 0
    LIGHTWEIGHT = 1


def encode_varint(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as a little-endian base-128 varint."""
    if not 0 <= value <= _MASK64:
        raise ValueError(f"varint out of range: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_varint(data, pos: int = 0) -> Tuple[int, int]:
    """Decode a varint at ``pos``; return ``(value, next_pos)``."""
    result = 0
    shift = 0
    while shift <= 63:
        if pos >= len(data):
            raise CorruptionError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
        shift += 7
    raise CorruptionError("varint too long")


def _pack(layout: struct.Struct, bits: int, value: int) -> bytes:
    if not 0 <= value < (1 << bits):
        raise ValueError(f"value does not fit in {bits} bits: {value}")
    return layout.pack(value)


def _unpack(layout: struct.Struct, data, pos: int) -> int:
    if pos < 0 or pos + layout.size > len(data):
        raise CorruptionError("truncated fixed-width integer")
    return layout.unpack_from(data, pos)[0]


def encode_fixed32(value: int) -> bytes:
    return _pack(_U32, 32, value)


def decode_fixed32(data, pos: int = 0) -> int:
    return _unpack(_U32, data, pos)


def encode_fixed64(value: int) -> bytes:
    return _pack(_U64, 64, value)


def decode_fixed64(data, pos: int = 0) -> int:
    return _unpack(_U64, data, pos)


def encode_length_prefixed(data) -> bytes:
    """Return ``data`` preceded by its length as a varint."""
    raw = memoryview(data).tobytes()
    return encode_varint(len(raw)) + raw


def decode_length_prefixed(data, pos: int = 0) -> Tuple[bytes, int]:
    """Decode a length-prefixed string; return ``(bytes, next_pos)``."""
    length, pos = decode_varint(data, pos)
    end = pos + length
    if end > len(data):
        raise CorruptionError("truncated length-prefixed string")
    return bytes(data[pos:end]), end


def escape_bytes(data) -> str:
    """Render bytes readably, escaping non-printable bytes as ``\\xNN``."""
    return "".join(
        chr(byte) if 0x20 <= byte <= 0x7E else f"\\x{byte:02x}"
        for byte in memoryview(data).tobytes()
    )


@dataclass(frozen=True, order=True)
class LargeValueRef:
    """Reference to a value stored out of line: SHA-1, size and compression."""

    data: bytes

    def __post_init__(self) -> None:
        raw = memoryview(self.data).tobytes()
        if len(raw) != LARGE_VALUE_REF_SIZE:
            raise ValueError(
                f"large value ref must be {LARGE_VALUE_REF_SIZE} bytes, got {len(raw)}"
            )
        object.__setattr__(self, "data", raw)

    @classmethod
    def make(cls, value, compression=CompressionType.NONE) -> "LargeValueRef":
        """Build the reference describing ``value``."""
        raw = memoryview(value).tobytes()
        return cls(
            sha1_hash(raw)
            + encode_fixed64(len(raw))
            + bytes([CompressionType(compression)])
        )

    def value_size(self) -> int:
        return decode_fixed64(self.data, 20)

    def compression(self) -> CompressionType:
        return CompressionType(self.data[28])

    def filename_string(self) -> str:
        """Name under which the value is stored: ``<sha1hex>-<size>-<ctype>``."""
        return f"{self.data[:20].hex()}-{self.value_size()}-{self.data[28]}"


@dataclass(frozen=True)
class ParsedInternalKey:
    user_key: bytes
    sequence: int
    value_type: ValueType


def make_internal_key(user_key, sequence: int, value_type) -> bytes:
    """Append the packed sequence number and type to ``user_key``."""
    if not 0 <= sequence <= MAX_SEQUENCE_NUMBER:
        raise ValueError(f"sequence number out of range: {sequence}")
    kind = ValueType(value_type)
    return memoryview(user_key).tobytes() + encode_fixed64((sequence << 8) | kind)


def parse_internal_key(key) -> ParsedInternalKey:
    """Split an internal key; raise CorruptionError if it is malformed."""
    raw = memoryview(key).tobytes()
    if len(raw) < 8:
        raise CorruptionError("internal key too short")
    packed = decode_fixed64(raw, len(raw) - 8)
    kind = packed & 0xFF
    if kind > ValueType.LARGE_VALUE_REF:
        raise CorruptionError(f"bad value type in internal key: {kind}")
    return ParsedInternalKey(raw[:-8], packed >> 8, ValueType(kind))


def user_key_of(key) -> bytes:
    """Return the user-key part of an internal key."""
    raw = memoryview(key).tobytes()
    if len(raw) < 8:
        raise CorruptionError("internal key too short")
    return raw[:-8]


def bytewise_compare(a, b) -> int:
    """Three-way lexicographic comparison of byte strings."""
    x = memoryview(a).tobytes()
    y = memoryview(b).tobytes()
    return (x > y) - (x < y)


def compare_internal_keys(
    a, b, user_compare: Optional[Callable[[bytes, bytes], int]] = None
) -> int:
    """Order by user key ascending, then by sequence and type descending."""
    compare = user_compare or bytewise_compare
    result = compare(user_key_of(a), user_key_of(b))
    if result:
        return result
    a_num = decode_fixed64(a, len(a) - 8)
    b_num = decode_fixed64(b, len(b) - 8)
    return (a_num < b_num) - (a_num > b_num)