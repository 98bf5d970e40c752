"""A batch of updates applied to the database as a unit.

Layout of the batch contents::

    sequence: fixed64
    count:    fixed32
    records:  record * count

    record := VALUE            varstring varstring
            | LARGE_VALUE_REF  varstring varstring
            | DELETION         varstring
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from stratadb.format import (
    CorruptionError,
    LargeValueRef,
    ValueType,
    decode_fixed32,
    decode_fixed64,
    decode_length_prefixed,
    encode_fixed32,
    encode_fixed64,
    encode_length_prefixed,
)

__all__ = ["BatchEntry", "WriteBatch", "HEADER_SIZE"]

HEADER_SIZE = 12


@dataclass(frozen=True)
class BatchEntry:
    """One update in a batch, with the sequence number it will receive."""

    value_type: ValueType
    key: bytes
    value: bytes
    sequence: int


class WriteBatch:
    """Ordered collection of puts and deletes in their serialized form."""

    def __init__(self) -> None:
        self._rep = bytearray(HEADER_SIZE)

    def clear(self) -> None:
        """Remove every update and reset sequence and count to zero."""
        self._rep = bytearray(HEADER_SIZE)

    def put(self, key, value) -> None:
        """Record that ``key`` maps to ``value``."""
        self._append(ValueType.VALUE, encode_length_prefixed(key) + encode_length_prefixed(value))

    def delete(self, key) -> None:
        """Record the removal of ``key``."""
        self._append(ValueType.DELETION, encode_length_prefixed(key))

    def put_large_value_ref(self, key, large_ref: LargeValueRef) -> None:
        """Record that ``key`` maps to a value stored out of line."""
        self._append(
            ValueType.LARGE_VALUE_REF,
            encode_length_prefixed(key) + encode_length_prefixed(large_ref.data),
        )

    def count(self) -> int:
        """Number of updates recorded in the header."""
        return decode_fixed32(self._rep, 8)

    def sequence(self) -> int:
        """Sequence number of the first update."""
        return decode_fixed64(self._rep, 0)

    def set_sequence(self, sequence: int) -> None:
        self._rep[0:8] = encode_fixed64(sequence)

    def contents(self) -> bytes:
        """The serialized batch."""
        return bytes(self._rep)

    def set_contents(self, contents) -> None:
        """Replace the batch with already serialized ``contents``."""
        raw = memoryview(contents).tobytes()
        if len(raw) < HEADER_SIZE:
            raise ValueError(f"batch contents shorter than {HEADER_SIZE}-byte header")
        self._rep = bytearray(raw)

    def entries(self) -> Iterator[BatchEntry]:
        """Yield the updates in order.

        Raises CorruptionError on a malformed record or when the number of
        records differs from the header count; records decoded before the
        problem have already been yielded.
        """
        data = bytes(self._rep)
        expected = decode_fixed32(data, 8)
        sequence = decode_fixed64(data, 0)
        pos = HEADER_SIZE
        found = 0
        while pos < len(data):
            tag = data[pos]
            pos += 1
            if tag in (ValueType.VALUE, ValueType.LARGE_VALUE_REF):
                try:
                    key, pos = decode_length_prefixed(data, pos)
                    value, pos = decode_length_prefixed(data, pos)
                except CorruptionError:
                    raise CorruptionError("bad WriteBatch Put") from None
            elif tag == ValueType.DELETION:
                try:
                    key, pos = decode_length_prefixed(data, pos)
                except CorruptionError:
                    raise CorruptionError("bad WriteBatch Delete") from None
                value = b""
            else:
                raise CorruptionError("unknown WriteBatch tag")
            yield BatchEntry(ValueType(tag), key, value, sequence)
            sequence += 1
            found += 1
        if found != expected:
            raise CorruptionError("wrong count in WriteBatch")

    def __iter__(self) -> Iterator[BatchEntry]:
        return self.entries()

    def _append(self, kind: ValueType, payload: bytes) -> None:
        self._rep[8:12] = encode_fixed32(self.count() + 1)
        self._rep.append(kind)
        self._rep += payload