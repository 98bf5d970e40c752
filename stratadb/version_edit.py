"""Descriptor edits: the changes that take one database version to the next."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from stratadb.format import (
    LARGE_VALUE_REF_SIZE,
    CorruptionError,
    LargeValueRef,
    decode_length_prefixed,
    decode_varint,
    encode_length_prefixed,
    encode_varint,
    escape_bytes,
)

__all__ = ["NUM_LEVELS", "FileMetaData", "LargeRefEntry", "VersionEdit"]

NUM_LEVELS = 7

_MAX_VARINT32_BYTES = 5
_MAX_U32 = 0xFFFFFFFF
_NAME_ENCODING = "utf-8"
_NAME_ERRORS = "surrogateescape"


class _Tag(enum.IntEnum):
    """Field tags of a serialized edit; these values are stored on disk."""

    COMPARATOR = 1
    LOG_NUMBER = 2
    NEXT_FILE_NUMBER = 3
    LAST_SEQUENCE = 4
    COMPACT_POINTER = 5
    DELETED_FILE = 6
    NEW_FILE = 7
    LARGE_VALUE_REF = 8


_FIELD_NAMES = {
    _Tag.COMPARATOR: "comparator name",
    _Tag.LOG_NUMBER: "log number",
    _Tag.NEXT_FILE_NUMBER: "next file number",
    _Tag.LAST_SEQUENCE: "last sequence number",
    _Tag.COMPACT_POINTER: "compaction pointer",
    _Tag.DELETED_FILE: "deleted file",
    _Tag.NEW_FILE: "new-file entry",
    _Tag.LARGE_VALUE_REF: "large ref",
}


@dataclass
class FileMetaData:
    """A table file: its number, size and the range of internal keys it holds."""

    number: int = 0
    file_size: int = 0
    smallest: bytes = b""
    largest: bytes = b""
    refs: int = 0


@dataclass(frozen=True)
class LargeRefEntry:
    """A large value written to file ``fnum`` under ``internal_key``."""

    large_ref: LargeValueRef
    fnum: int
    internal_key: bytes


def _corrupt(message: str) -> CorruptionError:
    return CorruptionError(f"VersionEdit: {message}")


def _read_varint32(data: bytes, pos: int) -> Optional[Tuple[int, int]]:
    try:
        value, end = decode_varint(data, pos)
    except CorruptionError:
        return None
    if end - pos > _MAX_VARINT32_BYTES or value > _MAX_U32:
        return None
    return value, end


def _read_level(data: bytes, pos: int) -> Tuple[int, int]:
    result = _read_varint32(data, pos)
    if result is None or result[0] >= NUM_LEVELS:
        raise CorruptionError("bad level")
    return result


class VersionEdit:
    """Set of changes to the file layout and metadata of the database.

    Scalar fields that have not been set are ``None`` and are left out of
    the encoding.
    """

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        """Forget every recorded change."""
        self.comparator: Optional[str] = None
        self.log_number: Optional[int] = None
        self.next_file_number: Optional[int] = None
        self.last_sequence: Optional[int] = None
        self.compact_pointers: List[Tuple[int, bytes]] = []
        self.deleted_files: Set[Tuple[int, int]] = set()
        self.new_files: List[Tuple[int, FileMetaData]] = []
        self.large_refs_added: List[LargeRefEntry] = []

    def set_comparator_name(self, name: str) -> None:
        self.comparator = name

    def set_log_number(self, number: int) -> None:
        self.log_number = number

    def set_next_file(self, number: int) -> None:
        self.next_file_number = number

    def set_last_sequence(self, sequence: int) -> None:
        self.last_sequence = sequence

    def set_compact_pointer(self, level: int, key) -> None:
        """Record the internal key at which the next compaction of ``level`` starts."""
        self.compact_pointers.append((level, bytes(key)))

    def add_file(self, level: int, number: int, file_size: int, smallest, largest) -> None:
        """Add table file ``number`` to ``level``."""
        meta = FileMetaData(
            number=number,
            file_size=file_size,
            smallest=bytes(smallest),
            largest=bytes(largest),
        )
        self.new_files.append((level, meta))

    def delete_file(self, level: int, number: int) -> None:
        """Remove table file ``number`` from ``level``."""
        self.deleted_files.add((level, number))

    def add_large_value_ref(self, large_ref: LargeValueRef, fnum: int, internal_key) -> None:
        """Record that the large value ``large_ref`` was written to file ``fnum``."""
        self.large_refs_added.append(LargeRefEntry(large_ref, fnum, bytes(internal_key)))

    def encode(self) -> bytes:
        """Serialize the edit."""
        out = bytearray()
        if self.comparator is not None:
            out += encode_varint(_Tag.COMPARATOR)
            out += encode_length_prefixed(
                self.comparator.encode(_NAME_ENCODING, _NAME_ERRORS)
            )
        for tag, number in (
            (_Tag.LOG_NUMBER, self.log_number),
            (_Tag.NEXT_FILE_NUMBER, self.next_file_number),
            (_Tag.LAST_SEQUENCE, self.last_sequence),
        ):
            if number is not None:
                out += encode_varint(tag) + encode_varint(number)

        for level, key in self.compact_pointers:
            out += encode_varint(_Tag.COMPACT_POINTER)
            out += encode_varint(level)
            out += encode_length_prefixed(key)

        for level, number in sorted(self.deleted_files):
            out += encode_varint(_Tag.DELETED_FILE)
            out += encode_varint(level)
            out += encode_varint(number)

        for level, meta in self.new_files:
            out += encode_varint(_Tag.NEW_FILE)
            out += encode_varint(level)
            out += encode_varint(meta.number)
            out += encode_varint(meta.file_size)
            out += encode_length_prefixed(meta.smallest)
            out += encode_length_prefixed(meta.largest)

        for entry in self.large_refs_added:
            out += encode_varint(_Tag.LARGE_VALUE_REF)
            out += encode_length_prefixed(entry.large_ref.data)
            out += encode_varint(entry.fnum)
            out += encode_length_prefixed(entry.internal_key)
        return bytes(out)

    @classmethod
    def decode(cls, data) -> "VersionEdit":
        """Parse a serialized edit; raise CorruptionError if it is malformed."""
        raw = memoryview(data).tobytes()
        edit = cls()
        pos = 0
        while pos < len(raw):
            read = _read_varint32(raw, pos)
            if read is None:
                raise _corrupt("invalid tag")
            tag_value, pos = read
            try:
                tag = _Tag(tag_value)
            except ValueError:
                raise _corrupt("unknown tag") from None
            try:
                pos = edit._decode_field(tag, raw, pos)
            except CorruptionError:
                raise _corrupt(_FIELD_NAMES[tag]) from None
        return edit

    def _decode_field(self, tag: _Tag, data: bytes, pos: int) -> int:
        if tag is _Tag.COMPARATOR:
            name, pos = decode_length_prefixed(data, pos)
            self.comparator = name.decode(_NAME_ENCODING, _NAME_ERRORS)
        elif tag is _Tag.LOG_NUMBER:
            self.log_number, pos = decode_varint(data, pos)
        elif tag is _Tag.NEXT_FILE_NUMBER:
            self.next_file_number, pos = decode_varint(data, pos)
        elif tag is _Tag.LAST_SEQUENCE:
            self.last_sequence, pos = decode_varint(data, pos)
        elif tag is _Tag.COMPACT_POINTER:
            level, pos = _read_level(data, pos)
            key, pos = decode_length_prefixed(data, pos)
            self.compact_pointers.append((level, key))
        elif tag is _Tag.DELETED_FILE:
            level, pos = _read_level(data, pos)
            number, pos = decode_varint(data, pos)
            self.deleted_files.add((level, number))
        elif tag is _Tag.NEW_FILE:
            level, pos = _read_level(data, pos)
            number, pos = decode_varint(data, pos)
            file_size, pos = decode_varint(data, pos)
            smallest, pos = decode_length_prefixed(data, pos)
            largest, pos = decode_length_prefixed(data, pos)
            self.new_files.append((level, FileMetaData(number, file_size, smallest, largest)))
        else:
            ref, pos = decode_length_prefixed(data, pos)
            if len(ref) != LARGE_VALUE_REF_SIZE:
                raise CorruptionError("bad large value ref size")
            fnum, pos = decode_varint(data, pos)
            key, pos = decode_length_prefixed(data, pos)
            self.large_refs_added.append(LargeRefEntry(LargeValueRef(ref), fnum, key))
        return pos

    def debug_string(self) -> str:
        """Human-readable description of the edit."""
        parts = ["VersionEdit {"]
        if self.comparator is not None:
            parts.append(f"\n  Comparator: {self.comparator}")
        if self.log_number is not None:
            parts.append(f"\n  LogNumber: {self.log_number}")
        if self.next_file_number is not None:
            parts.append(f"\n  NextFile: {self.next_file_number}")
        if self.last_sequence is not None:
            parts.append(f"\n  LastSeq: {self.last_sequence}")
        for level, key in self.compact_pointers:
            parts.append(f"\n  CompactPointer: {level} '{escape_bytes(key)}'")
        for level, number in sorted(self.deleted_files):
            parts.append(f"\n  DeleteFile: {level} {number}")
        for level, meta in self.new_files:
            parts.append(
                f"\n  AddFile: {level} {meta.number} {meta.file_size} "
                f"'{escape_bytes(meta.smallest)}' .. '{escape_bytes(meta.largest)}'"
            )
        for entry in self.large_refs_added:
            parts.append(
                f"\n  LargeRef: {entry.fnum} {entry.large_ref.filename_string()} "
                f"'{escape_bytes(entry.internal_key)}'"
            )
        parts.append("\n}\n")
        return "".join(parts)