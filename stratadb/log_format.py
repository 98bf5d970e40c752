"""Log file layout shared by the log reader and writer."""

from __future__ import annotations

import enum

__all__ = ["RecordType", "MAX_RECORD_TYPE", "BLOCK_SIZE", "HEADER_SIZE"]


class RecordType(enum.IntEnum):
    """Type byte stored in each physical log record header."""

    ZERO = 0  # reserved for preallocated files
    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4

    def is_fragment(self) -> bool:
        """True for the types that carry a piece of a split record."""
        return self in (RecordType.FIRST, RecordType.MIDDLE, RecordType.LAST)


MAX_RECORD_TYPE = RecordType.LAST

BLOCK_SIZE = 32768

# checksum (4 bytes), type (1 byte), length (2 bytes)
HEADER_SIZE = 4 + 1 + 2