"""Platform helpers: hashing, lightweight compression and profiling hooks."""

from __future__ import annotations

import sys
from typing import Callable

from stratadb.sha1 import sha1_digest

__all__ = [
    "LITTLE_ENDIAN",
    "sha1_hash",
    "lightweight_compress",
    "lightweight_uncompress",
    "get_heap_profile",
]

LITTLE_ENDIAN = sys.byteorder == "little"


def sha1_hash(data) -> bytes:
    """Return the 160-bit SHA-1 hash of ``data`` as 20 bytes."""
    return sha1_digest(data)


def lightweight_compress(data) -> bytes:
    """Return the lightweight compression of ``data``.

    No real compression is performed; the input is copied unchanged.
    """
    return memoryview(data).tobytes()


def lightweight_uncompress(data) -> bytes:
    """Return the uncompressed form of ``data`` produced by
    :func:`lightweight_compress`.
    """
    return memoryview(data).tobytes()


def get_heap_profile(callback: Callable[[bytes], None]) -> bool:
    """Feed a heap profile to ``callback`` in fragments.

    Heap profiling is not supported, so ``callback`` is never called and
    the result is ``False``.  A ``callback`` that cannot be called is
    rejected with TypeError.
    """
    if not callable(callback):
        raise TypeError("heap profile callback must be callable")
    supported = False
    if supported:
        callback(b"")
    return supported