"""Portable SHA-1 message digest (FIPS PUB 180-1)."""

from __future__ import annotations

import struct

__all__ = ["Sha1", "sha1_digest", "sha1_hexdigest"]

_MASK = 0xFFFFFFFF
_MAX_MESSAGE_BITS = 1 << 64
_INITIAL_STATE = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)
_ROUND_CONSTANTS = (0x5A827999, 0x6ED9EBA1, 0x8F1BBCDC, 0xCA62C1D6)
_BLOCK_SIZE = 64


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) & _MASK) | (value >> (32 - bits))


def _as_bytes(data) -> bytes:
    return memoryview(data).tobytes()


class Sha1:
    """Incremental SHA-1 hasher.

    Once :meth:`digest` has been taken the hasher is finalized and further
    calls to :meth:`update` raise :class:`ValueError`.
    """

    digest_size = 20
    block_size = _BLOCK_SIZE

    def __init__(self, data=b"") -> None:
        self._state = list(_INITIAL_STATE)
        self._buffer = bytearray()
        self._length = 0
        self._result: bytes | None = None
        self.update(data)

    def update(self, data) -> None:
        """Feed more message bytes into the hasher."""
        chunk = _as_bytes(data)
        if not chunk:
            return
        if self._result is not None:
            raise ValueError("cannot update a finalized SHA-1 digest")
        if (self._length + len(chunk)) * 8 >= _MAX_MESSAGE_BITS:
            raise OverflowError("message too long for SHA-1")
        self._length += len(chunk)
        self._buffer += chunk
        full = len(self._buffer) - len(self._buffer) % _BLOCK_SIZE
        for start in range(0, full, _BLOCK_SIZE):
            self._process_block(self._buffer[start:start + _BLOCK_SIZE])
        del self._buffer[:full]

    def digest(self) -> bytes:
        """Return the 20-byte digest, finalizing the hasher."""
        if self._result is None:
            tail = bytes(self._buffer) + b"\x80"
            tail += b"\x00" * ((56 - len(tail)) % _BLOCK_SIZE)
            tail += struct.pack(">Q", self._length * 8)
            for start in range(0, len(tail), _BLOCK_SIZE):
                self._process_block(tail[start:start + _BLOCK_SIZE])
            self._buffer.clear()
            self._result = struct.pack(">5I", *self._state)
        return self._result

    def hexdigest(self) -> str:
        """Return the digest as 40 lower-case hexadecimal characters."""
        return self.digest().hex()

    def _process_block(self, block) -> None:
        words = list(struct.unpack(">16I", block))
        for t in range(16, 80):
            words.append(_rotl(words[t - 3] ^ words[t - 8] ^ words[t - 14] ^ words[t - 16], 1))

        a, b, c, d, e = self._state
        for t, word in enumerate(words):
            if t < 20:
                f = (b & c) | (~b & d)
            elif t < 40 or t >= 60:
                f = b ^ c ^ d
            else:
                f = (b & c) | (b & d) | (c & d)
            temp = (_rotl(a, 5) + f + e + word + _ROUND_CONSTANTS[t // 20]) & _MASK
            a, b, c, d, e = temp, a, _rotl(b, 30), c, d

        self._state = [
            (value + delta) & _MASK
            for value, delta in zip(self._state, (a, b, c, d, e))
        ]


def sha1_digest(data) -> bytes:
    """Return the 20-byte SHA-1 digest of ``data``."""
    return Sha1(data).digest()


def sha1_hexdigest(data) -> str:
    """Return the SHA-1 digest of ``data`` as a hexadecimal string."""
    return Sha1(data).hexdigest()