"""Fixed-size revocation bitstring (W3C Status List 2021 encoding).

Bit ``i`` lives in byte ``i // 8`` at position ``7 - i % 8`` (index 0 is the
left-most bit). The published form is GZIP-compressed and base64url encoded.
"""

from __future__ import annotations

import gzip

from dpp_anchor.core.crypto.encoding import b64url_decode, b64url_encode


class StatusBitstring:
    """Mutable bitstring of ``size`` one-bit statuses, all zero (valid) initially."""

    __slots__ = ("_bits", "size")

    def __init__(self, size: int, data: bytes | None = None) -> None:
        if size <= 0 or size % 8:
            raise ValueError("status list size must be a positive multiple of 8")
        expected = size // 8
        if data is not None and len(data) != expected:
            raise ValueError(f"status list data must be {expected} bytes, got {len(data)}")
        self.size = size
        self._bits = bytearray(data if data is not None else expected)

    def _locate(self, index: int) -> tuple[int, int]:
        if not 0 <= index < self.size:
            raise IndexError(f"status index {index} outside 0..{self.size - 1}")
        return index // 8, 7 - index % 8

    def get(self, index: int) -> int:
        byte, bit = self._locate(index)
        return (self._bits[byte] >> bit) & 1

    def set(self, index: int, value: int) -> None:
        byte, bit = self._locate(index)
        if value:
            self._bits[byte] |= 1 << bit
        else:
            self._bits[byte] &= ~(1 << bit) & 0xFF

    def copy(self) -> StatusBitstring:
        return StatusBitstring(self.size, bytes(self._bits))

    def encode(self) -> str:
        # mtime=0 keeps the encoding deterministic for identical bitstrings
        return b64url_encode(gzip.compress(bytes(self._bits), mtime=0))

    @classmethod
    def decode(cls, encoded: str) -> StatusBitstring:
        """Inverse of :meth:`encode`; a multibase ``u`` prefix is tolerated."""
        value = encoded[1:] if encoded.startswith("u") else encoded
        try:
            raw = gzip.decompress(b64url_decode(value))
        except (OSError, EOFError, ValueError) as exc:
            raise ValueError("encoded status list is not gzip+base64url") from exc
        return cls(len(raw) * 8, raw)
