"""CRC-64 (Jones polynomial, reflected) as used by RDB files and DUMP payloads."""

from __future__ import annotations

_POLY_REFLECTED = 0x95AC9329AC4BC9B5
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _make_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            crc = (crc >> 1) ^ _POLY_REFLECTED if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _make_table()


def crc64(data: bytes, crc: int = 0) -> int:
    """Return the CRC-64 of ``data``, continuing from ``crc``."""
    crc &= _MASK64
    for byte in data:
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc


class Crc64:
    """Incremental CRC-64 checksum, usable as a binary write sink."""

    digest_size = 8
    block_size = 1

    def __init__(self) -> None:
        self._crc = 0

    def update(self, data: bytes) -> None:
        """Feed more bytes into the checksum."""
        self._crc = crc64(data, self._crc)

    def write(self, data: bytes) -> int:
        """File-like alias of :meth:`update`; returns the number of bytes taken."""
        self.update(data)
        return len(data)

    def sum64(self) -> int:
        """Current checksum as an unsigned 64-bit integer."""
        return self._crc

    def digest(self) -> bytes:
        """Current checksum as 8 little-endian bytes."""
        return self._crc.to_bytes(8, "little")

    def reset(self) -> None:
        """Start over from an empty input."""
        self._crc = 0