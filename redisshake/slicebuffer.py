"""A seekable cursor over an in-memory byte string."""

from __future__ import annotations

_MAX_POSITION = 1 << 31


class SliceBuffer:
    """Reads pieces of a byte string without copying the whole of it."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    def __len__(self) -> int:
        return len(self._data)

    def slice(self, n: int) -> bytes:
        """Return the next ``n`` bytes; raise EOFError if fewer remain."""
        if n < 0:
            raise ValueError("negative slice length")
        end = self._pos + n
        if end > len(self._data):
            raise EOFError("slice beyond end of buffer")
        piece = self._data[self._pos:end]
        self._pos = end
        return piece

    def read_byte(self) -> int:
        """Return the next byte as an integer."""
        if self._pos >= len(self._data):
            raise EOFError("read beyond end of buffer")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes; raise EOFError at the end of the buffer."""
        if size == 0:
            return b""
        if self._pos >= len(self._data):
            raise EOFError("read beyond end of buffer")
        piece = self._data[self._pos:self._pos + size]
        self._pos += len(piece)
        return piece

    def seek(self, offset: int, whence: int = 0) -> int:
        """Move the cursor like ``io`` streams do and return the new position."""
        if whence == 0:
            target = offset
        elif whence == 1:
            target = self._pos + offset
        elif whence == 2:
            target = len(self._data) + offset
        else:
            raise ValueError("invalid whence")
        if target < 0:
            raise ValueError("negative position")
        if target >= _MAX_POSITION:
            raise ValueError("position out of range")
        self._pos = target
        return target