"""Parsing of RESP values, including inline space-separated requests."""

from __future__ import annotations

import io
import re
from typing import BinaryIO

from .resp import Array, BulkBytes, Error, Int, RespError, RespType, SimpleString

_INT_RE = re.compile(rb"[+-]?[0-9]+")
_INT_MIN = -(1 << 63)
_INT_MAX = (1 << 63) - 1


class IncompleteRespError(RespError, EOFError):
    """The stream ended before a whole value was read."""


class Decoder:
    """Reads RESP values from a binary stream and tracks the bytes consumed."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._pending = b""
        self.offset = 0

    def decode(self):
        """Read and return the next value."""
        return self._decode_resp(0)

    def _read_byte(self) -> int:
        if self._pending:
            value, self._pending = self._pending[0], b""
            return value
        chunk = self._stream.read(1)
        if not chunk:
            raise IncompleteRespError("unexpected end of stream")
        return chunk[0]

    def _unread_byte(self, value: int) -> None:
        self._pending = bytes([value])

    def _read_line(self) -> bytes:
        line = self._pending
        self._pending = b""
        if not line.endswith(b"\n"):
            line += self._stream.readline()
        if not line.endswith(b"\n"):
            raise IncompleteRespError("unexpected end of stream")
        return line

    def _read_exact(self, n: int) -> bytes:
        parts = []
        if self._pending:
            parts.append(self._pending[:n])
            self._pending = self._pending[n:]
        remaining = n - sum(map(len, parts))
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                raise IncompleteRespError("unexpected end of stream")
            parts.append(chunk)
            remaining -= len(chunk)
        return b"".join(parts)

    def _decode_resp(self, depth: int):
        code = self._decode_type()
        try:
            kind = RespType(code)
        except ValueError:
            kind = None
        if kind is RespType.STRING:
            return SimpleString(self._decode_text())
        if kind is RespType.ERROR:
            return Error(self._decode_text())
        if kind is RespType.INT:
            return Int(self._decode_int())
        if kind is RespType.BULK_BYTES:
            return BulkBytes(self._decode_bulk_bytes())
        if kind is RespType.ARRAY:
            return Array(self._decode_array(depth))
        if depth != 0:
            raise RespError(f"bad resp type {RespType.describe(code)}")
        self._unread_byte(code)
        return self._decode_inline()

    def _decode_type(self) -> int:
        while True:
            self.offset += 1
            value = self._read_byte()
            # Stray newlines can precede replies from some servers.
            if value != 0x0A:
                return value

    def _decode_text(self) -> bytes:
        line = self._read_line()
        self.offset += len(line)
        if len(line) < 2 or line[-2] != 0x0D:
            raise RespError("bad resp CRLF end")
        return line[:-2]

    def _decode_int(self) -> int:
        text = self._decode_text()
        if not _INT_RE.fullmatch(text):
            raise RespError(f"invalid integer {text!r}")
        value = int(text)
        if not _INT_MIN <= value <= _INT_MAX:
            raise RespError(f"integer out of range {text!r}")
        return value

    def _decode_bulk_bytes(self):
        n = self._decode_int()
        if n < -1:
            raise RespError("bad resp bytes len")
        if n == -1:
            return None
        data = self._read_exact(n + 2)
        self.offset += len(data)
        if data[n:] != b"\r\n":
            raise RespError("bad resp CRLF end")
        return data[:n]

    def _decode_array(self, depth: int):
        n = self._decode_int()
        if n < -1:
            raise RespError("bad resp array len")
        if n == -1:
            return None
        return [self._decode_resp(depth + 1) for _ in range(n)]

    def _decode_inline(self) -> Array:
        line = self._read_line()
        self.offset += len(line)
        if len(line) < 2 or line[-2] != 0x0D:
            raise RespError("bad resp CRLF end")
        request = Array()
        for token in line[:-2].split(b" "):
            if token:
                request.append_bulk_bytes(token)
        return request


def decode(stream: BinaryIO):
    """Decode one value from a binary stream."""
    return Decoder(stream).decode()


def decode_from_bytes(data: bytes):
    """Decode one value from the start of ``data``."""
    return decode(io.BytesIO(data))