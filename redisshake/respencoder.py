"""Serialisation of RESP values to bytes."""

from __future__ import annotations

import io
from typing import Any, BinaryIO

from .resp import Array, BulkBytes, Error, Int, RespError, RespType, SimpleString

_CRLF = b"\r\n"


def itos(value: int) -> str:
    """Decimal text of an integer."""
    return str(value)


def _int_line(value: int) -> bytes:
    return itos(value).encode() + _CRLF


def _serialize(resp: Any, out: bytearray) -> None:
    if isinstance(resp, SimpleString):
        out.append(RespType.STRING)
        out += resp.value + _CRLF
    elif isinstance(resp, Error):
        out.append(RespType.ERROR)
        out += resp.value + _CRLF
    elif isinstance(resp, Int):
        out.append(RespType.INT)
        out += _int_line(resp.value)
    elif isinstance(resp, BulkBytes):
        out.append(RespType.BULK_BYTES)
        if resp.value is None:
            out += _int_line(-1)
        else:
            out += _int_line(len(resp.value))
            out += resp.value + _CRLF
    elif isinstance(resp, Array):
        out.append(RespType.ARRAY)
        if resp.value is None:
            out += _int_line(-1)
        else:
            out += _int_line(len(resp.value))
            for item in resp.value:
                _serialize(item, out)
    else:
        raise RespError(f"bad resp type <{type(resp).__name__}>")


def encode(stream: BinaryIO, resp: Any, flush: bool = True) -> None:
    """Write ``resp`` to a binary stream, flushing it if asked to."""
    out = bytearray()
    _serialize(resp, out)
    stream.write(bytes(out))
    if flush and hasattr(stream, "flush"):
        stream.flush()


def encode_to_bytes(resp: Any) -> bytes:
    buf = io.BytesIO()
    encode(buf, resp, True)
    return buf.getvalue()


def encode_to_string(resp: Any) -> str:
    return encode_to_bytes(resp).decode("utf-8", errors="surrogateescape")