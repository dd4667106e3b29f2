"""RESP value types and helpers to inspect them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional, Union


class RespError(Exception):
    """Raised for malformed or unexpected RESP values."""


class RespType(IntEnum):
    STRING = ord("+")
    ERROR = ord("-")
    INT = ord(":")
    BULK_BYTES = ord("$")
    ARRAY = ord("*")

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def describe(cls, code: int) -> str:
        """Human-readable name of a type byte, known or not."""
        try:
            return cls(code).label
        except ValueError:
            if 0x20 < code < 0x7F:
                return f"<unknown-{chr(code)}>"
            return f"<unknown-0x{code:02x}>"


_LABELS = {
    RespType.STRING: "<string>",
    RespType.ERROR: "<error>",
    RespType.INT: "<int>",
    RespType.BULK_BYTES: "<bulkbytes>",
    RespType.ARRAY: "<array>",
}


@dataclass
class SimpleString:
    value: bytes = b""


@dataclass
class Error:
    value: bytes = b""


@dataclass
class Int:
    value: int = 0


@dataclass
class BulkBytes:
    value: Optional[bytes] = None


Resp = Union[SimpleString, Error, Int, BulkBytes, "Array"]


@dataclass
class Array:
    value: Optional[list] = field(default=None)

    def append(self, item: Resp) -> None:
        if self.value is None:
            self.value = []
        self.value.append(item)

    def append_bulk_bytes(self, data: Optional[bytes]) -> None:
        self.append(BulkBytes(data))

    def append_int(self, value: int) -> None:
        self.append(Int(value))


def _expect(resp: Any, kind: type, name: str):
    if not isinstance(resp, kind):
        raise RespError(f"expect {name}, but got <{type(resp).__name__}>")
    return resp.value


def as_string(resp: Any) -> bytes:
    return _expect(resp, SimpleString, "String")


def as_error(resp: Any) -> bytes:
    return _expect(resp, Error, "Error")


def as_bulk_bytes(resp: Any) -> Optional[bytes]:
    return _expect(resp, BulkBytes, "BulkBytes")


def as_int(resp: Any) -> int:
    return _expect(resp, Int, "Int")


def as_array(resp: Any) -> Optional[list]:
    return _expect(resp, Array, "Array")


def _to_bytes(arg: Any) -> Optional[bytes]:
    if arg is None:
        return None
    if isinstance(arg, (bytes, bytearray)):
        return bytes(arg)
    if isinstance(arg, str):
        return arg.encode()
    if isinstance(arg, bool):
        return b"true" if arg else b"false"
    return str(arg).encode()


def new_command(cmd: str, *args: Any) -> Array:
    """Build a request array of bulk strings from a command and its arguments."""
    request = Array()
    request.append_bulk_bytes(cmd.encode())
    for arg in args:
        request.append_bulk_bytes(_to_bytes(arg))
    return request