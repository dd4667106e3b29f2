"""Redis values as Python objects, and their DUMP and RDB serialisation."""

from __future__ import annotations

import io
import math
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO

from .digest import Crc64, crc64
from .rdbreader import (
    FROM_VERSION,
    RDB_FLAG_EOF,
    RDB_FLAG_EXPIRY_MS,
    RDB_FLAG_SELECT_DB,
    RDB_TYPE_HASH,
    RDB_TYPE_HASH_ZIPLIST,
    RDB_TYPE_HASH_ZIPMAP,
    RDB_TYPE_LIST,
    RDB_TYPE_LIST_ZIPLIST,
    RDB_TYPE_QUICKLIST,
    RDB_TYPE_SET,
    RDB_TYPE_SET_INTSET,
    RDB_TYPE_STRING,
    RDB_TYPE_ZSET,
    RDB_TYPE_ZSET2,
    RDB_TYPE_ZSET_ZIPLIST,
    TO_VERSION,
    RdbError,
    RdbReader,
    read_ziplist_entry,
    read_ziplist_length,
    read_zipmap_item,
)
from .slicebuffer import SliceBuffer

_INTSET_FORMATS = {2: "h", 4: "i", 8: "q"}


class String(bytes):
    """A string value."""


class List(list):
    """A list value: a sequence of byte strings."""


class Set(list):
    """A set value: its members as byte strings, in stored order."""


@dataclass
class HashElement:
    field: bytes
    value: bytes


@dataclass
class ZSetElement:
    member: bytes
    score: float


class Hash(list):
    """A hash value: a sequence of :class:`HashElement`."""

    def sort_by_field(self) -> None:
        self.sort(key=lambda e: bytes(e.field))


class ZSet(list):
    """A sorted-set value: a sequence of :class:`ZSetElement`."""

    def sort_by_member(self) -> None:
        self.sort(key=lambda e: bytes(e.member))

    def sort_by_score(self) -> None:
        self.sort(key=lambda e: e.score)


# -- decoding ------------------------------------------------------------

def _ziplist_entries(data: bytes) -> list[bytes]:
    buf = SliceBuffer(data)
    return [read_ziplist_entry(buf) for _ in range(read_ziplist_length(buf))]


def _pairs(items: list[bytes]) -> list[tuple[bytes, bytes]]:
    if len(items) % 2:
        raise RdbError("odd number of ziplist entries for a pair encoding")
    return list(zip(items[::2], items[1::2]))


def _zipmap_pairs(data: bytes) -> list[tuple[bytes, bytes]]:
    buf = SliceBuffer(data)
    buf.read_byte()  # stored length, unreliable beyond 253
    pairs = []
    while True:
        key = read_zipmap_item(buf, False)
        if key is None:
            return pairs
        value = read_zipmap_item(buf, True)
        if value is None:
            raise RdbError("zipmap ends after a key")
        pairs.append((key, value))


def _intset_members(data: bytes) -> list[bytes]:
    if len(data) < 8:
        raise RdbError("intset too short")
    width, count = struct.unpack_from("<II", data)
    fmt = _INTSET_FORMATS.get(width)
    if fmt is None:
        raise RdbError(f"invalid intset encoding {width}")
    if len(data) < 8 + width * count:
        raise RdbError("intset too short")
    values = struct.unpack_from(f"<{count}{fmt}", data, 8)
    return [str(v).encode() for v in values]


def _parse_score(raw: bytes) -> float:
    try:
        return float(raw.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        raise RdbError(f"invalid score {raw!r}") from None


def _read_object(reader: RdbReader, rtype: int) -> Any:
    if rtype == RDB_TYPE_STRING:
        return String(reader.read_string())
    if rtype == RDB_TYPE_LIST:
        return List(reader.read_string() for _ in range(reader.read_length()))
    if rtype == RDB_TYPE_SET:
        return Set(reader.read_string() for _ in range(reader.read_length()))
    if rtype in (RDB_TYPE_ZSET, RDB_TYPE_ZSET2):
        zset = ZSet()
        for _ in range(reader.read_length()):
            member = reader.read_string()
            score = reader.read_double() if rtype == RDB_TYPE_ZSET2 else reader.read_float()
            zset.append(ZSetElement(member, score))
        return zset
    if rtype == RDB_TYPE_HASH:
        hash_ = Hash()
        for _ in range(reader.read_length()):
            field = reader.read_string()
            hash_.append(HashElement(field, reader.read_string()))
        return hash_
    if rtype == RDB_TYPE_HASH_ZIPMAP:
        return Hash(HashElement(k, v) for k, v in _zipmap_pairs(reader.read_string()))
    if rtype == RDB_TYPE_LIST_ZIPLIST:
        return List(_ziplist_entries(reader.read_string()))
    if rtype == RDB_TYPE_SET_INTSET:
        return Set(_intset_members(reader.read_string()))
    if rtype == RDB_TYPE_ZSET_ZIPLIST:
        pairs = _pairs(_ziplist_entries(reader.read_string()))
        return ZSet(ZSetElement(m, _parse_score(s)) for m, s in pairs)
    if rtype == RDB_TYPE_HASH_ZIPLIST:
        pairs = _pairs(_ziplist_entries(reader.read_string()))
        return Hash(HashElement(k, v) for k, v in pairs)
    if rtype == RDB_TYPE_QUICKLIST:
        items = List()
        for _ in range(reader.read_length()):
            items.extend(_ziplist_entries(reader.read_string()))
        return items
    raise RdbError(f"unsupported object type {rtype:02x}")


def decode_dump(data: bytes) -> Any:
    """Decode a DUMP payload into a String, List, Set, Hash or ZSet."""
    data = bytes(data)
    if len(data) < 10:
        raise RdbError("dump payload too short")
    version = struct.unpack_from("<H", data, len(data) - 10)[0]
    if version > FROM_VERSION:
        raise RdbError(f"unsupported dump version {version}")
    stored = struct.unpack_from("<Q", data, len(data) - 8)[0]
    if crc64(data[:-8]) != stored:
        raise RdbError("dump checksum mismatch")
    reader = RdbReader(io.BytesIO(data[:-10]))
    return _read_object(reader, reader.read_byte())


# -- encoding ------------------------------------------------------------

def _encode_length(out: bytearray, n: int) -> None:
    if n < 1 << 6:
        out.append(n)
    elif n < 1 << 14:
        out += bytes([0x40 | (n >> 8), n & 0xFF])
    elif n < 1 << 32:
        out.append(0x80)
        out += struct.pack(">I", n)
    else:
        out.append(0x81)
        out += struct.pack(">Q", n)


def _encode_int_string(out: bytearray, data: bytes) -> bool:
    if not data or len(data) > 11:
        return False
    try:
        value = int(data.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        return False
    if str(value).encode() != data:
        return False
    if -(1 << 7) <= value < 1 << 7:
        out += b"\xc0" + struct.pack("<b", value)
    elif -(1 << 15) <= value < 1 << 15:
        out += b"\xc1" + struct.pack("<h", value)
    elif -(1 << 31) <= value < 1 << 31:
        out += b"\xc2" + struct.pack("<i", value)
    else:
        return False
    return True


def _encode_string(out: bytearray, data: bytes) -> None:
    data = bytes(data)
    if _encode_int_string(out, data):
        return
    _encode_length(out, len(data))
    out += data


def _encode_float(out: bytearray, value: float) -> None:
    if math.isnan(value):
        out.append(253)
    elif value == math.inf:
        out.append(254)
    elif value == -math.inf:
        out.append(255)
    else:
        text = format(value, ".17g").encode()
        out.append(len(text))
        out += text


def _object_type(obj: Any) -> int:
    if isinstance(obj, String):
        return RDB_TYPE_STRING
    if isinstance(obj, Hash):
        return RDB_TYPE_HASH
    if isinstance(obj, ZSet):
        return RDB_TYPE_ZSET
    if isinstance(obj, Set):
        return RDB_TYPE_SET
    if isinstance(obj, List):
        return RDB_TYPE_LIST
    raise TypeError("unsupported object type")


def _encode_value(out: bytearray, obj: Any) -> None:
    if isinstance(obj, String):
        _encode_string(out, obj)
        return
    _encode_length(out, len(obj))
    if isinstance(obj, Hash):
        for e in obj:
            _encode_string(out, e.field)
            _encode_string(out, e.value)
    elif isinstance(obj, ZSet):
        for e in obj:
            _encode_string(out, e.member)
            _encode_float(out, e.score)
    else:
        for item in obj:
            _encode_string(out, item)


def encode_dump(obj: Any) -> bytes:
    """Serialise an object into a DUMP payload."""
    out = bytearray([_object_type(obj)])
    _encode_value(out, obj)
    out += struct.pack("<H", TO_VERSION)
    out += struct.pack("<Q", crc64(bytes(out)))
    return bytes(out)


class Encoder:
    """Writes an RDB file to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._crc = Crc64()
        self._db: int | None = None

    def _write(self, data: bytes) -> None:
        self._stream.write(data)
        self._crc.update(data)

    def encode_header(self) -> None:
        self._write(b"REDIS%04d" % TO_VERSION)

    def encode_footer(self) -> None:
        self._write(bytes([RDB_FLAG_EOF]))
        self._stream.write(self._crc.digest())

    def encode_object(self, db: int, key: bytes, expireat: int, obj: Any) -> None:
        """Write one key, selecting its database and expiry first when needed."""
        rtype = _object_type(obj)
        out = bytearray()
        if self._db != db:
            self._db = db
            out.append(RDB_FLAG_SELECT_DB)
            _encode_length(out, db)
        if expireat:
            out.append(RDB_FLAG_EXPIRY_MS)
            out += struct.pack("<Q", expireat)
        out.append(rtype)
        _encode_string(out, key)
        _encode_value(out, obj)
        self._write(bytes(out))