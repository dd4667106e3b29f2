"""Low-level reader for the RDB serialisation format."""

from __future__ import annotations

import logging
import math
import struct
from contextlib import contextmanager
from typing import BinaryIO, Iterator, Optional

from .slicebuffer import SliceBuffer

log = logging.getLogger(__name__)

FROM_VERSION = 9
TO_VERSION = 6

RDB_TYPE_STRING = 0
RDB_TYPE_LIST = 1
RDB_TYPE_SET = 2
RDB_TYPE_ZSET = 3
RDB_TYPE_HASH = 4
RDB_TYPE_ZSET2 = 5
RDB_TYPE_MODULE = 6
RDB_TYPE_MODULE2 = 7
RDB_TYPE_HASH_ZIPMAP = 9
RDB_TYPE_LIST_ZIPLIST = 10
RDB_TYPE_SET_INTSET = 11
RDB_TYPE_ZSET_ZIPLIST = 12
RDB_TYPE_HASH_ZIPLIST = 13
RDB_TYPE_QUICKLIST = 14
RDB_TYPE_STREAM_LISTPACKS = 15

RDB_FLAG_MODULE_AUX = 0xF7
RDB_FLAG_IDLE = 0xF8
RDB_FLAG_FREQ = 0xF9
RDB_FLAG_AUX = 0xFA
RDB_FLAG_RESIZE_DB = 0xFB
RDB_FLAG_EXPIRY_MS = 0xFC
RDB_FLAG_EXPIRY = 0xFD
RDB_FLAG_SELECT_DB = 0xFE
RDB_FLAG_EOF = 0xFF

MODULE_OPCODE_EOF = 0
MODULE_OPCODE_SINT = 1
MODULE_OPCODE_UINT = 2
MODULE_OPCODE_FLOAT = 3
MODULE_OPCODE_DOUBLE = 4
MODULE_OPCODE_STRING = 5

MODULE_TYPE_NAME_CHARSET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)

BIG_KEY_THRESHOLD = 16 * 1024 * 1024

_LEN_6BIT = 0
_LEN_14BIT = 1
_LEN_32BIT = 0x80
_LEN_64BIT = 0x81
_ENC_VAL = 3

_ENC_INT8 = 0
_ENC_INT16 = 1
_ENC_INT32 = 2
_ENC_LZF = 3

_ZIPLIST_6BIT_STRING = 0
_ZIPLIST_14BIT_STRING = 1
_ZIPLIST_32BIT_STRING = 2
_ZIPLIST_INT16 = 0xC0
_ZIPLIST_INT32 = 0xD0
_ZIPLIST_INT64 = 0xE0
_ZIPLIST_INT24 = 0xF0
_ZIPLIST_INT8 = 0xFE
_ZIPLIST_INT4 = 15

_SIMPLE_TYPES = frozenset({
    RDB_FLAG_AUX,
    RDB_FLAG_RESIZE_DB,
    RDB_TYPE_HASH_ZIPMAP,
    RDB_TYPE_LIST_ZIPLIST,
    RDB_TYPE_SET_INTSET,
    RDB_TYPE_ZSET_ZIPLIST,
    RDB_TYPE_HASH_ZIPLIST,
    RDB_TYPE_STRING,
})
_LIST_TYPES = frozenset({RDB_TYPE_LIST, RDB_TYPE_SET, RDB_TYPE_QUICKLIST})
_ZSET_TYPES = frozenset({RDB_TYPE_ZSET, RDB_TYPE_ZSET2})


class RdbError(Exception):
    """Raised for malformed or truncated RDB data."""


class RdbReader:
    """Reads RDB primitives from a binary stream.

    Besides the primitives it keeps the bookkeeping needed to read very large
    hashes in several pieces: ``remain_member`` members are still to be read,
    ``last_read_count`` were read by the last call and ``tot_member_count`` is
    the size announced for the whole hash.
    """

    def __init__(self, stream: BinaryIO, big_key_threshold: int = BIG_KEY_THRESHOLD) -> None:
        self._stream = stream
        self._captures: list[bytearray] = []
        self.big_key_threshold = big_key_threshold
        self.offset = 0
        self.remain_member = 0
        self.last_read_count = 0
        self.tot_member_count = 0

    # -- raw input -------------------------------------------------------

    def _read_exact(self, n: int) -> bytes:
        if n < 0:
            raise RdbError(f"negative read length {n}")
        chunks = []
        remaining = n
        while remaining:
            chunk = self._stream.read(remaining)
            if not chunk:
                raise RdbError("unexpected end of data")
            self.offset += len(chunk)
            for capture in self._captures:
                capture += chunk
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    @contextmanager
    def _capturing(self) -> Iterator[bytearray]:
        buf = bytearray()
        self._captures.append(buf)
        try:
            yield buf
        finally:
            self._captures.pop()

    def read_byte(self) -> int:
        """Read one byte and return it as an integer."""
        return self._read_exact(1)[0]

    def read_bytes(self, n: int) -> bytes:
        """Read exactly ``n`` bytes."""
        return self._read_exact(n)

    def read_uint32(self) -> int:
        return struct.unpack("<I", self._read_exact(4))[0]

    def read_uint64(self) -> int:
        return struct.unpack("<Q", self._read_exact(8))[0]

    def _read_uint32_be(self) -> int:
        return struct.unpack(">I", self._read_exact(4))[0]

    def _read_uint64_be(self) -> int:
        return struct.unpack(">Q", self._read_exact(8))[0]

    # -- lengths and strings ---------------------------------------------

    def _read_encoded_length(self) -> tuple[int, bool]:
        u = self.read_byte()
        kind = (u & 0xC0) >> 6
        if kind == _LEN_6BIT:
            return u & 0x3F, False
        if kind == _LEN_14BIT:
            return ((u & 0x3F) << 8) + self.read_byte(), False
        if kind == _ENC_VAL:
            return u & 0x3F, True
        if u == _LEN_32BIT:
            return self._read_uint32_be(), False
        if u == _LEN_64BIT:
            return self._read_uint64_be(), False
        raise RdbError(f"unknown encoding type[{u:x}]")

    def read_length(self) -> int:
        """Read a length, truncated to 32 bits."""
        length, encoded = self._read_encoded_length()
        if encoded:
            raise RdbError("encoded-length")
        return length & 0xFFFFFFFF

    def read_length64(self) -> int:
        """Read a length with its full 64 bits."""
        length, encoded = self._read_encoded_length()
        if encoded:
            raise RdbError("encoded-length")
        return length

    def read_string(self) -> bytes:
        """Read a string, expanding integer and LZF encodings."""
        length, encoded = self._read_encoded_length()
        if not encoded:
            return self._read_exact(length)
        encoding = length & 0xFF
        if encoding == _ENC_INT8:
            return str(struct.unpack("<b", self._read_exact(1))[0]).encode()
        if encoding == _ENC_INT16:
            return str(struct.unpack("<h", self._read_exact(2))[0]).encode()
        if encoding == _ENC_INT32:
            return str(struct.unpack("<i", self._read_exact(4))[0]).encode()
        if encoding == _ENC_LZF:
            inlen = self.read_length()
            outlen = self.read_length()
            return lzf_decompress(self._read_exact(inlen), outlen)
        raise RdbError(f"invalid encoded-string {encoding:02x}")

    def read_double(self) -> float:
        """Read a binary little-endian double."""
        return struct.unpack("<d", self._read_exact(8))[0]

    def read_float(self) -> float:
        """Read a double stored as length-prefixed text."""
        u = self.read_byte()
        if u == 253:
            return math.nan
        if u == 254:
            return math.inf
        if u == 255:
            return -math.inf
        raw = self._read_exact(u)
        try:
            text = raw.decode("ascii")
            if not text or text != text.strip() or "_" in text:
                raise ValueError(text)
            return float(text)
        except (UnicodeDecodeError, ValueError):
            raise RdbError(f"invalid float {raw!r}") from None

    # -- whole values ----------------------------------------------------

    def _reset_counters(self) -> None:
        self.last_read_count = 0
        self.remain_member = 0
        self.tot_member_count = 0

    def read_object_value(self, rtype: int) -> bytes:
        """Read the value of an object of type ``rtype`` and return its raw bytes.

        A hash larger than ``big_key_threshold`` is returned in pieces; the
        member counters tell how much of it is still pending.
        """
        with self._capturing() as buf:
            if rtype in _SIMPLE_TYPES:
                self._reset_counters()
                self.read_string()
            elif rtype in _LIST_TYPES:
                self._reset_counters()
                for _ in range(self.read_length()):
                    self.read_string()
            elif rtype in _ZSET_TYPES:
                self._reset_counters()
                for _ in range(self.read_length()):
                    self.read_string()
                    if rtype == RDB_TYPE_ZSET2:
                        self.read_double()
                    else:
                        self.read_float()
            elif rtype == RDB_TYPE_HASH:
                self._read_hash(buf)
            elif rtype == RDB_TYPE_STREAM_LISTPACKS:
                self._reset_counters()
                self._read_stream()
            elif rtype == RDB_TYPE_MODULE2:
                module_id = self.read_length64()
                module_name = module_type_name_by_id(module_id)
                log.debug("handle module id[%s] name[%s]", module_id, module_name)
                self._reset_counters()
                self.parse_module(module_name, module_id, rtype)
            else:
                raise RdbError(f"unknown object-type {rtype:02x}")
            return bytes(buf)

    def _read_hash(self, buf: bytearray) -> None:
        if self.remain_member:
            n = self.remain_member
        else:
            n = self.read_length()
            self.tot_member_count = n
        self.last_read_count = 0
        for i in range(n):
            self.read_string()
            self.read_string()
            self.last_read_count += 1
            if len(buf) > self.big_key_threshold and i != n - 1:
                self.remain_member = n - i - 1
                break
        if self.last_read_count == n:
            self.remain_member = 0

    def _read_stream(self) -> None:
        for _ in range(self.read_length()):
            self.read_string()
            self.read_string()
        self.read_length()  # items
        self.read_length()  # last id, milliseconds
        self.read_length()  # last id, sequence
        for _ in range(self.read_length()):
            self.read_string()  # group name
            self.read_length()
            self.read_length()
            for _ in range(self.read_length()):
                self._read_exact(16)  # entry id
                self._read_exact(8)  # delivery time
                self.read_length()  # delivery count
            for _ in range(self.read_length()):
                self.read_string()  # consumer name
                self._read_exact(8)  # seen time
                for _ in range(self.read_length()):
                    self._read_exact(16)

    # -- modules ---------------------------------------------------------

    def _expect_opcode(self, rtype: int, opcode: int, name: str) -> None:
        if rtype == RDB_TYPE_MODULE2:
            found = self.read_length()
            if found != opcode:
                raise RdbError(f"opcode[{found}] != {name}[{opcode}]")

    def _module_load_unsigned(self, rtype: int) -> int:
        self._expect_opcode(rtype, MODULE_OPCODE_UINT, "rdbModuleOpcodeUint")
        return self.read_length()

    def _module_load_double(self, rtype: int) -> float:
        self._expect_opcode(rtype, MODULE_OPCODE_DOUBLE, "rdbModuleOpcodeDouble")
        return self.read_double()

    def _module_load_string(self, rtype: int) -> bytes:
        self._expect_opcode(rtype, MODULE_OPCODE_STRING, "rdbModuleOpcodeString")
        return self.read_string()

    def parse_module(self, module_name: str, module_id: int, rtype: int) -> bytes:
        """Skip the payload of a known module type and return the bytes it took."""
        encode_version = module_id & 1023
        with self._capturing() as buf:
            if module_name == "tairhash-":
                length = self._module_load_unsigned(rtype)
                self._module_load_string(rtype)  # key
                for _ in range(length):
                    self._module_load_string(rtype)  # skey
                    self._module_load_unsigned(rtype)  # version
                    self._module_load_unsigned(rtype)  # expire
                    self._module_load_string(rtype)  # value
            elif module_name == "exstrtype":
                self._module_load_unsigned(rtype)  # version
                if encode_version == 1:
                    self._module_load_unsigned(rtype)  # flag
                self._module_load_string(rtype)
            elif module_name == "tairzset_":
                length = self._module_load_unsigned(rtype)
                score_num = self._module_load_unsigned(rtype)
                for _ in range(length):
                    self._module_load_string(rtype)
                    for _ in range(score_num):
                        self._module_load_double(rtype)
            else:
                raise RdbError(
                    f"unknown module name[{module_name}] with module id[{module_id}]"
                )
            if rtype == RDB_TYPE_MODULE2:
                code = self.read_length()
                if code != MODULE_OPCODE_EOF:
                    raise RdbError(f"illegal end code[{code}] in module type")
            return bytes(buf)


def skip_module_aux(reader: RdbReader) -> None:
    """Skip a module auxiliary value up to its end opcode."""
    while True:
        opcode = reader.read_length()
        if opcode == MODULE_OPCODE_EOF:
            return
        if opcode in (MODULE_OPCODE_SINT, MODULE_OPCODE_UINT):
            reader.read_length()
        elif opcode == MODULE_OPCODE_STRING:
            reader.read_string()
        elif opcode == MODULE_OPCODE_FLOAT:
            reader.read_float()
        elif opcode == MODULE_OPCODE_DOUBLE:
            reader.read_double()


def module_type_name_by_id(module_id: int) -> str:
    """Decode the nine-character type name packed into a module id."""
    module_id >>= 10
    chars = []
    for _ in range(9):
        chars.append(MODULE_TYPE_NAME_CHARSET[module_id & 63])
        module_id >>= 6
    return "".join(reversed(chars))


def lzf_decompress(data: bytes, outlen: int) -> bytes:
    """Expand LZF-compressed ``data`` that must yield exactly ``outlen`` bytes."""
    out = bytearray(outlen)
    i = o = 0
    size = len(data)
    try:
        while i < size:
            ctrl = data[i]
            i += 1
            if ctrl < 32:
                count = ctrl + 1
                if i + count > size or o + count > outlen:
                    raise IndexError("literal run out of range")
                out[o:o + count] = data[i:i + count]
                i += count
                o += count
            else:
                length = ctrl >> 5
                if length == 7:
                    length += data[i]
                    i += 1
                ref = o - ((ctrl & 0x1F) << 8) - data[i] - 1
                i += 1
                count = length + 2
                if ref < 0 or o + count > outlen:
                    raise IndexError("back reference out of range")
                for _ in range(count):
                    out[o] = out[ref]
                    ref += 1
                    o += 1
    except IndexError as exc:
        raise RdbError(f"decompress exception: {exc}") from None
    if o != outlen:
        raise RdbError(f"decompress length is {o} != expected {outlen}")
    return bytes(out)


def read_ziplist_length(buf: SliceBuffer) -> int:
    """Return the entry count stored in a ziplist header."""
    buf.seek(8, 0)
    return struct.unpack("<H", buf.slice(2))[0]


def read_ziplist_entry(buf: SliceBuffer) -> bytes:
    """Read the next ziplist entry, rendering integers as decimal text."""
    prev_len = buf.read_byte()
    if prev_len == 254:
        buf.seek(4, 1)
    header = buf.read_byte()
    kind = header >> 6
    if kind == _ZIPLIST_6BIT_STRING:
        return buf.slice(header & 0x3F)
    if kind == _ZIPLIST_14BIT_STRING:
        low = buf.read_byte()
        return buf.slice(((header & 0x3F) << 8) | low)
    if kind == _ZIPLIST_32BIT_STRING:
        return buf.slice(struct.unpack(">I", buf.slice(4))[0])
    if header == _ZIPLIST_INT16:
        return str(struct.unpack("<h", buf.slice(2))[0]).encode()
    if header == _ZIPLIST_INT32:
        return str(struct.unpack("<i", buf.slice(4))[0]).encode()
    if header == _ZIPLIST_INT64:
        return str(struct.unpack("<q", buf.slice(8))[0]).encode()
    if header == _ZIPLIST_INT24:
        raw = buf.read(3).ljust(3, b"\x00")
        return str(int.from_bytes(raw, "little", signed=True)).encode()
    if header == _ZIPLIST_INT8:
        return str(struct.unpack("<b", bytes([buf.read_byte()]))[0]).encode()
    if header >> 4 == _ZIPLIST_INT4:
        return str((header & 0x0F) - 1).encode()
    raise RdbError(f"rdb: unknown ziplist header byte: {header}")


def _read_zipmap_item_length(buf: SliceBuffer, read_free: bool) -> tuple[int, int]:
    b = buf.read_byte()
    if b == 253:
        s = buf.slice(5)
        return struct.unpack(">I", s[:4])[0], s[4]
    if b == 254:
        raise RdbError("rdb: invalid zipmap item length")
    if b == 255:
        return -1, 0
    free = buf.read_byte() if read_free else 0
    return b, free


def read_zipmap_item(buf: SliceBuffer, read_free: bool) -> Optional[bytes]:
    """Read the next zipmap item, or return None at the end marker."""
    length, free = _read_zipmap_item_length(buf, read_free)
    if length == -1:
        return None
    value = buf.slice(length)
    buf.seek(free, 1)
    return value


def count_zipmap_items(buf: SliceBuffer) -> int:
    """Count the keys and values from the cursor on, then rewind the buffer."""
    n = 0
    while True:
        length, free = _read_zipmap_item_length(buf, n % 2 != 0)
        if length == -1:
            break
        buf.seek(length + free, 1)
        n += 1
    buf.seek(0, 0)
    return n