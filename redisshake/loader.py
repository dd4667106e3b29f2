"""Reading RDB files entry by entry."""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional

from .digest import Crc64, crc64
from .rdbobject import decode_dump, encode_dump
from .rdbreader import (
    BIG_KEY_THRESHOLD,
    FROM_VERSION,
    RDB_FLAG_AUX,
    RDB_FLAG_EOF,
    RDB_FLAG_EXPIRY,
    RDB_FLAG_EXPIRY_MS,
    RDB_FLAG_FREQ,
    RDB_FLAG_IDLE,
    RDB_FLAG_MODULE_AUX,
    RDB_FLAG_RESIZE_DB,
    RDB_FLAG_SELECT_DB,
    TO_VERSION,
    RdbError,
    RdbReader,
    skip_module_aux,
)

log = logging.getLogger(__name__)

_VERSION_RE = re.compile(rb"[+-]?[0-9]+")


@dataclass
class BinEntry:
    """A key with its value as a DUMP payload."""

    db: int = 0
    key: bytes = b""
    type: int = 0
    value: bytes = b""
    expire_at: int = 0
    real_member_count: int = 0
    need_read_len: int = 0
    idle_time: int = 0
    freq: int = 0

    def obj_entry(self) -> "ObjEntry":
        return ObjEntry(
            db=self.db,
            key=self.key,
            type=self.type,
            value=decode_dump(self.value),
            expire_at=self.expire_at,
            real_member_count=self.real_member_count,
            need_read_len=self.need_read_len,
        )


@dataclass
class ObjEntry:
    """A key with its value decoded into an object."""

    db: int = 0
    key: bytes = b""
    type: int = 0
    value: Any = None
    expire_at: int = 0
    real_member_count: int = 0
    need_read_len: int = 0

    def bin_entry(self) -> BinEntry:
        return BinEntry(
            db=self.db,
            key=self.key,
            type=self.type,
            value=encode_dump(self.value),
            expire_at=self.expire_at,
            real_member_count=self.real_member_count,
            need_read_len=self.need_read_len,
        )


def create_value_dump(rtype: int, value: bytes) -> bytes:
    """Wrap a raw object value into a checksummed DUMP payload."""
    body = bytes([rtype]) + bytes(value) + struct.pack("<H", TO_VERSION)
    return body + struct.pack("<Q", crc64(body))


class _ChecksumStream:
    def __init__(self, stream: BinaryIO, crc: Crc64) -> None:
        self._stream = stream
        self._crc = crc

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        self._crc.update(data)
        return data


class Loader:
    """Reads the header, entries and footer of an RDB stream."""

    def __init__(self, stream: BinaryIO, big_key_threshold: int = BIG_KEY_THRESHOLD) -> None:
        self._crc = Crc64()
        self.reader = RdbReader(_ChecksumStream(stream, self._crc), big_key_threshold)
        self.db = 0
        self._last_entry: Optional[BinEntry] = None

    def header(self) -> None:
        data = self.reader.read_bytes(9)
        if data[:5] != b"REDIS":
            raise RdbError("verify magic string, invalid file format")
        text = data[5:]
        if not _VERSION_RE.fullmatch(text):
            raise RdbError(f"invalid RDB version {text!r}")
        version = int(text)
        if version <= 0 or version > FROM_VERSION:
            raise RdbError(
                f"verify version, invalid RDB version number {version}, {FROM_VERSION}"
            )

    def footer(self) -> None:
        expected = self._crc.sum64()
        stored = self.reader.read_uint64()
        if stored == 0:
            log.info("RDB file was saved with checksum disabled: no check performed.")
        elif stored != expected:
            raise RdbError("checksum validation failed")

    def next_bin_entry(self) -> Optional[BinEntry]:
        """Return the next entry, or None at the end of the data.

        A very large hash comes back as several entries with the same key;
        ``real_member_count`` then gives the members held by each piece.
        """
        reader = self.reader
        entry = BinEntry()
        while True:
            if reader.remain_member:
                rtype = self._last_entry.type
            else:
                rtype = reader.read_byte()
            if rtype == RDB_FLAG_AUX:
                aux_key = reader.read_string()
                aux_value = reader.read_string()
                log.info("Aux information key: %r value: %r", aux_key, aux_value)
                if aux_key == b"lua":
                    entry.db = self.db
                    entry.key = aux_key
                    entry.type = rtype
                    entry.value = aux_value
                    return entry
            elif rtype == RDB_FLAG_RESIZE_DB:
                db_size = reader.read_length()
                expire_size = reader.read_length()
                log.info("db_size: %d expire_size: %d", db_size, expire_size)
            elif rtype == RDB_FLAG_EXPIRY_MS:
                entry.expire_at = reader.read_uint64()
            elif rtype == RDB_FLAG_EXPIRY:
                entry.expire_at = reader.read_uint32() * 1000
            elif rtype == RDB_FLAG_SELECT_DB:
                self.db = reader.read_length()
            elif rtype == RDB_FLAG_EOF:
                return None
            elif rtype == RDB_FLAG_MODULE_AUX:
                reader.read_length()  # module id
                skip_module_aux(reader)
            elif rtype == RDB_FLAG_IDLE:
                entry.idle_time = reader.read_length()
            elif rtype == RDB_FLAG_FREQ:
                entry.freq = reader.read_byte()
            else:
                if reader.remain_member == 0:
                    key = reader.read_string()
                    entry.need_read_len = 1
                else:
                    key = self._last_entry.key
                value = reader.read_object_value(rtype)
                entry.db = self.db
                entry.key = key
                entry.type = rtype
                entry.value = create_value_dump(rtype, value)
                if reader.last_read_count == reader.tot_member_count:
                    entry.real_member_count = 0
                else:
                    entry.real_member_count = reader.last_read_count
                self._last_entry = entry
                return entry