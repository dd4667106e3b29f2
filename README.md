# redisshake

Pure-Python tools for Redis data formats:

- reading RDB snapshot files entry by entry, with CRC-64 checksum checks
  (`redisshake.loader`);
- decoding and encoding `DUMP`/`RESTORE` payloads of single values, and
  writing RDB files (`redisshake.rdbobject`);
- low-level RDB primitives: lengths, strings, LZF, ziplists, zipmaps and
  module values (`redisshake.rdbreader`, `redisshake.slicebuffer`);
- the CRC-64 checksum used by RDB files and dump payloads
  (`redisshake.digest`);
- encoding and decoding the RESP wire protocol (`redisshake.resp`,
  `redisshake.respencoder`, `redisshake.respdecoder`).

There are no dependencies beyond the standard library.

## Installation

```
pip install .
```

## Reading an RDB file

```python
from redisshake.loader import Loader

with open("dump.rdb", "rb") as stream:
    loader = Loader(stream)
    loader.header()
    while (entry := loader.next_bin_entry()) is not None:
        obj = entry.obj_entry()
        print(entry.db, entry.key, entry.expire_at, obj.value)
    loader.footer()
```

- `Loader.header()` checks the `REDIS` magic string and that the version is
  between 1 and 9.
- `Loader.next_bin_entry()` returns a `BinEntry` whose `value` is a
  checksummed dump payload, or `None` at the end-of-file marker. Database
  selection, expiry (seconds and milliseconds), idle time and frequency
  records are folded into the entry. An auxiliary field named `lua` is
  returned as an entry of its own; other auxiliary fields and module
  auxiliary data are skipped.
- A hash whose raw value grows beyond `big_key_threshold` bytes (16 MiB by
  default, settable on `Loader`) is returned as several entries with the
  same key; `real_member_count` then holds the number of members in each
  piece.
- `Loader.footer()` compares the trailing CRC-64 with the one computed over
  the data read; a stored checksum of zero is accepted without a check.

`BinEntry.obj_entry()` decodes the payload into an `ObjEntry`, and
`ObjEntry.bin_entry()` encodes it back.

## Dump payloads

```python
from redisshake.rdbobject import List, decode_dump, encode_dump

payload = encode_dump(List([b"a", b"b"]))
assert decode_dump(payload) == List([b"a", b"b"])
```

`decode_dump` checks the payload version and checksum and returns one of
`String`, `List`, `Set`, `Hash` (a list of `HashElement`) or `ZSet` (a list
of `ZSetElement`). It understands the plain encodings as well as zipmap,
ziplist, intset and quicklist ones. Stream and module values are not turned
into objects; `decode_dump` raises `RdbError` for them.

`encode_dump` writes the plain encodings, storing small integers in their
compact integer form. `Hash.sort_by_field()`, `ZSet.sort_by_member()` and
`ZSet.sort_by_score()` sort elements in place.

## Writing an RDB file

```python
from redisshake.rdbobject import Encoder, String

with open("out.rdb", "wb") as stream:
    encoder = Encoder(stream)
    encoder.encode_header()
    encoder.encode_object(0, b"greeting", 0, String(b"hello"))
    encoder.encode_footer()
```

`encode_object(db, key, expireat, obj)` emits a database selector only when
the database changes, and a millisecond expiry only when `expireat` is not
zero. `encode_footer()` writes the end marker and the CRC-64 checksum.

## RESP

```python
from redisshake.resp import new_command
from redisshake.respencoder import encode_to_bytes
from redisshake.respdecoder import decode_from_bytes

data = encode_to_bytes(new_command("SET", "foo", "bar"))
command = decode_from_bytes(data)
```

Values are `SimpleString`, `Error`, `Int`, `BulkBytes` and `Array`; the
`as_string`, `as_error`, `as_int`, `as_bulk_bytes` and `as_array` helpers
return a value's payload or raise `RespError`. The `Decoder` class reads
values one after another from a binary stream and keeps the number of bytes
consumed in `offset`. A top-level line that does not start with a type byte
is read as an inline request and split on spaces.

## What this package does not do

It does not connect to a Redis server, send data to one, or serve requests,
and it has no way to dispatch decoded commands to handlers. It reads and
writes the formats only; moving the data is left to the caller.

## Running the tests

```
pip install .[test]
pytest
```