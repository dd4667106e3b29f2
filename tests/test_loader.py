import io
import math
import random

import pytest

from redisshake.loader import BinEntry, Loader, ObjEntry, create_value_dump
from redisshake.rdbobject import (
    Encoder,
    Hash,
    HashElement,
    List,
    Set,
    String,
    ZSet,
    ZSetElement,
    decode_dump,
)
from redisshake.rdbreader import RdbError


def decode_hex_rdb(s, n):
    data = bytes.fromhex(s)
    stream = io.BytesIO(data)
    loader = Loader(stream)
    loader.header()
    entries = {}
    count = 0
    while True:
        e = loader.next_bin_entry()
        if e is None:
            break
        assert e.db == 0
        entries[e.key.decode()] = e
        count += 1
    loader.footer()
    assert stream.tell() == len(data)
    assert len(entries) == count == n
    return entries


def getobj(entries, key):
    e = entries[key]
    return e, decode_dump(e.value)


def test_load_int_string():
    s = """
        524544495330303036fe00000a737472696e675f323535c1ff00000873747269
        6e675f31c0010011737472696e675f343239343936373239360a343239343936
        373239360011737472696e675f343239343936373239350a3432393439363732
        39350012737472696e675f2d32313437343833363438c200000080000c737472
        696e675f3635353335c2ffff00000011737472696e675f323134373438333634
        380a32313437343833363438000c737472696e675f3635353336c20000010000
        0a737472696e675f323536c100010011737472696e675f323134373438333634
        37c2ffffff7fffe49d9f131fb5c3b5
    """
    values = [1, 255, 256, 65535, 65536, 2147483647, 2147483648, 4294967295, 4294967296, -2147483648]
    entries = decode_hex_rdb(s, len(values))
    for value in values:
        _, obj = getobj(entries, f"string_{value}")
        assert isinstance(obj, String)
        assert bytes(obj) == str(value).encode()


def test_load_string_ttl():
    s = """
        524544495330303036fe00fc0098f73e5d010000000c737472696e675f74746c
        6d730c737472696e675f74746c6d73fc0098f73e5d010000000b737472696e67
        5f74746c730b737472696e675f74746c73ffd15acd935a3fe949
    """
    entries = decode_hex_rdb(s, 2)
    for key in ("string_ttls", "string_ttlms"):
        e, obj = getobj(entries, key)
        assert bytes(obj) == key.encode()
        assert e.expire_at == 1500000000000


def test_load_list_ziplist_lzf():
    s = """
        524544495330303036fe000a086c6973745f6c7a66c31f440b040b0400000820
        0306000200f102f202e0ff03e1ff07e1ff07e1d90701f2ffff6a1c2d51c02301
        16
    """
    entries = decode_hex_rdb(s, 1)
    _, obj = getobj(entries, "list_lzf")
    assert isinstance(obj, List)
    assert len(obj) == 512
    for i in range(256):
        assert obj[i] == (b"1" if i % 2 else b"0")


def test_load_list():
    s = """
        524544495330303036fe0001046c69737420c000c001c002c003c004c005c006
        c007c008c009c00ac00bc00cc00dc00ec00fc010c011c012c013c014c015c016
        c017c018c019c01ac01bc01cc01dc01ec01fff756ea1fa90adefe3
    """
    entries = decode_hex_rdb(s, 1)
    _, obj = getobj(entries, "list")
    assert obj == [str(i).encode() for i in range(32)]


def test_load_set_and_set_intset():
    s = """
        524544495330303036fe0002047365743220c016c00dc01bc012c01ac004c014
        c002c017c01dc01cc013c019c01ec008c006c000c001c007c00fc009c01fc00e
        c003c00ac015c010c00bc018c011c00cc0050b04736574312802000000100000
        0000000100020003000400050006000700080009000a000b000c000d000e000f
        00ff3a0a9697324d19c3
    """
    entries = decode_hex_rdb(s, 2)
    _, set1 = getobj(entries, "set1")
    assert isinstance(set1, Set)
    assert len(set1) == 16
    assert set(set1) == {str(i).encode() for i in range(16)}
    _, set2 = getobj(entries, "set2")
    assert len(set2) == 32
    assert set(set2) == {str(i).encode() for i in range(32)}


def test_load_hash_and_hash_ziplist():
    s = """
        524544495330303036fe000405686173683220c00dc00dc0fcc0fcc0ffc0ffc0
        04c004c002c002c0fbc0fbc0f0c0f0c0f9c0f9c008c008c0fac0fac006c006c0
        00c000c001c001c0fec0fec007c007c0f6c0f6c00fc00fc009c009c0f7c0f7c0
        fdc0fdc0f1c0f1c0f2c0f2c0f3c0f3c00ec00ec003c003c00ac00ac00bc00bc0
        f8c0f8c00cc00cc0f5c0f5c0f4c0f4c005c0050d056861736831405151000000
        4d000000200000f102f102f202f202f302f302f402f402f502f502f602f602f7
        02f702f802f802f902f902fa02fa02fb02fb02fc02fc02fd02fd02fe0d03fe0d
        03fe0e03fe0e03fe0f03fe0fffffa423d3036c15e534
    """
    entries = decode_hex_rdb(s, 2)
    _, hash1 = getobj(entries, "hash1")
    m1 = {e.field: e.value for e in hash1}
    assert len(m1) == len(hash1) == 16
    for i in range(16):
        assert m1[str(i).encode()] == str(i).encode()
    _, hash2 = getobj(entries, "hash2")
    m2 = {e.field: e.value for e in hash2}
    assert len(m2) == len(hash2) == 32
    for i in range(-16, 16):
        assert m2[str(i).encode()] == str(i).encode()


def test_load_zset_and_zset_ziplist():
    s = """
        524544495330303036fe0003057a7365743220c016032d3232c00d032d3133c0
        1b032d3237c012032d3138c01a032d3236c004022d34c014032d3230c002022d
        32c017032d3233c01d032d3239c01c032d3238c013032d3139c019032d3235c0
        1e032d3330c008022d38c006022d36c000022d30c001022d31c007022d37c009
        022d39c00f032d3135c01f032d3331c00e032d3134c003022d33c00a032d3130
        c015032d3231c010032d3136c00b032d3131c018032d3234c011032d3137c00c
        032d3132c005022d350c057a736574314051510000004d000000200000f102f1
        02f202f202f302f302f402f402f502f502f602f602f702f702f802f802f902f9
        02fa02fa02fb02fb02fc02fc02fd02fd02fe0d03fe0d03fe0e03fe0e03fe0f03
        fe0fffff2addedbf4f5a8f93
    """
    entries = decode_hex_rdb(s, 2)
    _, z1 = getobj(entries, "zset1")
    s1 = {e.member: e.score for e in z1}
    assert len(s1) == len(z1) == 16
    for i in range(16):
        assert abs(s1[str(i).encode()] - i) < 1e-10
    _, z2 = getobj(entries, "zset2")
    s2 = {e.member: e.score for e in z2}
    assert len(s2) == len(z2) == 32
    for i in range(32):
        assert abs(s2[str(i).encode()] + i) < 1e-10


def test_encode_rdb_round_trip():
    rng = random.Random(7)
    buf = io.BytesIO()
    enc = Encoder(buf)
    enc.encode_header()
    expected = []
    for i in range(128):
        db, expireat, key = i + 32, i, str(i).encode()
        kind = i % 5
        if kind == 0:
            obj = String(str(i).encode())
        elif kind == 1:
            obj = List(f"l{i}_{rng.getrandbits(62)}".encode() for _ in range(32))
        elif kind == 2:
            obj = Hash(HashElement(str(j).encode(), f"h{i}_{rng.getrandbits(62)}".encode()) for j in range(32))
        elif kind == 3:
            obj = ZSet(ZSetElement(str(j).encode(), rng.random()) for j in range(32))
        else:
            obj = Set(f"s{i}_{rng.getrandbits(62)}".encode() for _ in range(32))
        enc.encode_object(db, key, expireat, obj)
        expected.append((db, expireat, key, obj))
    enc.encode_footer()
    data = buf.getvalue()

    stream = io.BytesIO(data)
    loader = Loader(stream)
    loader.header()
    count = 0
    while True:
        e = loader.next_bin_entry()
        if e is None:
            break
        db, expireat, key, obj = expected[count]
        assert (e.db, e.expire_at, e.key) == (db, expireat, key)
        out = decode_dump(e.value)
        assert type(out) is type(obj)
        if isinstance(obj, ZSet):
            assert [x.member for x in out] == [x.member for x in obj]
            assert all(math.isclose(a.score, b.score) for a, b in zip(out, obj))
        else:
            assert out == obj
        count += 1
    assert count == 128
    loader.footer()
    assert stream.tell() == len(data)


def test_big_hash_is_split():
    buf = io.BytesIO()
    enc = Encoder(buf)
    enc.encode_header()
    enc.encode_object(0, b"h", 0, Hash(HashElement(f"f{i}".encode(), f"v{i}".encode()) for i in range(5)))
    enc.encode_footer()
    loader = Loader(io.BytesIO(buf.getvalue()), big_key_threshold=10)
    loader.header()
    entries = []
    while (e := loader.next_bin_entry()) is not None:
        entries.append(e)
    loader.footer()
    assert [e.key for e in entries] == [b"h", b"h", b"h"]
    assert [e.real_member_count for e in entries] == [2, 2, 1]
    assert [e.need_read_len for e in entries] == [1, 0, 0]


def test_bad_magic():
    with pytest.raises(RdbError):
        Loader(io.BytesIO(b"RUDIS0006")).header()


def test_bad_version():
    with pytest.raises(RdbError):
        Loader(io.BytesIO(b"REDIS0010")).header()


def test_bad_checksum():
    buf = io.BytesIO()
    enc = Encoder(buf)
    enc.encode_header()
    enc.encode_footer()
    data = bytearray(buf.getvalue())
    data[-1] ^= 0xFF
    loader = Loader(io.BytesIO(bytes(data)))
    loader.header()
    assert loader.next_bin_entry() is None
    with pytest.raises(RdbError):
        loader.footer()


def test_create_value_dump_decodes():
    assert decode_dump(create_value_dump(0, b"\x05hello")) == b"hello"


def test_entry_conversions():
    obj = ObjEntry(db=2, key=b"k", type=0, value=String(b"v"), expire_at=9)
    binary = obj.bin_entry()
    assert isinstance(binary, BinEntry)
    back = binary.obj_entry()
    assert (back.db, back.key, back.expire_at, back.value) == (2, b"k", 9, b"v")