import pytest

from redisshake.resp import (
    Array,
    BulkBytes,
    Error,
    Int,
    RespError,
    RespType,
    SimpleString,
    as_array,
    as_bulk_bytes,
    as_error,
    as_int,
    as_string,
    new_command,
)


def test_type_labels():
    assert RespType.describe(ord("+")) == "<string>"
    assert RespType.describe(ord("*")) == "<array>"
    assert RespType.BULK_BYTES.label == "<bulkbytes>"


def test_unknown_type_labels():
    assert RespType.describe(ord("h")) == "<unknown-h>"
    assert RespType.describe(0x01) == "<unknown-0x01>"


def test_as_helpers_return_value():
    assert as_string(SimpleString(b"OK")) == b"OK"
    assert as_error(Error(b"ERR")) == b"ERR"
    assert as_bulk_bytes(BulkBytes(b"x")) == b"x"
    assert as_bulk_bytes(BulkBytes(None)) is None
    assert as_int(Int(42)) == 42
    items = [Int(1)]
    assert as_array(Array(items)) == items


@pytest.mark.parametrize(
    "func, wrong, name",
    [
        (as_string, Int(1), "String"),
        (as_error, SimpleString(b"x"), "Error"),
        (as_bulk_bytes, Int(1), "BulkBytes"),
        (as_int, BulkBytes(b"1"), "Int"),
        (as_array, None, "Array"),
    ],
)
def test_as_helpers_reject_wrong_type(func, wrong, name):
    with pytest.raises(RespError, match=f"expect {name}"):
        func(wrong)


def test_array_append_from_empty():
    arr = Array()
    assert arr.value is None
    arr.append(SimpleString(b"a"))
    arr.append_int(7)
    arr.append_bulk_bytes(None)
    assert arr.value == [SimpleString(b"a"), Int(7), BulkBytes(None)]


def test_new_command_converts_arguments():
    cmd = new_command("SET", "key", b"raw", 5, None)
    assert cmd.value == [
        BulkBytes(b"SET"),
        BulkBytes(b"key"),
        BulkBytes(b"raw"),
        BulkBytes(b"5"),
        BulkBytes(None),
    ]


def test_new_command_without_args():
    assert as_array(new_command("PING")) == [BulkBytes(b"PING")]