from functools import cmp_to_key

import pytest

from stratadb.format import (
    CorruptionError,
    LargeValueRef,
    ValueType,
    compare_internal_keys,
    encode_fixed32,
    make_internal_key,
)
from stratadb.write_batch import BatchEntry, WriteBatch


def print_contents(batch):
    collected = []
    failed = False
    try:
        for entry in batch:
            collected.append(entry)
    except CorruptionError:
        failed = True
    order = cmp_to_key(
        lambda a, b: compare_internal_keys(
            make_internal_key(a.key, a.sequence, a.value_type),
            make_internal_key(b.key, b.sequence, b.value_type),
        )
    )
    parts = []
    for entry in sorted(collected, key=order):
        key = entry.key.decode("latin-1")
        value = entry.value.decode("latin-1")
        if entry.value_type is ValueType.VALUE:
            parts.append(f"Put({key}, {value})")
        elif entry.value_type is ValueType.LARGE_VALUE_REF:
            parts.append(f"PutRef({key}, {value})")
        else:
            parts.append(f"Delete({key})")
        parts.append(f"@{entry.sequence}")
    if failed:
        parts.append("ParseError()")
    return "".join(parts)


def test_empty():
    batch = WriteBatch()
    assert print_contents(batch) == ""
    assert batch.count() == 0


def test_multiple():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    batch.delete(b"box")
    batch.put(b"baz", b"boo")
    batch.set_sequence(100)
    assert batch.sequence() == 100
    assert batch.count() == 3
    assert print_contents(batch) == (
        "Put(baz, boo)@102" "Delete(box)@101" "Put(foo, bar)@100"
    )


def test_put_indirect():
    batch = WriteBatch()
    batch.put(b"baz", b"boo")
    ref = LargeValueRef(b"a" * 20 + b"b" * 9)
    batch.put_large_value_ref(b"foo", ref)
    batch.set_sequence(100)
    assert batch.sequence() == 100
    assert batch.count() == 2
    assert print_contents(batch) == (
        "Put(baz, boo)@100" "PutRef(foo, aaaaaaaaaaaaaaaaaaaabbbbbbbbb)@101"
    )


def test_corruption():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    batch.delete(b"box")
    batch.set_sequence(200)
    contents = batch.contents()
    batch.set_contents(contents[:-1])
    assert print_contents(batch) == "Put(foo, bar)@200" "ParseError()"


def test_entries_values():
    batch = WriteBatch()
    batch.put(b"k", b"v")
    batch.delete(b"d")
    batch.set_sequence(7)
    assert list(batch.entries()) == [
        BatchEntry(ValueType.VALUE, b"k", b"v", 7),
        BatchEntry(ValueType.DELETION, b"d", b"", 8),
    ]


def test_wrong_count_raises():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    raw = bytearray(batch.contents())
    raw[8:12] = encode_fixed32(2)
    batch.set_contents(raw)
    assert batch.count() == 2
    with pytest.raises(CorruptionError) as excinfo:
        list(batch)
    assert "wrong count" in str(excinfo.value)
    assert print_contents(batch) == "Put(foo, bar)@0" "ParseError()"


def test_unknown_tag_raises():
    batch = WriteBatch()
    batch.set_contents(bytes(8) + encode_fixed32(1) + b"\x09")
    assert batch.count() == 1
    with pytest.raises(CorruptionError) as excinfo:
        list(batch)
    assert "unknown WriteBatch tag" in str(excinfo.value)
    assert print_contents(batch) == "ParseError()"


def test_truncated_put_raises():
    batch = WriteBatch()
    batch.put(b"foo", b"bar")
    batch.set_contents(batch.contents()[:-2])
    assert batch.count() == 1
    with pytest.raises(CorruptionError) as excinfo:
        list(batch)
    assert "bad WriteBatch Put" in str(excinfo.value)
    assert print_contents(batch) == "ParseError()"


def test_set_contents_too_short():
    with pytest.raises(ValueError):
        WriteBatch().set_contents(b"\x00" * 11)


def test_clear_and_contents_round_trip():
    batch = WriteBatch()
    batch.put(b"a", b"1")
    batch.set_sequence(5)
    copy = WriteBatch()
    copy.set_contents(batch.contents())
    assert list(copy) == list(batch)
    batch.clear()
    assert batch.count() == 0
    assert batch.sequence() == 0
    assert list(batch) == []