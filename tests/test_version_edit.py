import pytest
from hypothesis import given
from hypothesis import strategies as st

from stratadb.format import (
    CompressionType,
    CorruptionError,
    LargeValueRef,
    ValueType,
    encode_length_prefixed,
    encode_varint,
    make_internal_key,
)
from stratadb.version_edit import FileMetaData, LargeRefEntry, VersionEdit

BIG = 1 << 50


def _assert_round_trip(edit):
    encoded = edit.encode()
    parsed = VersionEdit.decode(encoded)
    assert parsed.encode() == encoded


def test_encode_decode_from_source():
    edit = VersionEdit()
    for i in range(4):
        _assert_round_trip(edit)
        edit.add_file(
            3,
            BIG + 300 + i,
            BIG + 400 + i,
            make_internal_key(b"foo", BIG + 500 + i, ValueType.LARGE_VALUE_REF),
            make_internal_key(b"zoo", BIG + 600 + i, ValueType.DELETION),
        )
        edit.delete_file(4, BIG + 700 + i)
        edit.add_large_value_ref(
            LargeValueRef.make(b"big", CompressionType.NONE), BIG + 800 + i, b"foobar"
        )
        edit.add_large_value_ref(
            LargeValueRef.make(b"big2", CompressionType.LIGHTWEIGHT), BIG + 801 + i, b"baz"
        )
        edit.set_compact_pointer(i, make_internal_key(b"x", BIG + 900 + i, ValueType.VALUE))

    edit.set_comparator_name("foo")
    edit.set_log_number(BIG + 100)
    edit.set_next_file(BIG + 200)
    edit.set_last_sequence(BIG + 1000)
    _assert_round_trip(edit)


def test_decoded_fields():
    edit = VersionEdit()
    edit.set_comparator_name("cmp")
    edit.set_log_number(7)
    edit.set_next_file(9)
    edit.set_last_sequence(11)
    edit.set_compact_pointer(2, b"key-bytes")
    edit.delete_file(1, 42)
    edit.add_file(0, 5, 100, b"aaaaaaaaaa", b"zzzzzzzzzz")
    ref = LargeValueRef.make(b"value")
    edit.add_large_value_ref(ref, 13, b"ikey")

    parsed = VersionEdit.decode(edit.encode())
    assert parsed.comparator == "cmp"
    assert parsed.log_number == 7
    assert parsed.next_file_number == 9
    assert parsed.last_sequence == 11
    assert parsed.compact_pointers == [(2, b"key-bytes")]
    assert parsed.deleted_files == {(1, 42)}
    assert parsed.new_files == [(0, FileMetaData(5, 100, b"aaaaaaaaaa", b"zzzzzzzzzz"))]
    assert parsed.large_refs_added == [LargeRefEntry(ref, 13, b"ikey")]


def test_empty_edit_encodes_to_nothing():
    edit = VersionEdit()
    assert edit.encode() == b""
    parsed = VersionEdit.decode(b"")
    assert parsed.log_number is None
    assert parsed.new_files == []


def test_pinned_encoding():
    edit = VersionEdit()
    edit.set_comparator_name("foo")
    edit.set_log_number(5)
    assert edit.encode() == b"\x01\x03foo\x02\x05"


def test_deleted_files_are_deduplicated_and_sorted():
    edit = VersionEdit()
    edit.delete_file(3, 9)
    edit.delete_file(1, 2)
    edit.delete_file(3, 9)
    assert edit.encode() == b"\x06\x01\x02\x06\x03\x09"


def test_clear_resets_everything():
    edit = VersionEdit()
    edit.set_log_number(1)
    edit.set_compact_pointer(0, b"k")
    edit.delete_file(0, 1)
    edit.add_file(0, 1, 1, b"a", b"b")
    edit.clear()
    assert edit.encode() == b""


def test_debug_string():
    edit = VersionEdit()
    edit.set_comparator_name("foo")
    edit.set_log_number(5)
    edit.delete_file(2, 8)
    edit.add_file(1, 3, 10, b"a\x01", b"b")
    assert edit.debug_string() == (
        "VersionEdit {"
        "\n  Comparator: foo"
        "\n  LogNumber: 5"
        "\n  DeleteFile: 2 8"
        "\n  AddFile: 1 3 10 'a\\x01' .. 'b'"
        "\n}\n"
    )


def test_debug_string_large_ref():
    edit = VersionEdit()
    ref = LargeValueRef.make(b"big")
    edit.add_large_value_ref(ref, 4, b"k")
    assert edit.debug_string() == (
        f"VersionEdit {{\n  LargeRef: 4 {ref.filename_string()} 'k'\n}}\n"
    )


def test_unknown_tag():
    with pytest.raises(CorruptionError, match="unknown tag"):
        VersionEdit.decode(encode_varint(99))


def test_invalid_tag():
    with pytest.raises(CorruptionError, match="invalid tag"):
        VersionEdit.decode(b"\x80")


def test_truncated_log_number():
    with pytest.raises(CorruptionError, match="log number"):
        VersionEdit.decode(b"\x02")


def test_truncated_comparator():
    with pytest.raises(CorruptionError, match="comparator name"):
        VersionEdit.decode(b"\x01\x05ab")


def test_level_out_of_range():
    with pytest.raises(CorruptionError, match="deleted file"):
        VersionEdit.decode(b"\x06\x07\x01")


def test_large_ref_wrong_size():
    data = encode_varint(8) + encode_length_prefixed(b"short") + b"\x01" + encode_length_prefixed(b"k")
    with pytest.raises(CorruptionError, match="large ref"):
        VersionEdit.decode(data)


def test_truncated_new_file():
    edit = VersionEdit()
    edit.add_file(0, 5, 100, b"small", b"large")
    with pytest.raises(CorruptionError, match="new-file entry"):
        VersionEdit.decode(edit.encode()[:-1])


@given(
    log=st.integers(min_value=0, max_value=(1 << 64) - 1),
    files=st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=6),
            st.integers(min_value=0, max_value=(1 << 64) - 1),
            st.binary(max_size=20),
        ),
        max_size=5,
    ),
)
def test_round_trip_property(log, files):
    edit = VersionEdit()
    edit.set_log_number(log)
    for level, number, key in files:
        edit.add_file(level, number, len(key), key, key + b"z")
        edit.delete_file(level, number)
    parsed = VersionEdit.decode(edit.encode())
    assert parsed.log_number == log
    assert parsed.new_files == edit.new_files
    assert parsed.deleted_files == edit.deleted_files