import pytest

from stratadb.log_format import MAX_RECORD_TYPE, RecordType


@pytest.mark.parametrize(
    "record_type", [RecordType.FIRST, RecordType.MIDDLE, RecordType.LAST]
)
def test_fragment_types(record_type):
    assert record_type.is_fragment() is True


@pytest.mark.parametrize("record_type", [RecordType.ZERO, RecordType.FULL])
def test_non_fragment_types(record_type):
    assert record_type.is_fragment() is False


@pytest.mark.parametrize(
    "value, expected",
    [
        (0, RecordType.ZERO),
        (1, RecordType.FULL),
        (2, RecordType.FIRST),
        (3, RecordType.MIDDLE),
        (4, RecordType.LAST),
    ],
)
def test_type_from_wire_byte(value, expected):
    assert RecordType(value) is expected


def test_unknown_type_byte_rejected():
    with pytest.raises(ValueError):
        RecordType(int(MAX_RECORD_TYPE) + 1)


def test_max_record_type_is_last_fragment():
    fragments = [t for t in RecordType if t.is_fragment()]
    assert fragments[-1] is MAX_RECORD_TYPE
    assert MAX_RECORD_TYPE.is_fragment() is True