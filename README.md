# stratadb

This package holds the bookkeeping core of a log-structured key-value storage engine, in pure Python. It has no runtime dependencies.

## What is inside

- `stratadb.sha1`: a portable SHA-1. You can call `sha1_digest(data)` or `sha1_hexdigest(data)`, or feed data step by step to the `Sha1` class.
- `stratadb.port`: platform helpers.
  - `sha1_hash` hashes data with SHA-1.
  - `lightweight_compress` and `lightweight_uncompress` both return their input unchanged.
  - `get_heap_profile` always returns `False`, because heap profiling is not supported.
  - `LITTLE_ENDIAN` tells you the host byte order.
- `stratadb.log_format`: the constants of the block-based log layout, which are `BLOCK_SIZE`, `HEADER_SIZE` and `MAX_RECORD_TYPE`. It also has the `RecordType` enum.
- `stratadb.format`: the shared encodings.
  - Varints, fixed-width little-endian integers and length-prefixed strings.
  - Internal keys, with `make_internal_key`, `parse_internal_key`, `user_key_of` and `compare_internal_keys`.
  - `bytewise_compare` and `escape_bytes`.
  - `ValueType` and `CompressionType`.
  - `LargeValueRef`, a 29-byte reference made of a SHA-1, a size and a compression type.
- `stratadb.write_batch`: `WriteBatch` keeps puts, deletes and large-value references in the serialised batch format. Iterating over it yields `BatchEntry` records, each with its sequence number.
- `stratadb.version_edit`: `VersionEdit` is a change to the set of table files and the database metadata. It encodes to the manifest record format and decodes from it. `FileMetaData` describes one table file.
- `stratadb.version`:
  - `Version` is a reference-counted snapshot of the table files at each of the `NUM_LEVELS` (7) levels.
  - `Compaction` holds the input files taken from a level and the level below it.
  - `max_bytes_for_level` and `max_file_size_for_level` give the size limits.
- `stratadb.version_set`: `VersionSet` keeps the chain of live versions.
  - `log_and_apply` applies an edit.
  - `recover` rebuilds the state from encoded manifest records.
  - `pick_compaction` and `compact_range` choose compactions.
  - The set also tracks large-value references and computes approximate key offsets.

Malformed data raises `stratadb.format.CorruptionError`.

## Installing

```
pip install .
```

To install the test dependencies and run the tests:

```
pip install ".[test]"
pytest
```

## Examples

```python
from stratadb.sha1 import sha1_hexdigest

sha1_hexdigest(b"hello")  # 'aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d'
```

```python
from stratadb.write_batch import WriteBatch

batch = WriteBatch()
batch.put(b"foo", b"bar")
batch.delete(b"box")
batch.set_sequence(100)
batch.count()             # 2
for entry in batch:
    print(entry.value_type.name, entry.key, entry.value, entry.sequence)
# VALUE b'foo' b'bar' 100
# DELETION b'box' b'' 101
```

```python
from stratadb.version_edit import VersionEdit

edit = VersionEdit()
edit.set_comparator_name("bytewise")
edit.set_log_number(7)
data = edit.encode()
VersionEdit.decode(data).encode() == data   # True
```

```python
from stratadb.format import ValueType, make_internal_key
from stratadb.version_edit import VersionEdit
from stratadb.version_set import VersionSet

versions = VersionSet()
edit = VersionEdit()
edit.set_log_number(0)
edit.set_last_sequence(2)
edit.add_file(
    1,
    versions.new_file_number(),
    1000,
    make_internal_key(b"a", 1, ValueType.VALUE),
    make_internal_key(b"m", 2, ValueType.VALUE),
)
versions.log_and_apply(edit)
versions.num_level_files(1)        # 1

restored = VersionSet()
restored.recover(versions.manifest)  # (0, 2)
restored.num_level_files(1)          # 1
```

`VersionSet` writes messages through the standard `logging` module, under the logger name `stratadb.version_set`. It logs when a compaction grows its inputs and when a large value has no live references left.

## What it does not do

This package does not store anything on disk.

- The manifest of a `VersionSet` is kept in memory, as the tuple of encoded records in `VersionSet.manifest`. Nothing writes it to a file or reads it back from one.
- There are no table files, no log reader or writer, no table cache and no in-memory write buffer.
- There is no database object to open, read from or write to.

`approximate_offset_of` cannot look inside table files by itself. If you need offsets within tables, pass them in through its `table_offset` callback.