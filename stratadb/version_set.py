"""The chain of database versions and the bookkeeping that evolves it."""

from __future__ import annotations

import functools
import logging
from dataclasses import replace
from typing import (
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from stratadb.format import (
    CorruptionError,
    LargeValueRef,
    bytewise_compare,
    compare_internal_keys,
    escape_bytes,
    user_key_of,
)
from stratadb.version import Compaction, Version, max_bytes_for_level
from stratadb.version_edit import NUM_LEVELS, FileMetaData, VersionEdit

__all__ = ["VersionSet", "DEFAULT_COMPARATOR_NAME"]

DEFAULT_COMPARATOR_NAME = "stratadb.BytewiseComparator"

_log = logging.getLogger(__name__)

UserCompare = Callable[[bytes, bytes], int]
TableOffset = Callable[[int, bytes], int]


def _check_level(level: int) -> None:
    if not 0 <= level < NUM_LEVELS:
        raise IndexError(f"level out of range: {level}")


class _Builder:
    """Applies a sequence of edits to a base version without intermediate copies."""

    def __init__(self, vset: "VersionSet", base: Version) -> None:
        self._vset = vset
        self._files: List[Dict[int, FileMetaData]] = [
            {meta.number: meta for meta in files} for files in base.levels
        ]

    def apply(self, edit: VersionEdit) -> None:
        for level, key in edit.compact_pointers:
            self._vset._compact_pointers[level] = bytes(key)

        for level, number in edit.deleted_files:
            self._files[level].pop(number, None)

        for level, meta in edit.new_files:
            if meta.number in self._files[level]:
                raise CorruptionError(
                    f"file {meta.number} added twice to level {level}"
                )
            self._files[level][meta.number] = replace(meta, refs=1)

        for entry in edit.large_refs_added:
            self._vset.register_large_value_ref(
                entry.large_ref, entry.fnum, entry.internal_key
            )

    def save_to(self, version: Version) -> None:
        for level, fmap in enumerate(self._files):
            version.levels[level] = [fmap[number] for number in sorted(fmap)]


class VersionSet:
    """All live versions of the database, oldest first, plus shared metadata.

    The descriptor (manifest) is kept in memory as the list of encoded edit
    records written to it, available through :attr:`manifest`.
    """

    def __init__(
        self,
        comparator_name: str = DEFAULT_COMPARATOR_NAME,
        user_compare: Optional[UserCompare] = None,
    ) -> None:
        self.comparator_name = comparator_name
        self._user_compare: UserCompare = user_compare or bytewise_compare
        self._next_file_number = 2
        self._manifest_file_number = 0
        self._manifest: Optional[List[bytes]] = None
        self._versions: List[Version] = [self._new_version()]
        self._large_value_refs: Dict[LargeValueRef, Set[Tuple[int, bytes]]] = {}
        self._compact_pointers: List[bytes] = [b""] * NUM_LEVELS

    # -- simple accessors -------------------------------------------------

    def current(self) -> Version:
        """The newest version."""
        return self._versions[-1]

    @property
    def manifest_file_number(self) -> int:
        return self._manifest_file_number

    @property
    def manifest(self) -> Tuple[bytes, ...]:
        """Encoded records written to the descriptor so far."""
        return tuple(self._manifest or ())

    @property
    def compact_pointers(self) -> Tuple[bytes, ...]:
        """Per-level key at which the next compaction starts (empty if none)."""
        return tuple(self._compact_pointers)

    def new_file_number(self) -> int:
        """Allocate and return a new file number."""
        number = self._next_file_number
        self._next_file_number += 1
        return number

    def num_level_files(self, level: int) -> int:
        _check_level(level)
        return len(self.current().levels[level])

    def needs_compaction(self) -> bool:
        """True if some level of the current version needs compacting."""
        return self.current().compaction_score >= 1

    # -- applying edits ---------------------------------------------------

    def log_and_apply(self, edit: VersionEdit) -> bytes:
        """Apply ``edit``, record it in the descriptor and install the result.

        Returns the encoded record appended for ``edit``.  On the first call
        the descriptor is started with a snapshot of the current state.
        """
        edit.set_next_file(self._next_file_number)

        version = self._new_version()
        builder = _Builder(self, self.current())
        builder.apply(edit)
        builder.save_to(version)
        self._finalize(version)

        records: List[bytes] = []
        if self._manifest is None:
            records.append(self.write_snapshot())
        record = edit.encode()
        records.append(record)

        if self._manifest is None:
            self._manifest = []
        self._manifest.extend(records)
        self._install(version)
        return record

    def recover(self, edits: Iterable[bytes]) -> Tuple[int, int]:
        """Rebuild state from descriptor records.

        Returns ``(log_number, last_sequence)``.  Raises CorruptionError for
        malformed or incomplete descriptors and ValueError if the recorded
        comparator differs from this set's.
        """
        log_number: Optional[int] = None
        last_sequence: Optional[int] = None
        next_file: Optional[int] = None
        builder = _Builder(self, self.current())

        for record in edits:
            edit = VersionEdit.decode(record)
            if edit.comparator is not None and edit.comparator != self.comparator_name:
                raise ValueError(
                    f"{edit.comparator} does not match existing comparator "
                    f"{self.comparator_name}"
                )
            builder.apply(edit)
            if edit.log_number is not None:
                log_number = edit.log_number
            if edit.next_file_number is not None:
                next_file = edit.next_file_number
            if edit.last_sequence is not None:
                last_sequence = edit.last_sequence

        if next_file is None:
            raise CorruptionError("no meta-nextfile entry in descriptor")
        if log_number is None:
            raise CorruptionError("no meta-lognumber entry in descriptor")
        if last_sequence is None:
            raise CorruptionError("no last-sequence-number entry in descriptor")

        version = self._new_version()
        builder.save_to(version)
        self._finalize(version)
        self._install(version)
        self._manifest_file_number = next_file
        self._next_file_number = next_file + 1
        return log_number, last_sequence

    def write_snapshot(self) -> bytes:
        """Encode the full current state as a single edit record."""
        edit = VersionEdit()
        edit.set_comparator_name(self.comparator_name)
        for level, key in enumerate(self._compact_pointers):
            if key:
                edit.set_compact_pointer(level, key)
        for level, files in enumerate(self.current().levels):
            for meta in files:
                edit.add_file(level, meta.number, meta.file_size, meta.smallest, meta.largest)
        for ref in sorted(self._large_value_refs):
            for fnum, internal_key in sorted(self._large_value_refs[ref]):
                edit.add_large_value_ref(ref, fnum, internal_key)
        return edit.encode()

    # -- compaction -------------------------------------------------------

    def pick_compaction(self) -> Optional[Compaction]:
        """Choose the next compaction, or None if none is needed."""
        if not self.needs_compaction():
            return None
        current = self.current()
        level = current.compaction_level
        compaction = Compaction(level, current)

        pointer = self._compact_pointers[level]
        files = current.levels[level]
        chosen = next(
            (
                meta
                for meta in files
                if not pointer or self._icmp(meta.largest, pointer) > 0
            ),
            files[0],
        )
        compaction.inputs[0] = [chosen]
        smallest, largest = self._get_range(compaction.inputs[0])

        if level == 0:
            # Level-0 files may overlap each other: take every overlapping one.
            compaction.inputs[0] = self._get_overlapping_inputs(0, smallest, largest)
            smallest, largest = self._get_range(compaction.inputs[0])

        compaction.inputs[1] = self._get_overlapping_inputs(level + 1, smallest, largest)

        # Grow the level inputs if that picks up no more level+1 files.
        if compaction.inputs[1]:
            all_start, all_limit = self._get_range(compaction.inputs[0] + compaction.inputs[1])
            expanded0 = self._get_overlapping_inputs(level, all_start, all_limit)
            if len(expanded0) > len(compaction.inputs[0]):
                new_start, new_limit = self._get_range(expanded0)
                expanded1 = self._get_overlapping_inputs(level + 1, new_start, new_limit)
                if len(expanded1) == len(compaction.inputs[1]):
                    _log.info(
                        "Expanding@%d %d+%d to %d+%d",
                        level,
                        len(compaction.inputs[0]),
                        len(compaction.inputs[1]),
                        len(expanded0),
                        len(expanded1),
                    )
                    smallest, largest = new_start, new_limit
                    compaction.inputs[0] = expanded0
                    compaction.inputs[1] = expanded1

        # Advance the pointer now so a failed compaction tries elsewhere next time.
        self._compact_pointers[level] = largest
        compaction.edit.set_compact_pointer(level, largest)
        return compaction

    def compact_range(self, level: int, begin, end) -> Optional[Compaction]:
        """Compaction of the files in ``level`` overlapping ``[begin, end]``."""
        inputs = self._get_overlapping_inputs(level, bytes(begin), bytes(end))
        if not inputs:
            return None
        compaction = Compaction(level, self.current())
        compaction.inputs[0] = inputs
        smallest, largest = self._get_range(inputs)
        compaction.inputs[1] = self._get_overlapping_inputs(level + 1, smallest, largest)
        return compaction

    # -- queries ----------------------------------------------------------

    def add_live_files(self) -> Set[int]:
        """Numbers of every file listed in any live version."""
        return {
            meta.number
            for version in self._versions
            for files in version.levels
            for meta in files
        }

    def approximate_offset_of(
        self, version: Version, key, table_offset: Optional[TableOffset] = None
    ) -> int:
        """Approximate byte offset of ``key`` in the database as of ``version``.

        ``table_offset(file_number, key)`` gives the offset of ``key`` inside
        a table whose range contains it; without it such tables add nothing.
        """
        ikey = bytes(key)
        result = 0
        for level, files in enumerate(version.levels):
            for meta in files:
                if self._icmp(meta.largest, ikey) <= 0:
                    result += meta.file_size
                elif self._icmp(meta.smallest, ikey) > 0:
                    if level > 0:
                        # Later files in a sorted level all start after ikey.
                        break
                elif table_offset is not None:
                    result += table_offset(meta.number, ikey)

        for ref, pointers in self._large_value_refs.items():
            for _fnum, internal_key in pointers:
                if self._icmp(internal_key, ikey) <= 0:
                    result += ref.value_size()
        return result

    # -- large values -----------------------------------------------------

    def register_large_value_ref(self, large_ref: LargeValueRef, fnum: int, internal_key) -> bool:
        """Record a reference; True if it is the first to ``large_ref``."""
        refs = self._large_value_refs.setdefault(large_ref, set())
        is_first = not refs
        refs.add((fnum, bytes(internal_key)))
        return is_first

    def cleanup_large_value_refs(self, live_tables: Iterable[int], log_file_number: int) -> None:
        """Drop references from files that are neither live tables nor the log."""
        live = set(live_tables)
        for ref in list(self._large_value_refs):
            refs = {
                entry
                for entry in self._large_value_refs[ref]
                if entry[0] == log_file_number or entry[0] in live
            }
            if refs:
                self._large_value_refs[ref] = refs
            else:
                _log.info("large value is dead: '%s'", ref.filename_string())
                del self._large_value_refs[ref]

    def large_value_is_live(self, large_ref: LargeValueRef) -> bool:
        return large_ref in self._large_value_refs

    # -- internals --------------------------------------------------------

    def _new_version(self) -> Version:
        return Version(self._user_compare, self._maybe_delete_old_versions)

    def _icmp(self, a: bytes, b: bytes) -> int:
        return compare_internal_keys(a, b, self._user_compare)

    def _install(self, version: Version) -> None:
        version.next = None
        self.current().next = version
        self._versions.append(version)

    def _maybe_delete_old_versions(self, _released: Optional[Version] = None) -> None:
        # Delete strictly in order: a newer unreferenced version may still
        # be needed by holders of an older one.
        while len(self._versions) > 1 and self._versions[0].refs == 0:
            self._versions.pop(0)

    def _finalize(self, version: Version) -> None:
        best_level = -1
        best_score = -1.0
        for level in range(NUM_LEVELS):
            self._sort_level(version, level)
            files = version.levels[level]
            score = sum(meta.file_size for meta in files) / max_bytes_for_level(level)
            if level == 0:
                # Too many level-0 files slow merging regardless of size.
                score = max(score, len(files) / 4.0)
            if score > best_score:
                best_level, best_score = level, score
        version.compaction_level = best_level
        version.compaction_score = best_score

    def _sort_level(self, version: Version, level: int) -> None:
        files = sorted(
            version.levels[level],
            key=functools.cmp_to_key(lambda f1, f2: self._icmp(f1.smallest, f2.smallest)),
        )
        version.levels[level] = files
        if level == 0:
            return
        for before, after in zip(files, files[1:]):
            if self._icmp(before.largest, after.smallest) >= 0:
                raise CorruptionError(
                    "overlapping ranges in same level: "
                    f"{escape_bytes(before.largest)} vs. {escape_bytes(after.smallest)}"
                )

    def _get_overlapping_inputs(self, level: int, begin: bytes, end: bytes) -> List[FileMetaData]:
        if level >= NUM_LEVELS:
            return []
        user_begin = user_key_of(begin)
        user_end = user_key_of(end)
        compare = self._user_compare
        return [
            meta
            for meta in self.current().levels[level]
            if not (
                compare(user_key_of(meta.largest), user_begin) < 0
                or compare(user_key_of(meta.smallest), user_end) > 0
            )
        ]

    def _get_range(self, inputs: List[FileMetaData]) -> Tuple[bytes, bytes]:
        if not inputs:
            raise ValueError("cannot compute the range of no files")
        smallest = inputs[0].smallest
        largest = inputs[0].largest
        for meta in inputs[1:]:
            if self._icmp(meta.smallest, smallest) < 0:
                smallest = meta.smallest
            if self._icmp(meta.largest, largest) > 0:
                largest = meta.largest
        return smallest, largest