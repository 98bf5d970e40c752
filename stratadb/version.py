"""Snapshots of the table-file layout and the compactions picked from them."""

from __future__ import annotations

from typing import Callable, List, Optional

from stratadb.format import bytewise_compare, escape_bytes, user_key_of
from stratadb.version_edit import NUM_LEVELS, FileMetaData, VersionEdit

__all__ = [
    "max_bytes_for_level",
    "max_file_size_for_level",
    "Version",
    "Compaction",
]

UserCompare = Callable[[bytes, bytes], int]

_MAX_FILE_SIZE = 2 << 20


def _check_level(level: int) -> None:
    if not 0 <= level < NUM_LEVELS:
        raise IndexError(f"level out of range: {level}")


def max_bytes_for_level(level: int) -> float:
    """Size limit in bytes for the files of ``level``."""
    if level == 0:
        return 4 * 1048576.0
    result = 10 * 1048576.0
    for _ in range(level - 1):
        result *= 10
    return result


def max_file_size_for_level(level: int) -> int:
    """Largest table file a compaction into ``level`` should build.

    The limit is the same for every level; a level outside the valid
    range raises IndexError.
    """
    _check_level(level)
    return _MAX_FILE_SIZE


class Version:
    """The set of table files making up the database at one point in time.

    Files are kept per level.  A version is reference counted; when the
    count drops back to zero ``on_release`` is called with the version.
    """

    def __init__(
        self,
        user_compare: Optional[UserCompare] = None,
        on_release: Optional[Callable[["Version"], None]] = None,
    ) -> None:
        self.user_compare: UserCompare = user_compare or bytewise_compare
        self._on_release = on_release
        self._refs = 0
        self.levels: List[List[FileMetaData]] = [[] for _ in range(NUM_LEVELS)]
        self.next: Optional[Version] = None
        # Filled in when the version is finalized; a score below 1 means
        # no compaction is strictly needed.
        self.compaction_score: float = -1
        self.compaction_level: int = -1

    @property
    def refs(self) -> int:
        """Number of live references to this version."""
        return self._refs

    def ref(self) -> None:
        """Take a reference."""
        self._refs += 1

    def unref(self) -> None:
        """Drop a reference; raise ValueError if none is held."""
        if self._refs < 1:
            raise ValueError("version has no references to drop")
        self._refs -= 1
        if self._refs == 0 and self._on_release is not None:
            self._on_release(self)

    def files(self, level: int) -> List[FileMetaData]:
        """The list of files at ``level`` (the version's own list)."""
        _check_level(level)
        return self.levels[level]

    def debug_string(self) -> str:
        """Human-readable listing of the files at every level."""
        lines = []
        for level, files in enumerate(self.levels):
            entries = "".join(
                f" {meta.number}:{meta.file_size}"
                f"['{escape_bytes(meta.smallest)}' .. '{escape_bytes(meta.largest)}']"
                for meta in files
            )
            lines.append(f"level {level}:{entries}\n")
        return "".join(lines)


class Compaction:
    """Inputs from ``level`` and ``level + 1`` to be merged into ``level + 1``."""

    def __init__(self, level: int, input_version: Optional[Version] = None) -> None:
        self.level = level
        self._max_output_file_size = max_file_size_for_level(level)
        self.input_version = input_version
        if input_version is not None:
            input_version.ref()
        self.edit = VersionEdit()
        self.inputs: List[List[FileMetaData]] = [[], []]
        # Per-level cursor into the files of levels >= level + 2, used by
        # is_base_level_for_key, which expects keys in increasing order.
        self._level_ptrs = [0] * NUM_LEVELS

    def __enter__(self) -> "Compaction":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release_inputs()

    @staticmethod
    def _check_which(which: int) -> None:
        if which not in (0, 1):
            raise ValueError(f"input set must be 0 or 1, got {which}")

    def num_input_files(self, which: int) -> int:
        """Number of input files at ``level + which``."""
        self._check_which(which)
        return len(self.inputs[which])

    def input(self, which: int, index: int) -> FileMetaData:
        """The ``index``-th input file at ``level + which``."""
        self._check_which(which)
        return self.inputs[which][index]

    def max_output_file_size(self) -> int:
        """Maximum size of the files this compaction builds."""
        return self._max_output_file_size

    def add_input_deletions(self, edit: VersionEdit) -> None:
        """Record the removal of every input file in ``edit``."""
        for which, files in enumerate(self.inputs):
            for meta in files:
                edit.delete_file(self.level + which, meta.number)

    def is_base_level_for_key(self, user_key) -> bool:
        """True if no level beyond ``level + 1`` can hold ``user_key``.

        Successive calls must pass keys in increasing order.
        """
        version = self.input_version
        if version is None:
            raise ValueError("compaction inputs have been released")
        compare = version.user_compare
        key = bytes(user_key)
        for lvl in range(self.level + 2, NUM_LEVELS):
            files = version.levels[lvl]
            while self._level_ptrs[lvl] < len(files):
                meta = files[self._level_ptrs[lvl]]
                if compare(key, user_key_of(meta.largest)) <= 0:
                    if compare(key, user_key_of(meta.smallest)) >= 0:
                        return False
                    break
                self._level_ptrs[lvl] += 1
        return True

    def release_inputs(self) -> None:
        """Drop the reference on the input version, once."""
        if self.input_version is not None:
            self.input_version.unref()
            self.input_version = None