"""Core building blocks of a log-structured key-value store: encodings,
write batches, version edits, versions and version sets."""

__version__ = "0.1.0"

__all__ = [
    "format",
    "log_format",
    "port",
    "sha1",
    "version",
    "version_edit",
    "version_set",
    "write_batch",
]