"""Typed errors raised while opening and loading a trace archive."""

from __future__ import annotations


class TraceError(Exception):
    """Base class for every error surfaced by trace loading."""


class TraceNotFoundError(TraceError, FileNotFoundError):
    """The trace archive path does not exist."""


class CorruptArchiveError(TraceError):
    """The archive container cannot be parsed or an entry cannot be inflated."""


class ArchiveSafetyError(TraceError):
    """An archive was rejected by one of the safety checks."""


class UnsafeEntryError(ArchiveSafetyError):
    """An entry path is absolute or escapes the archive root."""


class TooManyEntriesError(ArchiveSafetyError):
    pass


class EntryTooLargeError(ArchiveSafetyError):
    pass


class ArchiveTooLargeError(ArchiveSafetyError):
    pass


class MissingLogError(TraceError):
    """The archive has no event log entry, or the entry is empty."""


class MalformedLineError(TraceError):
    """One event log line could not be decoded.

    Never raised out of parsing; collected as a diagnostic instead.
    """

    def __init__(self, line_number: int, preview: str, reason: str):
        super().__init__(f"Line {line_number}: {reason} ({preview!r})")
        self.line_number = line_number
        self.preview = preview
        self.reason = reason
