"""Bounded, validated reading of trace archives."""

from __future__ import annotations

import logging
import re
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pwtrace.errors import (
    ArchiveTooLargeError,
    CorruptArchiveError,
    EntryTooLargeError,
    TooManyEntriesError,
    TraceNotFoundError,
    UnsafeEntryError,
)
from pwtrace.models.config import TraceLimits
from pwtrace.utils.sanitize import safe

logger = logging.getLogger(__name__)

_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_READ_CHUNK = 64 * 1024


def normalize_entry_name(name: str) -> str:
    return name.replace("\\", "/")


def is_unsafe_entry_name(name: str) -> bool:
    """True for absolute paths and paths with a parent-directory segment."""
    normalized = normalize_entry_name(name)
    if normalized.startswith("/") or _DRIVE_RE.match(normalized):
        return True
    return ".." in normalized.split("/")


@dataclass(frozen=True)
class ArchiveEntry:
    name: str  # normalized, forward slashes
    size: int  # declared uncompressed size from the central directory
    compressed_size: int
    raw_name: str
    info: zipfile.ZipInfo = field(repr=False, compare=False)


class ArchiveReader:
    """Opens a zip container and serves its entries once validated.

    Sizes are taken from the central directory, so validation never
    inflates data. Reads stream with a hard cap in case an entry's
    declared size is wrong.
    """

    def __init__(self, path: str | Path, limits: Optional[TraceLimits] = None):
        self.path = Path(path)
        self.limits = limits or TraceLimits()
        self._zip: Optional[zipfile.ZipFile] = None
        self._entries: dict[str, ArchiveEntry] = {}
        self._validated = False

    def open(self) -> "ArchiveReader":
        self.close()
        if not self.path.exists():
            raise TraceNotFoundError(f"Trace file not found: {self.path}")
        try:
            self._zip = zipfile.ZipFile(self.path)
        except (zipfile.BadZipFile, OSError, ValueError) as e:
            raise CorruptArchiveError(f"Failed to read zip file {self.path}: {e}") from e
        self._entries = {}
        self._validated = False
        return self

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> "ArchiveReader":
        if self._zip is None:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def zip(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise RuntimeError("Archive is not open; call open() first")
        return self._zip

    def validate(self) -> None:
        """Apply every safety ceiling. Must succeed before entries are read."""
        infos = self.zip.infolist()
        limits = self.limits

        if len(infos) > limits.max_entries:
            logger.warning("Rejecting archive %s: %d entries", self.path, len(infos))
            raise TooManyEntriesError(
                f"Zip too large: {len(infos)} entries (max {limits.max_entries})"
            )

        entries: dict[str, ArchiveEntry] = {}
        total = 0
        for info in infos:
            if is_unsafe_entry_name(info.filename):
                logger.warning("Rejecting unsafe entry path in %s", self.path)
                raise UnsafeEntryError(f"Unsafe zip entry path: {safe(info.filename, 200)}")

            size = info.file_size
            if size > limits.max_entry_size:
                raise EntryTooLargeError(
                    f"Zip entry too large: {safe(info.filename, 200)} "
                    f"({size} bytes, max {limits.max_entry_size})"
                )

            total += size
            if total > limits.max_total_size:
                raise ArchiveTooLargeError(
                    f"Zip uncompressed size exceeds limit ({limits.max_total_size} bytes)"
                )

            if info.is_dir():
                continue
            name = normalize_entry_name(info.filename)
            # first occurrence of a duplicated name wins
            entries.setdefault(name, ArchiveEntry(
                name=name,
                size=size,
                compressed_size=info.compress_size,
                raw_name=info.filename,
                info=info,
            ))

        self._entries = entries
        self._validated = True
        logger.debug("Validated %s: %d entries, %d bytes uncompressed",
                     self.path, len(entries), total)

    def _ensure_validated(self) -> None:
        if not self._validated:
            self.validate()

    @property
    def entries(self) -> list[ArchiveEntry]:
        self._ensure_validated()
        return list(self._entries.values())

    def get_entry(self, name: str) -> Optional[ArchiveEntry]:
        self._ensure_validated()
        return self._entries.get(normalize_entry_name(name))

    def list_entries(self, prefix: str = "", suffix: str | tuple[str, ...] = "") -> list[ArchiveEntry]:
        """Entries whose name starts with ``prefix`` and ends with ``suffix``."""
        self._ensure_validated()
        return [
            e for e in self._entries.values()
            if e.name.startswith(prefix) and e.name.endswith(suffix)
        ]

    def read_bytes(self, name: str) -> Optional[bytes]:
        """Return an entry's bytes, or None if it does not exist."""
        entry = self.get_entry(name)
        if entry is None:
            return None

        cap = self.limits.max_entry_size
        chunks: list[bytes] = []
        read = 0
        try:
            with self.zip.open(entry.info) as stream:
                while True:
                    chunk = stream.read(min(_READ_CHUNK, cap + 1 - read))
                    if not chunk:
                        break
                    chunks.append(chunk)
                    read += len(chunk)
                    if read > cap:
                        raise EntryTooLargeError(
                            f"Zip entry too large: {safe(entry.name, 200)} "
                            f"(inflates past {cap} bytes)"
                        )
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, OSError, EOFError,
                NotImplementedError, RuntimeError) as e:
            # unsupported compression and encrypted entries land here too
            raise CorruptArchiveError(f"Failed to inflate {safe(entry.name, 200)}: {e}") from e
        return b"".join(chunks)

    def read_text(self, name: str) -> str:
        """Return an entry decoded as UTF-8, or '' if it does not exist."""
        data = self.read_bytes(name)
        if data is None:
            return ""
        return data.decode("utf-8", errors="replace")
