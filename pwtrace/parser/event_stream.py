"""Newline-delimited event log parsing."""

from __future__ import annotations

import json
import logging
from typing import Iterator

from pydantic import ValidationError

from pwtrace.errors import MalformedLineError
from pwtrace.models.events import TraceEvent, event_from_record
from pwtrace.utils.sanitize import safe

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50


class EventStream:
    """Decodes an event log one line at a time.

    A line that cannot be decoded is skipped with a warning and recorded
    in ``malformed``; it never aborts the remaining lines.
    """

    def __init__(self, source: str = "trace"):
        self.source = source
        self.malformed: list[MalformedLineError] = []

    @property
    def malformed_count(self) -> int:
        return len(self.malformed)

    def parse(self, text: str) -> Iterator[TraceEvent]:
        """Yield events in file order. Single pass."""
        for line_number, line in enumerate(text.split("\n"), 1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                yield event_from_record(record)
            except (ValueError, RecursionError) as e:  # includes JSONDecodeError, ValidationError
                self._record_malformed(line_number, line, e)

    def _record_malformed(self, line_number: int, line: str, error: Exception) -> None:
        preview = safe(line, PREVIEW_LENGTH)
        reason = type(error).__name__ if isinstance(error, ValidationError) else str(error)
        self.malformed.append(MalformedLineError(line_number, preview, reason))
        logger.warning("Failed to parse %s line %d: %s...", self.source, line_number, preview)


def parse_events(text: str) -> list[TraceEvent]:
    """Parse a whole log eagerly, dropping malformed lines."""
    return list(EventStream().parse(text))
