"""Composition root that loads an archive and answers queries about the recorded run."""

from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import Path
from typing import Optional

from pwtrace.archive.reader import ArchiveReader
from pwtrace.errors import MissingLogError, TraceError
from pwtrace.models.config import TraceConfig
from pwtrace.models.events import (
    ConsoleEvent,
    ContextOptionsEvent,
    ResourceSnapshotEvent,
    TraceEvent,
)
from pwtrace.models.trace import (
    Action,
    ConsoleMessage,
    NetworkRequest,
    Screenshot,
    ScreenshotPlacement,
    Snapshot,
    SnapshotPhase,
    SnapshotResolution,
    TraceMetadata,
)
from pwtrace.parser.event_stream import EventStream
from pwtrace.reconstruction.actions import ActionReconstructor
from pwtrace.snapshots.store import SnapshotStore
from pwtrace.utils.sanitize import redact_headers, safe

logger = logging.getLogger(__name__)

CONSOLE_LEVELS = {
    "error": ("error",),
    "warning": ("error", "warning"),
    "info": ("error", "warning", "info", "log"),
}

_TIMESTAMP_RE = re.compile(r"-(\d+)\.[A-Za-z0-9]+$")


class Trace:
    """Composition root: owns the archive reader and everything derived from it."""

    def __init__(self, path: str | Path, config: Optional[TraceConfig] = None):
        self.path = Path(path)
        self.config = config or TraceConfig()
        self.reader = ArchiveReader(self.path, self.config.limits)
        self.events: list[TraceEvent] = []
        self.actions: list[Action] = []
        self.metadata = TraceMetadata()
        self.malformed_lines = 0
        self._snapshots: Optional[SnapshotStore] = None
        self._loaded = False

    def load(self) -> "Trace":
        """Open, validate and parse the archive, then rebuild actions."""
        self.reader.open()
        try:
            text = self._read_event_log()
        except TraceError:
            self.reader.close()
            raise

        stream = EventStream(source=self.config.trace_entry)
        self.events = list(stream.parse(text))
        self.malformed_lines = stream.malformed_count
        if self.malformed_lines:
            logger.warning("Skipped %d malformed line(s) in %s",
                           self.malformed_lines, self.config.trace_entry)

        self.metadata = self._extract_metadata()
        reconstructor = ActionReconstructor(
            group_method=self.config.group_method,
            max_parent_hops=self.config.max_parent_hops,
        )
        self.actions = reconstructor.reconstruct(self.events)
        self._snapshots = None
        self._loaded = True
        logger.debug("Loaded %s: %d events, %d actions",
                    self.path.name, len(self.events), len(self.actions))
        return self

    def _read_event_log(self) -> str:
        self.reader.validate()
        entry = self.config.trace_entry
        if self.reader.get_entry(entry) is None:
            raise MissingLogError(
                f"Invalid trace file: missing {entry} entry. Is this a Playwright trace?"
            )
        text = self.reader.read_text(entry)
        if not text.strip():
            raise MissingLogError(
                f"Invalid trace file: {entry} is empty. Is this a Playwright trace?"
            )
        return text

    def close(self) -> None:
        self.reader.close()

    def __enter__(self) -> "Trace":
        if not self._loaded:
            self.load()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _extract_metadata(self) -> TraceMetadata:
        context = next((e for e in self.events if isinstance(e, ContextOptionsEvent)), None)
        if context is None:
            return TraceMetadata()
        return TraceMetadata(
            browser_name=context.browser_name,
            viewport=context.options.get("viewport"),
            base_url=context.options.get("baseURL"),
            wall_time=context.wall_time,
            monotonic_time=context.monotonic_time,
            title=context.title,
        )

    # Actions

    @property
    def action_count(self) -> int:
        return len(self.actions)

    def get_action(self, step: int) -> Optional[Action]:
        """Action by 1-based step number, or None when out of range."""
        if step < 1 or step > len(self.actions):
            return None
        return self.actions[step - 1]

    def step_number(self, action: Action) -> Optional[int]:
        for i, candidate in enumerate(self.actions, 1):
            if candidate is action or candidate.call_id == action.call_id:
                return i
        return None

    def get_failed_actions(self) -> list[Action]:
        return [a for a in self.actions if a.failed]

    def first_failed_step(self) -> Optional[int]:
        for i, action in enumerate(self.actions, 1):
            if action.failed:
                return i
        return None

    def get_total_duration(self) -> float:
        if not self.actions:
            return 0
        return max(a.end_time for a in self.actions) - min(a.start_time for a in self.actions)

    def count_by_method(self) -> dict[str, int]:
        return dict(Counter(a.method for a in self.actions))

    # Snapshots

    @property
    def snapshots(self) -> SnapshotStore:
        if self._snapshots is None:
            self._snapshots = SnapshotStore.from_events(self.events)
        return self._snapshots

    def get_snapshot(self, name: Optional[str]) -> Optional[Snapshot]:
        return self.snapshots.get_by_name(name)

    def get_snapshot_near_time(self, timestamp: float) -> Optional[Snapshot]:
        return self.snapshots.get_near_time(timestamp)

    def get_action_snapshot(self, action: Action) -> Optional[Snapshot]:
        return self.snapshots.get_action_snapshot(action)

    def resolve_snapshot(self, action: Action, phase: SnapshotPhase = "before") -> SnapshotResolution:
        return self.snapshots.resolve(action, phase)

    # Screenshots

    def get_screenshots(self) -> list[Screenshot]:
        entries = self.reader.list_entries(
            prefix=self.config.resources_prefix,
            suffix=tuple(self.config.screenshot_extensions),
        )
        return [
            Screenshot(name=e.name, timestamp=self._extract_timestamp(e.name), size=e.size)
            for e in entries
        ]

    def read_screenshot(self, screenshot: Screenshot) -> Optional[bytes]:
        return self.reader.read_bytes(screenshot.name)

    def screenshots_for_action(self, action: Action) -> list[ScreenshotPlacement]:
        """Timestamped screenshots placed before, during or after ``action``."""
        origin = self.metadata.wall_time or 0
        placements = []
        for shot in self.get_screenshots():
            if shot.timestamp is None:
                continue
            relative = shot.timestamp - origin
            if relative < action.start_time:
                position = "before"
            elif relative <= action.end_time:
                position = "during"
            else:
                position = "after"
            placements.append(ScreenshotPlacement(
                screenshot=shot,
                relative_time=relative,
                position=position,
                offset_from_start=relative - action.start_time,
                offset_from_end=relative - action.end_time,
            ))
        return placements

    @staticmethod
    def _extract_timestamp(name: str) -> Optional[int]:
        match = _TIMESTAMP_RE.search(name)
        return int(match.group(1)) if match else None

    # Console and network

    def get_console_messages(
        self, level: Optional[str] = None, action: Optional[Action] = None,
    ) -> list[ConsoleMessage]:
        events = [e for e in self.events if isinstance(e, ConsoleEvent)]
        if level:
            allowed = CONSOLE_LEVELS.get(level, CONSOLE_LEVELS["info"])
            events = [e for e in events if e.message_type in allowed]
        if action is not None:
            window = self.config.console_window_ms
            events = [e for e in events if abs(e.time - action.start_time) < window]
        return [
            ConsoleMessage(level=safe(e.message_type, 20), time=e.time, text=safe(e.text))
            for e in events
        ]

    def console_counts(self) -> dict[str, int]:
        counts = Counter(e.message_type for e in self.events if isinstance(e, ConsoleEvent))
        return {
            "total": sum(counts.values()),
            "error": counts.get("error", 0),
            "warning": counts.get("warning", 0),
            "log": counts.get("log", 0),
        }

    def get_network_requests(self, failed_only: bool = False) -> list[NetworkRequest]:
        events: list[TraceEvent] = []
        network_text = self.reader.read_text(self.config.network_entry)
        if network_text:
            events.extend(EventStream(source=self.config.network_entry).parse(network_text))
        events.extend(self.events)

        requests = []
        for event in events:
            if not isinstance(event, ResourceSnapshotEvent):
                continue
            request = self._network_request(event.snapshot)
            if request is None:
                logger.warning("Skipping malformed resource-snapshot record")
                continue
            requests.append(request)
        if failed_only:
            requests = [r for r in requests if r.failed]
        return requests

    @staticmethod
    def _network_request(snap: dict) -> Optional[NetworkRequest]:
        """Build a request record, or None when a nested section is not an object."""
        request = snap.get("request") or {}
        response = snap.get("response") or {}
        if not isinstance(request, dict) or not isinstance(response, dict):
            return None
        content = response.get("content") or {}
        if not isinstance(content, dict):
            return None
        status = response.get("status")
        duration = snap.get("time")
        sha1 = content.get("_sha1")
        return NetworkRequest(
            method=safe(request.get("method"), 20),
            url=safe(request.get("url"), 400),
            status=status if isinstance(status, int) else 0,
            duration_ms=duration if isinstance(duration, (int, float)) else 0.0,
            mime_type=safe(content.get("mimeType"), 100),
            request_headers=_clean_headers(request.get("headers") or []),
            response_headers=_clean_headers(response.get("headers") or []),
            response_sha1=sha1 if isinstance(sha1, str) else None,
        )

    def read_resource_text(self, sha1: Optional[str], max_length: int = 4000) -> Optional[str]:
        """Sanitized body of ``resources/<sha1>``, or None when absent."""
        if not sha1:
            return None
        name = f"{self.config.resources_prefix}{sha1}"
        if self.reader.get_entry(name) is None:
            return None
        return safe(self.reader.read_text(name), max_length)


def _clean_headers(headers):
    """Redact sensitive headers and sanitize the remaining names and values."""
    headers = redact_headers(headers)
    if isinstance(headers, dict):
        return {safe(k, 200): safe(v, 2000) for k, v in headers.items()}
    if isinstance(headers, list):
        return [
            {"name": safe(h.get("name"), 200), "value": safe(h.get("value"), 2000)}
            for h in headers if isinstance(h, dict)
        ]
    return []
