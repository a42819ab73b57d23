"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from pwtrace.models.config import TraceConfig, TraceLimits
from pwtrace.trace import Trace
from trace_builders import (
    WALL_TIME,
    five_step_events,
    grouped_events,
    png_bytes,
    resource_snapshot,
    to_ndjson,
    write_trace_zip,
)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def trace_limits() -> TraceLimits:
    """Small ceilings so limit tests stay fast."""
    return TraceLimits(max_entries=20, max_entry_size=500_000, max_total_size=800_000)


@pytest.fixture
def trace_config(trace_limits: TraceLimits) -> TraceConfig:
    return TraceConfig(limits=trace_limits)


# ============================================================================
# Archive Fixtures
# ============================================================================


@pytest.fixture
def make_trace(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a trace zip into tmp_path."""
    counter = {"n": 0}

    def _make(events: Optional[list[Any]] = None, entries: Optional[dict] = None) -> Path:
        counter["n"] += 1
        return write_trace_zip(tmp_path / f"trace-{counter['n']}.zip", events, entries)

    return _make


@pytest.fixture
def failing_trace_path(make_trace) -> Path:
    """Five actions, the click at step 4 fails; screenshots and network log included."""
    network = to_ndjson([
        resource_snapshot("GET", "https://example.com/login", 200,
                          headers=[{"name": "Cookie", "value": "sid=123"},
                                   {"name": "Accept", "value": "*/*"}]),
        resource_snapshot("POST", "https://example.com/api/login", 500,
                          mime_type="application/json", sha1="abc123.json"),
    ])
    return make_trace(five_step_events(failing=True), {
        "trace.network": network,
        "resources/abc123.json": '{"error": "\x1b[31mboom\x1b[0m"}',
        f"resources/page@1-{WALL_TIME + 50}.jpeg": b"\xff\xd8" + b"\x00" * 30,
        f"resources/page@1-{WALL_TIME + 300}.png": png_bytes(1280, 720),
        "resources/thumbnail.jpeg": b"\xff\xd8",
    })


@pytest.fixture
def passing_trace_path(make_trace) -> Path:
    return make_trace(five_step_events(failing=False))


@pytest.fixture
def grouped_trace_path(make_trace) -> Path:
    return make_trace(grouped_events())


@pytest.fixture
def failing_trace(failing_trace_path: Path) -> Trace:
    trace = Trace(failing_trace_path).load()
    yield trace
    trace.close()


@pytest.fixture
def grouped_trace(grouped_trace_path: Path) -> Trace:
    trace = Trace(grouped_trace_path).load()
    yield trace
    trace.close()
