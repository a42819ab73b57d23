"""Data structures reconstructed from a loaded trace."""

from __future__ import annotations

import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SnapshotPhase = Literal["before", "action", "after"]


class StepGroup(BaseModel):
    """A synthetic bracketing call that labels and nests the calls inside it."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    title: Optional[str] = None
    parent_id: Optional[str] = None
    stack: list[Any] = Field(default_factory=list)

    @property
    def source_location(self) -> Optional[Any]:
        return self.stack[0] if self.stack else None


class Action(BaseModel):
    """One executed call, built from a matched before/after event pair."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    start_time: float
    end_time: float
    duration: float
    status: Literal["passed", "failed"] = "passed"
    error: Optional[Any] = None
    before_snapshot: Optional[str] = None
    after_snapshot: Optional[str] = None
    step_title: Optional[str] = None
    nesting_depth: int = 0
    source_location: Optional[Any] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def error_message(self) -> Optional[str]:
        """Best-effort message from the error payload (unsanitized)."""
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            inner = self.error.get("error")
            if isinstance(inner, dict) and inner.get("message"):
                return str(inner["message"])
            if self.error.get("message"):
                return str(self.error["message"])
        if isinstance(self.error, str):
            return self.error
        return json.dumps(self.error, default=str)


class Snapshot(BaseModel):
    """A DOM capture at one instant. ``html`` is the raw nested-list tree."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(None, alias="snapshotName")
    frame_url: Optional[str] = Field(None, alias="frameUrl")
    timestamp: Optional[float] = None
    html: Any = None
    call_id: Optional[str] = Field(None, alias="callId")
    page_id: Optional[str] = Field(None, alias="pageId")

    @property
    def is_trivial(self) -> bool:
        """True when the tree is a placeholder with no real element content."""
        html = self.html
        return not (isinstance(html, list) and len(html) > 2 and isinstance(html[0], str))


class SnapshotResolution(BaseModel):
    """Outcome of resolving the snapshot for one phase of an action."""

    phase: SnapshotPhase
    snapshot: Optional[Snapshot] = None
    requested_name: Optional[str] = None
    fallback_used: bool = False
    fallback_type: Optional[str] = None  # action, before, after, closest


class TraceMetadata(BaseModel):
    browser_name: Optional[str] = None
    viewport: Optional[dict[str, Any]] = None
    base_url: Optional[str] = None
    wall_time: Optional[float] = None
    monotonic_time: Optional[float] = None
    title: Optional[str] = None


class Screenshot(BaseModel):
    name: str
    timestamp: Optional[int] = None  # from the filename's trailing number
    size: int = 0


class ScreenshotPlacement(BaseModel):
    """A screenshot positioned relative to one action's execution window."""

    screenshot: Screenshot
    relative_time: float
    position: Literal["before", "during", "after"]
    offset_from_start: float
    offset_from_end: float


class ConsoleMessage(BaseModel):
    level: str
    time: float = 0.0
    text: str = ""


class NetworkRequest(BaseModel):
    method: str = ""
    url: str = ""
    status: int = 0
    duration_ms: float = 0.0
    mime_type: str = ""
    request_headers: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list)
    response_headers: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list)
    response_sha1: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status >= 400
