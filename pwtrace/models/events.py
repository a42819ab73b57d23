"""Typed records decoded from the newline-delimited event log."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TraceEvent(BaseModel):
    """A single log record. Unknown types are kept as plain TraceEvent."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str


class ContextOptionsEvent(TraceEvent):
    browser_name: Optional[str] = Field(None, alias="browserName")
    options: dict[str, Any] = Field(default_factory=dict)
    wall_time: Optional[float] = Field(None, alias="wallTime")
    monotonic_time: Optional[float] = Field(None, alias="monotonicTime")
    title: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v


class BeforeEvent(TraceEvent):
    call_id: str = Field(alias="callId")
    method: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    start_time: float = Field(0.0, alias="startTime")
    parent_id: Optional[str] = Field(None, alias="parentId")
    title: Optional[str] = None
    stack: list[Any] = Field(default_factory=list)
    before_snapshot: Optional[str] = Field(None, alias="beforeSnapshot")

    @field_validator("params", mode="before")
    @classmethod
    def _params_default(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("stack", mode="before")
    @classmethod
    def _stack_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("start_time", mode="before")
    @classmethod
    def _start_default(cls, v: Any) -> Any:
        return 0.0 if v is None else v


class AfterEvent(TraceEvent):
    call_id: str = Field(alias="callId")
    end_time: float = Field(0.0, alias="endTime")
    error: Optional[Any] = None
    after_snapshot: Optional[str] = Field(None, alias="afterSnapshot")

    @field_validator("end_time", mode="before")
    @classmethod
    def _end_default(cls, v: Any) -> Any:
        return 0.0 if v is None else v


class ConsoleEvent(TraceEvent):
    message_type: str = Field("log", alias="messageType")
    text: str = ""
    time: float = 0.0


class FrameSnapshotEvent(TraceEvent):
    snapshot: dict[str, Any] = Field(default_factory=dict)


class ResourceSnapshotEvent(TraceEvent):
    snapshot: dict[str, Any] = Field(default_factory=dict)


EVENT_TYPES: dict[str, type[TraceEvent]] = {
    "context-options": ContextOptionsEvent,
    "before": BeforeEvent,
    "after": AfterEvent,
    "console": ConsoleEvent,
    "frame-snapshot": FrameSnapshotEvent,
    "resource-snapshot": ResourceSnapshotEvent,
}


def event_from_record(record: Any) -> TraceEvent:
    """Validate one decoded JSON record into its typed event.

    Raises ValueError (pydantic's ValidationError included) when the
    record is not an object or does not fit its declared type.
    """
    if not isinstance(record, dict):
        raise ValueError(f"expected a JSON object, got {type(record).__name__}")
    event_type = record.get("type")
    if not isinstance(event_type, str):
        raise ValueError("record has no string 'type' field")
    model = EVENT_TYPES.get(event_type, TraceEvent)
    return model.model_validate(record)
