"""Configuration models for trace loading."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_MAX_ENTRIES = "PWTRACE_MAX_ENTRIES"
ENV_MAX_ENTRY_SIZE = "PWTRACE_MAX_ENTRY_SIZE"
ENV_MAX_TOTAL = "PWTRACE_MAX_TOTAL_UNCOMPRESSED"


class TraceLimits(BaseModel):
    """Ceilings applied to an archive before any entry is trusted."""

    max_entries: int = 5000
    max_entry_size: int = 10 * 1024 * 1024  # 10 MiB
    max_total_size: int = 500 * 1024 * 1024  # 500 MiB

    @field_validator("max_entries", "max_entry_size", "max_total_size")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("limit must be a positive integer")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TraceLimits":
        """Build limits from PWTRACE_* environment variables, keeping defaults for unset ones."""
        environ = os.environ if environ is None else environ
        overrides: dict[str, str] = {}
        for field, var in (
            ("max_entries", ENV_MAX_ENTRIES),
            ("max_entry_size", ENV_MAX_ENTRY_SIZE),
            ("max_total_size", ENV_MAX_TOTAL),
        ):
            value = environ.get(var)
            if value:
                overrides[field] = value
        return cls(**overrides)

    def override(self, **values: Optional[int]) -> "TraceLimits":
        """Return a copy with every non-None value replaced."""
        updates = {k: v for k, v in values.items() if v is not None}
        return self.model_validate({**self.model_dump(), **updates})


class TraceConfig(BaseModel):
    limits: TraceLimits = Field(default_factory=TraceLimits)

    # Archive layout
    trace_entry: str = "trace.trace"
    network_entry: str = "trace.network"
    resources_prefix: str = "resources/"
    screenshot_extensions: list[str] = Field(
        default_factory=lambda: [".jpeg", ".jpg", ".png"]
    )

    # Reconstruction
    group_method: str = "tracingGroup"
    max_parent_hops: int = 256

    # Queries
    console_window_ms: float = 1000.0

    @classmethod
    def load(cls, path: str | Path) -> "TraceConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
