"""Sanitizing and redaction of untrusted trace content before display."""

from __future__ import annotations

import re
from typing import Any, Mapping

ELLIPSIS = "…"
REDACTED = "<redacted>"
DEFAULT_MAX = 2000

# OSC 8 hyperlinks, including the link text they wrap
_OSC_HYPERLINK_RE = re.compile(r"\x1b\]8;[^\x07]*\x07[^\x1b]*\x1b\]8;;\x07")
# Any other OSC sequence, BEL or ST terminated
_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# CSI / ESC sequences (7-bit and the 8-bit CSI introducer)
_ANSI_RE = re.compile(
    r"[\x1b\x9b][\[\]()#;?]*(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-ORZcf-nqry=><]"
)
# C0 controls except tab, LF and CR; DEL; C1 controls
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\x80-\x9f]")

SENSITIVE_HEADERS = frozenset({
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "x-access-token",
    "api-key",
    "bearer",
    "token",
})


def strip_control_sequences(text: Any) -> Any:
    """Remove terminal escape sequences and raw control characters.

    Non-string values are returned unchanged.
    """
    if not isinstance(text, str):
        return text
    text = _OSC_HYPERLINK_RE.sub("", text)
    text = _OSC_RE.sub("", text)
    text = _ANSI_RE.sub("", text)
    return _CONTROL_RE.sub("", text)


def truncate(text: Any, max_length: int = DEFAULT_MAX) -> Any:
    """Cut text to at most ``max_length`` characters, ending with an ellipsis."""
    if not isinstance(text, str):
        return text
    if len(text) <= max_length:
        return text
    if max_length <= 0:
        return ""
    return text[: max_length - 1] + ELLIPSIS


def safe(value: Any, max_length: int = DEFAULT_MAX) -> str:
    """Stringify, strip control sequences and truncate. None becomes ''."""
    return truncate(strip_control_sequences(str(value if value is not None else "")), max_length)


def is_sensitive_header(name: Any) -> bool:
    if not isinstance(name, str):
        return False
    normalized = name.strip().lower().replace("_", "-")
    return normalized in SENSITIVE_HEADERS


def redact_headers(headers: Any) -> Any:
    """Return a copy of ``headers`` with sensitive values replaced.

    Accepts a mapping (key order preserved) or a HAR-style list of
    ``{"name": ..., "value": ...}`` pairs. Anything else is returned as is.
    """
    if isinstance(headers, Mapping):
        return {
            key: REDACTED if is_sensitive_header(key) else value
            for key, value in headers.items()
        }
    if isinstance(headers, list):
        redacted = []
        for item in headers:
            if isinstance(item, Mapping) and is_sensitive_header(item.get("name")):
                item = {**item, "value": REDACTED}
            redacted.append(item)
        return redacted
    return headers


def sanitize_value(value: Any, max_length: int = DEFAULT_MAX, max_depth: int = 100) -> Any:
    """Sanitize every string inside nested lists and dicts.

    Containers nested deeper than ``max_depth`` are replaced with an
    ellipsis so hostile trees cannot exhaust the stack.
    """
    if isinstance(value, str):
        return truncate(strip_control_sequences(value), max_length)
    if isinstance(value, (list, tuple, dict)) and max_depth <= 0:
        return ELLIPSIS
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v, max_length, max_depth - 1) for v in value]
    if isinstance(value, dict):
        return {
            truncate(strip_control_sequences(str(k)), max_length): sanitize_value(v, max_length, max_depth - 1)
            for k, v in value.items()
        }
    return value
