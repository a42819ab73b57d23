"""Image header sniffing for screenshot resources."""

from __future__ import annotations

import struct
from typing import Optional

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def image_dimensions(data: bytes | None) -> Optional[tuple[int, int]]:
    """Return (width, height) for PNG or JPEG data, or None if unknown."""
    if not data or len(data) < 24:
        return None

    if data[:8] == PNG_SIGNATURE:
        width, height = struct.unpack(">II", data[16:24])
        return width, height

    if data[0] == 0xFF and data[1] == 0xD8:
        return _jpeg_dimensions(data)

    return None


def _jpeg_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    offset = 2
    while offset < len(data) - 8:
        if data[offset] != 0xFF:
            offset += 1
            continue
        marker = data[offset + 1]
        # SOF0..SOF3 carry the frame size
        if 0xC0 <= marker <= 0xC3:
            height, width = struct.unpack(">HH", data[offset + 5:offset + 9])
            return width, height
        (segment_length,) = struct.unpack(">H", data[offset + 2:offset + 4])
        if segment_length < 2:
            return None
        offset += segment_length + 2
    return None
