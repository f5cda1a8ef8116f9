"""Parsing of HTTP ``Range`` headers into byte windows."""

from __future__ import annotations

import re
from typing import Optional

from timelapse_stream.models import ByteRange

RANGE_PATTERN = re.compile(r"bytes=(\d+)-(\d*)")


def resolve_byte_range(range_header: Optional[str], size: int) -> ByteRange:
    """Resolve the window to serve from a file of ``size`` bytes.

    Missing or unrecognised headers select the whole file. An omitted end, or
    one past the last byte, is pinned to ``size - 1``. The result may be
    unsatisfiable (``start > end``); callers answer that with 416.
    """
    start = 0
    end = size - 1

    if range_header:
        match = RANGE_PATTERN.search(range_header)
        if match:
            start = int(match.group(1))
            if match.group(2):
                end = min(int(match.group(2)), size - 1)

    return ByteRange(start=start, end=end, size=size)


__all__ = ["RANGE_PATTERN", "resolve_byte_range"]
