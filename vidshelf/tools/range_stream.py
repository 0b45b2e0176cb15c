"""Byte-range parsing and chunked file reading for video playback.

The generator returned by iter_file_range reads one chunk at a time, so the
ASGI server only pulls the next chunk from disk after the previous one was
sent to the client.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from vidshelf.tools.errors import RangeNotSatisfiable

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
VIDEO_CONTENT_TYPE = "video/mp4"

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window ``[start, end]`` of a ``size``-byte file."""

    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


def parse_range(header: str, size: int) -> ByteRange:
    """Parse a single-range ``Range`` header against a file of ``size`` bytes.

    Accepts ``bytes=<start>-``, ``bytes=<start>-<end>`` (end clamped to the last
    byte) and the suffix form ``bytes=-<n>`` (last n bytes).

    Raises:
        RangeNotSatisfiable: malformed header, multiple ranges, start past the
            end of the file, start > end, or an empty file.
    """
    match = _RANGE_RE.match(header.strip().replace(" ", ""))
    if match is None:
        raise RangeNotSatisfiable(size, details=f"malformed range: {header}")

    first, last = match.groups()
    if size == 0:
        raise RangeNotSatisfiable(size, details="empty file")

    if not first:
        if not last:
            raise RangeNotSatisfiable(size, details=f"malformed range: {header}")
        suffix = int(last)
        if suffix == 0:
            raise RangeNotSatisfiable(size, details="zero-length suffix range")
        return ByteRange(start=max(size - suffix, 0), end=size - 1, size=size)

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or start > end:
        raise RangeNotSatisfiable(size, details=f"range {start}-{end} outside 0-{size - 1}")
    return ByteRange(start=start, end=min(end, size - 1), size=size)


def iter_file_range(
    file_path: Path,
    start: int,
    length: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield ``length`` bytes of ``file_path`` starting at ``start``."""
    with open(file_path, "rb") as f:
        f.seek(start)
        remaining = length
        while remaining > 0:
            data = f.read(min(chunk_size, remaining))
            if not data:
                logger.warning("%s shrank while streaming, %d bytes short", file_path, remaining)
                break
            remaining -= len(data)
            yield data
