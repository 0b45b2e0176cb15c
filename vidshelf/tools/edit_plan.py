"""Typed description of a trim + concatenate edit, and its ffmpeg rendering.

A ConcatEdit says *what* to produce: an ordered list of time windows cut out of
one source file and joined into one output. render_filter_graph() turns it into
ffmpeg ``-filter_complex`` syntax; backends that are not ffmpeg consume the
dataclasses directly.
"""

import re
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable

OUTPUT_PREFIX = "edited"
VIDEO_OUT_LABEL = "outv"
AUDIO_OUT_LABEL = "outa"

# Decimal seconds only. The value is spliced into the filter graph, so
# anything with ':' ';' '[' or ',' must never get through.
_SECONDS_RE = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


@dataclass(frozen=True)
class TrimSegment:
    """Half-open window ``[start, end)`` of the source, in decimal seconds.

    Kept as the client's strings so the engine sees exactly what was sent.
    Overlap and ordering are not checked.
    """

    start: str
    end: str

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if not _SECONDS_RE.match(value):
                raise ValueError(f"{name} time must be decimal seconds, got {value!r}")


@dataclass(frozen=True)
class ConcatEdit:
    source: Path
    output: Path
    segments: tuple[TrimSegment, ...]

    def __post_init__(self):
        if not self.segments:
            raise ValueError("at least one segment is required")


def make_segments(raw: Iterable[tuple[object, object]]) -> tuple[TrimSegment, ...]:
    """Build TrimSegments from (start, end) pairs of strings or numbers."""
    return tuple(TrimSegment(str(start).strip(), str(end).strip()) for start, end in raw)


def output_file_name(video_path: str, now_ms: int | None = None) -> str:
    """``edited_<epoch-millis>_<basename>``.

    Two edits of the same file within the same millisecond get the same name.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    basename = PurePosixPath(video_path.replace("\\", "/")).name
    return f"{OUTPUT_PREFIX}_{now_ms}_{basename}"


def render_filter_graph(edit: ConcatEdit) -> str:
    """Render the edit as an ffmpeg filter graph ending in [outv][outa]."""
    parts = []
    for i, seg in enumerate(edit.segments):
        parts.append(f"[0:v]trim=start={seg.start}:end={seg.end},setpts=PTS-STARTPTS[v{i}]")
        parts.append(f"[0:a]atrim=start={seg.start}:end={seg.end},asetpts=PTS-STARTPTS[a{i}]")

    inputs = "".join(f"[v{i}][a{i}]" for i in range(len(edit.segments)))
    parts.append(
        f"{inputs}concat=n={len(edit.segments)}:v=1:a=1[{VIDEO_OUT_LABEL}][{AUDIO_OUT_LABEL}]"
    )
    return ";".join(parts)


def build_ffmpeg_cmd(edit: ConcatEdit, ffmpeg_binary: str = "ffmpeg") -> list[str]:
    """Full ffmpeg argument list for the edit."""
    return [
        ffmpeg_binary, "-hide_banner", "-nostdin", "-y",
        "-i", str(edit.source),
        "-filter_complex", render_filter_graph(edit),
        "-map", f"[{VIDEO_OUT_LABEL}]",
        "-map", f"[{AUDIO_OUT_LABEL}]",
        str(edit.output),
    ]
