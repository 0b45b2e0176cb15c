"""Append-only JSONL log of edit jobs.

One line per finished edit: source, output, segment count, outcome, timing.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def log_edit_action(
    source: str,
    output: str | None,
    segment_count: int,
    status: str,
    duration_ms: int = 0,
    error: str | None = None,
    job_id: str | None = None,
    metrics_file: Path | None = None,
) -> None:
    """Append one JSON line to the edit log.

    Args:
        source: Sandbox-relative path of the source video.
        output: Output file name under edited/ (None if never assigned).
        segment_count: Number of segments in the request.
        status: Final job state ("succeeded" or "failed").
        duration_ms: Wall-clock engine time in milliseconds.
        error: Engine or request error detail, if any.
        job_id: Edit job identifier.
        metrics_file: Log file path. Defaults to the configured edit_log.
    """
    if metrics_file is None:
        from configs.settings import get_settings
        metrics_file = get_settings().edit_log

    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "job_id": job_id,
        "source": source,
        "output": output,
        "segment_count": segment_count,
        "status": status,
        "duration_ms": duration_ms,
        "error": error,
    }
    try:
        metrics_file.parent.mkdir(parents=True, exist_ok=True)
        with open(metrics_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")
    except OSError as exc:
        # The edit already finished; a broken log must not fail it.
        logger.warning("could not write edit log %s: %s", metrics_file, exc)
