"""Bounded worker pool for edit jobs.

All engine invocations go through one EditJobQueue, so at most
``max_workers`` ffmpeg processes run at a time. Callers either wait on
``job.future`` (blocking endpoint) or poll/subscribe for state changes.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from metrics.edit_logger import log_edit_action
from vidshelf.tools.edit_plan import ConcatEdit
from vidshelf.tools.errors import EngineError
from vidshelf.tools.executor import MediaBackend

logger = logging.getLogger(__name__)

MAX_FINISHED_JOBS = 200


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EditJob:
    id: str
    source: str
    output: str
    segment_count: int
    state: JobState = JobState.QUEUED
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    future: Optional[Future] = field(default=None, repr=False, compare=False)

    @property
    def done(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

    def to_dict(self) -> dict[str, Any]:
        def iso(ts: Optional[datetime]) -> Optional[str]:
            return ts.isoformat() if ts else None

        return {
            "jobId": self.id,
            "status": self.state.value,
            "source": self.source,
            "output": self.output,
            "segments": self.segment_count,
            "error": self.error,
            "createdAt": iso(self.created_at),
            "startedAt": iso(self.started_at),
            "finishedAt": iso(self.finished_at),
        }


class EditJobQueue:
    """Runs ConcatEdits on a fixed-size thread pool and tracks their state."""

    def __init__(
        self,
        backend: MediaBackend,
        max_workers: int = 2,
        on_update: Optional[Callable[[dict[str, Any]], None]] = None,
        edit_log: Optional[Path] = None,
        max_finished: int = MAX_FINISHED_JOBS,
    ):
        self.backend = backend
        self.max_workers = max_workers
        self.on_update = on_update
        self.edit_log = edit_log
        self.max_finished = max_finished

        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="edit")
        self._lock = threading.Lock()
        self._jobs: dict[str, EditJob] = {}

    def submit(self, edit: ConcatEdit, source: str) -> EditJob:
        """Queue ``edit``. ``source`` is the sandbox-relative path for reporting."""
        job = EditJob(
            id=uuid.uuid4().hex,
            source=source,
            output=edit.output.name,
            segment_count=len(edit.segments),
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.info("Queued edit job %s: %s -> %s", job.id, source, job.output)
        self._notify(job)
        job.future = self._pool.submit(self._run, job, edit)
        return job

    def get(self, job_id: str) -> Optional[EditJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> list[EditJob]:
        """All jobs, newest first."""
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=not wait)

    def _set_state(self, job: EditJob, state: JobState, error: Optional[str] = None) -> None:
        with self._lock:
            job.state = state
            if state is JobState.RUNNING:
                job.started_at = _now()
            elif job.done:
                job.finished_at = _now()
                job.error = error
        self._notify(job)

    def _run(self, job: EditJob, edit: ConcatEdit) -> EditJob:
        self._set_state(job, JobState.RUNNING)
        t0 = time.perf_counter()
        try:
            self.backend.run(edit)
        except EngineError as exc:
            self._finish(job, JobState.FAILED, exc.details or exc.error, t0)
            raise
        except Exception as exc:
            logger.exception("Edit job %s crashed", job.id)
            self._finish(job, JobState.FAILED, str(exc), t0)
            raise
        self._finish(job, JobState.SUCCEEDED, None, t0)
        return job

    def _finish(self, job: EditJob, state: JobState, error: Optional[str], t0: float) -> None:
        self._set_state(job, state, error)
        self._prune()
        log_edit_action(
            source=job.source,
            output=job.output,
            segment_count=job.segment_count,
            status=state.value,
            duration_ms=int((time.perf_counter() - t0) * 1000),
            error=error,
            job_id=job.id,
            metrics_file=self.edit_log,
        )
        logger.info("Edit job %s %s", job.id, state.value)

    def _prune(self) -> None:
        """Forget the oldest finished jobs beyond ``max_finished``."""
        with self._lock:
            finished = sorted(
                (j for j in self._jobs.values() if j.done), key=lambda j: j.finished_at
            )
            for job in finished[: max(len(finished) - self.max_finished, 0)]:
                del self._jobs[job.id]

    def _notify(self, job: EditJob) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(job.to_dict())
        except Exception as exc:
            logger.warning("on_update callback error: %s", exc)
