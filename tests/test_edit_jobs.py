"""Tests for edit_jobs.py: job states, callbacks, edit log and worker bound."""

import json
import threading
import time
from pathlib import Path

import pytest

from vidshelf.tools.edit_jobs import EditJobQueue, JobState
from vidshelf.tools.edit_plan import ConcatEdit, make_segments
from vidshelf.tools.errors import EngineError
from vidshelf.tools.executor import MediaBackend


class RecordingBackend(MediaBackend):
    def __init__(self, error: str | None = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.edits: list[ConcatEdit] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def run(self, edit):
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            time.sleep(self.delay)
            self.edits.append(edit)
            if self.error:
                raise EngineError(details=self.error)
            edit.output.write_bytes(b"out")
        finally:
            with self._lock:
                self.running -= 1


def _edit(tmp_path: Path, name: str = "edited_1_in.mp4") -> ConcatEdit:
    return ConcatEdit(
        source=tmp_path / "in.mp4",
        output=tmp_path / name,
        segments=make_segments([("0", "1"), ("2", "3")]),
    )


@pytest.fixture()
def log_path(tmp_path):
    return tmp_path / "edits.jsonl"


def test_job_succeeds(tmp_path, log_path):
    queue = EditJobQueue(RecordingBackend(), max_workers=1, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        job.future.result(timeout=5)

        assert job.state is JobState.SUCCEEDED
        assert job.output == "edited_1_in.mp4"
        assert job.error is None
        assert job.started_at is not None and job.finished_at is not None
        assert queue.get(job.id) is job
    finally:
        queue.shutdown(wait=True)


def test_job_failure_records_engine_message(tmp_path, log_path):
    queue = EditJobQueue(RecordingBackend(error="ffmpeg exited with code 1: boom"),
                         max_workers=1, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        with pytest.raises(EngineError):
            job.future.result(timeout=5)

        assert job.state is JobState.FAILED
        assert job.error == "ffmpeg exited with code 1: boom"
        assert job.to_dict()["status"] == "failed"
    finally:
        queue.shutdown(wait=True)


def test_unexpected_backend_crash_fails_job(tmp_path, log_path):
    class Crashing(MediaBackend):
        def run(self, edit):
            raise RuntimeError("segfault-ish")

    queue = EditJobQueue(Crashing(), max_workers=1, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        with pytest.raises(RuntimeError):
            job.future.result(timeout=5)
        assert job.state is JobState.FAILED
        assert job.error == "segfault-ish"
    finally:
        queue.shutdown(wait=True)


def test_updates_follow_lifecycle(tmp_path, log_path):
    updates = []
    queue = EditJobQueue(RecordingBackend(), max_workers=1,
                         on_update=updates.append, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        job.future.result(timeout=5)
    finally:
        queue.shutdown(wait=True)

    assert [u["status"] for u in updates] == ["queued", "running", "succeeded"]
    assert all(u["jobId"] == job.id for u in updates)


def test_broken_callback_does_not_fail_job(tmp_path, log_path):
    def explode(_update):
        raise RuntimeError("socket gone")

    queue = EditJobQueue(RecordingBackend(), max_workers=1, on_update=explode, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        job.future.result(timeout=5)
        assert job.state is JobState.SUCCEEDED
    finally:
        queue.shutdown(wait=True)


def test_edit_log_lines(tmp_path, log_path):
    queue = EditJobQueue(RecordingBackend(), max_workers=1, edit_log=log_path)
    try:
        job = queue.submit(_edit(tmp_path), "/in.mp4")
        job.future.result(timeout=5)
    finally:
        queue.shutdown(wait=True)

    entry = json.loads(log_path.read_text(encoding="utf-8").strip())
    assert entry["job_id"] == job.id
    assert entry["source"] == "/in.mp4"
    assert entry["output"] == "edited_1_in.mp4"
    assert entry["segment_count"] == 2
    assert entry["status"] == "succeeded"


def test_worker_bound_limits_concurrent_engines(tmp_path, log_path):
    backend = RecordingBackend(delay=0.05)
    queue = EditJobQueue(backend, max_workers=2, edit_log=log_path)
    try:
        jobs = [queue.submit(_edit(tmp_path, f"edited_{i}_in.mp4"), "/in.mp4") for i in range(6)]
        for job in jobs:
            job.future.result(timeout=10)
    finally:
        queue.shutdown(wait=True)

    assert len(backend.edits) == 6
    assert backend.max_running <= 2


def test_list_jobs_newest_first(tmp_path, log_path):
    queue = EditJobQueue(RecordingBackend(), max_workers=1, edit_log=log_path)
    try:
        first = queue.submit(_edit(tmp_path, "edited_1_a.mp4"), "/a.mp4")
        time.sleep(0.01)
        second = queue.submit(_edit(tmp_path, "edited_2_b.mp4"), "/b.mp4")
        first.future.result(timeout=5)
        second.future.result(timeout=5)

        assert [j.id for j in queue.list_jobs()] == [second.id, first.id]
        assert queue.get("missing") is None
    finally:
        queue.shutdown(wait=True)


def test_finished_jobs_beyond_retention_are_forgotten(tmp_path, log_path):
    queue = EditJobQueue(RecordingBackend(), max_workers=1, edit_log=log_path, max_finished=2)
    try:
        jobs = [queue.submit(_edit(tmp_path, f"edited_{i}_in.mp4"), "/in.mp4") for i in range(4)]
        for job in jobs:
            job.future.result(timeout=5)

        kept = {j.id for j in queue.list_jobs()}
        assert kept == {jobs[2].id, jobs[3].id}
        assert queue.get(jobs[0].id) is None
    finally:
        queue.shutdown(wait=True)
