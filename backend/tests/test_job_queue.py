"""
ExamForge - Job Queue and Worker Tests
"""
import asyncio

import pytest

from examforge.jobs import worker
from examforge.jobs.queue import WORKER_FUNC, JobQueue, retry_policy


class StubJob:
    id = "job-1"


class StubQueue:
    """Records ``enqueue`` calls the way rq receives them."""

    def __init__(self):
        self.calls = []

    def enqueue(self, f, *args, **kwargs):
        self.calls.append((f, args, kwargs))
        return StubJob()


class StubRunner:
    def __init__(self):
        self.runs = []

    async def run(self, name, data):
        self.runs.append((name, data))
        return {"ok": True}


def test_single_attempt_has_no_retry():
    assert retry_policy(1, 5) is None
    assert retry_policy(0, 5) is None


def test_retry_backoff_is_exponential():
    retry = retry_policy(3, 1)
    assert retry.max == 2
    assert retry.intervals == [1, 2]

    retry = retry_policy(4, 2)
    assert retry.max == 3
    assert retry.intervals == [2, 4, 8]


def test_enqueue_sync_targets_worker_entry_point():
    stub = StubQueue()
    queue = JobQueue(stub, job_timeout=30)

    job_id = queue.enqueue_sync("grade_attempt", {"attemptId": "a1"}, attempts=2, backoff=2)

    assert job_id == "job-1"
    f, args, kwargs = stub.calls[0]
    assert f == WORKER_FUNC
    assert args == ("grade_attempt", {"attemptId": "a1"})
    assert kwargs["job_timeout"] == 30
    assert kwargs["retry"].max == 1
    assert kwargs["retry"].intervals == [2]


def test_enqueue_sync_rejects_unknown_job_names():
    with pytest.raises(ValueError):
        JobQueue(StubQueue()).enqueue_sync("reindex", {})


@pytest.mark.asyncio
async def test_enqueue_runs_off_the_event_loop():
    stub = StubQueue()
    job_id = await JobQueue(stub).enqueue("fetch_source", {"sourceId": "s1"}, attempts=1)

    assert job_id == "job-1"
    assert stub.calls[0][2]["retry"] is None


def test_perform_requires_an_installed_runner(monkeypatch):
    monkeypatch.setattr(worker, "_runner", None)
    monkeypatch.setattr(worker, "_loop", None)

    with pytest.raises(RuntimeError, match="not initialized"):
        worker.perform("chunk_and_embed", {})


def test_perform_runs_jobs_on_the_installed_loop(monkeypatch):
    monkeypatch.setattr(worker, "_runner", None)
    monkeypatch.setattr(worker, "_loop", None)
    runner = StubRunner()
    loop = asyncio.new_event_loop()
    try:
        worker.install(runner, loop)
        assert worker.perform("chunk_and_embed", {"sourceId": "s1"}) == {"ok": True}
        assert worker.perform("grade_attempt", {"attemptId": "a1"}) == {"ok": True}
    finally:
        loop.close()

    assert runner.runs == [
        ("chunk_and_embed", {"sourceId": "s1"}),
        ("grade_attempt", {"attemptId": "a1"}),
    ]
