"""Tests for the priority job queue."""

import asyncio

import pytest

from harvester.scrapers.base import JobPriority, JobStatus, Platform, ScrapeJob, ScrapingResult
from harvester.scrapers.job_queue import JobQueue


def make_job(name: str, priority: JobPriority = JobPriority.MEDIUM, max_retries: int = 3) -> ScrapeJob:
    return ScrapeJob(
        platform=Platform.AMAZON,
        url=f"https://www.amazon.com/dp/{name}",
        priority=priority,
        max_retries=max_retries,
        metadata={"name": name},
    )


def ok(job: ScrapeJob) -> ScrapingResult:
    return ScrapingResult(success=True, strategy="stealth", session_id="s", confidence=90)


class Recorder:
    """Processor that records job names and fails the listed ones a set number of times."""

    def __init__(self, failures=None, result_failures=None):
        self.calls = []
        self.failures = dict(failures or {})
        self.result_failures = dict(result_failures or {})

    async def __call__(self, job: ScrapeJob):
        name = job.metadata["name"]
        self.calls.append(name)
        if self.failures.get(name, 0) > 0:
            self.failures[name] -= 1
            raise RuntimeError(f"{name} exploded")
        if self.result_failures.get(name, 0) > 0:
            self.result_failures[name] -= 1
            return ScrapingResult(success=False, strategy="stealth", session_id="s", error="blocked")
        return ok(job)


class TestJobQueue:
    """Tests for JobQueue."""

    async def test_processes_by_priority_then_fifo(self):
        processor = Recorder()
        queue = JobQueue(processor)

        for job in [
            make_job("low", JobPriority.LOW),
            make_job("medium-1"),
            make_job("high", JobPriority.HIGH),
            make_job("medium-2"),
        ]:
            await queue.enqueue(job)
        await queue.join()

        assert processor.calls == ["high", "medium-1", "medium-2", "low"]
        assert not queue.processing

    async def test_failed_job_is_downgraded_and_requeued_at_tail(self):
        processor = Recorder(failures={"a": 1})
        queue = JobQueue(processor)
        a = make_job("a", JobPriority.HIGH)
        b = make_job("b", JobPriority.MEDIUM)

        await queue.enqueue(a)
        await queue.enqueue(b)
        await queue.join()

        assert processor.calls == ["a", "b", "a"]
        assert a.retry_count == 1
        assert a.priority is JobPriority.MEDIUM
        assert a.status is JobStatus.COMPLETED
        assert a.last_error == "a exploded"

    async def test_job_fails_after_max_retries(self):
        processor = Recorder(failures={"a": 10})
        queue = JobQueue(processor)
        a = make_job("a", JobPriority.HIGH, max_retries=3)

        await queue.enqueue(a)
        await queue.join()

        assert processor.calls == ["a", "a", "a"]
        assert a.status is JobStatus.FAILED
        assert a.retry_count == 3
        assert a.priority is JobPriority.LOW
        assert a.is_terminal
        assert len(queue) == 0

    async def test_unsuccessful_result_counts_as_failure(self):
        processor = Recorder(result_failures={"a": 1})
        queue = JobQueue(processor)
        a = make_job("a")

        await queue.enqueue(a)
        await queue.join()

        assert processor.calls == ["a", "a"]
        assert a.retry_count == 1
        assert a.status is JobStatus.COMPLETED
        assert a.last_result.success

    async def test_update_priority_reorders_backlog(self):
        processor = Recorder()
        queue = JobQueue(processor)
        first, second = make_job("first", JobPriority.LOW), make_job("second", JobPriority.LOW)

        await queue.enqueue(first)
        await queue.enqueue(second)
        assert queue.update_priority(second.id, JobPriority.HIGH)
        assert not queue.update_priority("missing", JobPriority.HIGH)
        await queue.join()

        assert processor.calls == ["second", "first"]

    async def test_remove_and_clear(self):
        processor = Recorder()
        queue = JobQueue(processor)
        jobs = [make_job(n) for n in ("a", "b", "c")]
        for job in jobs:
            await queue.enqueue(job)

        assert len(queue) == 3
        assert queue.remove(jobs[1].id)
        assert not queue.remove(jobs[1].id)
        assert queue.clear() == 2
        await queue.join()

        assert processor.calls == []

    async def test_get_finds_queued_and_finished_jobs(self):
        queue = JobQueue(Recorder())
        job = make_job("a")

        await queue.enqueue(job)
        assert queue.get(job.id) is job
        await queue.join()

        assert queue.get(job.id) is job
        assert queue.get("missing") is None

    async def test_dequeue_takes_highest_priority(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(job):
            started.set()
            await release.wait()
            return ok(job)

        queue = JobQueue(blocking)
        await queue.enqueue(make_job("running"))
        await started.wait()

        low, high = make_job("low", JobPriority.LOW), make_job("high", JobPriority.HIGH)
        await queue.enqueue(low)
        await queue.enqueue(high)

        assert queue.dequeue() is high
        assert queue.dequeue() is low
        assert queue.dequeue() is None

        release.set()
        await queue.join()

    async def test_stats(self):
        processor = Recorder(failures={"bad": 10})
        queue = JobQueue(processor)
        await queue.enqueue(make_job("good", JobPriority.HIGH))
        await queue.enqueue(make_job("bad", JobPriority.HIGH, max_retries=1))
        await queue.join()

        stats = queue.stats()

        assert stats["total"] == 2
        assert stats["queued"] == 0
        assert stats["completed"] == 1
        assert stats["failed"] == 1
        assert stats["pending"] == 0
        assert stats["by_priority"] == {"high": 2, "medium": 0, "low": 0}

    async def test_finished_history_is_bounded(self):
        processor = Recorder()
        queue = JobQueue(processor, history_limit=2)
        jobs = [make_job(name) for name in ("a", "b", "c")]
        for job in jobs:
            await queue.enqueue(job)
        await queue.join()

        assert processor.calls == ["a", "b", "c"]
        assert queue.get(jobs[0].id) is None
        assert queue.get(jobs[2].id) is jobs[2]
        assert queue.stats()["completed"] == 2

    def test_history_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            JobQueue(Recorder(), history_limit=0)

    async def test_stop_cancels_worker(self):
        release = asyncio.Event()

        async def blocking(job):
            await release.wait()

        queue = JobQueue(blocking)
        await queue.enqueue(make_job("a"))
        await asyncio.sleep(0)
        assert queue.processing

        await queue.stop()
        assert not queue.processing

    def test_job_requires_target(self):
        with pytest.raises(ValueError):
            ScrapeJob(platform="amazon")
