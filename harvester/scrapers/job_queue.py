"""Priority backlog of scraping jobs drained by a background worker."""

import asyncio
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from harvester.scrapers.base import JobPriority, JobStatus, ScrapeJob, ScrapingResult

logger = structlog.get_logger(__name__)

JobProcessor = Callable[[ScrapeJob], Awaitable[Optional[ScrapingResult]]]


class JobQueue:
    """Priority queue that processes one job at a time.

    High priority jobs run first; within a tier, jobs run in the order they
    were (re-)enqueued. A failed job loses one priority tier and goes to the
    back of its new tier until it reaches its retry limit.
    """

    def __init__(self, processor: JobProcessor, history_limit: int = 1000):
        """Initialize the queue.

        Args:
            processor: Coroutine run for each job; raising, or returning an
                unsuccessful ScrapingResult, counts as a failure
            history_limit: Finished jobs kept for get() and stats(), oldest dropped first
        """
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.processor = processor
        self.history_limit = history_limit
        self.logger = logger.bind(service="job_queue")
        self._pending: List[ScrapeJob] = []
        self._order: Dict[str, int] = {}
        self._seq = 0
        self._current: Optional[ScrapeJob] = None
        self._finished: "OrderedDict[str, ScrapeJob]" = OrderedDict()
        self._worker: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def processing(self) -> bool:
        return self._worker is not None

    def _push(self, job: ScrapeJob) -> None:
        self._seq += 1
        self._order[job.id] = self._seq
        self._pending.append(job)

    async def enqueue(self, job: ScrapeJob) -> None:
        """Add a job and start the worker if it is idle."""
        job.status = JobStatus.PENDING
        self._push(job)
        self.logger.info(
            "job_enqueued",
            job_id=job.id,
            target=job.url or job.query,
            priority=job.priority.value,
        )
        if self._worker is None:
            self._idle.clear()
            self._worker = asyncio.create_task(self._run())

    def dequeue(self) -> Optional[ScrapeJob]:
        """Take the next job: highest tier first, then earliest enqueue."""
        if not self._pending:
            return None
        job = min(self._pending, key=lambda j: (j.priority.rank, self._order[j.id]))
        self._pending.remove(job)
        self._order.pop(job.id, None)
        return job

    async def _run(self) -> None:
        self.logger.info("queue_processing_started", pending=len(self._pending))
        try:
            while self._pending:
                job = self.dequeue()
                if job is not None:
                    await self._process(job)
        finally:
            self._current = None
            self._worker = None
            self._idle.set()
            self.logger.info("queue_processing_completed")

    async def _process(self, job: ScrapeJob) -> None:
        job.status = JobStatus.PROCESSING
        self._current = job
        try:
            result = await self.processor(job)
        except Exception as e:
            self.logger.error("job_processing_failed", job_id=job.id, error=str(e))
            self._handle_failure(job, str(e))
            return
        finally:
            self._current = None

        job.last_result = result
        if result is not None and not result.success:
            self._handle_failure(job, result.error or "scrape failed")
            return

        job.status = JobStatus.COMPLETED
        self._remember(job)
        self.logger.info("job_completed", job_id=job.id)

    def _remember(self, job: ScrapeJob) -> None:
        self._finished[job.id] = job
        self._finished.move_to_end(job.id)
        while len(self._finished) > self.history_limit:
            self._finished.popitem(last=False)

    def _handle_failure(self, job: ScrapeJob, error: str) -> None:
        job.retry_count += 1
        job.last_error = error

        if job.retry_count >= job.max_retries:
            job.status = JobStatus.FAILED
            self._remember(job)
            self.logger.warning("job_failed_permanently", job_id=job.id, retries=job.retry_count)
            return

        job.priority = job.priority.downgrade()
        job.status = JobStatus.PENDING
        self._push(job)
        self.logger.info(
            "job_requeued",
            job_id=job.id,
            attempt=job.retry_count,
            max_retries=job.max_retries,
            priority=job.priority.value,
        )

    async def join(self) -> None:
        """Wait until the backlog is drained."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel the worker; the job being processed is left as is."""
        worker = self._worker
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    def get(self, job_id: str) -> Optional[ScrapeJob]:
        """Find a job that is queued, running, or finished."""
        for job in self._pending:
            if job.id == job_id:
                return job
        if self._current is not None and self._current.id == job_id:
            return self._current
        return self._finished.get(job_id)

    def update_priority(self, job_id: str, priority: JobPriority) -> bool:
        """Move a queued job to another tier, keeping its place in line."""
        for job in self._pending:
            if job.id == job_id:
                job.priority = JobPriority(priority)
                self.logger.info("job_priority_updated", job_id=job_id, priority=job.priority.value)
                return True
        return False

    def remove(self, job_id: str) -> bool:
        before = len(self._pending)
        self._pending = [j for j in self._pending if j.id != job_id]
        removed = len(self._pending) != before
        if removed:
            self._order.pop(job_id, None)
            self.logger.info("job_removed", job_id=job_id)
        return removed

    def clear(self) -> int:
        """Drop every queued job.

        Returns:
            Number of jobs dropped
        """
        count = len(self._pending)
        self._pending = []
        self._order.clear()
        self.logger.info("queue_cleared", count=count)
        return count

    def stats(self) -> dict:
        """Count jobs per status and priority across queued, running and finished jobs."""
        jobs = list(self._pending) + list(self._finished.values())
        if self._current is not None:
            jobs.append(self._current)

        by_status = {s.value: 0 for s in JobStatus}
        by_priority = {p.value: 0 for p in JobPriority}
        for job in jobs:
            by_status[job.status.value] += 1
            by_priority[job.priority.value] += 1
        return {
            "total": len(jobs),
            "queued": len(self._pending),
            **by_status,
            "by_priority": by_priority,
        }
