"""Bounded-concurrency worker pool for announcement jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from shared.models.stream_event import InvalidStreamEvent, StreamEvent
from shared.queue.models import Job, JobOutcome
from shared.queue.queue import EventQueue

logger = logging.getLogger(__name__)

JobProcessor = Callable[[StreamEvent], Awaitable[None]]


class EventWorker:
    """Runs *concurrency* slots that each claim and process one job at a time.

    At most *concurrency* jobs are ACTIVE in this process.  Jobs are not
    cancellable mid-flight; ``job_timeout`` and the queue's attempt limit
    bound the work spent on one event.

    Each claim is a lease of ``job_timeout + lease_margin`` seconds.  A sweep
    at start and every ``sweep_interval`` seconds requeues jobs whose lease
    ran out, which covers crashed processes and outcomes that could not be
    written.  Leases still running, in this or any other process, are kept.
    """

    def __init__(
        self,
        queue: EventQueue,
        processor: JobProcessor,
        *,
        concurrency: int = 3,
        poll_interval: float = 1.0,
        job_timeout: float = 30.0,
        lease_margin: float = 30.0,
        sweep_interval: float = 60.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.lease = job_timeout + lease_margin
        self.sweep_interval = sweep_interval
        self._tasks: list[asyncio.Task] = []
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def process(self, job: Job) -> JobOutcome:
        """Render and deliver one claimed job, then record the outcome."""
        logger.info(f"Processing {job.id} (attempt {job.attempts})")
        try:
            event = StreamEvent.from_payload(job.payload)
        except InvalidStreamEvent as e:
            return await self.queue.fail(job, e, permanent=True)

        try:
            await asyncio.wait_for(self.processor(event), timeout=self.job_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self.queue.fail(job, e)

        await self.queue.complete(job)
        return JobOutcome.COMPLETED

    async def run_once(self) -> JobOutcome | None:
        """Claim and process a single due job. None when the queue is idle."""
        job = await self.queue.reserve()
        if job is None:
            return None
        return await self.process(job)

    async def drain(self) -> list[JobOutcome]:
        """Process due jobs sequentially until none is left."""
        outcomes = []
        while (outcome := await self.run_once()) is not None:
            outcomes.append(outcome)
        return outcomes

    async def _slot(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                outcome = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Worker slot {index} failed: {e}")
                outcome = None

            if outcome is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except TimeoutError:
                    pass

    async def sweep(self) -> int:
        """Requeue jobs whose lease expired. Returns how many were released."""
        released = await self.queue.release_expired(self.lease)
        if released:
            logger.info(f"Requeued {released} job(s) with an expired lease")
        return released

    async def _sweeper(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.sweep_interval)
                return
            except TimeoutError:
                pass
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Lease sweep failed: {e}")

    async def start(self) -> None:
        if self.running:
            logger.warning("Announcement worker already running")
            return
        await self.sweep()
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._slot(i), name=f"announcement-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._sweeper(), name="announcement-sweeper"))
        logger.info(f"Announcement worker started (concurrency={self.concurrency})")

    async def stop(self, timeout: float = 10.0) -> None:
        """Let in-flight jobs finish, cancelling slots still busy after *timeout*."""
        if not self._tasks:
            return
        self._stopping.set()
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Announcement worker stopped")
