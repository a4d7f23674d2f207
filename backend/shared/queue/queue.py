"""Announcement job queue: enqueue, claim, and the retry/dead transitions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from shared.models.stream_event import StreamEvent
from shared.queue.models import Job, JobOutcome, JobState
from shared.queue.transports import QueueTransport

logger = logging.getLogger(__name__)

BackoffPolicy = Callable[[int], float]

ONLINE_PRIORITY = 1
OFFLINE_PRIORITY = 2
MAX_ERROR_LENGTH = 500


def exponential_backoff(base: float = 3.0, cap: float = 600.0) -> BackoffPolicy:
    """Delay before retry *n* (1-based): ``base * 2**(n-1)``, capped."""

    def policy(attempts: int) -> float:
        return min(base * (2 ** max(attempts - 1, 0)), cap)

    return policy


def make_job_id(event: StreamEvent, enqueued_ms: int) -> str:
    """``<channelId>:<event>:<epochMillis>``; same-millisecond duplicates collide."""
    return f"{event.channel_id}:{event.event}:{enqueued_ms}"


class EventQueue:
    """Decouples webhook ingestion from announcement processing."""

    def __init__(
        self,
        transport: QueueTransport,
        *,
        max_attempts: int = 5,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], float] = time.time,
        save_attempts: int = 3,
        save_retry_delay: float = 0.5,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if save_attempts < 1:
            raise ValueError("save_attempts must be at least 1")
        self.transport = transport
        self.max_attempts = max_attempts
        self.backoff = backoff or exponential_backoff()
        self.save_attempts = save_attempts
        self.save_retry_delay = save_retry_delay
        self._clock = clock

    async def enqueue(self, event: StreamEvent) -> str:
        """Store the event as a job and return its id once stored."""
        now = self._clock()
        job = Job(
            id=make_job_id(event, int(now * 1000)),
            name=event.event,
            payload=event.to_payload(),
            priority=ONLINE_PRIORITY if event.is_online else OFFLINE_PRIORITY,
            run_at=now,
            created_at=now,
        )
        if await self.transport.add(job):
            logger.info(f"Enqueued {job.id} (channel={event.channel_id}, event={event.event})")
        else:
            logger.info(f"Duplicate job {job.id} ignored")
        return job.id

    async def reserve(self) -> Job | None:
        """Claim the next due job, or None when nothing is due."""
        return await self.transport.claim(self._clock())

    async def _persist(self, job: Job) -> None:
        """Write a state transition, retrying transient storage errors.

        If every attempt fails the job stays ACTIVE in storage until its lease
        expires and ``release_expired`` hands it out again.
        """
        for attempt in range(1, self.save_attempts + 1):
            try:
                await self.transport.save(job)
                return
            except Exception as e:
                if attempt == self.save_attempts:
                    logger.error(
                        f"Could not record {job.state.value} for job {job.id} "
                        f"after {attempt} attempt(s): {e}"
                    )
                    raise
                logger.warning(f"Saving job {job.id} failed (attempt {attempt}): {e}")
                await asyncio.sleep(self.save_retry_delay * attempt)

    async def complete(self, job: Job) -> None:
        job.state = JobState.COMPLETED
        job.last_error = None
        job.claimed_at = None
        await self._persist(job)
        logger.info(f"Job {job.id} completed (attempt {job.attempts})")

    async def fail(self, job: Job, error: BaseException, *, permanent: bool = False) -> JobOutcome:
        """Schedule a retry, or move the job to DEAD once attempts are exhausted."""
        job.last_error = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
        job.claimed_at = None

        if permanent or job.attempts >= self.max_attempts:
            job.state = JobState.DEAD
            await self._persist(job)
            logger.error(
                f"Job {job.id} dead after {job.attempts} attempt(s): {job.last_error}"
            )
            return JobOutcome.DEAD

        delay = self.backoff(job.attempts)
        job.state = JobState.RETRYING
        job.run_at = self._clock() + delay
        await self._persist(job)
        logger.warning(
            f"Job {job.id} failed (attempt {job.attempts}/{self.max_attempts}): "
            f"{job.last_error}, retrying in {delay:.1f}s"
        )
        return JobOutcome.RETRY

    async def release_expired(self, lease: float) -> int:
        """Requeue ACTIVE jobs claimed more than *lease* seconds ago."""
        return await self.transport.release_expired(self._clock() - lease)

    async def get(self, job_id: str) -> Job | None:
        return await self.transport.get(job_id)

    async def counts(self) -> dict[str, int]:
        return await self.transport.counts()

    async def close(self) -> None:
        await self.transport.close()
