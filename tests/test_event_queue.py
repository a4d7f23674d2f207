"""Tests for the announcement job queue state machine."""

import pytest

from shared.models.stream_event import StreamEvent
from shared.queue import (
    EventQueue,
    JobOutcome,
    JobState,
    MemoryQueueTransport,
    exponential_backoff,
    make_job_id,
)
from tests.conftest import FakeClock


def online(channel_id: str = "chan-1") -> StreamEvent:
    return StreamEvent(event="stream.online", channel_id=channel_id, channel_slug="slug")


def offline(channel_id: str = "chan-1") -> StreamEvent:
    return StreamEvent(event="stream.offline", channel_id=channel_id, channel_slug="slug")


@pytest.fixture
def queue_clock():
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def transport():
    return MemoryQueueTransport()


@pytest.fixture
def queue(transport, queue_clock):
    return EventQueue(transport, clock=queue_clock)


class TestBackoff:
    """Test the default retry delays."""

    def test_exponential_sequence(self):
        policy = exponential_backoff()
        assert [policy(n) for n in range(1, 6)] == [3, 6, 12, 24, 48]

    def test_capped(self):
        assert exponential_backoff(base=3, cap=600)(20) == 600

    def test_custom_base(self):
        assert exponential_backoff(base=1)(3) == 4


class TestEnqueue:
    """Test job creation."""

    def test_job_id_format(self):
        assert make_job_id(online("abc"), 1_700_000_000_123) == "abc:stream.online:1700000000123"

    @pytest.mark.asyncio
    async def test_enqueue_stores_job(self, queue, transport):
        job_id = await queue.enqueue(online())

        assert job_id == "chan-1:stream.online:1700000000000"
        job = await queue.get(job_id)
        assert job.state is JobState.QUEUED
        assert job.attempts == 0
        assert job.name == "stream.online"
        assert StreamEvent.from_payload(job.payload) == online()

    @pytest.mark.asyncio
    async def test_same_millisecond_duplicate_collapses(self, queue, transport):
        first = await queue.enqueue(online())
        second = await queue.enqueue(online())

        assert first == second
        assert len(transport.jobs) == 1

    @pytest.mark.asyncio
    async def test_later_duplicate_is_a_new_job(self, queue, transport, queue_clock):
        await queue.enqueue(online())
        queue_clock.advance(1)
        await queue.enqueue(online())

        assert len(transport.jobs) == 2

    def test_max_attempts_must_be_positive(self, transport):
        with pytest.raises(ValueError):
            EventQueue(transport, max_attempts=0)


class TestReserve:
    """Test claiming due jobs."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_claim_marks_active(self, queue):
        await queue.enqueue(online())
        job = await queue.reserve()

        assert job.state is JobState.ACTIVE
        assert job.attempts == 1
        assert await queue.reserve() is None

    @pytest.mark.asyncio
    async def test_online_runs_before_offline(self, queue):
        await queue.enqueue(offline("a"))
        await queue.enqueue(online("b"))

        assert (await queue.reserve()).name == "stream.online"
        assert (await queue.reserve()).name == "stream.offline"

    @pytest.mark.asyncio
    async def test_claim_is_a_copy(self, queue):
        job_id = await queue.enqueue(online())
        job = await queue.reserve()
        job.state = "mutated"

        assert (await queue.get(job_id)).state is JobState.ACTIVE

    @pytest.mark.asyncio
    async def test_release_expired_keeps_live_leases(self, queue, queue_clock):
        await queue.enqueue(online())
        await queue.reserve()

        queue_clock.advance(59)
        assert await queue.release_expired(60) == 0
        assert await queue.reserve() is None

        queue_clock.advance(1)
        assert await queue.release_expired(60) == 1
        job = await queue.reserve()
        assert job is not None
        assert job.attempts == 2


class TestFailure:
    """Test retry and dead transitions."""

    @pytest.mark.asyncio
    async def test_complete(self, queue):
        job_id = await queue.enqueue(online())
        job = await queue.reserve()
        await queue.complete(job)

        assert (await queue.get(job_id)).state is JobState.COMPLETED
        assert await queue.counts() == {"completed": 1}

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_backoff(self, queue, queue_clock):
        await queue.enqueue(online())
        job = await queue.reserve()

        assert await queue.fail(job, RuntimeError("telegram down")) is JobOutcome.RETRY
        assert job.state is JobState.RETRYING
        assert job.run_at == queue_clock.now + 3
        assert job.last_error == "RuntimeError: telegram down"

        queue_clock.advance(2)
        assert await queue.reserve() is None
        queue_clock.advance(1)
        retried = await queue.reserve()
        assert retried.id == job.id
        assert retried.attempts == 2

        await queue.fail(retried, RuntimeError("still down"))
        assert retried.run_at == queue_clock.now + 6

    @pytest.mark.asyncio
    async def test_dead_after_max_attempts(self, transport, queue_clock):
        queue = EventQueue(transport, max_attempts=3, clock=queue_clock)
        await queue.enqueue(online())

        outcomes = []
        for _ in range(3):
            job = await queue.reserve()
            outcomes.append(await queue.fail(job, RuntimeError("boom")))
            queue_clock.advance(1000)

        assert outcomes == [JobOutcome.RETRY, JobOutcome.RETRY, JobOutcome.DEAD]
        assert job.state is JobState.DEAD
        assert job.attempts == 3
        queue_clock.advance(10_000)
        assert await queue.reserve() is None
        assert await queue.counts() == {"dead": 1}

    @pytest.mark.asyncio
    async def test_permanent_failure_is_dead_immediately(self, queue):
        await queue.enqueue(online())
        job = await queue.reserve()

        assert await queue.fail(job, ValueError("bad payload"), permanent=True) is JobOutcome.DEAD
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_pluggable_backoff(self, transport, queue_clock):
        queue = EventQueue(transport, backoff=lambda attempts: 0.0, clock=queue_clock)
        await queue.enqueue(online())
        job = await queue.reserve()
        await queue.fail(job, RuntimeError("boom"))

        assert (await queue.reserve()).id == job.id

    @pytest.mark.asyncio
    async def test_error_message_is_truncated(self, queue):
        await queue.enqueue(online())
        job = await queue.reserve()
        await queue.fail(job, RuntimeError("x" * 5000))

        assert len(job.last_error) == 500


class FlakySaveTransport(MemoryQueueTransport):
    """Memory transport whose next *failures* saves raise."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def save(self, job):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("connection reset")
        await super().save(job)


class TestPersist:
    """Test recording outcomes when storage misbehaves."""

    def test_save_attempts_must_be_positive(self, transport):
        with pytest.raises(ValueError):
            EventQueue(transport, save_attempts=0)

    @pytest.mark.asyncio
    async def test_transient_save_error_is_retried(self, queue_clock):
        transport = FlakySaveTransport(failures=2)
        queue = EventQueue(transport, clock=queue_clock, save_retry_delay=0)
        job_id = await queue.enqueue(online())

        await queue.complete(await queue.reserve())

        assert (await queue.get(job_id)).state is JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_unrecorded_outcome_is_released_after_lease(self, queue_clock):
        transport = FlakySaveTransport(failures=3)
        queue = EventQueue(transport, clock=queue_clock, save_retry_delay=0)
        job_id = await queue.enqueue(online())
        job = await queue.reserve()

        with pytest.raises(ConnectionError):
            await queue.fail(job, RuntimeError("telegram down"))

        stored = await queue.get(job_id)
        assert stored.state is JobState.ACTIVE
        assert stored.last_error is None

        queue_clock.advance(61)
        assert await queue.release_expired(60) == 1
        retried = await queue.reserve()
        assert retried.id == job_id
        assert retried.attempts == 2
