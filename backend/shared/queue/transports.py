"""Queue storage backends.

The queue logic (``EventQueue``) never touches storage directly; it talks to
a ``QueueTransport``.  ``MemoryQueueTransport`` serves tests and single-process
development, ``PostgresQueueTransport`` is the durable production store.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import replace
from typing import Any, Protocol

import asyncpg

from shared.queue.models import Job, JobState

logger = logging.getLogger(__name__)


class QueueTransport(Protocol):
    async def add(self, job: Job) -> bool:
        """Store a new job. Returns False when the id already exists."""
        ...

    async def claim(self, now: float) -> Job | None:
        """Atomically move the next due job to ACTIVE and count the attempt."""
        ...

    async def save(self, job: Job) -> None: ...

    async def get(self, job_id: str) -> Job | None: ...

    async def counts(self) -> dict[str, int]: ...

    async def release_expired(self, cutoff: float) -> int:
        """Return ACTIVE jobs claimed at or before *cutoff* to RETRYING."""
        ...

    async def close(self) -> None: ...


class MemoryQueueTransport:
    """In-process transport. ``claim`` never awaits, so it is atomic on the loop.

    Jobs cross the transport boundary as copies, so a caller only changes the
    stored record through ``save``.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    async def add(self, job: Job) -> bool:
        if job.id in self._jobs:
            return False
        self._jobs[job.id] = job
        return True

    async def claim(self, now: float) -> Job | None:
        due = [j for j in self._jobs.values() if j.state.is_due_state and j.run_at <= now]
        if not due:
            return None
        job = min(due, key=lambda j: (j.priority, j.run_at, j.created_at))
        job.state = JobState.ACTIVE
        job.attempts += 1
        job.claimed_at = now
        return replace(job)

    async def save(self, job: Job) -> None:
        self._jobs[job.id] = replace(job)

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def counts(self) -> dict[str, int]:
        return dict(Counter(j.state.value for j in self._jobs.values()))

    async def release_expired(self, cutoff: float) -> int:
        released = 0
        for job in self._jobs.values():
            if job.state is JobState.ACTIVE and (job.claimed_at or 0.0) <= cutoff:
                job.state = JobState.RETRYING
                job.claimed_at = None
                released += 1
        return released

    async def close(self) -> None:
        self._jobs.clear()

    @property
    def jobs(self) -> list[Job]:
        return [replace(j) for j in self._jobs.values()]


_RETURNING = (
    "id, name, payload, state, attempts, priority, last_error, "
    "EXTRACT(EPOCH FROM run_at)::float8 AS run_at, "
    "EXTRACT(EPOCH FROM created_at)::float8 AS created_at, "
    "EXTRACT(EPOCH FROM claimed_at)::float8 AS claimed_at"
)


def _row_to_job(row: asyncpg.Record) -> Job:
    d: dict[str, Any] = dict(row)
    payload = d["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Job(
        id=d["id"],
        name=d["name"],
        payload=payload,
        state=JobState(d["state"]),
        attempts=d["attempts"],
        priority=d["priority"],
        run_at=d["run_at"],
        last_error=d["last_error"],
        created_at=d["created_at"],
        claimed_at=d.get("claimed_at"),
    )


class PostgresQueueTransport:
    """Durable transport on the ``notify_jobs`` table.

    Claiming uses ``FOR UPDATE SKIP LOCKED`` so several worker processes can
    share one table without handing out the same job twice. A claim is a
    lease: only rows whose ``claimed_at`` is older than the caller's cutoff are
    ever released, so live jobs of other processes are left alone.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def add(self, job: Job) -> bool:
        async with self.pool.acquire() as conn:
            inserted = await conn.fetchval(
                """
                INSERT INTO notify_jobs (id, name, payload, state, attempts, priority, run_at, created_at)
                VALUES ($1, $2, $3::jsonb, $4, $5, $6, to_timestamp($7), to_timestamp($8))
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                """,
                job.id,
                job.name,
                json.dumps(job.payload),
                job.state.value,
                job.attempts,
                job.priority,
                job.run_at,
                job.created_at,
            )
        return inserted is not None

    async def claim(self, now: float) -> Job | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE notify_jobs
                SET state = 'active', attempts = attempts + 1,
                    claimed_at = to_timestamp($1), updated_at = NOW()
                WHERE id = (
                    SELECT id FROM notify_jobs
                    WHERE state IN ('queued', 'retrying') AND run_at <= to_timestamp($1)
                    ORDER BY priority, run_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {_RETURNING}
                """,
                now,
            )
        return _row_to_job(row) if row else None

    async def save(self, job: Job) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE notify_jobs
                SET state = $2, attempts = $3, run_at = to_timestamp($4),
                    last_error = $5, claimed_at = to_timestamp($6), updated_at = NOW()
                WHERE id = $1
                """,
                job.id,
                job.state.value,
                job.attempts,
                job.run_at,
                job.last_error,
                job.claimed_at,
            )

    async def get(self, job_id: str) -> Job | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_RETURNING} FROM notify_jobs WHERE id = $1", job_id
            )
        return _row_to_job(row) if row else None

    async def counts(self) -> dict[str, int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT state, COUNT(*) AS cnt FROM notify_jobs GROUP BY state"
            )
        return {row["state"]: row["cnt"] for row in rows}

    async def release_expired(self, cutoff: float) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE notify_jobs
                SET state = 'retrying', claimed_at = NULL, updated_at = NOW()
                WHERE state = 'active'
                  AND (claimed_at IS NULL OR claimed_at <= to_timestamp($1))
                """,
                cutoff,
            )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        released = int(result.split()[-1])
        if released:
            logger.warning(f"Released {released} job(s) with an expired lease")
        return released

    async def close(self) -> None:
        # The pool is owned by its DatabaseManager
        return None
