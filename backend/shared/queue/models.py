"""Job record and state machine for the announcement queue."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class JobState(str, enum.Enum):
    """queued -> active -> completed | retrying -> active | dead"""

    QUEUED = "queued"
    ACTIVE = "active"
    RETRYING = "retrying"
    COMPLETED = "completed"
    DEAD = "dead"

    @property
    def is_due_state(self) -> bool:
        return self in (JobState.QUEUED, JobState.RETRYING)


class JobOutcome(str, enum.Enum):
    """Result of one processing attempt."""

    COMPLETED = "completed"
    RETRY = "retry"
    DEAD = "dead"


@dataclass
class Job:
    """One queued stream event. Times are epoch seconds."""

    id: str
    name: str
    payload: dict[str, Any]
    state: JobState = JobState.QUEUED
    attempts: int = 0
    priority: int = 2
    run_at: float = 0.0
    last_error: str | None = None
    created_at: float = 0.0
    claimed_at: float | None = None  # lease start while ACTIVE
