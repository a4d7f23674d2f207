"""Announcement job queue shared by the webhook API and the worker."""

from .models import Job, JobOutcome, JobState
from .queue import EventQueue, exponential_backoff, make_job_id
from .transports import MemoryQueueTransport, PostgresQueueTransport, QueueTransport
from .worker import EventWorker

__all__ = [
    "EventQueue",
    "EventWorker",
    "Job",
    "JobOutcome",
    "JobState",
    "MemoryQueueTransport",
    "PostgresQueueTransport",
    "QueueTransport",
    "exponential_backoff",
    "make_job_id",
]
