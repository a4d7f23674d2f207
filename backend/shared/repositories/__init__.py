"""Shared repository layer for the API and the announcement worker."""

from .announcement_log import AnnouncementLogRepository, MemorySentLog, SentLog
from .streamer import MemoryStreamerStore, StreamerIdentity, StreamerRepository, StreamerStore

__all__ = [
    "AnnouncementLogRepository",
    "MemorySentLog",
    "MemoryStreamerStore",
    "SentLog",
    "StreamerIdentity",
    "StreamerRepository",
    "StreamerStore",
]
