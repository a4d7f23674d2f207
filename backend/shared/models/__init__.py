"""Shared data models for the API and the announcement worker."""

from .stream_event import STREAM_OFFLINE, STREAM_ONLINE, InvalidStreamEvent, StreamEvent
from .streamer import CustomButton, Streamer, StreamPlatform

__all__ = [
    "STREAM_OFFLINE",
    "STREAM_ONLINE",
    "CustomButton",
    "InvalidStreamEvent",
    "StreamEvent",
    "StreamPlatform",
    "Streamer",
]
