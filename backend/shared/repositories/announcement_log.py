"""Per-chat record of announcements already sent for a stream session."""

from __future__ import annotations

import logging
from typing import Protocol

import asyncpg

logger = logging.getLogger(__name__)


class SentLog(Protocol):
    async def was_sent(self, session_id: str, chat_id: str) -> bool: ...

    async def mark_sent(self, session_id: str, chat_id: str, message_id: str | None) -> None: ...


class AnnouncementLogRepository:
    """Pure SQL operations for announcement_log."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def was_sent(self, session_id: str, chat_id: str) -> bool:
        async with self.pool.acquire() as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM announcement_log WHERE session_id = $1 AND chat_id = $2",
                session_id,
                chat_id,
            )
        return found is not None

    async def mark_sent(self, session_id: str, chat_id: str, message_id: str | None) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO announcement_log (session_id, chat_id, message_id)
                VALUES ($1, $2, $3)
                ON CONFLICT (session_id, chat_id) DO NOTHING
                """,
                session_id,
                chat_id,
                message_id,
            )
        logger.debug(f"Recorded message {message_id} to {chat_id} for {session_id}")


class MemorySentLog:
    """Dict-backed SentLog for tests and database-less development."""

    def __init__(self) -> None:
        self.sent: dict[tuple[str, str], str | None] = {}

    async def was_sent(self, session_id: str, chat_id: str) -> bool:
        return (session_id, chat_id) in self.sent

    async def mark_sent(self, session_id: str, chat_id: str, message_id: str | None) -> None:
        self.sent.setdefault((session_id, chat_id), message_id)
