"""Repository for the streamers table."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Protocol

import asyncpg

from shared.models.streamer import Streamer, parse_custom_buttons, parse_stream_platforms

logger = logging.getLogger(__name__)

# Columns a streamer may edit from the dashboard
SETTINGS_FIELDS = frozenset(
    {
        "online_template",
        "offline_template",
        "custom_buttons",
        "stream_platforms",
        "chat_ids",
        "twitch_login",
    }
)

_SELECT_COLS = (
    "id, memelab_user_id, memelab_channel_id, channel_slug, display_name, "
    "twitch_login, avatar_url, online_template, offline_template, custom_buttons, "
    "stream_platforms, chat_ids, custom_bot_token, created_at, updated_at"
)


@dataclass(frozen=True)
class StreamerIdentity:
    """Profile-derived fields refreshed on every authenticated request."""

    memelab_user_id: str
    memelab_channel_id: str
    channel_slug: str
    display_name: str
    twitch_login: str | None = None
    avatar_url: str | None = None


class StreamerStore(Protocol):
    async def upsert(self, identity: StreamerIdentity) -> Streamer: ...

    async def get(self, streamer_id: str) -> Streamer | None: ...

    async def get_by_channel_id(self, channel_id: str) -> Streamer | None: ...

    async def update_settings(self, streamer_id: str, **fields: Any) -> Streamer | None: ...

    async def set_custom_bot_token(self, streamer_id: str, encrypted: str | None) -> None: ...

    async def remove_chat_id(self, streamer_id: str, chat_id: str) -> None: ...


def _loads(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _row_to_streamer(row: asyncpg.Record) -> Streamer:
    d = dict(row)
    d["id"] = str(d["id"])
    d["custom_buttons"] = parse_custom_buttons(_loads(d.get("custom_buttons")))
    d["stream_platforms"] = parse_stream_platforms(_loads(d.get("stream_platforms")))
    d["chat_ids"] = list(d.get("chat_ids") or [])
    return Streamer(**d)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - SETTINGS_FIELDS
    if unknown:
        raise ValueError(f"Unknown streamer settings: {', '.join(sorted(unknown))}")


def _to_column(name: str, value: Any) -> Any:
    if name == "custom_buttons":
        return None if value is None else json.dumps([b.to_json() for b in value])
    if name == "stream_platforms":
        return json.dumps([p.to_json() for p in value])
    return value


class StreamerRepository:
    """Pure SQL operations for streamers."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def upsert(self, identity: StreamerIdentity) -> Streamer:
        """Insert or refresh a streamer by MemeLab user id. Settings are untouched."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO streamers (memelab_user_id, memelab_channel_id, channel_slug,
                                       display_name, twitch_login, avatar_url)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (memelab_user_id) DO UPDATE SET
                    memelab_channel_id = EXCLUDED.memelab_channel_id,
                    channel_slug       = EXCLUDED.channel_slug,
                    display_name       = EXCLUDED.display_name,
                    twitch_login       = COALESCE(streamers.twitch_login, EXCLUDED.twitch_login),
                    avatar_url         = EXCLUDED.avatar_url,
                    updated_at         = NOW()
                RETURNING {_SELECT_COLS}
                """,
                identity.memelab_user_id,
                identity.memelab_channel_id,
                identity.channel_slug,
                identity.display_name,
                identity.twitch_login,
                identity.avatar_url,
            )
        streamer = _row_to_streamer(row)
        logger.debug(f"Upserted streamer {streamer.id} (memelab user {identity.memelab_user_id})")
        return streamer

    async def get(self, streamer_id: str) -> Streamer | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLS} FROM streamers WHERE id = $1::uuid", streamer_id
            )
        return _row_to_streamer(row) if row else None

    async def get_by_channel_id(self, channel_id: str) -> Streamer | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLS} FROM streamers WHERE memelab_channel_id = $1",
                channel_id,
            )
        return _row_to_streamer(row) if row else None

    async def update_settings(self, streamer_id: str, **fields: Any) -> Streamer | None:
        _check_fields(fields)
        if not fields:
            return await self.get(streamer_id)

        names = sorted(fields)
        assignments = []
        for i, name in enumerate(names, start=2):
            cast = "::jsonb" if name in ("custom_buttons", "stream_platforms") else ""
            assignments.append(f"{name} = ${i}{cast}")
        values = [_to_column(name, fields[name]) for name in names]

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE streamers SET {", ".join(assignments)}, updated_at = NOW()
                WHERE id = $1::uuid
                RETURNING {_SELECT_COLS}
                """,
                streamer_id,
                *values,
            )
        return _row_to_streamer(row) if row else None

    async def set_custom_bot_token(self, streamer_id: str, encrypted: str | None) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE streamers SET custom_bot_token = $2, updated_at = NOW() "
                "WHERE id = $1::uuid",
                streamer_id,
                encrypted,
            )

    async def remove_chat_id(self, streamer_id: str, chat_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE streamers SET chat_ids = array_remove(chat_ids, $2), updated_at = NOW() "
                "WHERE id = $1::uuid",
                streamer_id,
                chat_id,
            )


class MemoryStreamerStore:
    """Dict-backed StreamerStore for tests and database-less development."""

    def __init__(self) -> None:
        self._by_id: dict[str, Streamer] = {}

    def add(self, streamer: Streamer) -> Streamer:
        self._by_id[streamer.id] = streamer
        return streamer

    async def upsert(self, identity: StreamerIdentity) -> Streamer:
        now = datetime.now(UTC)
        existing = next(
            (s for s in self._by_id.values() if s.memelab_user_id == identity.memelab_user_id),
            None,
        )
        if existing is None:
            streamer = Streamer(
                id=str(uuid.uuid4()),
                memelab_user_id=identity.memelab_user_id,
                memelab_channel_id=identity.memelab_channel_id,
                channel_slug=identity.channel_slug,
                display_name=identity.display_name,
                twitch_login=identity.twitch_login,
                avatar_url=identity.avatar_url,
                created_at=now,
                updated_at=now,
            )
        else:
            streamer = replace(
                existing,
                memelab_channel_id=identity.memelab_channel_id,
                channel_slug=identity.channel_slug,
                display_name=identity.display_name,
                twitch_login=existing.twitch_login or identity.twitch_login,
                avatar_url=identity.avatar_url,
                updated_at=now,
            )
        return self.add(streamer)

    async def get(self, streamer_id: str) -> Streamer | None:
        return self._by_id.get(streamer_id)

    async def get_by_channel_id(self, channel_id: str) -> Streamer | None:
        return next(
            (s for s in self._by_id.values() if s.memelab_channel_id == channel_id), None
        )

    async def update_settings(self, streamer_id: str, **fields: Any) -> Streamer | None:
        _check_fields(fields)
        existing = self._by_id.get(streamer_id)
        if existing is None:
            return None
        return self.add(replace(existing, updated_at=datetime.now(UTC), **fields))

    async def set_custom_bot_token(self, streamer_id: str, encrypted: str | None) -> None:
        existing = self._by_id.get(streamer_id)
        if existing is not None:
            self.add(replace(existing, custom_bot_token=encrypted))

    async def remove_chat_id(self, streamer_id: str, chat_id: str) -> None:
        existing = self._by_id.get(streamer_id)
        if existing is not None:
            remaining = [c for c in existing.chat_ids if c != chat_id]
            self.add(replace(existing, chat_ids=remaining, updated_at=datetime.now(UTC)))
