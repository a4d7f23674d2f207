"""Data models for the streamers table and its JSON columns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Order in which a platform URL becomes the announcement's stream_url
PLATFORM_PRIORITY = ("twitch", "youtube", "vk", "kick")


@dataclass
class StreamPlatform:
    """A platform the streamer broadcasts on."""

    platform: str  # 'twitch' | 'youtube' | 'vk' | 'kick' | 'other'
    login: str
    url: str
    is_manual: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "login": self.login,
            "url": self.url,
            "isManual": self.is_manual,
        }


@dataclass
class CustomButton:
    """Announcement button; label and url may contain {variables}."""

    label: str
    url: str

    def to_json(self) -> dict[str, str]:
        return {"label": self.label, "url": self.url}


@dataclass
class Streamer:
    """Local streamer record, keyed by MemeLab user id."""

    id: str
    memelab_user_id: str
    memelab_channel_id: str
    channel_slug: str
    display_name: str
    twitch_login: str | None = None
    avatar_url: str | None = None
    online_template: str | None = None
    offline_template: str | None = None
    custom_buttons: list[CustomButton] | None = None
    stream_platforms: list[StreamPlatform] = field(default_factory=list)
    chat_ids: list[str] = field(default_factory=list)
    custom_bot_token: str | None = None  # EncryptedSecret, never plaintext
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_custom_bot(self) -> bool:
        return bool(self.custom_bot_token)


def parse_stream_platforms(raw: Any) -> list[StreamPlatform]:
    """Parse the stream_platforms JSON column, dropping malformed entries."""
    if not isinstance(raw, list):
        return []
    platforms = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        platform, login, url = item.get("platform"), item.get("login"), item.get("url")
        is_manual = item.get("isManual", False)
        if not all(isinstance(v, str) for v in (platform, login, url)):
            continue
        if not isinstance(is_manual, bool):
            continue
        platforms.append(StreamPlatform(platform, login, url, is_manual))
    return platforms


def parse_custom_buttons(raw: Any) -> list[CustomButton] | None:
    """Parse the custom_buttons JSON column.

    ``None`` means "use default buttons"; an empty list means "no buttons".
    """
    if raw is None or not isinstance(raw, list):
        return None
    buttons = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        label, url = item.get("label"), item.get("url")
        if isinstance(label, str) and isinstance(url, str) and label.strip() and url.strip():
            buttons.append(CustomButton(label=label, url=url))
    return buttons


def get_platform_url(platforms: list[StreamPlatform], platform: str) -> str | None:
    for p in platforms:
        if p.platform == platform:
            return p.url
    return None


def get_primary_stream_url(platforms: list[StreamPlatform]) -> str | None:
    """First configured platform URL by priority."""
    for name in PLATFORM_PRIORITY:
        url = get_platform_url(platforms, name)
        if url:
            return url
    return None
