"""Stream event payload pushed by the MemeLab webhook."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

STREAM_ONLINE = "stream.online"
STREAM_OFFLINE = "stream.offline"
STREAM_EVENT_TYPES = (STREAM_ONLINE, STREAM_OFFLINE)


class InvalidStreamEvent(ValueError):
    """Webhook body does not describe a known stream event."""


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class StreamEvent:
    """Immutable stream event. Wire format is camelCase JSON."""

    event: str
    channel_id: str
    channel_slug: str = ""
    twitch_login: str | None = None
    stream_title: str | None = None
    game_name: str | None = None
    thumbnail_url: str | None = None
    started_at: str | None = None
    viewer_count: int | None = None

    @property
    def is_online(self) -> bool:
        return self.event == STREAM_ONLINE

    @classmethod
    def from_payload(cls, data: Any) -> StreamEvent:
        """Validate and build an event from a decoded webhook body."""
        if not isinstance(data, dict):
            raise InvalidStreamEvent("Body must be a JSON object")

        event = data.get("event")
        channel_id = data.get("channelId")
        if not event or not channel_id:
            raise InvalidStreamEvent("Missing required fields: event, channelId")
        if event not in STREAM_EVENT_TYPES:
            raise InvalidStreamEvent("Unknown event type")
        if not isinstance(channel_id, str):
            raise InvalidStreamEvent("channelId must be a string")

        viewer_count = data.get("viewerCount")
        if isinstance(viewer_count, bool) or not isinstance(viewer_count, int):
            viewer_count = None

        return cls(
            event=event,
            channel_id=channel_id,
            channel_slug=_optional_str(data, "channelSlug") or "",
            twitch_login=_optional_str(data, "twitchLogin"),
            stream_title=_optional_str(data, "streamTitle"),
            game_name=_optional_str(data, "gameName"),
            thumbnail_url=_optional_str(data, "thumbnailUrl"),
            started_at=_optional_str(data, "startedAt"),
            viewer_count=viewer_count,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.event,
            "channelId": self.channel_id,
            "channelSlug": self.channel_slug,
        }
        optional = {
            "twitchLogin": self.twitch_login,
            "streamTitle": self.stream_title,
            "gameName": self.game_name,
            "thumbnailUrl": self.thumbnail_url,
            "startedAt": self.started_at,
            "viewerCount": self.viewer_count,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload
