"""Core announcement logic.

Turns a queued stream event into a rendered announcement and sends it to each
of the streamer's chats.  Chats that already got the announcement for this
stream session are skipped, so a retried job only re-sends what failed.  Chats
that can never be reached again are dropped from the streamer.  Transient
errors propagate so the queue can retry the job.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from services.template_service import (
    MEMELAB_SITE_URL,
    build_buttons,
    build_template_vars,
    escape_html,
    render_template,
)
from shared.models.stream_event import StreamEvent
from shared.models.streamer import Streamer
from shared.repositories.announcement_log import MemorySentLog, SentLog
from shared.repositories.streamer import StreamerStore

logger = logging.getLogger(__name__)


class RenderFailure(Exception):
    """Announcement text or buttons could not be produced."""


class DeliveryFailure(Exception):
    """The messaging API refused or failed to take the announcement."""

    def __init__(self, code: int, description: str):
        self.code = code
        self.description = description
        super().__init__(f"Delivery failed ({code}): {description}")

    @property
    def retryable(self) -> bool:
        return self.code in (0, 408, 429) or self.code >= 500

    @property
    def permanent(self) -> bool:
        """Bot blocked or removed, or the chat no longer exists."""
        desc = self.description.lower()
        return (self.code == 403 and ("bot was blocked" in desc or "bot was kicked" in desc)) or (
            self.code == 400 and "chat not found" in desc
        )


@dataclass
class Announcement:
    channel_id: str
    event: str
    text: str
    html_text: str
    buttons: list[dict[str, str]] = field(default_factory=list)
    photo_url: str | None = None


class DeliverySink(Protocol):
    async def deliver_to(
        self, streamer: Streamer, chat_id: str, announcement: Announcement
    ) -> str | None: ...

    async def close(self) -> None: ...


def session_key(event: StreamEvent) -> str | None:
    """``<channelId>:<event>:<startedAt>``, or None when the payload has no start time."""
    if not event.started_at:
        return None
    return f"{event.channel_id}:{event.event}:{event.started_at}"


class AnnouncementService:
    def __init__(
        self,
        store: StreamerStore,
        sink: DeliverySink,
        sent_log: SentLog | None = None,
        *,
        site_url: str = MEMELAB_SITE_URL,
    ) -> None:
        self.store = store
        self.sink = sink
        self.sent_log = sent_log if sent_log is not None else MemorySentLog()
        self.site_url = site_url

    def build(self, streamer: Streamer, event: StreamEvent) -> Announcement:
        """Render the streamer's template and buttons for *event*."""
        try:
            variables = build_template_vars(
                display_name=streamer.display_name,
                platforms=streamer.stream_platforms,
                channel_slug=streamer.channel_slug or event.channel_slug,
                twitch_login=streamer.twitch_login or event.twitch_login,
                stream_title=event.stream_title,
                game_name=event.game_name,
                started_at=event.started_at,
                viewer_count=event.viewer_count,
                site_url=self.site_url,
            )
            template = streamer.online_template if event.is_online else streamer.offline_template
            text = render_template(template, variables, event.event)
            buttons = build_buttons(variables, streamer.custom_buttons) if event.is_online else []
        except Exception as e:
            raise RenderFailure(f"{type(e).__name__}: {e}") from e

        return Announcement(
            channel_id=event.channel_id,
            event=event.event,
            text=text,
            html_text=escape_html(text),
            buttons=buttons,
            photo_url=event.thumbnail_url if event.is_online else None,
        )

    async def process(self, event: StreamEvent) -> None:
        """Job processor: safe to re-run for the same event."""
        streamer = await self.store.get_by_channel_id(event.channel_id)
        if streamer is None:
            logger.info(f"No streamer for channel {event.channel_id}, skipping {event.event}")
            return
        if not streamer.chat_ids:
            logger.info(f"Streamer {streamer.id} has no chats, skipping {event.event}")
            return

        announcement = self.build(streamer, event)
        session_id = session_key(event)
        if session_id is None:
            logger.debug(f"{event.event} for {event.channel_id} has no startedAt, not deduplicated")

        sent = 0
        failures: list[DeliveryFailure] = []
        for chat_id in streamer.chat_ids:
            if session_id and await self.sent_log.was_sent(session_id, chat_id):
                logger.info(f"Chat {chat_id} already announced for {session_id}, skipping")
                continue
            try:
                message_id = await self.sink.deliver_to(streamer, chat_id, announcement)
            except DeliveryFailure as e:
                if e.permanent:
                    await self.store.remove_chat_id(streamer.id, chat_id)
                    logger.warning(
                        f"Chat {chat_id} removed from streamer {streamer.id}: {e.description}"
                    )
                    continue
                logger.error(f"Delivery to chat {chat_id} failed: {e}")
                failures.append(e)
                continue
            if session_id:
                await self.sent_log.mark_sent(session_id, chat_id, message_id)
            sent += 1

        if failures:
            first = failures[0]
            raise DeliveryFailure(
                first.code,
                f"{len(failures)} of {len(streamer.chat_ids)} chat(s) failed: {first.description}",
            )
        logger.info(f"Announced {event.event} for {streamer.channel_slug} to {sent} chat(s)")
