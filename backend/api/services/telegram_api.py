"""Telegram Bot API delivery sink.

Posts announcements with ``parse_mode=HTML`` and an inline keyboard.  A
streamer's own bot is used when they stored a token, otherwise the global one.
"""

import logging
from typing import Any

import httpx

from services.announcement_service import Announcement, DeliveryFailure
from shared.crypto import CipherConfigError, SecretCipher, SecretIntegrityError
from shared.models.streamer import Streamer

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
MAX_CAPTION_LENGTH = 1024


def inline_keyboard(buttons: list[dict[str, str]]) -> dict[str, Any] | None:
    """Single row of URL buttons, or None when there are none."""
    if not buttons:
        return None
    return {"inline_keyboard": [[{"text": b["label"], "url": b["url"]} for b in buttons]]}


class TelegramSink:
    """Delivers announcements to Telegram chats on behalf of a streamer."""

    def __init__(
        self,
        default_token: str,
        cipher: SecretCipher | None = None,
        *,
        timeout: float = 15.0,
        api_url: str = TELEGRAM_API,
        http: httpx.AsyncClient | None = None,
    ):
        self.default_token = default_token
        self.cipher = cipher
        self.api_url = api_url.rstrip("/")
        # Shared HTTP client: reuses TCP connections across requests
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    def token_for(self, streamer: Streamer) -> str:
        """Decrypted custom bot token if usable, else the global token."""
        if streamer.custom_bot_token and self.cipher is not None and self.cipher.is_available():
            try:
                return self.cipher.decrypt(streamer.custom_bot_token)
            except (CipherConfigError, SecretIntegrityError) as e:
                logger.error(
                    f"Custom bot token for streamer {streamer.id} unusable, "
                    f"falling back to global bot: {e}"
                )
        return self.default_token

    async def call(self, token: str, method: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a Bot API method; any failure becomes DeliveryFailure."""
        if not token:
            raise DeliveryFailure(0, "Telegram bot token is not configured")
        try:
            response = await self._http.post(f"{self.api_url}/bot{token}/{method}", json=body)
            data = response.json()
        except httpx.TimeoutException as e:
            raise DeliveryFailure(408, f"Request to {method} timed out") from e
        except httpx.HTTPError as e:
            raise DeliveryFailure(0, f"Network error calling {method}: {type(e).__name__}") from e
        except ValueError as e:
            raise DeliveryFailure(response.status_code, f"Non-JSON response from {method}") from e

        if not isinstance(data, dict):
            raise DeliveryFailure(response.status_code, f"Unexpected response from {method}")
        if not data.get("ok") or "result" not in data:
            raise DeliveryFailure(
                data.get("error_code") or response.status_code,
                data.get("description") or "Unknown Telegram API error",
            )
        return data["result"]

    async def send(self, token: str, chat_id: str, announcement: Announcement) -> dict[str, Any]:
        keyboard = inline_keyboard(announcement.buttons)
        body: dict[str, Any] = {"chat_id": chat_id, "parse_mode": "HTML"}
        if keyboard:
            body["reply_markup"] = keyboard

        if announcement.photo_url and len(announcement.html_text) <= MAX_CAPTION_LENGTH:
            body.update(photo=announcement.photo_url, caption=announcement.html_text)
            return await self.call(token, "sendPhoto", body)

        body["text"] = announcement.html_text
        return await self.call(token, "sendMessage", body)

    async def deliver_to(
        self, streamer: Streamer, chat_id: str, announcement: Announcement
    ) -> str | None:
        """Post *announcement* to one chat and return the Telegram message id."""
        message = await self.send(self.token_for(streamer), chat_id, announcement)
        message_id = message.get("message_id")
        logger.debug(f"Sent {announcement.event} to {chat_id} (message {message_id})")
        return str(message_id) if message_id is not None else None
