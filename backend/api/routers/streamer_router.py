"""Streamer announcement settings API routes"""

import logging
import re
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.dependencies import get_cipher, get_streamer_store, require_streamer
from core.errors import NotFound, ServiceUnavailable
from services.template_service import TEMPLATE_VARIABLE_DOCS
from shared.crypto import SecretCipher
from shared.models.streamer import CustomButton, Streamer, StreamPlatform
from shared.repositories.streamer import StreamerStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/streamer", tags=["streamer"])

_CHAT_ID_RE = re.compile(r"-?\d+|@\w+")
_BOT_TOKEN_RE = re.compile(r"\d+:[\w-]+")


# ============================================
# Request/Response Models
# ============================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StreamPlatformIn(_CamelModel):
    platform: Literal["twitch", "youtube", "vk", "kick", "other"]
    login: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=500, pattern=r"^https?://")
    is_manual: bool = False


class CustomButtonIn(_CamelModel):
    label: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1, max_length=500)


class SettingsUpdate(_CamelModel):
    online_template: str | None = Field(default=None, max_length=2000)
    offline_template: str | None = Field(default=None, max_length=2000)
    custom_buttons: list[CustomButtonIn] | None = Field(default=None, max_length=20)
    stream_platforms: list[StreamPlatformIn] | None = Field(default=None, max_length=20)
    chat_ids: list[str] | None = Field(default=None, max_length=20)

    @field_validator("chat_ids")
    @classmethod
    def validate_chat_ids(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        for chat_id in v:
            if not _CHAT_ID_RE.fullmatch(chat_id):
                raise ValueError("chatId must be a numeric ID or @username")
        return v

    @model_validator(mode="after")
    def require_any_field(self) -> "SettingsUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class CustomBotRequest(BaseModel):
    token: str = Field(min_length=1, max_length=200)

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        v = v.strip()
        if not _BOT_TOKEN_RE.fullmatch(v):
            raise ValueError("Invalid Telegram bot token format")
        return v


def settings_response(streamer: Streamer) -> dict:
    buttons = streamer.custom_buttons
    return {
        "onlineTemplate": streamer.online_template,
        "offlineTemplate": streamer.offline_template,
        "customButtons": None if buttons is None else [b.to_json() for b in buttons],
        "streamPlatforms": [p.to_json() for p in streamer.stream_platforms],
        "chatIds": streamer.chat_ids,
        "hasCustomBot": streamer.has_custom_bot,
    }


# ============================================
# Routes
# ============================================


@router.get("/settings")
async def get_settings_route(
    streamer: Streamer = Depends(require_streamer),
    store: StreamerStore = Depends(get_streamer_store),
) -> dict:
    """Get streamer's announcement settings"""
    current = await store.get(streamer.id)
    if current is None:
        raise NotFound("Streamer not found")
    return {**settings_response(current), "templateVariables": TEMPLATE_VARIABLE_DOCS}


@router.patch("/settings")
async def update_settings(
    update: SettingsUpdate,
    streamer: Streamer = Depends(require_streamer),
    store: StreamerStore = Depends(get_streamer_store),
) -> dict:
    """Update streamer's announcement settings"""
    fields: dict = {}
    provided = update.model_fields_set

    if "online_template" in provided:
        fields["online_template"] = update.online_template
    if "offline_template" in provided:
        fields["offline_template"] = update.offline_template
    if "custom_buttons" in provided:
        # null restores the default buttons, [] disables buttons
        fields["custom_buttons"] = (
            None
            if update.custom_buttons is None
            else [CustomButton(label=b.label, url=b.url) for b in update.custom_buttons]
        )
    if "stream_platforms" in provided:
        platforms = [
            StreamPlatform(p.platform, p.login, p.url, p.is_manual)
            for p in update.stream_platforms or []
        ]
        fields["stream_platforms"] = platforms
        # twitch_login mirrors the twitch platform entry
        fields["twitch_login"] = next(
            (p.login for p in platforms if p.platform == "twitch"), None
        )
    if "chat_ids" in provided:
        fields["chat_ids"] = list(dict.fromkeys(update.chat_ids or []))

    updated = await store.update_settings(streamer.id, **fields)
    if updated is None:
        raise NotFound("Streamer not found")

    logger.info(f"Settings updated for streamer {streamer.id}: {', '.join(sorted(fields))}")
    return settings_response(updated)


@router.put("/custom-bot")
async def set_custom_bot(
    request: CustomBotRequest,
    streamer: Streamer = Depends(require_streamer),
    store: StreamerStore = Depends(get_streamer_store),
    cipher: SecretCipher = Depends(get_cipher),
) -> dict:
    """Store the streamer's own bot token, encrypted"""
    if not cipher.is_available():
        raise ServiceUnavailable("Custom bots are not available")

    await store.set_custom_bot_token(streamer.id, cipher.encrypt(request.token))
    logger.info(f"Custom bot configured for streamer {streamer.id}")
    return {"ok": True, "hasCustomBot": True}


@router.delete("/custom-bot")
async def remove_custom_bot(
    streamer: Streamer = Depends(require_streamer),
    store: StreamerStore = Depends(get_streamer_store),
) -> dict:
    """Remove the streamer's custom bot token"""
    await store.set_custom_bot_token(streamer.id, None)
    logger.info(f"Custom bot removed for streamer {streamer.id}")
    return {"ok": True, "hasCustomBot": False}
