"""Authentication API routes"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from core.config import Settings
from core.dependencies import get_app_settings, get_auth_gate, require_streamer
from services import AuthGate, extract_credential
from shared.models.streamer import Streamer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def streamer_summary(streamer: Streamer) -> dict:
    return {
        "id": streamer.id,
        "memelabUserId": streamer.memelab_user_id,
        "memelabChannelId": streamer.memelab_channel_id,
        "channelSlug": streamer.channel_slug,
        "displayName": streamer.display_name,
        "twitchLogin": streamer.twitch_login,
        "avatarUrl": streamer.avatar_url,
        "hasCustomBot": streamer.has_custom_bot,
    }


@router.get("/me")
async def get_current_streamer(streamer: Streamer = Depends(require_streamer)) -> dict:
    """Get current streamer"""
    return streamer_summary(streamer)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    auth_gate: AuthGate = Depends(get_auth_gate),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    """Drop the cached profile and clear the session cookie"""
    credential = extract_credential(request, auth_gate.cookie_name)
    if credential:
        await auth_gate.profile_cache.forget(credential)

    response.delete_cookie(key=auth_gate.cookie_name, secure=settings.is_production)
    logger.info("User logged out")
    return {"ok": True}
