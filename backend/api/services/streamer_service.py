"""Streamer service: keeps local streamer records in step with MemeLab profiles."""

import logging

from services.memelab_api import ViewerProfile
from shared.models.streamer import Streamer
from shared.repositories.streamer import StreamerIdentity, StreamerStore

logger = logging.getLogger(__name__)


def identity_from_profile(profile: ViewerProfile) -> StreamerIdentity:
    """Project a linked profile onto the streamer columns it owns."""
    if profile.channel is None or not profile.channel_id:
        raise ValueError("Profile has no linked channel")

    twitch = profile.account("twitch")
    return StreamerIdentity(
        memelab_user_id=profile.id,
        memelab_channel_id=profile.channel.id,
        channel_slug=profile.channel.slug,
        display_name=profile.display_name,
        twitch_login=twitch.login if twitch else None,
        avatar_url=profile.profile_image_url or (twitch.avatar_url if twitch else None),
    )


async def upsert_streamer_from_profile(store: StreamerStore, profile: ViewerProfile) -> Streamer:
    """Create or refresh the streamer for a profile. Idempotent by MemeLab user id."""
    return await store.upsert(identity_from_profile(profile))
