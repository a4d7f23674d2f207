"""Request authentication against MemeLab, fronted by the profile cache.

Order of checks:

1. credential from the named cookie, else ``Authorization: Bearer``
2. profile from the cache, else from the MemeLab API (written back on success)
3. the profile must have a linked channel
4. the streamer record is upserted and returned
"""

import logging
from urllib.parse import unquote

from pydantic import ValidationError
from starlette.requests import Request

from core.errors import Forbidden, InternalAuthError, NotifyError, Unauthenticated
from services.memelab_api import MemeLabAPIClient, ViewerProfile
from services.streamer_service import upsert_streamer_from_profile
from shared.cache import ProfileCache
from shared.models.streamer import Streamer
from shared.repositories.streamer import StreamerStore

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_credential(request: Request, cookie_name: str = "token") -> str | None:
    """First match of the named cookie or a Bearer token, or None."""
    cookie = request.cookies.get(cookie_name)
    if cookie:
        return unquote(cookie)

    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith(BEARER_PREFIX):
        token = auth_header[len(BEARER_PREFIX) :].strip()
        return token or None

    return None


class AuthGate:
    """Resolves the calling streamer for dashboard endpoints."""

    def __init__(
        self,
        profile_cache: ProfileCache,
        memelab_api: MemeLabAPIClient,
        store: StreamerStore,
        *,
        cookie_name: str = "token",
    ):
        self.profile_cache = profile_cache
        self.memelab_api = memelab_api
        self.store = store
        self.cookie_name = cookie_name

    async def authenticate(self, request: Request) -> Streamer:
        credential = extract_credential(request, self.cookie_name)
        if not credential:
            raise Unauthenticated("Not authenticated")

        try:
            profile = await self.resolve_profile(credential)
            if profile is None:
                raise Unauthenticated("Invalid or expired token")
            if not profile.is_linked:
                raise Forbidden("No channel linked to your MemeLab account")
            return await upsert_streamer_from_profile(self.store, profile)
        except NotifyError:
            raise
        except Exception as e:
            logger.exception(f"Authentication failed unexpectedly: {type(e).__name__}: {e}")
            raise InternalAuthError("Authentication error") from e

    async def resolve_profile(self, credential: str) -> ViewerProfile | None:
        """Cached profile if present, otherwise a fresh MemeLab lookup."""
        cached = await self.profile_cache.lookup(credential)
        if cached.hit:
            try:
                return ViewerProfile.model_validate(cached.value)
            except ValidationError:
                logger.warning("Ignoring cached profile with an outdated shape")

        profile = await self.memelab_api.fetch_profile(credential)
        if profile is not None:
            await self.profile_cache.remember(credential, profile.to_cache())
        return profile
