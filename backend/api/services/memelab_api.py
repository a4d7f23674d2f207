"""MemeLab identity API client.

Only one call is needed: resolving a bearer token to the viewer's profile.
Every failure mode (timeout, network error, non-2xx, unexpected body) comes
back as ``None`` so callers cannot tell an outage from a bad token.
"""

import asyncio
import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

PROFILE_PATH = "/v1/viewer/me"


class LinkedChannel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    name: str = ""


class ExternalAccount(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    provider: str
    provider_account_id: str = Field(alias="providerAccountId")
    display_name: str | None = Field(default=None, alias="displayName")
    login: str | None = None
    avatar_url: str | None = Field(default=None, alias="avatarUrl")


class ViewerProfile(BaseModel):
    """Shape of ``GET /v1/viewer/me``; guards against upstream drift."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    display_name: str = Field(alias="displayName")
    profile_image_url: str | None = Field(default=None, alias="profileImageUrl")
    role: str = "viewer"
    channel_id: str | None = Field(default=None, alias="channelId")
    channel: LinkedChannel | None = None
    external_accounts: list[ExternalAccount] = Field(default_factory=list, alias="externalAccounts")

    @property
    def is_linked(self) -> bool:
        return bool(self.channel_id) and self.channel is not None

    def account(self, provider: str) -> ExternalAccount | None:
        for acc in self.external_accounts:
            if acc.provider == provider:
                return acc
        return None

    def to_cache(self) -> dict:
        return self.model_dump(by_alias=True)


class MemeLabAPIClient:
    """Client for the MemeLab API.

    Manages a shared httpx client for connection reuse.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        # Shared HTTP client: reuses TCP connections across requests
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    async def fetch_profile(self, token: str) -> ViewerProfile | None:
        """Resolve a bearer token to a profile, or None on any failure."""
        try:
            # Hard deadline for the whole exchange; httpx timeouts are per phase
            async with asyncio.timeout(self.timeout):
                response = await self._http.get(
                    f"{self.api_url}{PROFILE_PATH}",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("MemeLab profile lookup timed out")
            return None
        except httpx.HTTPError as e:
            logger.error(f"MemeLab profile lookup failed: {type(e).__name__}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"MemeLab API rejected token: {response.status_code}")
            return None

        try:
            return ViewerProfile.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"MemeLab API returned an unexpected profile shape: {e}")
            return None
