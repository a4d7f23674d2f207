"""Best-effort TTL caching for Stream Notify services.

Uses cachetools for zero-infrastructure caching: expiry is enforced by the
store itself, so an entry past its TTL can never be read back.

Cache failures are never surfaced to callers.  Every read returns a
``CacheResult`` and callers only branch on ``result.hit``.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from cachetools import TLRUCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

DIGEST_LENGTH = 16


class TTLStore(Protocol):
    """Minimal key/value store with per-key expiry."""

    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl: float, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class MemoryTTLStore:
    """In-process TTLStore backed by ``cachetools.TLRUCache``.

    Each entry carries its own time-to-use; the least recently used entry is
    evicted once *maxsize* is reached.
    """

    def __init__(self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._ttu, timer=timer)

    @staticmethod
    def _ttu(_key: str, value: tuple[float, str], now: float) -> float:
        return now + value[0]

    async def get(self, key: str) -> str | None:
        entry = self._cache.get(key)
        return None if entry is None else entry[1]

    async def setex(self, key: str, ttl: float, value: str) -> None:
        self._cache[key] = (ttl, value)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def close(self) -> None:
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)


class CacheStatus(enum.Enum):
    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a cache read. ERROR is logged and otherwise treated as MISS."""

    status: CacheStatus
    value: Any = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT

    @classmethod
    def found(cls, value: Any) -> CacheResult:
        return cls(CacheStatus.HIT, value)


MISS = CacheResult(CacheStatus.MISS)
ERROR = CacheResult(CacheStatus.ERROR)


def credential_digest(credential: str, key: str = "") -> str:
    """Keyed one-way digest of a credential, truncated to 16 hex chars."""
    mac = hmac.new(key.encode("utf-8"), credential.encode("utf-8"), hashlib.sha256)
    return mac.hexdigest()[:DIGEST_LENGTH]


class ProfileCache:
    """Maps a caller credential to a previously validated identity profile.

    Keys are ``<prefix><digest>``; the raw credential never reaches the store.
    Values are JSON-serialised profile dicts.
    """

    def __init__(
        self,
        store: TTLStore,
        *,
        ttl: float = 300,
        prefix: str = "auth:profile:",
        digest_key: str = "",
    ) -> None:
        self.store = store
        self.ttl = ttl
        self.prefix = prefix
        self._digest_key = digest_key

    def key_for(self, credential: str) -> str:
        return self.prefix + credential_digest(credential, self._digest_key)

    async def lookup(self, credential: str) -> CacheResult:
        key = self.key_for(credential)
        try:
            raw = await self.store.get(key)
        except Exception as e:
            logger.warning(f"Profile cache read failed for {key}: {type(e).__name__}")
            return ERROR

        if raw is None:
            return MISS

        try:
            return CacheResult.found(json.loads(raw))
        except ValueError:
            logger.warning(f"Discarding undecodable profile cache entry {key}")
            return ERROR

    async def remember(self, credential: str, profile: dict[str, Any]) -> bool:
        """Write-through after a successful lookup. Returns False on failure."""
        key = self.key_for(credential)
        try:
            await self.store.setex(key, self.ttl, json.dumps(profile))
            return True
        except Exception as e:
            logger.warning(f"Profile cache write failed for {key}: {type(e).__name__}")
            return False

    async def forget(self, credential: str) -> None:
        try:
            await self.store.delete(self.key_for(credential))
        except Exception as e:
            logger.warning(f"Profile cache delete failed: {type(e).__name__}")
