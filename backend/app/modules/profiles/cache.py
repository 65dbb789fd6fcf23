# app/modules/profiles/cache.py
# Short-lived lookaside cache for hot profile reads, keyed by (owner, view).

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from app.core.config import settings
from app.core.exceptions import CacheError
from app.core.logging_setup import logger

PRIMARY_VIEW = "primary"
TRUST_SCORE_VIEW = "trustScore"
CACHE_VIEWS = (PRIMARY_VIEW, TRUST_SCORE_VIEW)


class ProfileCache(ABC):
    """Per-owner cache of serialized profile views with an explicit TTL."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = settings.PROFILE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    @abstractmethod
    async def get(self, owner_id: str, view: str) -> Optional[Any]:
        """Cached value, or None when absent or expired."""

    @abstractmethod
    async def set(self, owner_id: str, view: str, data: Any) -> None: ...

    @abstractmethod
    async def clear(self, owner_id: str, view: str) -> None: ...


class InMemoryProfileCache(ProfileCache):
    """
    Process-local cache. Entries are never evicted proactively; an entry is
    served only while `now - stored_at < ttl_seconds`.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[Any, float]] = {}

    async def get(self, owner_id: str, view: str) -> Optional[Any]:
        entry = self._entries.get((owner_id, view))
        if entry is None:
            return None
        data, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return data

    async def set(self, owner_id: str, view: str, data: Any) -> None:
        self._entries[(owner_id, view)] = (data, self._clock())

    async def clear(self, owner_id: str, view: str) -> None:
        self._entries.pop((owner_id, view), None)

    def clear_all(self) -> None:
        self._entries.clear()


class RedisProfileCache(ProfileCache):
    """Cache shared between processes; values are stored as JSON with a Redis TTL."""

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None, key_prefix: Optional[str] = None):
        super().__init__(ttl_seconds)
        self._client = client
        self._prefix = key_prefix if key_prefix is not None else settings.PROFILE_CACHE_KEY_PREFIX

    def _key(self, owner_id: str, view: str) -> str:
        return f"{self._prefix}{owner_id}:{view}"

    async def get(self, owner_id: str, view: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._key(owner_id, view))
        except Exception as e:
            raise CacheError(f"Redis GET failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache entry {self._key(owner_id, view)}")
            return None

    async def set(self, owner_id: str, view: str, data: Any) -> None:
        if self.ttl_seconds <= 0:
            # Caching disabled; Redis rejects a zero expiry
            return
        try:
            await self._client.set(self._key(owner_id, view), json.dumps(data, default=str), ex=self.ttl_seconds)
        except Exception as e:
            raise CacheError(f"Redis SET failed: {e}") from e

    async def clear(self, owner_id: str, view: str) -> None:
        try:
            await self._client.delete(self._key(owner_id, view))
        except Exception as e:
            raise CacheError(f"Redis DEL failed: {e}") from e
