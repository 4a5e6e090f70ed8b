"""
Key/value cache used for provider tokens.

Providers receive a CacheService at construction instead of reaching for a
shared client, so each provider's token lifecycle can be exercised with its
own cache. RedisCacheService shares tokens across instances when
settings.redis_url is set; InMemoryCacheService is the process-local
fallback used in development and tests.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as redis

from teesheet.config import settings

logger = logging.getLogger(__name__)


class CacheService(ABC):
    """Abstract TTL-bounded cache."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store a value, expiring after ttl_seconds when given."""
        pass

    @abstractmethod
    async def invalidate(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        pass

    async def close(self) -> None:
        pass


class InMemoryCacheService(CacheService):
    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key}")
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = (value, expires_at)

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        logger.debug(f"Cache entry invalidated: {key}")


class RedisCacheService(CacheService):
    """Redis-backed cache; expiry is left to Redis via EX."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheService":
        return cls(
            redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=15,
                socket_timeout=30,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        )

    async def get(self, key: str) -> Any | None:
        return await self.client.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self.client.set(key, value, ex=ttl_seconds or None)

    async def invalidate(self, key: str) -> None:
        await self.client.delete(key)
        logger.debug(f"Cache entry invalidated: {key}")

    async def close(self) -> None:
        await self.client.aclose()


def create_cache_service() -> CacheService:
    if settings.redis_url:
        logger.info("Using Redis token cache")
        return RedisCacheService.from_url(settings.redis_url)
    logger.info("REDIS_URL not set, using in-memory token cache")
    return InMemoryCacheService()


cache_service = create_cache_service()
