"""Short-lived cache for derived profile data.

Profile summaries take two Bungie round trips to build, so they are kept in
Redis for a short TTL. The cache is optional: without REDIS_URL, or while
Redis is unreachable, every read is a miss and every write is dropped.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class ProfileCache:
    """JSON values in Redis with a fixed TTL."""

    def __init__(self, client: redis.Redis | None, ttl_seconds: int = 90):
        self._client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str | None, ttl_seconds: int = 90) -> ProfileCache:
        if not url:
            logger.info("REDIS_URL not set; profile cache disabled")
            return cls(None, ttl_seconds)
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> Any | None:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.debug(f"Cache get {key} failed: {e!r}")
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    async def set(self, key: str, value: Any) -> None:
        if self._client is None:
            return
        try:
            await self._client.set(key, json.dumps(value), ex=self.ttl_seconds)
        except RedisError as e:
            logger.debug(f"Cache set {key} failed: {e!r}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
