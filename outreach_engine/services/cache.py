"""Cache and notification gateway on redis, plus a read-through helper."""

import json
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from outreach_engine.core.config import get_settings
from outreach_engine.core.exceptions import CacheError
from outreach_engine.core.logging import get_logger
from outreach_engine.models.events import CoordinatorEvent

logger = get_logger(__name__)

EVENTS_CHANNEL = "outreach:events"

T = TypeVar("T")


class CacheGateway:
    """JSON key-value cache with TTL and a publish channel for live events."""

    def __init__(self, client: Optional[aioredis.Redis] = None, channel: str = EVENTS_CHANNEL):
        self._redis = client or aioredis.from_url(get_settings().redis_url, decode_responses=True)
        self.channel = channel

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            logger.error("Cache read failed", key=key, error=str(e))
            raise CacheError(f"Cache read failed: {e}", key=key) from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry", key=key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        except RedisError as e:
            logger.error("Cache write failed", key=key, error=str(e))
            raise CacheError(f"Cache write failed: {e}", key=key) from e

    async def delete(self, key: str) -> int:
        try:
            return await self._redis.delete(key)
        except RedisError as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            raise CacheError(f"Cache delete failed: {e}", key=key) from e

    async def publish(self, event: CoordinatorEvent) -> int:
        """Broadcast an event to observers; returns the receiver count."""
        try:
            return await self._redis.publish(self.channel, json.dumps(event.to_message(), default=str))
        except RedisError as e:
            logger.error("Event publish failed", event_name=event.name.value, error=str(e))
            raise CacheError(f"Publish failed: {e}", key=self.channel) from e

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class ReadThroughCache(Generic[T]):
    """
    Cache lookup with a store fallback that backfills the cache on a miss.

    Args:
        cache: Cache gateway
        key_prefix: Prefix joined to the item id with ':'
        loader: Coroutine loading the item from the store, or None when absent
        serialize: Converts an item to JSON-compatible data
        deserialize: Rebuilds an item from cached data
        ttl_seconds: TTL used when backfilling
    """

    def __init__(
        self,
        cache: CacheGateway,
        key_prefix: str,
        loader: Callable[[str], Awaitable[Optional[T]]],
        serialize: Callable[[T], Any],
        deserialize: Callable[[Any], T],
        ttl_seconds: int,
    ):
        self.cache = cache
        self.key_prefix = key_prefix
        self.loader = loader
        self.serialize = serialize
        self.deserialize = deserialize
        self.ttl_seconds = ttl_seconds

    def key(self, item_id: str) -> str:
        return f"{self.key_prefix}:{item_id}"

    async def get(self, item_id: str) -> Optional[T]:
        cached = await self.cache.get_json(self.key(item_id))
        if cached is not None:
            return self.deserialize(cached)

        item = await self.loader(item_id)
        if item is not None:
            await self.cache.set_json(self.key(item_id), self.serialize(item), self.ttl_seconds)
        return item

    async def put(self, item_id: str, item: T) -> None:
        await self.cache.set_json(self.key(item_id), self.serialize(item), self.ttl_seconds)
