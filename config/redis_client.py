"""
config/redis_client.py
Async Redis client for caching, JWT deny-list, rate limiting
and realtime pub/sub fan-out to WebSocket clients.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional
import uuid

import redis.asyncio as aioredis
from fastapi import Depends
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)

# Entity channels a client may subscribe to
REALTIME_ENTITIES = ("bookings", "offers", "messages", "notifications")


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


@retry(stop=stop_after_attempt(5), wait=wait_exponential(multiplier=1, max=10), reraise=True)
async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        await self.client.setex(key, ttl, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1


# ── Realtime Fan-out ──────────────────────────────────────────
def realtime_channel(entity: str, user_id) -> str:
    return f"realtime:{entity}:{user_id}"


class RealtimeBroker:
    """
    Publishes change events on per-user channels keyed by entity type
    (bookings, offers, messages, notifications).

    Events are a display concern only: publish failures are logged
    and never propagate into the request that produced them.
    """

    def __init__(self, client: Optional[aioredis.Redis]):
        self.client = client

    async def publish(self, entity: str, user_id, event: str, payload: Optional[dict] = None) -> None:
        if self.client is None:
            return
        message = json.dumps(
            {"entity": entity, "event": event, "data": payload or {}},
            default=str,
        )
        try:
            await self.client.publish(realtime_channel(entity, user_id), message)
        except Exception as e:
            logger.warning(f"Realtime publish to {entity}:{user_id} failed: {e}")

    async def publish_many(
        self, entity: str, user_ids: Iterable[uuid.UUID], event: str, payload: Optional[dict] = None
    ) -> None:
        for user_id in set(user_ids):
            await self.publish(entity, user_id, event, payload)

    @asynccontextmanager
    async def subscribe(self, user_id, entities: Iterable[str] = REALTIME_ENTITIES) -> AsyncIterator[Any]:
        """Subscribe to a user's channels; unsubscribes on exit."""
        channels = [realtime_channel(entity, user_id) for entity in entities]
        pubsub = self.client.pubsub()
        await pubsub.subscribe(*channels)
        try:
            yield pubsub
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()


def get_broker(redis=Depends(get_redis)) -> RealtimeBroker:
    """FastAPI dependency wrapping the shared client in a broker."""
    return RealtimeBroker(redis)
