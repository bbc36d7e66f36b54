"""Redis pub/sub broadcaster for stop transitions."""

import asyncio
import logging

import orjson
import redis.asyncio as aioredis

from buspass.config import settings

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "buspass:trip:"


class Subscription:
    """Cancellable handle on one trip's live updates."""

    def __init__(self, broadcaster: "Broadcaster", trip_id: str, maxsize: int = 10) -> None:
        self.trip_id = trip_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._broadcaster = broadcaster
        self.cancelled = False

    async def get(self) -> bytes:
        return await self.queue.get()

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._broadcaster._remove(self)


class Broadcaster:
    """Publishes trip updates to Redis and fans out to WebSocket subscribers."""

    def __init__(self) -> None:
        self._redis: aioredis.Redis | None = None
        self._subscribers: dict[str, set[Subscription]] = {}

    async def connect(self) -> None:
        self._redis = aioredis.from_url(settings.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    async def publish(self, trip_id: str, message: dict) -> None:
        """Publish one trip update to Redis and to local subscribers."""
        payload = orjson.dumps(message)

        if self._redis:
            try:
                await self._redis.publish(CHANNEL_PREFIX + trip_id, payload)
            except Exception:
                logger.exception("Failed to publish to Redis")

        # Slow consumers are dropped instead of blocking the publisher
        dead = set()
        for sub in self._subscribers.get(trip_id, ()):
            try:
                sub.queue.put_nowait(payload)
            except asyncio.QueueFull:
                dead.add(sub)
        for sub in dead:
            logger.warning("Dropping slow subscriber on trip %s", trip_id)
            sub.cancel()

    def subscribe(self, trip_id: str) -> Subscription:
        sub = Subscription(self, trip_id)
        self._subscribers.setdefault(trip_id, set()).add(sub)
        return sub

    def subscriber_count(self, trip_id: str) -> int:
        return len(self._subscribers.get(trip_id, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.trip_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.trip_id]
