"""Tests for the trip update broadcaster."""

import asyncio

import orjson

from buspass.core.broadcaster import CHANNEL_PREFIX, Broadcaster


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, bytes]] = []

    async def publish(self, channel, payload):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


def test_publish_reaches_subscribers_of_that_trip():
    b = Broadcaster()
    sub = b.subscribe("trip-1")
    other = b.subscribe("trip-2")

    asyncio.run(b.publish("trip-1", {"type": "stop_transition", "stop_id": "stop-a"}))

    assert orjson.loads(sub.queue.get_nowait())["stop_id"] == "stop-a"
    assert other.queue.empty()


def test_cancel_unsubscribes():
    b = Broadcaster()
    sub = b.subscribe("trip-1")
    assert b.subscriber_count("trip-1") == 1
    sub.cancel()
    sub.cancel()
    assert sub.cancelled
    assert b.subscriber_count("trip-1") == 0

    asyncio.run(b.publish("trip-1", {"type": "trip_ended"}))
    assert sub.queue.empty()


def test_slow_subscriber_is_dropped():
    b = Broadcaster()
    slow = b.subscribe("trip-1")

    async def flood():
        for i in range(11):
            await b.publish("trip-1", {"n": i})

    asyncio.run(flood())
    assert slow.cancelled
    assert slow.queue.qsize() == 10
    assert b.subscriber_count("trip-1") == 0


def test_publish_goes_to_redis_channel():
    b = Broadcaster()
    b._redis = FakeRedis()
    asyncio.run(b.publish("trip-1", {"type": "trip_ended"}))
    assert b._redis.published == [(CHANNEL_PREFIX + "trip-1", b'{"type":"trip_ended"}')]


def test_redis_failure_still_reaches_local_subscribers():
    b = Broadcaster()
    b._redis = FakeRedis(fail=True)
    sub = b.subscribe("trip-1")
    asyncio.run(b.publish("trip-1", {"type": "trip_ended"}))
    assert orjson.loads(sub.queue.get_nowait()) == {"type": "trip_ended"}
