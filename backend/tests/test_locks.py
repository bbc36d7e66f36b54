"""Tests for KeyedLocks."""

import asyncio

from buspass.core.locks import KeyedLocks


def test_same_key_is_serialized():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks.hold("trip-1"):
            order.append(f"{name} in")
            await asyncio.sleep(0)
            order.append(f"{name} out")

    async def main():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(main())
    assert order == ["a in", "a out", "b in", "b out"]
    assert len(locks) == 0


def test_entry_kept_while_waiters_remain():
    locks = KeyedLocks()

    async def main():
        async with locks.hold("trip-1"):
            waiter = asyncio.ensure_future(_enter(locks, "trip-1"))
            await asyncio.sleep(0)
            assert "trip-1" in locks
        await waiter
        assert "trip-1" not in locks

    asyncio.run(main())


def test_entry_removed_when_body_raises():
    locks = KeyedLocks()

    async def main():
        try:
            async with locks.hold("trip-1"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

    asyncio.run(main())
    assert len(locks) == 0


async def _enter(locks, key):
    async with locks.hold(key):
        pass
