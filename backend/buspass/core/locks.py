import asyncio
from contextlib import asynccontextmanager


class KeyedLocks:
    """One asyncio lock per key, kept only while someone holds or waits on it.

    Keys often come straight from request paths, so entries must not outlive
    their users.
    """

    def __init__(self) -> None:
        # key -> (lock, number of holders and waiters)
        self._entries: dict[str, tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: str):
        lock, users = self._entries.get(key) or (asyncio.Lock(), 0)
        self._entries[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._entries[key]
            if users == 1:
                del self._entries[key]
            else:
                self._entries[key] = (lock, users - 1)
