"""Best-effort low-balance alerts with a bounded retry buffer."""

import asyncio
import logging
from collections import deque
from decimal import Decimal

from buspass.core.domain import PassHolder
from buspass.core.ports import Notifier

logger = logging.getLogger(__name__)


class LowBalanceDispatcher:
    """Sends alerts without ever failing the caller.

    Failed alerts are queued and retried by the scheduler. When the queue is
    full the oldest alert is dropped.
    """

    def __init__(self, notifier: Notifier, timeout: float = 3.0, retry_limit: int = 500) -> None:
        self.notifier = notifier
        self.timeout = timeout
        self._pending: deque[tuple[PassHolder, Decimal]] = deque(maxlen=retry_limit)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def dispatch(self, holder: PassHolder, new_balance: Decimal) -> bool:
        if await self._send(holder, new_balance):
            return True
        if len(self._pending) == self._pending.maxlen:
            dropped, _ = self._pending[0]
            logger.warning("Retry buffer full, dropping low-balance alert for %s", dropped.id)
        self._pending.append((holder, new_balance))
        return False

    async def retry_pending(self) -> int:
        """Retry queued alerts once. Returns how many were delivered."""
        batch = list(self._pending)
        self._pending.clear()
        delivered = 0
        for holder, balance in batch:
            if await self._send(holder, balance):
                delivered += 1
            else:
                self._pending.append((holder, balance))
        if batch:
            logger.info("Low-balance retry: %d/%d delivered", delivered, len(batch))
        return delivered

    async def _send(self, holder: PassHolder, new_balance: Decimal) -> bool:
        try:
            await asyncio.wait_for(
                self.notifier.send_low_balance(holder, new_balance), self.timeout,
            )
            return True
        except Exception:
            logger.warning("Low-balance alert for %s failed", holder.id, exc_info=True)
            return False
