"""Collaborator interfaces consumed by the fare processor and trip engine.

Concrete bindings live in ``buspass.stores`` (SQL and in-memory) and
``buspass.core.broadcaster`` (Redis pub/sub).
"""

import datetime
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Protocol

from buspass.core.domain import (
    ActiveTrip,
    LedgerEntry,
    PassHolder,
    ScanRecord,
    Stop,
    StopEvent,
    StopStatus,
)


class StudentRepository(Protocol):
    async def get_by_id(self, holder_id: str) -> PassHolder | None: ...

    async def decrement_balance(self, holder_id: str, amount: Decimal) -> Decimal:
        """Atomically subtract ``amount`` and return the new balance.

        Raises ``InsufficientFunds`` instead of going negative.
        """
        ...

    async def count_successful_scans_since(
        self, holder_id: str, since: datetime.datetime,
    ) -> int: ...


class ScanLogWriter(Protocol):
    async def append(self, record: ScanRecord) -> None: ...


class LedgerWriter(Protocol):
    async def append(self, entry: LedgerEntry) -> None: ...


class FareUnitOfWork(Protocol):
    """One holder's scan, committed all-or-nothing."""

    students: StudentRepository
    scan_log: ScanLogWriter
    ledger: LedgerWriter


class FareStore(Protocol):
    def begin(self, holder_id: str) -> AbstractAsyncContextManager[FareUnitOfWork]:
        """Open a unit of work serialized per holder.

        Commits on normal exit, rolls back if the block raises.
        """
        ...

    async def list_scans_for_driver(
        self, driver_id: str, since: datetime.datetime | None = None, limit: int = 500,
    ) -> list[ScanRecord]:
        """Newest first."""
        ...


class Notifier(Protocol):
    async def send_low_balance(self, holder: PassHolder, new_balance: Decimal) -> None: ...


class RouteStopRepository(Protocol):
    async def list_stops_for_route(self, route_id: str) -> list[Stop]: ...


class TripStore(Protocol):
    async def create_trip_with_events(
        self,
        bus_id: str,
        driver_id: str,
        route_id: str,
        started_at: datetime.datetime,
        stops: list[Stop],
    ) -> ActiveTrip:
        """Create the trip and one pending event per stop, all or nothing."""
        ...

    async def end_active_trip(self, trip_id: str, ended_at: datetime.datetime) -> bool:
        """Deactivate the trip and drop its stop events. False if it was not active."""
        ...

    async def get_active_trip(self, trip_id: str) -> ActiveTrip | None: ...

    async def get_active_trip_for_bus(self, bus_id: str) -> ActiveTrip | None: ...

    async def update_stop_event(
        self,
        event_id: str,
        expected: StopStatus,
        status: StopStatus,
        at: datetime.datetime,
    ) -> bool:
        """Compare-and-set: only moves the event if it is still ``expected``."""
        ...

    async def set_current_stop_sequence(self, trip_id: str, sequence: int) -> None: ...

    async def list_stop_events(self, trip_id: str) -> list[StopEvent]: ...


class Subscription(Protocol):
    async def get(self) -> bytes: ...

    def cancel(self) -> None: ...


class RealtimeNotifier(Protocol):
    async def publish(self, trip_id: str, message: dict) -> None: ...

    def subscribe(self, trip_id: str) -> Subscription: ...
