"""In-process store bindings for tests and local runs (``STORE_BACKEND=memory``)."""

import dataclasses
import datetime
import logging
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal

from buspass.core.domain import (
    ActiveTrip,
    LedgerEntry,
    PassHolder,
    ScanRecord,
    ScanStatus,
    Stop,
    StopEvent,
    StopStatus,
)
from buspass.core.errors import InsufficientFunds
from buspass.core.locks import KeyedLocks

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class MemoryFareStore:
    """Holders, scan log and ledger kept in dicts and lists.

    ``begin`` serializes per holder and buffers writes until the block exits
    cleanly, so a failed scan leaves no trace.
    """

    def __init__(self) -> None:
        self.holders: dict[str, PassHolder] = {}
        self.scans: list[ScanRecord] = []
        self.ledger: list[LedgerEntry] = []
        self._locks = KeyedLocks()

    def add_holder(self, holder: PassHolder) -> PassHolder:
        self.holders[holder.id] = holder
        return holder

    @asynccontextmanager
    async def begin(self, holder_id: str):
        async with self._locks.hold(holder_id):
            uow = _MemoryUnitOfWork(self)
            yield uow
            self._commit(uow)

    def _commit(self, uow: "_MemoryUnitOfWork") -> None:
        for holder_id, balance in uow.balances.items():
            self.holders[holder_id].wallet_balance = balance
        self.ledger.extend(uow.ledger.entries)
        self.scans.extend(uow.scan_log.records)

    async def list_scans_for_driver(
        self, driver_id: str, since: datetime.datetime | None = None, limit: int = 500,
    ) -> list[ScanRecord]:
        rows = [
            s for s in self.scans
            if s.driver_id == driver_id and (since is None or s.scanned_at >= since)
        ]
        rows.sort(key=lambda s: s.scanned_at, reverse=True)
        return rows[:limit]


class _BufferedScanLog:
    def __init__(self) -> None:
        self.records: list[ScanRecord] = []

    async def append(self, record: ScanRecord) -> None:
        self.records.append(record)


class _BufferedLedger:
    def __init__(self) -> None:
        self.entries: list[LedgerEntry] = []

    async def append(self, entry: LedgerEntry) -> None:
        self.entries.append(entry)


class _MemoryStudents:
    def __init__(self, uow: "_MemoryUnitOfWork") -> None:
        self._uow = uow

    async def get_by_id(self, holder_id: str) -> PassHolder | None:
        holder = self._uow.store.holders.get(holder_id)
        if holder is None:
            return None
        return dataclasses.replace(holder, wallet_balance=self._uow.balance_of(holder_id))

    async def decrement_balance(self, holder_id: str, amount: Decimal) -> Decimal:
        balance = self._uow.balance_of(holder_id)
        if balance < amount:
            raise InsufficientFunds(holder_id, balance, amount)
        self._uow.balances[holder_id] = balance - amount
        return balance - amount

    async def count_successful_scans_since(
        self, holder_id: str, since: datetime.datetime,
    ) -> int:
        records = self._uow.store.scans + self._uow.scan_log.records
        return sum(
            1 for r in records
            if r.holder_id == holder_id
            and r.status is ScanStatus.SUCCESS
            and r.scanned_at >= since
        )


class _MemoryUnitOfWork:
    def __init__(self, store: MemoryFareStore) -> None:
        self.store = store
        self.balances: dict[str, Decimal] = {}
        self.students = _MemoryStudents(self)
        self.scan_log = _BufferedScanLog()
        self.ledger = _BufferedLedger()

    def balance_of(self, holder_id: str) -> Decimal:
        if holder_id in self.balances:
            return self.balances[holder_id]
        return self.store.holders[holder_id].wallet_balance


class MemoryNotifier:
    """Keeps sent low-balance alerts in a list."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, Decimal]] = []

    async def send_low_balance(self, holder: PassHolder, new_balance: Decimal) -> None:
        logger.info("Low balance for %s: %s", holder.id, new_balance)
        self.sent.append((holder.id, new_balance))


class MemoryRouteStopRepository:
    def __init__(self) -> None:
        self.routes: dict[str, list[Stop]] = {}

    def add_stops(self, route_id: str, stops: list[Stop]) -> None:
        self.routes.setdefault(route_id, []).extend(stops)

    async def list_stops_for_route(self, route_id: str) -> list[Stop]:
        return sorted(self.routes.get(route_id, []), key=lambda s: s.sequence)


class MemoryTripStore:
    def __init__(self) -> None:
        self.trips: dict[str, ActiveTrip] = {}
        self.events: dict[str, StopEvent] = {}

    async def create_trip_with_events(
        self,
        bus_id: str,
        driver_id: str,
        route_id: str,
        started_at: datetime.datetime,
        stops: list[Stop],
    ) -> ActiveTrip:
        trip = ActiveTrip(
            id=_new_id(),
            bus_id=bus_id,
            driver_id=driver_id,
            route_id=route_id,
            started_at=started_at,
        )
        # nothing is stored until every event is built
        events = [self._new_event(trip.id, stop) for stop in stops]
        self.trips[trip.id] = trip
        for event in events:
            self.events[event.id] = event
        return dataclasses.replace(trip)

    def _new_event(self, trip_id: str, stop: Stop) -> StopEvent:
        return StopEvent(id=_new_id(), trip_id=trip_id, stop_id=stop.id)

    async def end_active_trip(self, trip_id: str, ended_at: datetime.datetime) -> bool:
        trip = self.trips.get(trip_id)
        if trip is None or not trip.is_active:
            return False
        trip.is_active = False
        trip.ended_at = ended_at
        for event_id in [e.id for e in self.events.values() if e.trip_id == trip_id]:
            del self.events[event_id]
        return True

    async def get_active_trip(self, trip_id: str) -> ActiveTrip | None:
        trip = self.trips.get(trip_id)
        return dataclasses.replace(trip) if trip else None

    async def get_active_trip_for_bus(self, bus_id: str) -> ActiveTrip | None:
        active = [t for t in self.trips.values() if t.bus_id == bus_id and t.is_active]
        if not active:
            return None
        return dataclasses.replace(max(active, key=lambda t: t.started_at))

    async def update_stop_event(
        self,
        event_id: str,
        expected: StopStatus,
        status: StopStatus,
        at: datetime.datetime,
    ) -> bool:
        event = self.events.get(event_id)
        if event is None or event.status is not expected:
            return False
        event.status = status
        if status is StopStatus.ARRIVED:
            event.arrived_at = at
        elif status is StopStatus.DEPARTED:
            event.departed_at = at
        return True

    async def set_current_stop_sequence(self, trip_id: str, sequence: int) -> None:
        trip = self.trips.get(trip_id)
        if trip is not None:
            trip.current_stop_sequence = sequence

    async def list_stop_events(self, trip_id: str) -> list[StopEvent]:
        return [dataclasses.replace(e) for e in self.events.values() if e.trip_id == trip_id]
