"""Pytest configuration and fixtures."""

import datetime
from decimal import Decimal

import pytest

from buspass.core.broadcaster import Broadcaster
from buspass.core.domain import PassHolder, Stop
from buspass.core.fare_processor import FareScanProcessor
from buspass.core.notifications import LowBalanceDispatcher
from buspass.core.trip_engine import TripProgressEngine
from buspass.stores.memory import (
    MemoryFareStore,
    MemoryNotifier,
    MemoryRouteStopRepository,
    MemoryTripStore,
)

# One degree of latitude on the haversine sphere, in meters
M_PER_DEG_LAT = 111_194.93

# Stops along a north-south street in Bengaluru, ~500 m apart
LAT_A, LON_A = 12.9716, 77.5946
LAT_B = LAT_A + 500 / M_PER_DEG_LAT
LAT_C = LAT_A + 1000 / M_PER_DEG_LAT


def north_of(lat: float, meters: float) -> float:
    return lat + meters / M_PER_DEG_LAT


class FakeClock:
    """Settable wall clock (aware UTC datetimes)."""

    def __init__(self, start: datetime.datetime) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    # 10:00 in Asia/Kolkata
    return FakeClock(datetime.datetime(2026, 3, 2, 4, 30, tzinfo=datetime.timezone.utc))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def fare_store() -> MemoryFareStore:
    store = MemoryFareStore()
    store.add_holder(PassHolder(
        id="stu-1", wallet_balance=Decimal("100"), route_id="route-1",
        user_id="user-1", full_name="Asha Rao", enrollment_no="ENR001",
    ))
    return store


@pytest.fixture
def notifier() -> MemoryNotifier:
    return MemoryNotifier()


@pytest.fixture
def processor(fare_store, notifier, clock) -> FareScanProcessor:
    return FareScanProcessor(
        fare_store,
        LowBalanceDispatcher(notifier, timeout=1.0),
        tz="Asia/Kolkata",
        timeout=1.0,
        clock=clock,
    )


def make_stops(route_id: str = "route-1") -> list[Stop]:
    return [
        Stop(id="stop-a", route_id=route_id, name="Main Gate", sequence=1, lat=LAT_A, lon=LON_A),
        Stop(id="stop-b", route_id=route_id, name="Library", sequence=2, lat=LAT_B, lon=LON_A),
        Stop(id="stop-c", route_id=route_id, name="Hostel Block A", sequence=3, lat=LAT_C, lon=LON_A),
    ]


@pytest.fixture
def stop_repo() -> MemoryRouteStopRepository:
    repo = MemoryRouteStopRepository()
    repo.add_stops("route-1", make_stops())
    return repo


@pytest.fixture
def trip_store() -> MemoryTripStore:
    return MemoryTripStore()


@pytest.fixture
def broadcaster() -> Broadcaster:
    # Not connected: publishes fan out to local subscribers only
    return Broadcaster()


@pytest.fixture
def engine(stop_repo, trip_store, broadcaster, clock, monotonic) -> TripProgressEngine:
    return TripProgressEngine(
        stop_repo,
        trip_store,
        broadcaster,
        timeout=1.0,
        clock=clock,
        monotonic=monotonic,
    )
