"""Value types shared by the fare processor, trip engine and stores."""

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class ScanStatus(str, Enum):
    SUCCESS = "success"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    LIMIT_EXCEEDED = "limit_exceeded"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"  # never written to the scan log


class StopStatus(str, Enum):
    PENDING = "pending"
    ARRIVED = "arrived"
    DEPARTED = "departed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {StopStatus.PENDING: 0, StopStatus.ARRIVED: 1, StopStatus.DEPARTED: 2}


@dataclass
class PassHolder:
    id: str
    wallet_balance: Decimal
    is_blocked: bool = False
    route_id: str | None = None
    user_id: str | None = None
    full_name: str = ""
    enrollment_no: str = ""


@dataclass(frozen=True)
class ScanRecord:
    holder_id: str
    bus_id: str
    driver_id: str
    scanned_at: datetime.datetime
    status: ScanStatus
    fare_charged: Decimal
    balance_after: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    holder_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: str
    created_at: datetime.datetime
    kind: str = "deduction"


@dataclass
class ScanOutcome:
    """Result of one boarding scan as shown on the driver's screen."""

    status: ScanStatus
    message: str
    holder: PassHolder | None = None
    fare_charged: Decimal = Decimal("0")
    balance_after: Decimal | None = None
    required: Decimal | None = None  # set for INSUFFICIENT_BALANCE
    available: Decimal | None = None

    @property
    def ok(self) -> bool:
        return self.status is ScanStatus.SUCCESS


@dataclass
class ScanStats:
    total: int = 0
    success: int = 0
    failed: int = 0


@dataclass
class ScanDay:
    date: datetime.date
    scans: list[ScanRecord] = field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    first_scan: datetime.datetime | None = None
    last_scan: datetime.datetime | None = None


@dataclass(frozen=True)
class Stop:
    id: str
    route_id: str
    name: str
    sequence: int
    lat: float | None = None
    lon: float | None = None

    @property
    def located(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass
class ActiveTrip:
    id: str
    bus_id: str
    driver_id: str
    route_id: str
    started_at: datetime.datetime
    ended_at: datetime.datetime | None = None
    is_active: bool = True
    current_stop_sequence: int = 0


@dataclass
class StopEvent:
    id: str
    trip_id: str
    stop_id: str
    status: StopStatus = StopStatus.PENDING
    arrived_at: datetime.datetime | None = None
    departed_at: datetime.datetime | None = None


@dataclass(frozen=True)
class StopTransition:
    trip_id: str
    stop_id: str
    stop_sequence: int
    status: StopStatus
    timestamp: datetime.datetime
    automatic: bool = False

    def to_message(self) -> dict:
        return {
            "type": "stop_transition",
            "trip_id": self.trip_id,
            "stop_id": self.stop_id,
            "stop_sequence": self.stop_sequence,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "automatic": self.automatic,
        }


@dataclass
class StopProgress:
    stop: Stop
    event: StopEvent | None

    @property
    def status(self) -> StopStatus:
        return self.event.status if self.event else StopStatus.PENDING


@dataclass
class TripProgress:
    trip: ActiveTrip
    stops: list[StopProgress]

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stops if s.status is StopStatus.DEPARTED)

    @property
    def remaining_count(self) -> int:
        return sum(1 for s in self.stops if s.status is StopStatus.PENDING)

    @property
    def arrived(self) -> StopProgress | None:
        return next((s for s in self.stops if s.status is StopStatus.ARRIVED), None)

    @property
    def percent(self) -> float:
        if not self.stops:
            return 0.0
        half = 0.5 if self.arrived else 0.0
        return (self.completed_count + half) / len(self.stops) * 100

    def _last_departed_index(self) -> int:
        for i in range(len(self.stops) - 1, -1, -1):
            if self.stops[i].status is StopStatus.DEPARTED:
                return i
        return -1

    @property
    def next_stop(self) -> Stop | None:
        if self.arrived:
            return self.arrived.stop
        last = self._last_departed_index()
        if 0 <= last < len(self.stops) - 1:
            return self.stops[last + 1].stop
        return self.stops[0].stop if self.stops else None

    @property
    def current_label(self) -> str:
        if self.arrived:
            return self.arrived.stop.name
        last = self._last_departed_index()
        if 0 <= last < len(self.stops) - 1:
            return f"En route to {self.stops[last + 1].stop.name}"
        return f"Starting from {self.stops[0].stop.name}" if self.stops else "No stops defined"
