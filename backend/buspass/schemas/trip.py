import datetime
from typing import Literal

from pydantic import BaseModel


class StartTripRequest(BaseModel):
    bus_id: str
    driver_id: str
    route_id: str


class TripInfo(BaseModel):
    id: str
    bus_id: str
    driver_id: str
    route_id: str
    started_at: datetime.datetime
    ended_at: datetime.datetime | None = None
    is_active: bool
    current_stop_sequence: int


class EndTripResult(BaseModel):
    trip_id: str
    ended: bool


class PositionUpdate(BaseModel):
    lat: float
    lon: float


class StopStatusUpdate(BaseModel):
    status: Literal["arrived", "departed"]


class TransitionInfo(BaseModel):
    trip_id: str
    stop_id: str
    stop_sequence: int
    status: str
    timestamp: datetime.datetime
    automatic: bool


class TransitionResult(BaseModel):
    applied: bool
    transition: TransitionInfo | None = None


class StopState(BaseModel):
    id: str
    name: str
    sequence: int
    lat: float | None = None
    lon: float | None = None
    status: str
    arrived_at: datetime.datetime | None = None
    departed_at: datetime.datetime | None = None


class NextStopInfo(BaseModel):
    id: str
    name: str
    sequence: int


class TripProgressInfo(BaseModel):
    trip: TripInfo
    stops: list[StopState] = []
    current_stop: str
    next_stop: NextStopInfo | None = None
    completed: int
    remaining: int
    progress_percent: float
