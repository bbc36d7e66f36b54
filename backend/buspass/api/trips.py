"""Trip lifecycle and stop progress REST API endpoints."""

from fastapi import APIRouter, HTTPException

from buspass.core.domain import ActiveTrip, StopTransition, TripProgress
from buspass.schemas.trip import (
    EndTripResult,
    NextStopInfo,
    PositionUpdate,
    StartTripRequest,
    StopState,
    StopStatusUpdate,
    TransitionInfo,
    TransitionResult,
    TripInfo,
    TripProgressInfo,
)

router = APIRouter(prefix="/api", tags=["trips"])

# Will be set by main.py
engine = None


def _engine():
    if engine is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return engine


def trip_info(trip: ActiveTrip) -> TripInfo:
    return TripInfo(
        id=trip.id,
        bus_id=trip.bus_id,
        driver_id=trip.driver_id,
        route_id=trip.route_id,
        started_at=trip.started_at,
        ended_at=trip.ended_at,
        is_active=trip.is_active,
        current_stop_sequence=trip.current_stop_sequence,
    )


def progress_info(progress: TripProgress) -> TripProgressInfo:
    stops = []
    for sp in progress.stops:
        stops.append(StopState(
            id=sp.stop.id,
            name=sp.stop.name,
            sequence=sp.stop.sequence,
            lat=sp.stop.lat,
            lon=sp.stop.lon,
            status=sp.status.value,
            arrived_at=sp.event.arrived_at if sp.event else None,
            departed_at=sp.event.departed_at if sp.event else None,
        ))

    next_stop = None
    if progress.next_stop:
        nxt = progress.next_stop
        next_stop = NextStopInfo(id=nxt.id, name=nxt.name, sequence=nxt.sequence)

    return TripProgressInfo(
        trip=trip_info(progress.trip),
        stops=stops,
        current_stop=progress.current_label,
        next_stop=next_stop,
        completed=progress.completed_count,
        remaining=progress.remaining_count,
        progress_percent=round(progress.percent, 1),
    )


def _transition_result(transition: StopTransition | None) -> TransitionResult:
    if transition is None:
        return TransitionResult(applied=False)
    return TransitionResult(applied=True, transition=TransitionInfo(
        trip_id=transition.trip_id,
        stop_id=transition.stop_id,
        stop_sequence=transition.stop_sequence,
        status=transition.status.value,
        timestamp=transition.timestamp,
        automatic=transition.automatic,
    ))


@router.post("/trips", response_model=TripInfo, status_code=201)
async def start_trip(body: StartTripRequest):
    """Start a trip; 409 if the bus is already on one."""
    trip = await _engine().start_trip(body.bus_id, body.driver_id, body.route_id)
    return trip_info(trip)


@router.post("/trips/{trip_id}/end", response_model=EndTripResult)
async def end_trip(trip_id: str):
    ended = await _engine().end_trip(trip_id)
    return EndTripResult(trip_id=trip_id, ended=ended)


@router.post("/trips/{trip_id}/position", response_model=TransitionResult)
async def report_position(trip_id: str, body: PositionUpdate):
    """Feed one GPS sample from the driver's device."""
    return _transition_result(await _engine().report_position(trip_id, body.lat, body.lon))


@router.post("/trips/{trip_id}/stops/{stop_id}/status", response_model=TransitionResult)
async def manual_advance(trip_id: str, stop_id: str, body: StopStatusUpdate):
    return _transition_result(await _engine().manual_advance(trip_id, stop_id, body.status))


@router.post("/trips/{trip_id}/stops/{stop_id}/simulate", response_model=TransitionResult)
async def simulate_position(trip_id: str, stop_id: str):
    return _transition_result(await _engine().simulate_position(trip_id, stop_id))


@router.post("/trips/{trip_id}/stops/{stop_id}/simulate-departure", response_model=TransitionResult)
async def simulate_departure(trip_id: str, stop_id: str):
    return _transition_result(await _engine().simulate_departure(trip_id, stop_id))


@router.get("/trips/{trip_id}/progress", response_model=TripProgressInfo)
async def get_progress(trip_id: str):
    progress = await _engine().get_progress(trip_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Trip not found")
    return progress_info(progress)


@router.get("/buses/{bus_id}/trip", response_model=TripProgressInfo | None)
async def get_bus_trip(bus_id: str):
    """Progress of the bus's active trip, or null when it is not running."""
    progress = await _engine().get_progress_for_bus(bus_id)
    return progress_info(progress) if progress else None
