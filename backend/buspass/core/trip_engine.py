"""Trip lifecycle and stop-by-stop progress driven by GPS, manual taps, or simulation.

Each stop of an active trip moves pending -> arrived -> departed, in route
order. A stop may only arrive once the stop before it has departed, so at most
one stop is ever "arrived". GPS samples, manual taps and simulated positions
all go through the same guarded transition: the first writer wins and a late
duplicate is a no-op.

The trip store is the only source of truth. The engine caches route stops for
ROUTE_STOPS_CACHE_TTL seconds and a short-lived progress view that is dropped
on every local transition.
"""

import asyncio
import datetime
import logging
import time
from typing import Awaitable, Callable, TypeVar

from buspass.config import settings
from buspass.core import geo
from buspass.core.domain import (
    ActiveTrip,
    Stop,
    StopProgress,
    StopStatus,
    StopTransition,
    TripProgress,
)
from buspass.core.errors import StoreUnavailable, TripAlreadyActive
from buspass.core.locks import KeyedLocks
from buspass.core.ports import RealtimeNotifier, RouteStopRepository, TripStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds a cached progress view may be served without re-reading the store
PROGRESS_CACHE_TTL = 5.0
# Seconds before route stops are re-read, so stop edits reach running trips
ROUTE_STOPS_CACHE_TTL = 30.0


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TripProgressEngine:
    """Owns active trips and advances their stop events."""

    def __init__(
        self,
        stops: RouteStopRepository,
        trips: TripStore,
        realtime: RealtimeNotifier | None = None,
        *,
        arrival_radius_m: float | None = None,
        departure_radius_m: float | None = None,
        departure_ratio: float | None = None,
        debounce_seconds: float | None = None,
        departure_offset_deg: float | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stops = stops
        self.trips = trips
        self.realtime = realtime
        self.arrival_radius_m = arrival_radius_m or settings.arrival_radius_m
        self.departure_radius_m = departure_radius_m or settings.departure_radius_m
        self.departure_ratio = departure_ratio or settings.departure_next_stop_ratio
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None
            else settings.auto_transition_debounce_seconds
        )
        self.departure_offset_deg = departure_offset_deg or settings.simulated_departure_offset_deg
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        self.clock = clock
        self.monotonic = monotonic

        # route_id -> (loaded at monotonic time, stops sorted by sequence)
        self._route_stops: dict[str, tuple[float, list[Stop]]] = {}
        # trip_id -> (built at monotonic time, progress)
        self._progress: dict[str, tuple[float, TripProgress]] = {}
        # trip_id -> {(stop_id, status) -> monotonic time of last automatic attempt}
        self._recent_auto: dict[str, dict[tuple[str, StopStatus], float]] = {}

        self._trip_locks = KeyedLocks()
        self._bus_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Trip lifecycle

    async def start_trip(self, bus_id: str, driver_id: str, route_id: str) -> ActiveTrip:
        async with self._bus_locks.hold(bus_id):
            existing = await self._call(
                self.trips.get_active_trip_for_bus(bus_id), "get active trip for bus",
            )
            if existing is not None:
                raise TripAlreadyActive(bus_id, existing.id)

            stops = await self._load_route_stops(route_id)
            trip = await self._call(
                self.trips.create_trip_with_events(bus_id, driver_id, route_id, self.clock(), stops),
                "create trip",
            )

        logger.info(
            "Trip %s started: bus %s, driver %s, route %s (%d stops)",
            trip.id, bus_id, driver_id, route_id, len(stops),
        )
        return trip

    async def end_trip(self, trip_id: str) -> bool:
        """End a trip. Ending an unknown or already ended trip does nothing."""
        now = self.clock()
        async with self._trip_locks.hold(trip_id):
            ended = await self._call(self.trips.end_active_trip(trip_id, now), "end active trip")
            self._progress.pop(trip_id, None)
            self._recent_auto.pop(trip_id, None)

        if ended:
            logger.info("Trip %s ended", trip_id)
            await self._publish(trip_id, {
                "type": "trip_ended",
                "trip_id": trip_id,
                "timestamp": now.isoformat(),
            })
        return ended

    def invalidate_route(self, route_id: str) -> None:
        """Forget cached stops now instead of waiting for the cache to expire."""
        self._route_stops.pop(route_id, None)

    # ------------------------------------------------------------------
    # Progress updates

    async def report_position(self, trip_id: str, lat: float, lon: float) -> StopTransition | None:
        """Apply one GPS sample. At most one stop changes per sample."""
        geo.validate_coordinates(lat, lon)
        return await self._process_sample(trip_id, lat, lon)

    async def simulate_position(self, trip_id: str, stop_id: str) -> StopTransition | None:
        """Behave as if a GPS sample arrived exactly at the stop."""
        stop = await self._find_stop(trip_id, stop_id)
        if stop is None or not stop.located:
            return None
        return await self._process_sample(trip_id, stop.lat, stop.lon)

    async def simulate_departure(self, trip_id: str, stop_id: str) -> StopTransition | None:
        """Behave as if a GPS sample arrived just past an arrived stop."""
        stop = await self._find_stop(trip_id, stop_id)
        if stop is None or not stop.located:
            return None
        lat, lon = geo.offset_point(
            stop.lat, stop.lon, self.departure_offset_deg, self.departure_offset_deg,
        )
        return await self._process_sample(trip_id, lat, lon, require_arrived=stop_id)

    async def manual_advance(
        self, trip_id: str, stop_id: str, target: StopStatus | str,
    ) -> StopTransition | None:
        """Operator override for stops without coordinates or when GPS is down."""
        target = StopStatus(target)
        if target is StopStatus.PENDING:
            raise ValueError("manual advance target must be arrived or departed")

        async with self._trip_locks.hold(trip_id):
            trip = await self._live_trip(trip_id)
            if trip is None:
                return None
            timeline = await self._timeline(trip)
            index = next((i for i, s in enumerate(timeline) if s.stop.id == stop_id), None)
            if index is None:
                logger.warning("Trip %s: stop %s is not on route %s", trip_id, stop_id, trip.route_id)
                return None
            return await self._apply(trip, timeline, index, target, automatic=False)

    async def _process_sample(
        self, trip_id: str, lat: float, lon: float, require_arrived: str | None = None,
    ) -> StopTransition | None:
        async with self._trip_locks.hold(trip_id):
            trip = await self._live_trip(trip_id)
            if trip is None:
                return None
            timeline = await self._timeline(trip)

            if require_arrived is not None:
                target_stop = next((s for s in timeline if s.stop.id == require_arrived), None)
                if target_stop is None or target_stop.status is not StopStatus.ARRIVED:
                    return None

            picked = self.pick_transition(timeline, lat, lon)
            if picked is None:
                return None
            index, target = picked

            stop_id = timeline[index].stop.id
            if self._debounced(trip_id, stop_id, target):
                logger.debug("Trip %s: debounced %s -> %s", trip_id, stop_id, target.value)
                return None
            try:
                return await self._apply(trip, timeline, index, target, automatic=True)
            except StoreUnavailable:
                self._recent_auto.get(trip_id, {}).pop((stop_id, target), None)
                raise

    # ------------------------------------------------------------------
    # Transition rules

    def pick_transition(
        self, timeline: list[StopProgress], lat: float, lon: float,
    ) -> tuple[int, StopStatus] | None:
        """First stop, in route order, that this sample moves forward."""
        for i, item in enumerate(timeline):
            stop = item.stop
            if not stop.located or item.event is None:
                continue
            dist = geo.distance_m(lat, lon, stop.lat, stop.lon)
            if item.status is StopStatus.PENDING:
                if self._may_arrive(timeline, i) and dist <= self.arrival_radius_m:
                    return i, StopStatus.ARRIVED
            elif item.status is StopStatus.ARRIVED:
                if dist > self.departure_threshold(timeline, i):
                    return i, StopStatus.DEPARTED
        return None

    def departure_threshold(self, timeline: list[StopProgress], index: int) -> float:
        """Shrink the departure radius when the next stop is close."""
        stop = timeline[index].stop
        if index + 1 < len(timeline):
            nxt = timeline[index + 1].stop
            if nxt.located:
                gap = geo.distance_m(stop.lat, stop.lon, nxt.lat, nxt.lon)
                return min(self.departure_radius_m, gap * self.departure_ratio)
        return self.departure_radius_m

    @staticmethod
    def _may_arrive(timeline: list[StopProgress], index: int) -> bool:
        return index == 0 or timeline[index - 1].status is StopStatus.DEPARTED

    def _is_legal(self, timeline: list[StopProgress], index: int, target: StopStatus) -> bool:
        item = timeline[index]
        if item.event is None:
            return False
        if target is StopStatus.ARRIVED:
            return item.status is StopStatus.PENDING and self._may_arrive(timeline, index)
        if target is StopStatus.DEPARTED:
            return item.status is StopStatus.ARRIVED
        return False

    def _debounced(self, trip_id: str, stop_id: str, target: StopStatus) -> bool:
        recent = self._recent_auto.setdefault(trip_id, {})
        now = self.monotonic()
        last = recent.get((stop_id, target))
        if last is not None and now - last < self.debounce_seconds:
            return True
        recent[(stop_id, target)] = now
        return False

    async def _apply(
        self,
        trip: ActiveTrip,
        timeline: list[StopProgress],
        index: int,
        target: StopStatus,
        automatic: bool,
    ) -> StopTransition | None:
        item = timeline[index]
        if not self._is_legal(timeline, index, target):
            logger.debug(
                "Trip %s: ignoring illegal transition of stop %s (%s -> %s)",
                trip.id, item.stop.id, item.status.value, target.value,
            )
            return None

        now = self.clock()
        moved = await self._call(
            self.trips.update_stop_event(item.event.id, item.status, target, now),
            "update stop event",
        )
        if not moved:
            logger.debug("Trip %s: stop %s already moved by another writer", trip.id, item.stop.id)
            self._progress.pop(trip.id, None)
            return None

        await self._call(
            self.trips.set_current_stop_sequence(trip.id, item.stop.sequence),
            "set current stop",
        )
        self._progress.pop(trip.id, None)

        transition = StopTransition(
            trip_id=trip.id,
            stop_id=item.stop.id,
            stop_sequence=item.stop.sequence,
            status=target,
            timestamp=now,
            automatic=automatic,
        )
        logger.info(
            "Trip %s: %s %s (#%d)%s",
            trip.id, target.value, item.stop.name, item.stop.sequence,
            " [gps]" if automatic else "",
        )
        await self._publish(trip.id, transition.to_message())
        return transition

    # ------------------------------------------------------------------
    # Read side

    async def get_progress(self, trip_id: str) -> TripProgress | None:
        cached = self._progress.get(trip_id)
        if cached and self.monotonic() - cached[0] < PROGRESS_CACHE_TTL:
            return cached[1]

        trip = await self._call(self.trips.get_active_trip(trip_id), "get trip")
        if trip is None:
            return None
        if trip.is_active:
            timeline = await self._timeline(trip)
        else:
            stops = await self._stops_for_route(trip.route_id)
            timeline = [StopProgress(stop=s, event=None) for s in stops]

        progress = TripProgress(trip=trip, stops=timeline)
        if trip.is_active:
            self._progress[trip_id] = (self.monotonic(), progress)
        return progress

    async def get_progress_for_bus(self, bus_id: str) -> TripProgress | None:
        trip = await self._call(self.trips.get_active_trip_for_bus(bus_id), "get active trip for bus")
        if trip is None:
            return None
        return await self.get_progress(trip.id)

    # ------------------------------------------------------------------

    async def _live_trip(self, trip_id: str) -> ActiveTrip | None:
        trip = await self._call(self.trips.get_active_trip(trip_id), "get trip")
        if trip is None or not trip.is_active:
            logger.debug("Ignoring update for inactive trip %s", trip_id)
            return None
        return trip

    async def _timeline(self, trip: ActiveTrip) -> list[StopProgress]:
        stops = await self._stops_for_route(trip.route_id)
        events = await self._call(self.trips.list_stop_events(trip.id), "list stop events")
        by_stop = {e.stop_id: e for e in events}
        return [StopProgress(stop=s, event=by_stop.get(s.id)) for s in stops]

    async def _find_stop(self, trip_id: str, stop_id: str) -> Stop | None:
        trip = await self._call(self.trips.get_active_trip(trip_id), "get trip")
        if trip is None:
            return None
        stops = await self._stops_for_route(trip.route_id)
        return next((s for s in stops if s.id == stop_id), None)

    async def _stops_for_route(self, route_id: str) -> list[Stop]:
        cached = self._route_stops.get(route_id)
        if cached and self.monotonic() - cached[0] < ROUTE_STOPS_CACHE_TTL:
            return cached[1]
        return await self._load_route_stops(route_id)

    async def _load_route_stops(self, route_id: str) -> list[Stop]:
        stops = await self._call(self.stops.list_stops_for_route(route_id), "list route stops")
        stops = sorted(stops, key=lambda s: s.sequence)
        expected = list(range(1, len(stops) + 1))
        if [s.sequence for s in stops] != expected:
            logger.warning(
                "Route %s: stop sequences %s are not contiguous from 1",
                route_id, [s.sequence for s in stops],
            )
        self._route_stops[route_id] = (self.monotonic(), stops)
        return stops

    async def _call(self, aw: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(aw, self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(operation, e) from e

    async def _publish(self, trip_id: str, message: dict) -> None:
        if self.realtime is None:
            return
        try:
            await asyncio.wait_for(self.realtime.publish(trip_id, message), self.timeout)
        except Exception:
            logger.exception("Failed to publish update for trip %s", trip_id)
