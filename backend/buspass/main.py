"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from buspass.api import scans, trips, ws
from buspass.config import settings
from buspass.core.broadcaster import Broadcaster
from buspass.core.errors import StoreUnavailable, TripAlreadyActive
from buspass.core.fare_processor import FareScanProcessor
from buspass.core.geo import InvalidCoordinates
from buspass.core.notifications import LowBalanceDispatcher
from buspass.core.scheduler import create_scheduler
from buspass.core.trip_engine import TripProgressEngine

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _build_stores():
    """Return (fare_store, notifier, stop_repo, trip_store, close) for the configured backend."""
    if settings.store_backend == "memory":
        from buspass.stores.memory import (
            MemoryFareStore,
            MemoryNotifier,
            MemoryRouteStopRepository,
            MemoryTripStore,
        )

        async def close() -> None:
            return None

        logger.warning("Using in-memory stores; data is lost on restart")
        return (
            MemoryFareStore(), MemoryNotifier(),
            MemoryRouteStopRepository(), MemoryTripStore(), close,
        )

    from buspass.db.session import async_session, engine
    from buspass.models.base import Base
    from buspass.models import tables  # noqa: F401
    from buspass.stores.sql import (
        SqlFareStore,
        SqlNotifier,
        SqlRouteStopRepository,
        SqlTripStore,
    )

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return (
        SqlFareStore(async_session), SqlNotifier(async_session),
        SqlRouteStopRepository(async_session), SqlTripStore(async_session), engine.dispose,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    fare_store, notifier, stop_repo, trip_store, close_db = await _build_stores()

    broadcaster = Broadcaster()
    await broadcaster.connect()

    dispatcher = LowBalanceDispatcher(
        notifier,
        timeout=settings.notifier_timeout_seconds,
        retry_limit=settings.notification_retry_limit,
    )
    processor = FareScanProcessor(fare_store, dispatcher)
    trip_engine = TripProgressEngine(stop_repo, trip_store, broadcaster)

    # Wire up API modules
    scans.processor = processor
    trips.engine = trip_engine
    ws.engine = trip_engine
    ws.broadcaster = broadcaster

    scheduler = create_scheduler(dispatcher)
    scheduler.start()
    logger.info("Bus pass service started (%s store)", settings.store_backend)

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await broadcaster.close()
    await close_db()
    logger.info("Bus pass service shut down")


app = FastAPI(
    title="Campus Bus Pass",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scans.router)
app.include_router(trips.router)
app.include_router(ws.router)


@app.exception_handler(TripAlreadyActive)
async def trip_already_active(request: Request, exc: TripAlreadyActive):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "code": exc.code, "trip_id": exc.trip_id},
    )


@app.exception_handler(InvalidCoordinates)
async def invalid_coordinates(request: Request, exc: InvalidCoordinates):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreUnavailable)
async def store_unavailable(request: Request, exc: StoreUnavailable):
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Temporarily unavailable, please retry", "operation": exc.operation},
        headers={"Retry-After": "1"},
    )


@app.get("/api/health")
async def health():
    return {"status": "ok"}
