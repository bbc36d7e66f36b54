"""PostgreSQL bindings of the core's store interfaces (SQLAlchemy async)."""

import datetime
import functools
import logging
from contextlib import asynccontextmanager
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

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
from buspass.core.errors import InsufficientFunds, StoreUnavailable
from buspass.models import tables

logger = logging.getLogger(__name__)


def _guarded(operation: str):
    """Turn driver and connection failures into ``StoreUnavailable``."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except (SQLAlchemyError, OSError) as e:
                logger.warning("%s failed: %s", operation, e)
                raise StoreUnavailable(operation, e) from e
        return wrapper

    return decorator


def _to_holder(row: tables.Student) -> PassHolder:
    return PassHolder(
        id=row.id,
        wallet_balance=Decimal(row.wallet_balance),
        is_blocked=row.is_blocked,
        route_id=row.bus_route_id,
        user_id=row.user_id,
        full_name=row.full_name,
        enrollment_no=row.enrollment_no,
    )


def _to_scan(row: tables.ScanLog) -> ScanRecord:
    return ScanRecord(
        holder_id=row.student_id,
        bus_id=row.bus_id,
        driver_id=row.driver_id,
        scanned_at=row.scan_timestamp,
        status=ScanStatus(row.scan_status),
        fare_charged=Decimal(row.fare_deducted),
        balance_after=Decimal(row.balance_after_scan),
    )


def _to_trip(row: tables.ActiveTrip) -> ActiveTrip:
    return ActiveTrip(
        id=row.id,
        bus_id=row.bus_id,
        driver_id=row.driver_id,
        route_id=row.route_id,
        started_at=row.started_at,
        ended_at=row.ended_at,
        is_active=row.is_active,
        current_stop_sequence=row.current_stop_sequence,
    )


def _to_event(row: tables.TripStopEvent) -> StopEvent:
    return StopEvent(
        id=row.id,
        trip_id=row.trip_id,
        stop_id=row.route_stop_id,
        status=StopStatus(row.status),
        arrived_at=row.arrived_at,
        departed_at=row.departed_at,
    )


# ----------------------------------------------------------------------
# Fare side


class _SqlStudents:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, holder_id: str) -> PassHolder | None:
        # Row lock: concurrent scans of one holder queue here until commit
        result = await self.session.execute(
            select(tables.Student).where(tables.Student.id == holder_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        return _to_holder(row) if row else None

    async def decrement_balance(self, holder_id: str, amount: Decimal) -> Decimal:
        result = await self.session.execute(
            update(tables.Student)
            .where(tables.Student.id == holder_id, tables.Student.wallet_balance >= amount)
            .values(wallet_balance=tables.Student.wallet_balance - amount)
            .returning(tables.Student.wallet_balance)
        )
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            current = await self.session.scalar(
                select(tables.Student.wallet_balance).where(tables.Student.id == holder_id)
            )
            raise InsufficientFunds(holder_id, current or Decimal("0"), amount)
        return Decimal(new_balance)

    async def count_successful_scans_since(
        self, holder_id: str, since: datetime.datetime,
    ) -> int:
        count = await self.session.scalar(
            select(func.count())
            .select_from(tables.ScanLog)
            .where(
                tables.ScanLog.student_id == holder_id,
                tables.ScanLog.scan_status == ScanStatus.SUCCESS.value,
                tables.ScanLog.scan_timestamp >= since,
            )
        )
        return count or 0


class _SqlScanLog:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, record: ScanRecord) -> None:
        self.session.add(tables.ScanLog(
            student_id=record.holder_id,
            driver_id=record.driver_id,
            bus_id=record.bus_id,
            scan_timestamp=record.scanned_at,
            scan_status=record.status.value,
            fare_deducted=record.fare_charged,
            balance_after_scan=record.balance_after,
        ))


class _SqlLedger:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, entry: LedgerEntry) -> None:
        self.session.add(tables.Transaction(
            student_id=entry.holder_id,
            amount=entry.amount,
            transaction_type=entry.kind,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            description=entry.description,
            created_at=entry.created_at,
        ))


class _SqlFareUnitOfWork:
    def __init__(self, session: AsyncSession) -> None:
        self.students = _SqlStudents(session)
        self.scan_log = _SqlScanLog(session)
        self.ledger = _SqlLedger(session)


class SqlFareStore:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def begin(self, holder_id: str):
        """One database transaction; the holder row is locked by ``get_by_id``."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield _SqlFareUnitOfWork(session)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Fare transaction for %s failed: %s", holder_id, e)
            raise StoreUnavailable("fare transaction", e) from e

    @_guarded("list scans")
    async def list_scans_for_driver(
        self, driver_id: str, since: datetime.datetime | None = None, limit: int = 500,
    ) -> list[ScanRecord]:
        query = select(tables.ScanLog).where(tables.ScanLog.driver_id == driver_id)
        if since is not None:
            query = query.where(tables.ScanLog.scan_timestamp >= since)
        query = query.order_by(tables.ScanLog.scan_timestamp.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
        return [_to_scan(r) for r in rows]


class SqlNotifier:
    """Writes low-balance alerts to the notifications table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    @_guarded("send low balance")
    async def send_low_balance(self, holder: PassHolder, new_balance: Decimal) -> None:
        if not holder.user_id:
            logger.debug("Holder %s has no user account, skipping alert", holder.id)
            return
        async with self.session_factory() as session:
            session.add(tables.Notification(
                user_id=holder.user_id,
                title="Low Balance Warning",
                message=f"Your wallet balance is ₹{new_balance:.2f}. Please recharge soon.",
                type="low_balance",
            ))
            await session.commit()


# ----------------------------------------------------------------------
# Trip side


class SqlRouteStopRepository:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    @_guarded("list route stops")
    async def list_stops_for_route(self, route_id: str) -> list[Stop]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(tables.RouteStop)
                .where(tables.RouteStop.route_id == route_id)
                .order_by(tables.RouteStop.sequence)
            )
            rows = result.scalars().all()
        return [
            Stop(
                id=r.id,
                route_id=r.route_id,
                name=r.stop_name,
                sequence=r.sequence,
                lat=r.latitude,
                lon=r.longitude,
            )
            for r in rows
        ]


class SqlTripStore:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    @_guarded("create trip")
    async def create_trip_with_events(
        self,
        bus_id: str,
        driver_id: str,
        route_id: str,
        started_at: datetime.datetime,
        stops: list[Stop],
    ) -> ActiveTrip:
        async with self.session_factory() as session:
            async with session.begin():
                row = tables.ActiveTrip(
                    id=tables.new_id(),
                    bus_id=bus_id,
                    driver_id=driver_id,
                    route_id=route_id,
                    started_at=started_at,
                    is_active=True,
                    current_stop_sequence=0,
                )
                session.add(row)
                session.add_all([
                    tables.TripStopEvent(
                        trip_id=row.id, route_stop_id=s.id, status=StopStatus.PENDING.value,
                    )
                    for s in stops
                ])
            return _to_trip(row)

    @_guarded("end active trip")
    async def end_active_trip(self, trip_id: str, ended_at: datetime.datetime) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(tables.ActiveTrip)
                    .where(tables.ActiveTrip.id == trip_id, tables.ActiveTrip.is_active.is_(True))
                    .values(is_active=False, ended_at=ended_at)
                )
                if result.rowcount == 0:
                    return False
                await session.execute(
                    delete(tables.TripStopEvent).where(tables.TripStopEvent.trip_id == trip_id)
                )
        return True

    @_guarded("get trip")
    async def get_active_trip(self, trip_id: str) -> ActiveTrip | None:
        async with self.session_factory() as session:
            row = await session.get(tables.ActiveTrip, trip_id)
            return _to_trip(row) if row else None

    @_guarded("get active trip for bus")
    async def get_active_trip_for_bus(self, bus_id: str) -> ActiveTrip | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(tables.ActiveTrip)
                .where(tables.ActiveTrip.bus_id == bus_id, tables.ActiveTrip.is_active.is_(True))
                .order_by(tables.ActiveTrip.started_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_trip(row) if row else None

    @_guarded("update stop event")
    async def update_stop_event(
        self,
        event_id: str,
        expected: StopStatus,
        status: StopStatus,
        at: datetime.datetime,
    ) -> bool:
        values: dict = {"status": status.value}
        if status is StopStatus.ARRIVED:
            values["arrived_at"] = at
        elif status is StopStatus.DEPARTED:
            values["departed_at"] = at
        async with self.session_factory() as session:
            result = await session.execute(
                update(tables.TripStopEvent)
                .where(
                    tables.TripStopEvent.id == event_id,
                    tables.TripStopEvent.status == expected.value,
                )
                .values(**values)
            )
            await session.commit()
        return result.rowcount == 1

    @_guarded("set current stop")
    async def set_current_stop_sequence(self, trip_id: str, sequence: int) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(tables.ActiveTrip)
                .where(tables.ActiveTrip.id == trip_id)
                .values(current_stop_sequence=sequence)
            )
            await session.commit()

    @_guarded("list stop events")
    async def list_stop_events(self, trip_id: str) -> list[StopEvent]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(tables.TripStopEvent).where(tables.TripStopEvent.trip_id == trip_id)
            )
            return [_to_event(r) for r in result.scalars().all()]
