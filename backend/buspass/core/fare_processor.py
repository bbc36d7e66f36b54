"""Boarding scan decisions: charge the wallet, reject, or ride free.

The first successful scan of a local calendar day charges the route's daily
fare. The second is the free return trip. Anything beyond the daily limit is
rejected. Every attempt for a known pass holder leaves a scan record.
"""

import asyncio
import datetime
import logging
from decimal import Decimal
from typing import Callable
from zoneinfo import ZoneInfo

from buspass.config import settings
from buspass.core.domain import (
    LedgerEntry,
    PassHolder,
    ScanDay,
    ScanOutcome,
    ScanRecord,
    ScanStats,
    ScanStatus,
)
from buspass.core.errors import InsufficientFunds, StoreUnavailable
from buspass.core.notifications import LowBalanceDispatcher
from buspass.core.ports import FareStore, FareUnitOfWork

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _money(value: Decimal) -> str:
    return f"₹{value:.2f}"


class FareScanProcessor:
    """Applies the daily fare rules to scanned pass codes."""

    def __init__(
        self,
        store: FareStore,
        dispatcher: LowBalanceDispatcher | None = None,
        *,
        tz: str | None = None,
        timeout: float | None = None,
        daily_limit: int | None = None,
        low_balance_multiplier: int | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.tz = ZoneInfo(tz or settings.local_timezone)
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        self.daily_limit = daily_limit or settings.daily_scan_limit
        self.low_balance_multiplier = low_balance_multiplier or settings.low_balance_multiplier
        self.clock = clock

    def start_of_day(self, now: datetime.datetime) -> datetime.datetime:
        """Local midnight for ``now``, returned in UTC."""
        local = now.astimezone(self.tz)
        midnight = datetime.datetime.combine(local.date(), datetime.time.min, tzinfo=self.tz)
        return midnight.astimezone(datetime.timezone.utc)

    async def process_scan(
        self,
        pass_holder_id: str,
        bus_id: str,
        driver_id: str,
        daily_fare: Decimal | int | str,
        route_name: str | None = None,
    ) -> ScanOutcome:
        fare = Decimal(str(daily_fare))
        if fare <= ZERO:
            raise ValueError(f"daily fare must be positive, got {fare}")

        holder_id = (pass_holder_id or "").strip()
        if not holder_id:
            return self._not_found()

        try:
            outcome = await asyncio.wait_for(
                self._scan(holder_id, bus_id, driver_id, fare, route_name),
                self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable("scan", e) from e

        logger.info(
            "Scan %s by driver %s on bus %s: %s (fare %s)",
            holder_id, driver_id, bus_id, outcome.status.value, outcome.fare_charged,
        )

        if (
            self.dispatcher is not None
            and outcome.ok
            and outcome.fare_charged > ZERO
            and outcome.balance_after < fare * self.low_balance_multiplier
        ):
            await self.dispatcher.dispatch(outcome.holder, outcome.balance_after)

        return outcome

    async def _scan(
        self,
        holder_id: str,
        bus_id: str,
        driver_id: str,
        fare: Decimal,
        route_name: str | None,
    ) -> ScanOutcome:
        now = self.clock()
        since = self.start_of_day(now)

        async with self.store.begin(holder_id) as uow:
            holder = await uow.students.get_by_id(holder_id)
            if holder is None:
                return self._not_found()

            def record(status: ScanStatus, charged: Decimal, balance: Decimal) -> ScanRecord:
                return ScanRecord(
                    holder_id=holder.id,
                    bus_id=bus_id,
                    driver_id=driver_id,
                    scanned_at=now,
                    status=status,
                    fare_charged=charged,
                    balance_after=balance,
                )

            balance = holder.wallet_balance

            if holder.is_blocked:
                await uow.scan_log.append(record(ScanStatus.BLOCKED, ZERO, balance))
                return ScanOutcome(
                    status=ScanStatus.BLOCKED,
                    message="This student pass is blocked. Contact administrator.",
                    holder=holder,
                    balance_after=balance,
                )

            count = await uow.students.count_successful_scans_since(holder.id, since)

            if count >= self.daily_limit:
                await uow.scan_log.append(record(ScanStatus.LIMIT_EXCEEDED, ZERO, balance))
                return ScanOutcome(
                    status=ScanStatus.LIMIT_EXCEEDED,
                    message=f"Daily scan limit ({self.daily_limit}) exceeded.",
                    holder=holder,
                    balance_after=balance,
                )

            if count > 0:
                await uow.scan_log.append(record(ScanStatus.SUCCESS, ZERO, balance))
                return ScanOutcome(
                    status=ScanStatus.SUCCESS,
                    message="Second scan - Return trip (no charge)",
                    holder=holder,
                    balance_after=balance,
                )

            if balance < fare:
                return await self._insufficient(uow, holder, record, fare, balance)

            try:
                new_balance = await uow.students.decrement_balance(holder.id, fare)
            except InsufficientFunds as e:
                # balance moved between the read and the write
                return await self._insufficient(uow, holder, record, fare, Decimal(e.balance))

            description = "Daily fare deduction"
            if route_name:
                description = f"{description} - {route_name}"
            await uow.ledger.append(LedgerEntry(
                holder_id=holder.id,
                amount=fare,
                balance_before=new_balance + fare,
                balance_after=new_balance,
                description=description,
                created_at=now,
            ))
            await uow.scan_log.append(record(ScanStatus.SUCCESS, fare, new_balance))
            holder.wallet_balance = new_balance

            return ScanOutcome(
                status=ScanStatus.SUCCESS,
                message="First scan - Fare deducted successfully",
                holder=holder,
                fare_charged=fare,
                balance_after=new_balance,
            )

    @staticmethod
    async def _insufficient(
        uow: FareUnitOfWork,
        holder: PassHolder,
        record: Callable[[ScanStatus, Decimal, Decimal], ScanRecord],
        fare: Decimal,
        balance: Decimal,
    ) -> ScanOutcome:
        await uow.scan_log.append(record(ScanStatus.INSUFFICIENT_BALANCE, ZERO, balance))
        return ScanOutcome(
            status=ScanStatus.INSUFFICIENT_BALANCE,
            message=f"Insufficient balance. Need {_money(fare)}, have {_money(balance)}",
            holder=holder,
            balance_after=balance,
            required=fare,
            available=balance,
        )

    @staticmethod
    def _not_found() -> ScanOutcome:
        return ScanOutcome(
            status=ScanStatus.NOT_FOUND,
            message="Student not found in the system.",
        )

    # ------------------------------------------------------------------

    async def daily_stats(self, driver_id: str) -> ScanStats:
        """Today's scan totals for one driver."""
        since = self.start_of_day(self.clock())
        scans = await self._driver_scans(driver_id, since)
        stats = ScanStats(total=len(scans))
        stats.success = sum(1 for s in scans if s.status is ScanStatus.SUCCESS)
        stats.failed = stats.total - stats.success
        return stats

    async def scan_history(self, driver_id: str, limit: int = 500) -> list[ScanDay]:
        """Driver's scans grouped by local date, newest day first."""
        scans = await self._driver_scans(driver_id, None, limit)
        days: dict[datetime.date, ScanDay] = {}
        for scan in scans:
            local_date = scan.scanned_at.astimezone(self.tz).date()
            day = days.setdefault(local_date, ScanDay(date=local_date))
            day.scans.append(scan)
            if scan.status is ScanStatus.SUCCESS:
                day.success_count += 1
            else:
                day.failed_count += 1
            if day.first_scan is None or scan.scanned_at < day.first_scan:
                day.first_scan = scan.scanned_at
            if day.last_scan is None or scan.scanned_at > day.last_scan:
                day.last_scan = scan.scanned_at
        return sorted(days.values(), key=lambda d: d.date, reverse=True)

    async def _driver_scans(
        self, driver_id: str, since: datetime.datetime | None, limit: int = 500,
    ) -> list[ScanRecord]:
        try:
            return await asyncio.wait_for(
                self.store.list_scans_for_driver(driver_id, since=since, limit=limit),
                self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StoreUnavailable("list scans", e) from e
