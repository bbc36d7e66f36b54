"""Pass scanning REST API endpoints (driver client)."""

from fastapi import APIRouter, HTTPException

from buspass.core.domain import ScanOutcome, ScanRecord
from buspass.schemas.scan import (
    HolderInfo,
    ScanDayInfo,
    ScanLogEntry,
    ScanRequest,
    ScanResult,
    ScanStatsInfo,
)

router = APIRouter(prefix="/api/scans", tags=["scans"])

# Will be set by main.py
processor = None


def _processor():
    if processor is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return processor


def _log_entry(scan: ScanRecord) -> ScanLogEntry:
    return ScanLogEntry(
        student_id=scan.holder_id,
        bus_id=scan.bus_id,
        scanned_at=scan.scanned_at,
        status=scan.status.value,
        fare_deducted=scan.fare_charged,
        balance_after=scan.balance_after,
    )


def _scan_result(outcome: ScanOutcome) -> ScanResult:
    student = None
    if outcome.holder is not None:
        student = HolderInfo(
            id=outcome.holder.id,
            full_name=outcome.holder.full_name,
            enrollment_no=outcome.holder.enrollment_no,
        )
    return ScanResult(
        status=outcome.status.value,
        message=outcome.message,
        student=student,
        fare_deducted=outcome.fare_charged,
        balance_after=outcome.balance_after,
        required=outcome.required,
        available=outcome.available,
    )


@router.post("", response_model=ScanResult)
async def scan_pass(body: ScanRequest):
    """Process one scanned bus pass. Rejections are returned, not raised."""
    outcome = await _processor().process_scan(
        body.pass_code, body.bus_id, body.driver_id, body.daily_fare, body.route_name,
    )
    return _scan_result(outcome)


@router.get("/stats", response_model=ScanStatsInfo)
async def scan_stats(driver_id: str):
    """Today's scan totals for a driver."""
    stats = await _processor().daily_stats(driver_id)
    return ScanStatsInfo(total=stats.total, success=stats.success, failed=stats.failed)


@router.get("/history", response_model=list[ScanDayInfo])
async def scan_history(driver_id: str, limit: int = 500):
    """A driver's scans grouped by day, newest first."""
    days = await _processor().scan_history(driver_id, limit=limit)
    return [
        ScanDayInfo(
            date=d.date,
            success_count=d.success_count,
            failed_count=d.failed_count,
            first_scan=d.first_scan,
            last_scan=d.last_scan,
            scans=[_log_entry(s) for s in d.scans],
        )
        for d in days
    ]
