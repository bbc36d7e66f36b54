import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    pass_code: str
    bus_id: str
    driver_id: str
    daily_fare: Decimal = Field(gt=0)
    route_name: str | None = None


class HolderInfo(BaseModel):
    id: str
    full_name: str
    enrollment_no: str


class ScanResult(BaseModel):
    status: str
    message: str
    student: HolderInfo | None = None
    fare_deducted: Decimal = Decimal("0")
    balance_after: Decimal | None = None
    required: Decimal | None = None
    available: Decimal | None = None


class ScanStatsInfo(BaseModel):
    total: int
    success: int
    failed: int


class ScanLogEntry(BaseModel):
    student_id: str
    bus_id: str
    scanned_at: datetime.datetime
    status: str
    fare_deducted: Decimal
    balance_after: Decimal


class ScanDayInfo(BaseModel):
    date: datetime.date
    success_count: int
    failed_count: int
    first_scan: datetime.datetime | None = None
    last_scan: datetime.datetime | None = None
    scans: list[ScanLogEntry] = []
