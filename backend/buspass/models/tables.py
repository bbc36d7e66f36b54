import datetime
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from buspass.models.base import Base


def new_id() -> str:
    return str(uuid.uuid4())


class BusRoute(Base):
    __tablename__ = "bus_routes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    route_name: Mapped[str] = mapped_column(String(255), nullable=False)
    route_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    daily_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("60"))

    stops: Mapped[list["RouteStop"]] = relationship(back_populates="route", order_by="RouteStop.sequence")


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    enrollment_no: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    bus_route_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("bus_routes.id", ondelete="SET NULL"), nullable=True
    )
    wallet_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ScanLog(Base):
    __tablename__ = "scan_logs"
    __table_args__ = (
        Index("ix_scan_student_ts", "student_id", "scan_timestamp"),
        Index("ix_scan_driver_ts", "driver_id", "scan_timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    driver_id: Mapped[str] = mapped_column(String(36), nullable=False)
    bus_id: Mapped[str] = mapped_column(String(36), nullable=False)
    scan_timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    scan_status: Mapped[str] = mapped_column(String(32), nullable=False)
    fare_deducted: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    balance_after_scan: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)  # recharge, deduction, admin_adjustment
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="success")
    balance_before: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="system")
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class RouteStop(Base):
    __tablename__ = "route_stops"
    __table_args__ = (
        UniqueConstraint("route_id", "sequence", name="uq_route_stop_sequence"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    route_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bus_routes.id", ondelete="CASCADE"), nullable=False
    )
    stop_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    route: Mapped["BusRoute"] = relationship(back_populates="stops")


class ActiveTrip(Base):
    __tablename__ = "active_trips"
    __table_args__ = (
        Index("ix_active_trips_bus_active", "bus_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    bus_id: Mapped[str] = mapped_column(String(36), nullable=False)
    driver_id: Mapped[str] = mapped_column(String(36), nullable=False)
    route_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bus_routes.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_stop_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TripStopEvent(Base):
    __tablename__ = "trip_stop_events"
    __table_args__ = (
        UniqueConstraint("trip_id", "route_stop_id", name="uq_trip_stop_event"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    trip_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("active_trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    route_stop_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("route_stops.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    arrived_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    departed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
