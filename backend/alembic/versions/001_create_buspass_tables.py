"""Create bus pass, scan log, ledger and trip progress tables.

Revision ID: 001
Revises:
Create Date: 2026-03-02
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bus_routes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("route_name", sa.String(255), nullable=False),
        sa.Column("route_number", sa.String(20), nullable=False, unique=True),
        sa.Column("daily_fare", sa.Numeric(10, 2), nullable=False),
    )
    op.create_table(
        "students",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("enrollment_no", sa.String(50), nullable=False, unique=True),
        sa.Column(
            "bus_route_id", sa.String(36),
            sa.ForeignKey("bus_routes.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("wallet_balance", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_blocked", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "scan_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "student_id", sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("driver_id", sa.String(36), nullable=False),
        sa.Column("bus_id", sa.String(36), nullable=False),
        sa.Column("scan_timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("scan_status", sa.String(32), nullable=False),
        sa.Column("fare_deducted", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("balance_after_scan", sa.Numeric(10, 2), nullable=False),
    )
    op.create_index("ix_scan_student_ts", "scan_logs", ["student_id", "scan_timestamp"])
    op.create_index("ix_scan_driver_ts", "scan_logs", ["driver_id", "scan_timestamp"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "student_id", sa.String(36),
            sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(16), nullable=False, server_default="success"),
        sa.Column("balance_before", sa.Numeric(10, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(10, 2), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("type", sa.String(32), nullable=False, server_default="system"),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "route_stops",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "route_id", sa.String(36),
            sa.ForeignKey("bus_routes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("stop_name", sa.String(255), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.UniqueConstraint("route_id", "sequence", name="uq_route_stop_sequence"),
    )
    op.create_table(
        "active_trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("bus_id", sa.String(36), nullable=False),
        sa.Column("driver_id", sa.String(36), nullable=False),
        sa.Column(
            "route_id", sa.String(36),
            sa.ForeignKey("bus_routes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("current_stop_sequence", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_active_trips_bus_active", "active_trips", ["bus_id", "is_active"])

    op.create_table(
        "trip_stop_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "trip_id", sa.String(36),
            sa.ForeignKey("active_trips.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "route_stop_id", sa.String(36),
            sa.ForeignKey("route_stops.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("departed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("trip_id", "route_stop_id", name="uq_trip_stop_event"),
    )
    op.create_index("ix_trip_stop_events_trip_id", "trip_stop_events", ["trip_id"])


def downgrade() -> None:
    op.drop_table("trip_stop_events")
    op.drop_table("active_trips")
    op.drop_table("route_stops")
    op.drop_table("notifications")
    op.drop_table("transactions")
    op.drop_table("scan_logs")
    op.drop_table("students")
    op.drop_table("bus_routes")
