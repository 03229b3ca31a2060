# backend/alembic/versions/001_booking_core.py
"""Booking core - bookings, tutor availability and the webhook ledger

Revision ID: 001_booking_core
Revises:
Create Date: 2026-10-19 00:00:00.000000

Bookings store their UTC interval directly. On PostgreSQL an exclusion
constraint keeps CONFIRMED bookings of the same student/tutor pair from
overlapping; with BOOKING_CONFLICT_SCOPE=tutor a second constraint covers
every CONFIRMED booking of a tutor.
"""
import os
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_booking_core"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _is_postgres() -> bool:
    bind = op.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _tutor_scope_enabled() -> bool:
    return os.getenv("BOOKING_CONFLICT_SCOPE", "pair").strip().lower() == "tutor"


def upgrade() -> None:
    """Create booking core tables."""
    print("Creating booking core tables...")
    is_postgres = _is_postgres()

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("student_id", sa.String(64), nullable=False),
        sa.Column("tutor_id", sa.String(64), nullable=False),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column("start_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("status_reason", sa.Text(), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("session_type", sa.String(20), nullable=False, server_default="ONLINE"),
        # Meeting provisioning
        sa.Column("meeting_link", sa.Text(), nullable=True),
        sa.Column("meeting_passcode", sa.String(64), nullable=True),
        sa.Column("meeting_link_error", sa.Text(), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True, comment="Stripe payment intent"),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'PAID', 'REJECTED', 'CANCELLED', "
            "'COMPLETED', 'REFUNDED', 'FAILED')",
            name="ck_bookings_status",
        ),
        sa.CheckConstraint("session_type IN ('ONLINE', 'OFFLINE')", name="ck_bookings_session_type"),
        sa.CheckConstraint("start_at_utc < end_at_utc", name="check_time_order"),
        sa.CheckConstraint("price_cents >= 0", name="check_price_non_negative"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_intent_id", "bookings", ["payment_intent_id"])
    op.create_index("ix_bookings_tutor_start", "bookings", ["tutor_id", "start_at_utc"])
    op.create_index("ix_bookings_pair", "bookings", ["student_id", "tutor_id"])

    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE bookings
              ADD CONSTRAINT bookings_no_overlap_confirmed_pair
              EXCLUDE USING gist (
                student_id WITH =,
                tutor_id WITH =,
                tstzrange(start_at_utc, end_at_utc, '[)') WITH &&
              )
              WHERE (status = 'CONFIRMED')
            """
        )
        if _tutor_scope_enabled():
            op.execute(
                """
                ALTER TABLE bookings
                  ADD CONSTRAINT bookings_no_overlap_confirmed_tutor
                  EXCLUDE USING gist (
                    tutor_id WITH =,
                    tstzrange(start_at_utc, end_at_utc, '[)') WITH &&
                  )
                  WHERE (status = 'CONFIRMED')
                """
            )

    op.create_table(
        "availability_blocks",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("tutor_id", sa.String(64), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False, comment="0=Sunday .. 6=Saturday"),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day_of_week"),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
    )
    op.create_index(
        "ix_availability_blocks_tutor_day", "availability_blocks", ["tutor_id", "day_of_week"]
    )

    payload_type = (
        postgresql.JSONB(astext_type=sa.Text()) if is_postgres else sa.JSON()
    )
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=True),
        sa.Column("payload", payload_type, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("related_entity_id", sa.String(26), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_related_entity", "webhook_events", ["related_entity_id"])

    print("Booking core tables created")


def downgrade() -> None:
    """Drop booking core tables."""
    print("Dropping booking core tables...")

    op.drop_index("ix_webhook_events_related_entity", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_availability_blocks_tutor_day", table_name="availability_blocks")
    op.drop_table("availability_blocks")

    if _is_postgres():
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_confirmed_tutor")
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_confirmed_pair")
    op.drop_index("ix_bookings_pair", table_name="bookings")
    op.drop_index("ix_bookings_tutor_start", table_name="bookings")
    op.drop_index("ix_bookings_payment_intent_id", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
