"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from healthnexus.models.base import metadata

appointments = Table(
    "appointments",
    metadata,
    Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
    # Ownership / references
    Column("patient_id", UUID(as_uuid=True), ForeignKey("users.id"), nullable=False),
    Column("provider_id", UUID(as_uuid=True), ForeignKey("users.id"), nullable=False),
    Column(
        "service_id",
        UUID(as_uuid=True),
        ForeignKey("healthcare_services.id", ondelete="SET NULL"),
        nullable=True,
    ),
    # Scheduling
    Column("appointment_at", TIMESTAMP(timezone=True), nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    Column("appointment_type", Text, nullable=False),
    Column("service_requested", Text, nullable=False),
    Column("status", Text, nullable=False, server_default="scheduled"),
    Column("priority", Text, nullable=False, server_default="normal"),
    Column("reason_for_visit", Text, nullable=False),
    # Document-shaped sub-records
    Column("symptoms", JSONB, nullable=False, server_default=text("'[]'::jsonb")),
    Column("location", JSONB, nullable=True),
    Column("cost", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("consultation", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("communication", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("ratings", JSONB, nullable=False, server_default=text("'{}'::jsonb")),
    Column("cancellation_details", JSONB, nullable=True),
    Column("reschedule_history", JSONB, nullable=False, server_default=text("'[]'::jsonb")),
    Column("notes", JSONB, nullable=False, server_default=text("'[]'::jsonb")),
    # Booking metadata
    Column("source", Text, nullable=False, server_default="web"),
    Column("payment_reference", Text, nullable=True),
    Column("payment_status", Text, nullable=False, server_default="not_required"),
    # Optimistic concurrency
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("created_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", TIMESTAMP(timezone=True), nullable=False, server_default=text("NOW()")),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in-progress', 'completed', "
        "'canceled', 'no-show', 'rescheduled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "duration_minutes BETWEEN 15 AND 480",
        name="appointments_duration_check",
    ),
)
