"""Initial schema - users, healthcare services and appointments.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
    ]


def _jsonb(name: str, default: str | None) -> sa.Column:
    if default is None:
        return sa.Column(name, postgresql.JSONB(), nullable=True)
    return sa.Column(
        name,
        postgresql.JSONB(),
        server_default=sa.text(f"'{default}'::jsonb"),
        nullable=False,
    )


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.Text(), server_default=sa.text("'patient'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('patient', 'nurse', 'doctor', 'admin')",
            name="users_role_check",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "healthcare_services",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column(
            "features", postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'"), nullable=False
        ),
        sa.Column(
            "tags", postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'"), nullable=False
        ),
        sa.Column("rating_average", sa.Numeric(3, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("rating_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_popular", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="healthcare_services_price_check"),
        sa.CheckConstraint(
            "category IN ('consultation', 'nursing', 'laboratory', 'physiotherapy', "
            "'mental-health', 'vaccination', 'emergency')",
            name="healthcare_services_category_check",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("patient_id", postgresql.UUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider_id", postgresql.UUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "service_id",
            postgresql.UUID(),
            sa.ForeignKey("healthcare_services.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("appointment_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("appointment_type", sa.Text(), nullable=False),
        sa.Column("service_requested", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        sa.Column("priority", sa.Text(), server_default="normal", nullable=False),
        sa.Column("reason_for_visit", sa.Text(), nullable=False),
        _jsonb("symptoms", "[]"),
        _jsonb("location", None),
        _jsonb("cost", "{}"),
        _jsonb("consultation", "{}"),
        _jsonb("communication", "{}"),
        _jsonb("ratings", "{}"),
        _jsonb("cancellation_details", None),
        _jsonb("reschedule_history", "[]"),
        _jsonb("notes", "[]"),
        sa.Column("source", sa.Text(), server_default="web", nullable=False),
        sa.Column("payment_reference", sa.Text(), nullable=True),
        sa.Column("payment_status", sa.Text(), server_default="not_required", nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'in-progress', 'completed', "
            "'canceled', 'no-show', 'rescheduled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "duration_minutes BETWEEN 15 AND 480",
            name="appointments_duration_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    # Secondary indexes are managed by DatabaseOptimizer.ensure_indexes


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("appointments")
    op.drop_table("healthcare_services")
    op.drop_table("users")
