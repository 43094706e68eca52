"""Healthcare service catalog table using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from healthnexus.models.base import metadata

healthcare_services = Table(
    "healthcare_services",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("title", String(100), nullable=False),
    Column("slug", String(120), nullable=False, unique=True),
    Column("description", String(500), nullable=False),
    Column("category", Text, nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("features", ARRAY(Text), nullable=False, server_default=text("'{}'")),
    Column("tags", ARRAY(Text), nullable=False, server_default=text("'{}'")),
    # Ratings
    Column("rating_average", Numeric(3, 2), nullable=False, server_default=text("0")),
    Column("rating_count", Integer, nullable=False, server_default=text("0")),
    # Flags
    Column("is_popular", Boolean, nullable=False, server_default=text("false")),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=text("NOW()")),
    CheckConstraint("price >= 0", name="healthcare_services_price_check"),
    CheckConstraint(
        "category IN ('consultation', 'nursing', 'laboratory', 'physiotherapy', "
        "'mental-health', 'vaccination', 'emergency')",
        name="healthcare_services_category_check",
    ),
)
