"""Database index management, statistics and maintenance."""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, delete, event, inspect, text
from sqlalchemy.exc import DBAPIError, NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from healthnexus.config import settings
from healthnexus.database import engine
from healthnexus.models.services import healthcare_services

logger = structlog.get_logger(__name__)

DUPLICATE_OBJECT_SQLSTATE = "42P07"

MAINTAINED_TABLES = ("appointments", "healthcare_services", "users")


@dataclass(frozen=True)
class IndexDefinition:
    """Secondary index the query paths rely on."""

    table: str
    name: str
    columns: tuple[str, ...]
    descending: frozenset[str] = field(default_factory=frozenset)

    def ddl(self) -> str:
        """Render the CREATE INDEX statement."""
        cols = ", ".join(
            f"{col} DESC" if col in self.descending else col for col in self.columns
        )
        return f"CREATE INDEX {self.name} ON {self.table} ({cols})"


DESIRED_INDEXES: tuple[IndexDefinition, ...] = (
    # Catalog browsing
    IndexDefinition(
        "healthcare_services",
        "ix_services_category_active_rating",
        ("category", "is_active", "rating_average"),
        frozenset({"rating_average"}),
    ),
    IndexDefinition("healthcare_services", "ix_services_price_active", ("price", "is_active")),
    IndexDefinition(
        "healthcare_services",
        "ix_services_popular_active_created",
        ("is_popular", "is_active", "created_at"),
        frozenset({"created_at"}),
    ),
    # Users
    IndexDefinition("users", "ix_users_phone", ("phone",)),
    IndexDefinition("users", "ix_users_active_role", ("is_active", "role")),
    # Appointment listings per party
    IndexDefinition(
        "appointments",
        "ix_appointments_patient_date_status",
        ("patient_id", "appointment_at", "status"),
        frozenset({"appointment_at"}),
    ),
    IndexDefinition(
        "appointments",
        "ix_appointments_provider_date_status",
        ("provider_id", "appointment_at", "status"),
    ),
    IndexDefinition(
        "appointments",
        "ix_appointments_service_status_date",
        ("service_id", "status", "appointment_at"),
        frozenset({"appointment_at"}),
    ),
    # Status listings ordered by last change
    IndexDefinition("appointments", "ix_appointments_status_updated", ("status", "updated_at")),
)


def is_duplicate_index_error(error: Exception) -> bool:
    """Check whether a DDL error means the index is already there."""
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate == DUPLICATE_OBJECT_SQLSTATE or "already exists" in str(error).lower()


class DatabaseOptimizer:
    """
    Keeps the database indexed and offers maintenance operations.

    Index creation is idempotent: existing indexes are detected by their
    column list, and a concurrent creation reported as "already exists" is
    treated as success.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        indexes: tuple[IndexDefinition, ...] = DESIRED_INDEXES,
    ):
        """Initialize optimizer with an async engine and desired indexes."""
        self.engine = engine
        self.indexes = indexes
        self._slow_query_logging = False

    async def _existing_index_columns(self, table: str) -> set[tuple[str, ...]]:
        """
        Get the column lists of the indexes already on a table.

        Raises:
            NoSuchTableError: If the table does not exist
        """

        def collect(sync_conn: Any) -> set[tuple[str, ...]]:
            inspector = inspect(sync_conn)
            return {
                tuple(index["column_names"]) for index in inspector.get_indexes(table)
            }

        async with self.engine.connect() as conn:
            return await conn.run_sync(collect)

    async def _create_index(self, definition: IndexDefinition) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text(definition.ddl()))

    async def ensure_indexes(self) -> dict[str, list[str]]:
        """
        Create every desired index that is not present yet.

        Each index is created in its own transaction, so one failure does not
        roll back the others.

        Returns:
            Report with ``created`` and ``skipped`` index names

        Raises:
            DBAPIError: For creation failures other than "already exists"
        """
        report: dict[str, list[str]] = {"created": [], "skipped": []}

        by_table: dict[str, list[IndexDefinition]] = {}
        for definition in self.indexes:
            by_table.setdefault(definition.table, []).append(definition)

        for table, definitions in by_table.items():
            try:
                existing = await self._existing_index_columns(table)
            except NoSuchTableError:
                logger.warning("index_table_missing", table=table)
                report["skipped"].extend(definition.name for definition in definitions)
                continue

            for definition in definitions:
                if definition.columns in existing:
                    report["skipped"].append(definition.name)
                    continue

                try:
                    await self._create_index(definition)
                except DBAPIError as e:
                    if not is_duplicate_index_error(e):
                        logger.error("index_creation_failed", index=definition.name, error=str(e))
                        raise
                    logger.info("index_already_exists", index=definition.name)
                    report["skipped"].append(definition.name)
                    continue

                existing.add(definition.columns)
                report["created"].append(definition.name)
                logger.info("index_created", index=definition.name, table=table)

        logger.info(
            "indexes_ensured",
            created=len(report["created"]),
            skipped=len(report["skipped"]),
        )
        return report

    async def health_check(self) -> dict[str, Any]:
        """Ping the database and report size and pool state."""
        start = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                ping_ms = round((time.perf_counter() - start) * 1000, 2)
                size = (
                    await conn.execute(text("SELECT pg_database_size(current_database())"))
                ).scalar()
        except Exception as e:
            logger.warning("database_health_check_failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}

        return {
            "status": "healthy",
            "ping_ms": ping_ms,
            "database_size_bytes": size,
            "pool": self.engine.pool.status(),
        }

    async def collection_stats(self) -> dict[str, dict[str, Any]]:
        """Get row counts and storage sizes per table."""
        stmt = text(
            "SELECT relname, n_live_tup, pg_total_relation_size(relid) AS total_size, "
            "pg_indexes_size(relid) AS index_size "
            "FROM pg_stat_user_tables WHERE relname = ANY(:tables)"
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt, {"tables": list(MAINTAINED_TABLES)})
            rows = result.mappings().all()

        return {
            row["relname"]: {
                "rows": row["n_live_tup"],
                "total_size_bytes": row["total_size"],
                "index_size_bytes": row["index_size"],
            }
            for row in rows
        }

    async def compact(self) -> dict[str, Any]:
        """Run VACUUM ANALYZE on every maintained table."""
        start = time.perf_counter()
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            for table in MAINTAINED_TABLES:
                await conn.execute(text(f"VACUUM ANALYZE {table}"))

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info("database_compacted", tables=list(MAINTAINED_TABLES), duration_ms=duration_ms)
        return {"tables": list(MAINTAINED_TABLES), "duration_ms": duration_ms}

    async def cleanup(self, days_to_keep: int | None = None) -> dict[str, Any]:
        """
        Purge retired catalog services past retention.

        Appointments are clinical records and are never deleted here; their
        retention is handled outside the API. Appointments that referenced a
        purged service keep their ``service_requested`` title and lose only
        the ``service_id`` link.

        Args:
            days_to_keep: Retention period; defaults to the configured value

        Returns:
            Cutoff timestamp and number of deleted services
        """
        days = settings.cleanup_days_to_keep if days_to_keep is None else days_to_keep
        cutoff = datetime.now(UTC) - timedelta(days=days)

        async with self.engine.begin() as conn:
            result = await conn.execute(
                delete(healthcare_services).where(
                    and_(
                        healthcare_services.c.is_active.is_(False),
                        healthcare_services.c.updated_at < cutoff,
                    )
                )
            )

        stats = {"cutoff": cutoff.isoformat(), "services_deleted": result.rowcount}
        logger.info("database_cleanup_completed", **stats)
        return stats

    def enable_slow_query_logging(self, threshold_ms: int | None = None) -> None:
        """Log statements slower than the threshold; safe to call repeatedly."""
        if self._slow_query_logging:
            return

        threshold = settings.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        sync_engine = self.engine.sync_engine

        @event.listens_for(sync_engine, "before_cursor_execute")
        def before_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]  # noqa: E501
            conn.info.setdefault("query_start_time", []).append(time.perf_counter())

        @event.listens_for(sync_engine, "after_cursor_execute")
        def after_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]  # noqa: E501
            started = conn.info["query_start_time"].pop()
            elapsed_ms = (time.perf_counter() - started) * 1000
            if elapsed_ms >= threshold:
                logger.warning(
                    "slow_query",
                    duration_ms=round(elapsed_ms, 2),
                    statement=statement[:500],
                )

        self._slow_query_logging = True
        logger.info("slow_query_logging_enabled", threshold_ms=threshold)


def get_db_optimizer() -> DatabaseOptimizer:
    """Dependency returning an optimizer bound to the application engine."""
    return DatabaseOptimizer(engine)
