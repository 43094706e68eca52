"""Tests for database index management."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import NoSuchTableError, ProgrammingError

from healthnexus.services.db_optimizer import (
    DESIRED_INDEXES,
    DatabaseOptimizer,
    IndexDefinition,
    is_duplicate_index_error,
)


class DuplicateObject(Exception):
    sqlstate = "42P07"


class UndefinedColumn(Exception):
    sqlstate = "42703"


class InMemoryOptimizer(DatabaseOptimizer):
    """Optimizer whose catalog lives in a dict instead of Postgres."""

    def __init__(
        self,
        indexes=DESIRED_INDEXES,
        tables=("appointments", "healthcare_services", "users"),
    ):
        super().__init__(MagicMock(), indexes)
        self.catalog: dict[str, set[tuple[str, ...]]] = {table: set() for table in tables}
        self.failures: dict[str, Exception] = {}
        self.created: list[str] = []

    async def _existing_index_columns(self, table):
        if table not in self.catalog:
            raise NoSuchTableError(table)
        return set(self.catalog[table])

    async def _create_index(self, definition):
        if definition.name in self.failures:
            raise self.failures[definition.name]
        self.catalog[definition.table].add(definition.columns)
        self.created.append(definition.name)


def test_index_ddl():
    definition = IndexDefinition(
        "appointments",
        "ix_test",
        ("patient_id", "appointment_at"),
        frozenset({"appointment_at"}),
    )

    assert definition.ddl() == (
        "CREATE INDEX ix_test ON appointments (patient_id, appointment_at DESC)"
    )


def test_desired_index_names_are_unique():
    names = [definition.name for definition in DESIRED_INDEXES]
    assert len(names) == len(set(names))


@pytest.mark.asyncio
async def test_ensure_indexes_is_idempotent():
    optimizer = InMemoryOptimizer()

    first = await optimizer.ensure_indexes()
    second = await optimizer.ensure_indexes()

    assert sorted(first["created"]) == sorted(definition.name for definition in DESIRED_INDEXES)
    assert first["skipped"] == []
    assert second["created"] == []
    assert sorted(second["skipped"]) == sorted(definition.name for definition in DESIRED_INDEXES)
    assert len(optimizer.created) == len(DESIRED_INDEXES)


@pytest.mark.asyncio
async def test_existing_index_with_same_columns_is_skipped():
    optimizer = InMemoryOptimizer()
    optimizer.catalog["users"].add(("phone",))

    report = await optimizer.ensure_indexes()

    assert "ix_users_phone" in report["skipped"]
    assert "ix_users_phone" not in optimizer.created


@pytest.mark.asyncio
async def test_concurrent_creation_counts_as_skipped():
    optimizer = InMemoryOptimizer()
    optimizer.failures["ix_users_phone"] = ProgrammingError(
        "CREATE INDEX", {}, DuplicateObject('relation "ix_users_phone" already exists')
    )

    report = await optimizer.ensure_indexes()

    assert "ix_users_phone" in report["skipped"]
    assert len(report["created"]) == len(DESIRED_INDEXES) - 1


@pytest.mark.asyncio
async def test_other_creation_errors_are_raised():
    optimizer = InMemoryOptimizer()
    optimizer.failures["ix_users_phone"] = ProgrammingError(
        "CREATE INDEX", {}, UndefinedColumn('column "phone" does not exist')
    )

    with pytest.raises(ProgrammingError):
        await optimizer.ensure_indexes()


@pytest.mark.asyncio
async def test_missing_table_is_skipped():
    optimizer = InMemoryOptimizer(tables=("appointments", "healthcare_services"))

    report = await optimizer.ensure_indexes()

    assert {"ix_users_phone", "ix_users_active_role"} <= set(report["skipped"])
    assert "ix_appointments_patient_date_status" in report["created"]


def test_is_duplicate_index_error():
    duplicate = ProgrammingError("CREATE INDEX", {}, DuplicateObject("duplicate"))
    other = ProgrammingError("CREATE INDEX", {}, UndefinedColumn("no such column"))

    assert is_duplicate_index_error(duplicate)
    assert not is_duplicate_index_error(other)


@pytest.mark.asyncio
async def test_cleanup_only_purges_retired_services():
    conn = MagicMock()
    conn.execute = AsyncMock(return_value=MagicMock(rowcount=2))

    @asynccontextmanager
    async def begin():
        yield conn

    engine = MagicMock()
    engine.begin = begin

    stats = await DatabaseOptimizer(engine).cleanup(days_to_keep=30)

    assert stats["services_deleted"] == 2
    assert "appointments_deleted" not in stats
    conn.execute.assert_awaited_once()
    statement = conn.execute.await_args.args[0]
    assert statement.table.name == "healthcare_services"
    assert "is_active" in str(statement)
