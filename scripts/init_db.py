"""Create the schema and the secondary indexes on a fresh database."""

import asyncio

import structlog

from healthnexus.database import create_schema, engine
from healthnexus.middleware.logging import configure_logging
from healthnexus.models import metadata
from healthnexus.services.db_optimizer import DatabaseOptimizer

logger = structlog.get_logger(__name__)


async def init_db() -> None:
    """Create every table, then ensure the indexes the query paths use."""
    await create_schema(engine)
    logger.info("database_tables_created", tables=sorted(metadata.tables))

    report = await DatabaseOptimizer(engine).ensure_indexes()
    logger.info("database_initialized", **report)

    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
