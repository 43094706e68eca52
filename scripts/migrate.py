"""Run, create or roll back Alembic migrations.

Usage:
    python scripts/migrate.py                   upgrade to head
    python scripts/migrate.py create <message>  autogenerate a revision
    python scripts/migrate.py downgrade <rev>   roll back to a revision
"""

import sys

import structlog

from alembic import command
from alembic.config import Config
from healthnexus.middleware.logging import configure_logging

logger = structlog.get_logger(__name__)

ALEMBIC_INI = "alembic.ini"


def run_migrations(target: str = "head") -> None:
    """Upgrade the database to a revision."""
    logger.info("migration_upgrade_started", target=target)
    command.upgrade(Config(ALEMBIC_INI), target)
    logger.info("migration_upgrade_completed", target=target)


def rollback(target: str) -> None:
    """Downgrade the database to a revision."""
    logger.info("migration_downgrade_started", target=target)
    command.downgrade(Config(ALEMBIC_INI), target)
    logger.info("migration_downgrade_completed", target=target)


def create_migration(message: str) -> None:
    """Autogenerate a new revision from the table metadata."""
    command.revision(Config(ALEMBIC_INI), message=message, autogenerate=True)
    logger.info("migration_created", message=message)


def main(argv: list[str]) -> int:
    """Dispatch the command line."""
    try:
        if not argv:
            run_migrations()
        elif argv[0] == "create" and len(argv) > 1:
            create_migration(" ".join(argv[1:]))
        elif argv[0] == "downgrade" and len(argv) == 2:
            rollback(argv[1])
        else:
            print(__doc__)
            return 2
    except Exception as e:
        logger.error("migration_failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(main(sys.argv[1:]))
