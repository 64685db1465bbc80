"""Database initialization script using SQLAlchemy create_all().

Usage:
    python -m uc_helper.init_db [init|drop|reset]
"""

import asyncio
import sys
from typing import NoReturn, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from uc_helper.core.config import get_global_settings
from uc_helper.core.database import DatabaseManager
from uc_helper.core.logging import setup_logging
from uc_helper.core.models import Base

# Registers the tables on Base.metadata
from uc_helper.features.players import orm_models  # noqa: F401

logger = structlog.get_logger(__name__)


def _masked_url(url: str, password: str) -> str:
    return url.replace(password, "***") if password else url


async def init_db(db: Optional[DatabaseManager] = None) -> None:
    """Create every table registered on the declarative base.

    Raises:
        SQLAlchemyError: If connecting or creating the tables fails
    """
    settings = get_global_settings()
    db = db or DatabaseManager(settings)
    logger.info(
        "Initializing database",
        database_url=_masked_url(db.database_url, settings.postgres_password),
    )

    try:
        await db.create_all()
    except SQLAlchemyError as e:
        logger.error(
            "Database initialization failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await db.close()

    logger.info(
        "Database initialization completed successfully",
        tables_created=len(Base.metadata.tables),
        table_names=list(Base.metadata.tables.keys()),
    )


async def drop_all_tables(db: Optional[DatabaseManager] = None) -> None:
    """Drop all tables from the database.

    WARNING: This is destructive and will delete all data!

    Raises:
        SQLAlchemyError: If connecting or dropping the tables fails
    """
    db = db or DatabaseManager(get_global_settings())
    logger.warning("Dropping all database tables...")

    try:
        await db.drop_all()
    except SQLAlchemyError as e:
        logger.error(
            "Failed to drop database tables",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await db.close()

    logger.info("All database tables dropped successfully")


async def reset_db() -> None:
    """Drop and recreate all tables.

    WARNING: This is destructive and will delete all data!
    """
    logger.warning("Resetting database (drop + create)...")
    await drop_all_tables()
    await init_db()
    logger.info("Database reset completed successfully")


COMMANDS = {
    "init": init_db,
    "drop": drop_all_tables,
    "reset": reset_db,
}


def main() -> NoReturn:
    """Run CLI for database initialization commands.

    Supports commands:
    - init: Create all tables (default)
    - drop: Drop all tables (WARNING: destructive)
    - reset: Drop and recreate all tables (WARNING: destructive)
    """
    settings = get_global_settings()
    setup_logging(settings.log_level, json_output=False)

    command = sys.argv[1] if len(sys.argv) > 1 else "init"
    action = COMMANDS.get(command)
    if action is None:
        logger.error("Unknown command", command=command)
        print("Usage: python -m uc_helper.init_db [init|drop|reset]")
        sys.exit(1)

    asyncio.run(action())
    sys.exit(0)


if __name__ == "__main__":
    main()
