"""
Selects the storage backend named in the configuration.
"""

import logging

from core.errors import ConfigError
from core.storage import StoragePort
from infrastructure.config import (
    DATABASE_MEMORY,
    DATABASE_POSTGRESQL,
    DATABASE_SQLITE3,
    DatabaseConfig,
)
from infrastructure.memory_storage import MemoryStorage
from infrastructure.sqlite_storage import SQLiteStorage

logger = logging.getLogger(__name__)


def create_storage(config: DatabaseConfig) -> StoragePort:
    """
    Build (but do not initialize) the configured backend.

    Raises:
        ConfigError: For an unknown backend or missing parameters
    """
    logger.info(f"Using {config.type} storage")

    if config.type == DATABASE_MEMORY:
        return MemoryStorage()

    if config.type == DATABASE_SQLITE3:
        return SQLiteStorage(config.sqlite3_path)

    if config.type == DATABASE_POSTGRESQL:
        # psycopg2 is only needed when PostgreSQL is selected
        from infrastructure.postgres_storage import PostgresStorage
        return PostgresStorage(dsn=config.postgresql_dsn or None)

    raise ConfigError(f"Unknown database type {config.type!r}")
