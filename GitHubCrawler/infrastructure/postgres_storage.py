"""
PostgreSQL storage backend with UPSERT support.
"""

import logging
import os
import threading
from typing import List, Optional

import psycopg2
from psycopg2.extras import execute_values
from psycopg2.extensions import connection

from core.entities import User, Org, Emoji, Gitignore, License, RepoBranch
from core.errors import StorageError
from core.storage import StoragePort
from infrastructure.schema import (
    TABLES,
    USERS,
    ORGS,
    EMOJIS,
    GITIGNORES,
    LICENSES,
    REPO_BRANCHES,
    Table,
)

logger = logging.getLogger(__name__)


class PostgresStorage(StoragePort):
    """
    PostgreSQL storage using ON CONFLICT upserts.
    One connection is shared by all workers, serialized by a lock.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: str = "localhost",
        port: int = 5432,
        database: str = "github_data",
        user: str = "github",
        password: str = "github",
    ):
        """
        Initialize database client.

        Args:
            dsn: libpq connection string; takes precedence over the fields below
            host: Database host
            port: Database port
            database: Database name
            user: Database user
            password: Database password
        """
        # Allow environment variable overrides
        self.dsn = os.environ.get("DB_DSN", dsn)
        self.host = os.environ.get("DB_HOST", host)
        self.port = int(os.environ.get("DB_PORT", port))
        self.database = os.environ.get("DB_NAME", database)
        self.user = os.environ.get("DB_USER", user)
        self.password = os.environ.get("DB_PASSWORD", password)

        self._conn: Optional[connection] = None
        self._lock = threading.Lock()

    def connect(self):
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            try:
                if self.dsn:
                    logger.info("Connecting to database using DSN")
                    self._conn = psycopg2.connect(self.dsn)
                else:
                    logger.info(
                        f"Connecting to database {self.database} at {self.host}:{self.port}"
                    )
                    self._conn = psycopg2.connect(
                        host=self.host,
                        port=self.port,
                        database=self.database,
                        user=self.user,
                        password=self.password,
                    )
            except psycopg2.Error as e:
                raise StorageError(f"Could not connect to PostgreSQL: {e}") from e
            logger.info("Database connection established")

    def close(self) -> None:
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    def initialize(self) -> None:
        """Create the entity tables if they don't exist."""
        self.connect()

        try:
            with self._lock, self._conn.cursor() as cursor:
                for table in TABLES:
                    cursor.execute(table.create_sql())
                self._conn.commit()
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StorageError(f"Could not create schema: {e}") from e

        logger.info("Database schema created successfully")

    def _upsert(self, table: Table, records: list):
        """
        Insert or update rows using INSERT ... ON CONFLICT.

        Args:
            table: Destination table
            records: Entities of the table's type
        """
        if not records:
            return

        self.connect()
        # A batch may repeat a key; ON CONFLICT cannot touch a row twice.
        rows = {}
        for record in records:
            row = table.row(record)
            key = tuple(row[table.columns.index(column)] for column in table.key)
            rows[key] = row

        try:
            with self._lock, self._conn.cursor() as cursor:
                execute_values(cursor, table.upsert_sql("%s"), list(rows.values()))
                self._conn.commit()
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StorageError(f"Could not write {table.name}: {e}") from e

        logger.debug(f"Upserted {len(rows)} rows into {table.name}")

    def _count(self, table: Table) -> int:
        self.connect()
        try:
            with self._lock, self._conn.cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) FROM {table.name}")
                return cursor.fetchone()[0]
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StorageError(f"Could not count {table.name}: {e}") from e

    def _ids(self, table: Table) -> List[str]:
        self.connect()
        column = table.key[0]
        try:
            with self._lock, self._conn.cursor() as cursor:
                cursor.execute(f"SELECT {column} FROM {table.name} ORDER BY {column}")
                return [row[0] for row in cursor.fetchall()]
        except psycopg2.Error as e:
            self._conn.rollback()
            raise StorageError(f"Could not list {table.name}: {e}") from e

    def create_user(self, user: User) -> None:
        self._upsert(USERS, [user])

    def create_org(self, org: Org) -> None:
        self._upsert(ORGS, [org])

    def create_emoji(self, emojis: List[Emoji]) -> None:
        self._upsert(EMOJIS, emojis)

    def create_gitignore(self, gitignore: Gitignore) -> None:
        self._upsert(GITIGNORES, [gitignore])

    def create_license(self, license: License) -> None:
        self._upsert(LICENSES, [license])

    def create_repo_branches(self, branches: List[RepoBranch]) -> None:
        self._upsert(REPO_BRANCHES, branches)

    def count_users(self) -> int:
        return self._count(USERS)

    def count_orgs(self) -> int:
        return self._count(ORGS)

    def count_emojis(self) -> int:
        return self._count(EMOJIS)

    def count_gitignores(self) -> int:
        return self._count(GITIGNORES)

    def count_licenses(self) -> int:
        return self._count(LICENSES)

    def count_repo_branches(self) -> int:
        return self._count(REPO_BRANCHES)

    def list_user_ids(self) -> List[str]:
        return self._ids(USERS)

    def list_org_ids(self) -> List[str]:
        return self._ids(ORGS)

    def list_gitignore_ids(self) -> List[str]:
        return self._ids(GITIGNORES)

    def list_license_ids(self) -> List[str]:
        return self._ids(LICENSES)
