"""
SQLite storage backend (no server required).
"""

import logging
import sqlite3
import threading
from typing import List, Optional

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


class SQLiteStorage(StoragePort):
    """
    SQLite database shared by all crawl workers.

    A single connection is used from every thread, serialized by a lock.
    """

    def __init__(self, db_path: str = "github.db"):
        """
        Args:
            db_path: Database file path (":memory:" for a throwaway database)
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def connect(self):
        """Open the database file."""
        if self._conn is None:
            logger.info(f"Opening SQLite database {self.db_path}")
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)

    def initialize(self) -> None:
        """Create the entity tables if they don't exist."""
        self.connect()
        try:
            with self._lock:
                for table in TABLES:
                    self._conn.execute(table.create_sql())
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not create schema: {e}") from e

        logger.info("SQLite schema ready")

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _upsert(self, table: Table, records: list):
        if not records:
            return

        self.connect()
        placeholders = "(" + ", ".join("?" for _ in table.columns) + ")"
        try:
            with self._lock:
                self._conn.executemany(
                    table.upsert_sql(placeholders),
                    [table.row(record) for record in records],
                )
                self._conn.commit()
        except sqlite3.Error as e:
            with self._lock:
                self._conn.rollback()
            raise StorageError(f"Could not write {table.name}: {e}") from e

        logger.debug(f"Upserted {len(records)} rows into {table.name}")

    def _count(self, table: Table) -> int:
        self.connect()
        try:
            with self._lock:
                return self._conn.execute(f"SELECT COUNT(*) FROM {table.name}").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(f"Could not count {table.name}: {e}") from e

    def _ids(self, table: Table) -> List[str]:
        self.connect()
        column = table.key[0]
        try:
            with self._lock:
                rows = self._conn.execute(
                    f"SELECT {column} FROM {table.name} ORDER BY {column}"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Could not list {table.name}: {e}") from e
        return [row[0] for row in rows]

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
