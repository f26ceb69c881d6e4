"""
Table layout shared by the SQL storage backends.
Columns are derived from the entity dataclasses, in field order.
"""

import json
from dataclasses import dataclass, fields
from typing import List, Tuple

from core.entities import User, Org, Emoji, Gitignore, License, RepoBranch

SQL_TYPES = {
    str: "TEXT",
    int: "BIGINT",
    bool: "BOOLEAN",
    tuple: "TEXT",  # JSON array
}


@dataclass(frozen=True)
class Table:
    """One entity table and its natural key."""
    name: str
    entity: type
    key: Tuple[str, ...]

    @property
    def columns(self) -> List[str]:
        return [f.name for f in fields(self.entity)]

    def create_sql(self) -> str:
        definitions = [
            f"{f.name} {SQL_TYPES[f.type]} NOT NULL" for f in fields(self.entity)
        ]
        definitions.append(f"PRIMARY KEY ({', '.join(self.key)})")
        return f"CREATE TABLE IF NOT EXISTS {self.name} ({', '.join(definitions)})"

    def upsert_sql(self, values: str) -> str:
        """
        INSERT ... ON CONFLICT DO UPDATE statement.

        Args:
            values: The VALUES clause body, e.g. "%s" or "(?, ?, ?)"
        """
        updates = [
            f"{column} = EXCLUDED.{column}"
            for column in self.columns
            if column not in self.key
        ]
        return (
            f"INSERT INTO {self.name} ({', '.join(self.columns)}) "
            f"VALUES {values} "
            f"ON CONFLICT ({', '.join(self.key)}) "
            f"DO UPDATE SET {', '.join(updates)}"
        )

    def row(self, record) -> tuple:
        return tuple(
            json.dumps(list(value)) if isinstance(value, tuple) else value
            for value in (getattr(record, column) for column in self.columns)
        )


USERS = Table("users", User, ("login",))
ORGS = Table("orgs", Org, ("login",))
EMOJIS = Table("emojis", Emoji, ("name",))
GITIGNORES = Table("gitignores", Gitignore, ("name",))
LICENSES = Table("licenses", License, ("key",))
REPO_BRANCHES = Table("repo_branches", RepoBranch, ("repo", "name"))

TABLES = (USERS, ORGS, EMOJIS, GITIGNORES, LICENSES, REPO_BRANCHES)
