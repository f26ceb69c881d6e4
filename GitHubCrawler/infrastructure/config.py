"""
Configuration loader for the crawler.
Reads a YAML file and applies environment variable overrides.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors import ConfigError
from core.tasks import SEED_GROUPS

logger = logging.getLogger(__name__)

DATABASE_MEMORY = "memory"
DATABASE_SQLITE3 = "sqlite3"
DATABASE_POSTGRESQL = "postgresql"
DATABASE_TYPES = (DATABASE_MEMORY, DATABASE_SQLITE3, DATABASE_POSTGRESQL)


@dataclass
class DatabaseConfig:
    """Selected storage backend and its connection parameters."""
    type: str = DATABASE_SQLITE3
    sqlite3_path: str = "github.db"
    postgresql_dsn: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        sqlite3 = data.get(DATABASE_SQLITE3) or {}
        postgresql = data.get(DATABASE_POSTGRESQL) or {}
        return cls(
            type=data.get("type", DATABASE_SQLITE3),
            sqlite3_path=sqlite3.get("path", "github.db"),
            postgresql_dsn=postgresql.get("dsn", ""),
        )


@dataclass
class CrawlerConfig:
    """
    Crawler configuration.

    Attributes:
        entry: Username the crawl starts from.
        tokens: GitHub API tokens, used round-robin.
        user_agent: User-Agent header sent with every request.
        timezone: Time-Zone header sent with every request.
        sleep: Minimum seconds between two requests on one token.
        workers: Number of worker threads (0 means one per token).
        max_retries: Retries per task before it is dropped.
        reserve: Remaining quota at which a token waits for its reset.
        timeout: Per-request timeout in seconds.
        crawl: Seed groups to start from.
        database: Storage backend settings.
    """

    entry: str = ""
    tokens: List[str] = field(default_factory=list)
    user_agent: Optional[str] = None
    timezone: Optional[str] = None
    sleep: float = 0.0
    workers: int = 0
    max_retries: int = 3
    reserve: int = 0
    timeout: float = 30.0
    crawl: List[str] = field(default_factory=lambda: list(SEED_GROUPS))
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def worker_count(self) -> int:
        return self.workers if self.workers > 0 else len(self.tokens)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlerConfig":
        """Build a config from the parsed YAML document."""
        tokens = data.get("token") or []
        if isinstance(tokens, str):
            tokens = [tokens]

        try:
            return cls(
                entry=data.get("entry") or "",
                tokens=[str(token) for token in tokens if token],
                user_agent=data.get("useragent"),
                timezone=data.get("timezone"),
                sleep=float(data.get("sleep", 0)),
                workers=int(data.get("workers", 0)),
                max_retries=int(data.get("max_retries", 3)),
                reserve=int(data.get("reserve", 0)),
                timeout=float(data.get("timeout", 30)),
                crawl=list(data.get("crawl") or SEED_GROUPS),
                database=DatabaseConfig.from_dict(data.get("database") or {}),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "CrawlerConfig":
        """
        Load configuration from a YAML file and the environment.

        Args:
            config_path: YAML file; skipped when None or missing

        Returns:
            Validated CrawlerConfig

        Raises:
            ConfigError: If the entry user or the tokens are missing
        """
        data: Dict[str, Any] = {}
        if config_path is not None:
            path = Path(config_path)
            if not path.exists():
                raise ConfigError(f"Config file {config_path} does not exist")
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Config {config_path} is not valid YAML: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {config_path} must be a mapping")

        config = cls.from_dict(data)
        config.apply_env()
        config.validate()
        return config

    def apply_env(self):
        """Override values from environment variables."""
        self.entry = os.environ.get("GITHUB_ENTRY", self.entry)

        tokens = os.environ.get("GITHUB_TOKENS")
        if tokens:
            self.tokens = [token.strip() for token in tokens.split(",") if token.strip()]
        elif not self.tokens and os.environ.get("GITHUB_TOKEN"):
            self.tokens = [os.environ["GITHUB_TOKEN"]]

        self.database.type = os.environ.get("CRAWLER_DB_TYPE", self.database.type)

    def validate(self):
        """Raise ConfigError for missing or inconsistent values."""
        if not self.entry:
            raise ConfigError("Missing required 'entry' username")
        if not self.tokens:
            raise ConfigError("At least one API token is required ('token')")
        if self.database.type not in DATABASE_TYPES:
            raise ConfigError(
                f"Unknown database type {self.database.type!r}, "
                f"expected one of {', '.join(DATABASE_TYPES)}"
            )
        unknown = set(self.crawl) - set(SEED_GROUPS)
        if unknown:
            raise ConfigError(f"Unknown crawl groups: {', '.join(sorted(unknown))}")
        if self.sleep < 0 or self.reserve < 0 or self.max_retries < 0:
            raise ConfigError("sleep, reserve and max_retries cannot be negative")
