#!/usr/bin/env python3
"""
Database setup script for GitHubCrawler.
Creates the tables of the configured storage backend.
"""

import argparse
import logging
import sys

from core.errors import ConfigError, StorageError
from infrastructure.config import CrawlerConfig
from infrastructure.storage_factory import create_storage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def main(argv=None):
    """Initialize storage schema."""
    parser = argparse.ArgumentParser(description="Create the crawler storage schema")
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="YAML configuration file (default: config.yaml)",
    )
    args = parser.parse_args(argv)

    try:
        logger.info("Starting database setup...")

        config = CrawlerConfig.load(args.config)
        storage = create_storage(config.database)

        with storage:
            counts = storage.counts()

        logger.info(f"Database setup completed successfully! Current counts: {counts}")
        return 0

    except (ConfigError, StorageError) as e:
        logger.error(f"Database setup failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
