#!/usr/bin/env python3
"""
Main crawler script for GitHubCrawler.
Crawls users, organizations, emojis, gitignore templates, licenses and
repository branches from the GitHub REST API into the configured storage.
"""

import argparse
import logging
import sys

from core.engine import CrawlEngine
from core.errors import ConfigError, StorageError
from core.tasks import seed_tasks
from core.use_cases import CrawlGitHub, GetStorageStatistics
from infrastructure.config import CrawlerConfig
from infrastructure.credentials import CredentialPool
from infrastructure.http_client import GitHubHttpClient
from infrastructure.retry_utils import RateGovernor
from infrastructure.storage_factory import create_storage

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Crawl GitHub entities and store them"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="YAML configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "--no-resume",
        action="store_true",
        help="Start fresh instead of skipping entities already stored",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads (default: one per token)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Display storage statistics after crawl",
    )
    return parser.parse_args(argv)


def build_engine(config: CrawlerConfig, storage, http=None) -> CrawlEngine:
    """Wire the crawl engine from configuration."""
    return CrawlEngine(
        http=http or GitHubHttpClient(timeout=config.timeout),
        pool=CredentialPool(config.tokens),
        governor=RateGovernor(
            min_interval=config.sleep,
            reserve_threshold=config.reserve,
        ),
        storage=storage,
        user_agent=config.user_agent,
        timezone=config.timezone,
        max_retries=config.max_retries,
    )


def main(argv=None):
    """Main crawler entry point."""
    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = CrawlerConfig.load(args.config)
        if args.workers is not None:
            config.workers = args.workers
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info("=" * 60)
    logger.info("GitHubCrawler - GitHub Entity Crawler")
    logger.info("=" * 60)
    logger.info(f"Entry user: {config.entry}")
    logger.info(f"Tokens: {len(config.tokens)}, workers: {config.worker_count}")
    logger.info(f"Crawl groups: {', '.join(config.crawl)}")
    logger.info(f"Storage: {config.database.type}")
    logger.info(f"Resume mode: {not args.no_resume}")
    logger.info("=" * 60)

    try:
        storage = create_storage(config.database)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        with storage:
            engine = build_engine(config, storage)
            use_case = CrawlGitHub(engine, storage, workers=config.worker_count)

            try:
                summary = use_case.execute(
                    seed_tasks(config.entry, config.crawl),
                    resume=not args.no_resume,
                )
            finally:
                engine.http.close()

            logger.info("=" * 60)
            logger.info("Crawl Summary:")
            logger.info(f"  Requests: {summary.requests:,}")
            logger.info(f"  Records created: {summary.created:,}")
            logger.info(f"  Records skipped: {summary.skipped:,}")
            logger.info(f"  Tasks retried: {summary.retried:,}")
            logger.info(f"  Tasks failed: {summary.failed:,}")
            logger.info(f"  Duration: {summary.duration_seconds:.2f} seconds")
            for status in engine.pool.status():
                logger.info(
                    f"  Token {status['token']}: {status['remaining']}/{status['limit']} remaining"
                )
            logger.info("=" * 60)

            # Display statistics if requested
            if args.stats:
                stats = GetStorageStatistics(storage).execute()
                logger.info("Storage Statistics:")
                for name, count in stats.items():
                    logger.info(f"  {name:15s} {count:10,}")
                logger.info("=" * 60)

        logger.info("Crawl completed successfully!")
        return 0

    except KeyboardInterrupt:
        logger.info("\nCrawl interrupted by user.")
        return 130  # Standard exit code for SIGINT

    except StorageError as e:
        logger.error(f"Storage failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
