"""
Error taxonomy for the crawler.
Only ConfigError is fatal; everything else is isolated to a single task.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base exception for all crawler-related errors."""
    pass


class ConfigError(CrawlerError):
    """Raised when the configuration is missing a required value."""
    pass


class TransportError(CrawlerError):
    """Raised when a request fails before a response is received."""
    pass


class QuotaExceededError(CrawlerError):
    """Raised when the API answers with a secondary rate limit (403/429)."""
    def __init__(self, status: int, retry_after: Optional[float] = None, message: str = ""):
        self.status = status
        self.retry_after = retry_after
        detail = f" ({message})" if message else ""
        super().__init__(f"Rate limited with HTTP {status}{detail}")


class MalformedResponseError(CrawlerError):
    """Raised when a response body does not have the expected shape."""
    pass


class StorageError(CrawlerError):
    """Raised when a storage backend fails to persist or query records."""
    pass
