"""
HTTP client adapter for the GitHub REST API.
Performs a single request; retry policy lives in the crawl engine.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from core.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Status, headers and raw body of one response."""
    status: int
    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    body: str = ""


class GitHubHttpClient:
    """
    Thin wrapper around a requests.Session.
    Shared by all workers; requests.Session is safe for concurrent GETs.
    """

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """
        Args:
            timeout: Seconds to wait for connect and read
            session: Session to reuse (a new one is created otherwise)
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def do(self, method: str, url: str, headers: Mapping[str, str]) -> HttpResponse:
        """
        Issue one request.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Request headers

        Returns:
            HttpResponse for any HTTP status

        Raises:
            TransportError: On connection, DNS or timeout failures
        """
        try:
            response = self.session.request(
                method,
                url,
                headers=dict(headers),
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug(f"{method} {url} -> {response.status_code}")
        return HttpResponse(
            status=response.status_code,
            headers=CaseInsensitiveDict(response.headers),
            body=response.text,
        )

    def close(self):
        """Close the underlying session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
