"""
Core domain entities for GitHubCrawler.
These represent the business objects in our system.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class User:
    """
    GitHub user account as returned by /users/{login}.
    """
    login: str
    user_id: int
    name: str = ""
    company: str = ""
    blog: str = ""
    location: str = ""
    email: str = ""
    bio: str = ""
    user_type: str = ""
    public_repos: int = 0
    followers: int = 0
    following: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class Org:
    """
    GitHub organization as returned by /orgs/{login}.
    """
    login: str
    org_id: int
    name: str = ""
    description: str = ""
    blog: str = ""
    location: str = ""
    email: str = ""
    public_repos: int = 0
    followers: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class Emoji:
    name: str
    url: str


@dataclass(frozen=True)
class Gitignore:
    name: str
    source: str


@dataclass(frozen=True)
class License:
    """
    License metadata as returned by /licenses/{key}.
    """
    key: str
    name: str
    spdx_id: str = ""
    url: str = ""
    html_url: str = ""
    description: str = ""
    implementation: str = ""
    body: str = ""
    permissions: tuple = ()
    conditions: tuple = ()
    limitations: tuple = ()


@dataclass(frozen=True)
class RepoBranch:
    """
    A single branch of a repository.
    """
    repo: str
    name: str
    commit_sha: str = ""
    protected: bool = False

    @property
    def branch_id(self) -> str:
        """Returns the unique identifier (repo:branch)."""
        return f"{self.repo}:{self.name}"


@dataclass(frozen=True)
class QuotaSnapshot:
    """
    Rate limit state reported by the API for one token.
    """
    remaining: int
    limit: int
    reset_at: float


@dataclass
class Credential:
    """
    One API token plus its tracked quota state.
    Owned and mutated by the credential pool only.
    """
    index: int
    token: str
    remaining: int = 5000
    limit: int = 5000
    reset_at: float = 0.0
    last_used: Optional[float] = None

    @property
    def label(self) -> str:
        """Short token fingerprint that is safe to log."""
        return hashlib.sha256(self.token.encode()).hexdigest()[:12]

    def snapshot(self) -> QuotaSnapshot:
        return QuotaSnapshot(
            remaining=self.remaining,
            limit=self.limit,
            reset_at=self.reset_at,
        )


class Classification(Enum):
    """How the engine handled one dispatched task."""
    LISTING = "listing"
    DETAIL = "detail"
    RETRY = "retry"
    DROPPED = "dropped"
    MALFORMED = "malformed"
    STORAGE_FAILED = "storage_failed"
    STOPPED = "stopped"


@dataclass
class Outcome:
    """
    Result of dispatching a single crawl task.
    """
    classification: Classification
    records_written: int = 0
    records_skipped: int = 0
    tasks_enqueued: int = 0
    error: Optional[str] = None


@dataclass
class CrawlSummary:
    """
    Aggregate counters for a whole crawl run.
    """
    requests: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0
    storage_failures: int = 0
    tasks_enqueued: int = 0
    duration_seconds: float = 0.0
    by_classification: dict = field(default_factory=dict)

    def record(self, outcome: Outcome):
        """Fold a single task outcome into the totals."""
        key = outcome.classification.value
        self.by_classification[key] = self.by_classification.get(key, 0) + 1

        self.created += outcome.records_written
        self.skipped += outcome.records_skipped
        self.tasks_enqueued += outcome.tasks_enqueued

        if outcome.classification == Classification.STOPPED:
            return

        self.requests += 1
        if outcome.classification == Classification.RETRY:
            self.retried += 1
        elif outcome.classification in (Classification.DROPPED, Classification.MALFORMED):
            self.dropped += 1
            self.failed += 1
        elif outcome.classification == Classification.STORAGE_FAILED:
            self.storage_failures += 1
            self.failed += 1
