"""
Crawl tasks: one pending fetch and the reason it was scheduled.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional
from urllib.parse import quote, urlsplit

DEFAULT_HOST = "https://api.github.com"
PER_PAGE = 100


class TaskKind(Enum):
    """Entity kind a task is pursuing."""
    USER = "user"
    FOLLOWERS = "followers"
    FOLLOWING = "following"
    ORG = "org"
    ORG_LIST = "org-list"
    ORG_MEMBERS = "org-members"
    EMOJI = "emoji"
    GITIGNORE_LIST = "gitignore-list"
    GITIGNORE_INFO = "gitignore-info"
    LICENSE_LIST = "license-list"
    LICENSE_INFO = "license-info"
    REPO_LIST = "repo-list"
    REPO_BRANCHES = "repo-branches"


LISTING_KINDS = frozenset({
    TaskKind.FOLLOWERS,
    TaskKind.FOLLOWING,
    TaskKind.ORG_LIST,
    TaskKind.ORG_MEMBERS,
    TaskKind.EMOJI,
    TaskKind.GITIGNORE_LIST,
    TaskKind.LICENSE_LIST,
    TaskKind.REPO_LIST,
    TaskKind.REPO_BRANCHES,
})

# Seed groups selectable from the "crawl" configuration key.
SEED_GROUPS = ("followers", "following", "user", "orgs", "emojis", "gitignore", "licenses", "repos")


@dataclass(frozen=True)
class CrawlTask:
    """
    One pending fetch. Host and path are enough to replay it.
    """
    kind: TaskKind
    path: str
    host: str = DEFAULT_HOST
    origin: Optional[TaskKind] = None
    subject: str = ""
    attempt: int = 0
    not_before: float = 0.0

    @property
    def url(self) -> str:
        return f"{self.host}{self.path}"

    @property
    def key(self) -> tuple:
        """Identity used to avoid scheduling the same fetch twice in a run."""
        return (self.kind, self.host, self.path)

    @property
    def is_listing(self) -> bool:
        return self.kind in LISTING_KINDS

    def retry(self, not_before: float) -> "CrawlTask":
        """Returns a copy scheduled for another attempt."""
        return replace(self, attempt=self.attempt + 1, not_before=not_before)

    def next_page(self, url: str) -> "CrawlTask":
        """Returns a task of the same kind pointing at the given page URL."""
        parts = urlsplit(url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        return CrawlTask(
            kind=self.kind,
            path=path,
            host=f"{parts.scheme}://{parts.netloc}",
            origin=self.kind,
            subject=self.subject,
        )

    def __str__(self) -> str:
        return f"{self.kind.value} {self.path}"


def _seg(value: str) -> str:
    return quote(value, safe="")


def user_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(TaskKind.USER, f"/users/{_seg(login)}", origin=origin, subject=login)


def followers_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.FOLLOWERS,
        f"/users/{_seg(login)}/followers?per_page={PER_PAGE}",
        origin=origin,
        subject=login,
    )


def following_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.FOLLOWING,
        f"/users/{_seg(login)}/following?per_page={PER_PAGE}",
        origin=origin,
        subject=login,
    )


def org_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(TaskKind.ORG, f"/orgs/{_seg(login)}", origin=origin, subject=login)


def org_list_task(login: Optional[str] = None, origin: Optional[TaskKind] = None) -> CrawlTask:
    """Organizations of one user, or every organization when login is None."""
    if login is None:
        return CrawlTask(TaskKind.ORG_LIST, f"/organizations?per_page={PER_PAGE}", origin=origin)
    return CrawlTask(
        TaskKind.ORG_LIST,
        f"/users/{_seg(login)}/orgs?per_page={PER_PAGE}",
        origin=origin,
        subject=login,
    )


def org_members_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.ORG_MEMBERS,
        f"/orgs/{_seg(login)}/members?per_page={PER_PAGE}",
        origin=origin,
        subject=login,
    )


def emoji_task() -> CrawlTask:
    return CrawlTask(TaskKind.EMOJI, "/emojis")


def gitignore_list_task() -> CrawlTask:
    return CrawlTask(TaskKind.GITIGNORE_LIST, "/gitignore/templates")


def gitignore_info_task(name: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.GITIGNORE_INFO,
        f"/gitignore/templates/{_seg(name)}",
        origin=origin,
        subject=name,
    )


def license_list_task() -> CrawlTask:
    return CrawlTask(TaskKind.LICENSE_LIST, f"/licenses?per_page={PER_PAGE}")


def license_info_task(key: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.LICENSE_INFO,
        f"/licenses/{_seg(key)}",
        origin=origin,
        subject=key,
    )


def repo_list_task(login: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    return CrawlTask(
        TaskKind.REPO_LIST,
        f"/users/{_seg(login)}/repos?per_page={PER_PAGE}",
        origin=origin,
        subject=login,
    )


def repo_branches_task(full_name: str, origin: Optional[TaskKind] = None) -> CrawlTask:
    owner, _, name = full_name.partition("/")
    return CrawlTask(
        TaskKind.REPO_BRANCHES,
        f"/repos/{_seg(owner)}/{_seg(name)}/branches?per_page={PER_PAGE}",
        origin=origin,
        subject=full_name,
    )


def seed_tasks(entry: str, groups: Iterable[str] = SEED_GROUPS) -> List[CrawlTask]:
    """
    Build the initial set of tasks for a crawl.

    Args:
        entry: Username the follower, following and repository crawls start from
        groups: Names from SEED_GROUPS to enable

    Returns:
        List of seed tasks, in a stable order
    """
    groups = set(groups)
    unknown = groups - set(SEED_GROUPS)
    if unknown:
        raise ValueError(f"Unknown crawl groups: {', '.join(sorted(unknown))}")

    builders = {
        "followers": lambda: followers_task(entry),
        "following": lambda: following_task(entry),
        "user": lambda: user_task(entry),
        "orgs": lambda: org_list_task(),
        "emojis": emoji_task,
        "gitignore": gitignore_list_task,
        "licenses": license_list_task,
        "repos": lambda: repo_list_task(entry),
    }
    return [builders[name]() for name in SEED_GROUPS if name in groups]
