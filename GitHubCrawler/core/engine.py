"""
Crawl engine: dispatches one crawl task through the credential pool, the
rate governor and the HTTP client, classifies the response, writes records
to storage and schedules follow-up tasks.
"""

import json
import logging
import queue
import threading
from typing import Callable, Dict, Iterable, List, Optional

from core.entities import Classification, Credential, Outcome
from core.errors import (
    MalformedResponseError,
    QuotaExceededError,
    StorageError,
    TransportError,
)
from core.mapping import (
    listing_elements,
    map_branch,
    map_each,
    map_emojis,
    map_gitignore,
    map_license,
    map_license_key,
    map_login,
    map_org,
    map_repo_full_name,
    map_template_name,
    map_user,
    next_page_url,
)
from core.storage import StoragePort
from core.tasks import (
    CrawlTask,
    TaskKind,
    followers_task,
    following_task,
    gitignore_info_task,
    license_info_task,
    org_list_task,
    org_members_task,
    org_task,
    repo_branches_task,
    repo_list_task,
    user_task,
)
from infrastructure.credentials import CredentialPool
from infrastructure.http_client import GitHubHttpClient, HttpResponse
from infrastructure.retry_utils import RateGovernor, backoff_delay

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = (403, 429)

# Detail kinds whose identifiers can be loaded back from storage on resume.
RESUMABLE_KINDS = {
    TaskKind.USER: user_task,
    TaskKind.ORG: org_task,
    TaskKind.GITIGNORE_INFO: gitignore_info_task,
    TaskKind.LICENSE_INFO: license_info_task,
}


class CrawlEngine:
    """
    Stateless per task; the only shared state is the credential pool, the
    task queue and the set of fetches already scheduled in this run.
    """

    USER_AGENT = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/93.0.4577.63 Safari/537.36"
    )
    TIMEZONE = "Asia/Shanghai"
    ACCEPT = "application/vnd.github+json"

    def __init__(
        self,
        http: GitHubHttpClient,
        pool: CredentialPool,
        governor: RateGovernor,
        storage: StoragePort,
        task_queue: Optional[queue.Queue] = None,
        user_agent: Optional[str] = None,
        timezone: Optional[str] = None,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        backoff_cap: float = 120.0,
    ):
        """
        Args:
            http: Adapter performing the actual request
            pool: Credential pool shared by all workers
            governor: Computes per-credential waits
            storage: Destination of crawled records
            task_queue: Queue follow-up tasks are put on
            user_agent: User-Agent header value
            timezone: Time-Zone header value
            max_retries: Retries per task before it is dropped
            backoff_base: First retry delay in seconds
            backoff_cap: Upper bound of a retry delay in seconds
        """
        self.http = http
        self.pool = pool
        self.governor = governor
        self.storage = storage
        self.queue = task_queue if task_queue is not None else queue.Queue()
        self.user_agent = user_agent or self.USER_AGENT
        self.timezone = timezone or self.TIMEZONE
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap

        self._scheduled = set()
        self._scheduled_lock = threading.Lock()

        self._handlers: Dict[TaskKind, Callable[[CrawlTask, object, Outcome], None]] = {
            TaskKind.USER: self._handle_user,
            TaskKind.ORG: self._handle_org,
            TaskKind.GITIGNORE_INFO: self._handle_gitignore,
            TaskKind.LICENSE_INFO: self._handle_license,
            TaskKind.EMOJI: self._handle_emojis,
            TaskKind.FOLLOWERS: self._handle_accounts,
            TaskKind.FOLLOWING: self._handle_accounts,
            TaskKind.ORG_MEMBERS: self._handle_accounts,
            TaskKind.ORG_LIST: self._handle_org_list,
            TaskKind.GITIGNORE_LIST: self._handle_gitignore_list,
            TaskKind.LICENSE_LIST: self._handle_license_list,
            TaskKind.REPO_LIST: self._handle_repo_list,
            TaskKind.REPO_BRANCHES: self._handle_branches,
        }

    @property
    def stopping(self) -> threading.Event:
        return self.pool.stopping

    def stop(self):
        """Ask every worker to exit without starting new requests."""
        self.stopping.set()

    def submit(self, task: CrawlTask) -> bool:
        """
        Queue a task unless the same fetch was already scheduled in this run.

        Returns:
            True if the task was queued
        """
        with self._scheduled_lock:
            if task.key in self._scheduled:
                return False
            self._scheduled.add(task.key)
        self.queue.put(task)
        return True

    def mark_completed(self, kind: TaskKind, identifiers: Iterable[str]) -> int:
        """
        Record detail fetches finished by a previous run so they are not
        scheduled again.

        Returns:
            Number of identifiers registered
        """
        factory = RESUMABLE_KINDS[kind]
        keys = [factory(identifier).key for identifier in identifiers]
        with self._scheduled_lock:
            self._scheduled.update(keys)
        return len(keys)

    def dispatch(self, task: CrawlTask) -> Outcome:
        """
        Fetch one task and act on the response.

        Args:
            task: Task to run

        Returns:
            Outcome describing what was written and scheduled
        """
        if self.stopping.is_set():
            return Outcome(Classification.STOPPED)

        credential = self._acquire(task)
        if credential is None:
            return Outcome(Classification.STOPPED)

        try:
            response = self.http.do("GET", task.url, self._headers(credential))
        except TransportError as e:
            return self._retry(task, e)

        self._record_quota(credential, response)

        outcome = Outcome(Classification.DETAIL)
        try:
            self._classify(task, response, outcome)
        except QuotaExceededError as e:
            return self._retry(task, e, retry_after=e.retry_after)
        except MalformedResponseError as e:
            logger.error(f"Dropping task kind={task.kind.value} path={task.path} reason=malformed: {e}")
            outcome.classification = Classification.MALFORMED
            outcome.error = str(e)

        return outcome

    def _acquire(self, task: CrawlTask) -> Optional[Credential]:
        """Pick a credential and wait until it may be used."""
        credential = self.pool.await_available(self.pool.next().index)
        if credential is None:
            return None

        wait_time = self.pool.reserve(credential.index, self.governor, task.not_before)
        if wait_time > 0:
            logger.debug(f"Waiting {wait_time:.1f}s before {task}")
            self.pool.sleep(wait_time)

        if self.stopping.is_set():
            return None
        return credential

    def _headers(self, credential: Credential) -> dict:
        return {
            "Authorization": f"Bearer {credential.token}",
            "User-Agent": self.user_agent,
            "Time-Zone": self.timezone,
            "Accept": self.ACCEPT,
        }

    def _record_quota(self, credential: Credential, response: HttpResponse):
        headers = response.headers
        try:
            remaining = int(headers["X-RateLimit-Remaining"])
            limit = int(headers["X-RateLimit-Limit"])
            reset_at = float(headers["X-RateLimit-Reset"])
        except (KeyError, TypeError, ValueError):
            return
        self.pool.record_quota(credential.index, remaining, limit, reset_at)

    def _is_rate_limited(self, response: HttpResponse, body_message: str) -> bool:
        if response.status == 429:
            return True
        if response.headers.get("Retry-After"):
            return True
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        message = body_message.lower()
        return "rate limit" in message or "abuse" in message

    def _classify(self, task: CrawlTask, response: HttpResponse, outcome: Outcome):
        if response.status in RATE_LIMIT_STATUSES:
            message = _error_message(response.body)
            if self._is_rate_limited(response, message):
                raise QuotaExceededError(
                    response.status,
                    retry_after=_retry_after(response),
                    message=message,
                )

        if response.status != 200:
            logger.warning(
                f"Dropping task kind={task.kind.value} path={task.path} "
                f"reason=http {response.status}"
            )
            outcome.classification = Classification.DROPPED
            outcome.error = f"HTTP {response.status}"
            return

        try:
            body = json.loads(response.body)
        except ValueError as e:
            raise MalformedResponseError(f"invalid JSON body: {e}") from e

        if task.is_listing:
            outcome.classification = Classification.LISTING
        self._handlers[task.kind](task, body, outcome)

        if task.is_listing:
            url = next_page_url(response.headers)
            if url and self.submit(task.next_page(url)):
                outcome.tasks_enqueued += 1

    def _retry(self, task: CrawlTask, error: Exception, retry_after: Optional[float] = None) -> Outcome:
        if task.attempt >= self.max_retries:
            logger.error(
                f"Dropping task kind={task.kind.value} path={task.path} "
                f"after {task.attempt + 1} attempts: {error}"
            )
            return Outcome(Classification.DROPPED, error=str(error))

        delay = backoff_delay(
            task.attempt,
            base_delay=self.backoff_base,
            max_delay=self.backoff_cap,
            retry_after=retry_after,
        )
        self.queue.put(task.retry(self.pool.clock() + delay))
        logger.warning(
            f"Retrying task kind={task.kind.value} path={task.path} "
            f"attempt={task.attempt + 1}/{self.max_retries} in {delay:.1f}s: {error}"
        )
        return Outcome(Classification.RETRY, tasks_enqueued=1, error=str(error))

    def _follow(self, tasks: List[CrawlTask], outcome: Outcome):
        for follow_up in tasks:
            if self.submit(follow_up):
                outcome.tasks_enqueued += 1

    def _store(self, task: CrawlTask, outcome: Outcome, write: Callable, records, count: int = 1):
        """
        Write records through the storage port.

        A failed write marks the outcome STORAGE_FAILED but does not abort the
        handler, so follow-ups and the next page are still scheduled.
        """
        try:
            write(records)
        except StorageError as e:
            logger.error(f"Storage failed kind={task.kind.value} path={task.path}: {e}")
            outcome.classification = Classification.STORAGE_FAILED
            outcome.error = str(e)
            return
        outcome.records_written += count

    def _elements(self, task: CrawlTask, body) -> list:
        elements = listing_elements(body)
        if elements is None:
            raise MalformedResponseError(f"{task.kind.value}: expected a collection body")
        return elements

    # Detail handlers

    def _handle_user(self, task, body, outcome):
        user = map_user(body)
        self._store(task, outcome, self.storage.create_user, user)
        self._follow([
            followers_task(user.login, origin=task.kind),
            following_task(user.login, origin=task.kind),
            org_list_task(user.login, origin=task.kind),
            repo_list_task(user.login, origin=task.kind),
        ], outcome)

    def _handle_org(self, task, body, outcome):
        org = map_org(body)
        self._store(task, outcome, self.storage.create_org, org)
        self._follow([org_members_task(org.login, origin=task.kind)], outcome)

    def _handle_gitignore(self, task, body, outcome):
        self._store(task, outcome, self.storage.create_gitignore, map_gitignore(body))

    def _handle_license(self, task, body, outcome):
        self._store(task, outcome, self.storage.create_license, map_license(body))

    # Listing handlers

    def _handle_emojis(self, task, body, outcome):
        emojis, skipped = map_emojis(body)
        outcome.records_skipped += skipped
        if emojis:
            self._store(task, outcome, self.storage.create_emoji, emojis, len(emojis))

    def _handle_accounts(self, task, body, outcome):
        logins, skipped = map_each(map_login, self._elements(task, body), task.kind.value)
        outcome.records_skipped += skipped
        self._follow([user_task(login, origin=task.kind) for login in logins], outcome)

    def _handle_org_list(self, task, body, outcome):
        logins, skipped = map_each(map_login, self._elements(task, body), task.kind.value)
        outcome.records_skipped += skipped
        self._follow([org_task(login, origin=task.kind) for login in logins], outcome)

    def _handle_gitignore_list(self, task, body, outcome):
        names, skipped = map_each(map_template_name, self._elements(task, body), task.kind.value)
        outcome.records_skipped += skipped
        self._follow([gitignore_info_task(name, origin=task.kind) for name in names], outcome)

    def _handle_license_list(self, task, body, outcome):
        keys, skipped = map_each(map_license_key, self._elements(task, body), task.kind.value)
        outcome.records_skipped += skipped
        self._follow([license_info_task(key, origin=task.kind) for key in keys], outcome)

    def _handle_repo_list(self, task, body, outcome):
        names, skipped = map_each(map_repo_full_name, self._elements(task, body), task.kind.value)
        outcome.records_skipped += skipped
        self._follow([repo_branches_task(name, origin=task.kind) for name in names], outcome)

    def _handle_branches(self, task, body, outcome):
        branches, skipped = map_each(
            lambda node: map_branch(node, task.subject),
            self._elements(task, body),
            task.kind.value,
        )
        outcome.records_skipped += skipped
        if branches:
            self._store(task, outcome, self.storage.create_repo_branches, branches, len(branches))


def _error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except ValueError:
        return ""
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return ""


def _retry_after(response: HttpResponse) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
