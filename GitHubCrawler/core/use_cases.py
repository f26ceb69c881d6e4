"""
Business logic / use cases for crawling GitHub entities.
This layer runs the crawl engine on a pool of worker threads.
"""

import logging
import queue
import threading
import time
from typing import Iterable, List

from core.engine import CrawlEngine
from core.entities import Classification, CrawlSummary, Outcome
from core.storage import StoragePort
from core.tasks import CrawlTask, TaskKind

logger = logging.getLogger(__name__)


def wait_for_drain(
    task_queue: queue.Queue,
    stopping: threading.Event,
    poll_interval: float,
) -> bool:
    """
    Block until every task put on the queue was marked done, or until
    stopping is set. Behaves like Queue.join() but wakes up every
    poll_interval seconds to check the stop flag.

    Returns:
        True if the queue drained, False if stopping was set first
    """
    # Waits on the same condition and counter Queue.join() uses (CPython queue module).
    with task_queue.all_tasks_done:
        while task_queue.unfinished_tasks:
            if stopping.is_set():
                return False
            task_queue.all_tasks_done.wait(poll_interval)
    return True


class CrawlGitHub:
    """
    Use case for crawling GitHub and storing every discovered entity.
    Handles resumption, worker lifecycle and the final summary.
    """

    def __init__(
        self,
        engine: CrawlEngine,
        storage: StoragePort,
        workers: int = 1,
        poll_interval: float = 0.5,
    ):
        """
        Initialize the use case.

        Args:
            engine: Crawl engine shared by all workers
            storage: Storage the engine writes to (used for resuming)
            workers: Number of worker threads
            poll_interval: Seconds between stop-flag checks while idle
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.engine = engine
        self.storage = storage
        self.workers = workers
        self.poll_interval = poll_interval

        self._summary = CrawlSummary()
        self._summary_lock = threading.Lock()

    @property
    def queue(self) -> queue.Queue:
        return self.engine.queue

    def resume(self) -> int:
        """
        Skip detail fetches for entities stored by a previous crawl.

        Returns:
            Number of identifiers loaded from storage
        """
        loaded = 0
        loaded += self.engine.mark_completed(TaskKind.USER, self.storage.list_user_ids())
        loaded += self.engine.mark_completed(TaskKind.ORG, self.storage.list_org_ids())
        loaded += self.engine.mark_completed(
            TaskKind.GITIGNORE_INFO, self.storage.list_gitignore_ids()
        )
        loaded += self.engine.mark_completed(
            TaskKind.LICENSE_INFO, self.storage.list_license_ids()
        )
        logger.info(f"Resuming crawl: {loaded:,} entities already stored")
        return loaded

    def execute(self, seeds: Iterable[CrawlTask], resume: bool = True) -> CrawlSummary:
        """
        Execute the crawl until every reachable task has been processed or
        the engine is stopped.

        Args:
            seeds: Initial tasks
            resume: Whether to skip entities already in storage

        Returns:
            Summary of the run
        """
        start_time = time.time()

        if resume:
            self.resume()
        else:
            logger.info("Starting new crawl (resume disabled)")

        seeded = sum(1 for task in seeds if self.engine.submit(task))
        logger.info(f"Seeded {seeded} tasks, starting {self.workers} workers")

        threads = self._start_workers()
        try:
            self._wait_until_drained()
        except KeyboardInterrupt:
            logger.info("Crawl interrupted by user, stopping workers")
            raise
        finally:
            self.engine.stop()
            for thread in threads:
                thread.join()

            with self._summary_lock:
                self._summary.duration_seconds = time.time() - start_time
            pending = self.queue.qsize()
            if pending:
                logger.warning(f"{pending} tasks were left unprocessed")

        logger.info(
            f"Crawl completed: {self._summary.created:,} records created, "
            f"{self._summary.failed:,} tasks failed in "
            f"{self._summary.duration_seconds:.2f} seconds"
        )
        return self._summary

    def _start_workers(self) -> List[threading.Thread]:
        threads = []
        for i in range(self.workers):
            thread = threading.Thread(
                target=self._work,
                name=f"crawler-worker-{i}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        return threads

    def _wait_until_drained(self) -> bool:
        return wait_for_drain(self.queue, self.engine.stopping, self.poll_interval)

    def _work(self):
        """Worker loop: pull tasks and dispatch them until stopped."""
        while not self.engine.stopping.is_set():
            try:
                task = self.queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            try:
                outcome = self.engine.dispatch(task)
            except Exception as e:
                # One broken task must not take the worker down with it.
                logger.error(f"Unexpected error on task {task}: {e}", exc_info=True)
                outcome = Outcome(Classification.DROPPED, error=str(e))

            with self._summary_lock:
                self._summary.record(outcome)
            self.queue.task_done()


class GetStorageStatistics:
    """
    Use case for retrieving per-entity counts from storage.
    """

    def __init__(self, storage: StoragePort):
        """
        Initialize the use case.

        Args:
            storage: Storage backend
        """
        self.storage = storage

    def execute(self) -> dict:
        """
        Get storage statistics.

        Returns:
            Dictionary with one count per entity kind and the total
        """
        counts = self.storage.counts()
        counts["total"] = sum(counts.values())
        return counts
