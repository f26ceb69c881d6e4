"""
In-memory storage backend, used for dry runs and tests.
"""

import logging
import threading
from typing import List

from core.entities import User, Org, Emoji, Gitignore, License, RepoBranch
from core.storage import StoragePort

logger = logging.getLogger(__name__)


class MemoryStorage(StoragePort):
    """
    Keeps every entity in dictionaries keyed by its identifier, so a
    repeated create replaces the previous value.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.users = {}
        self.orgs = {}
        self.emojis = {}
        self.gitignores = {}
        self.licenses = {}
        self.repo_branches = {}

    def initialize(self) -> None:
        logger.info("Using in-memory storage; nothing will be persisted")

    def close(self) -> None:
        pass

    def create_user(self, user: User) -> None:
        with self._lock:
            self.users[user.login] = user

    def create_org(self, org: Org) -> None:
        with self._lock:
            self.orgs[org.login] = org

    def create_emoji(self, emojis: List[Emoji]) -> None:
        with self._lock:
            for emoji in emojis:
                self.emojis[emoji.name] = emoji

    def create_gitignore(self, gitignore: Gitignore) -> None:
        with self._lock:
            self.gitignores[gitignore.name] = gitignore

    def create_license(self, license: License) -> None:
        with self._lock:
            self.licenses[license.key] = license

    def create_repo_branches(self, branches: List[RepoBranch]) -> None:
        with self._lock:
            for branch in branches:
                self.repo_branches[branch.branch_id] = branch

    def count_users(self) -> int:
        return len(self.users)

    def count_orgs(self) -> int:
        return len(self.orgs)

    def count_emojis(self) -> int:
        return len(self.emojis)

    def count_gitignores(self) -> int:
        return len(self.gitignores)

    def count_licenses(self) -> int:
        return len(self.licenses)

    def count_repo_branches(self) -> int:
        return len(self.repo_branches)

    def list_user_ids(self) -> List[str]:
        with self._lock:
            return list(self.users)

    def list_org_ids(self) -> List[str]:
        with self._lock:
            return list(self.orgs)

    def list_gitignore_ids(self) -> List[str]:
        with self._lock:
            return list(self.gitignores)

    def list_license_ids(self) -> List[str]:
        with self._lock:
            return list(self.licenses)
