"""
Storage port for crawled entities.

The crawl engine only talks to this interface; every backend in
infrastructure/ implements it.
"""

from abc import ABC, abstractmethod
from typing import List

from core.entities import User, Org, Emoji, Gitignore, License, RepoBranch


class StoragePort(ABC):
    """
    Abstract interface for entity persistence.

    Every create_* call must behave as an upsert: storing the same record
    twice leaves the store as if it had been stored once. Backend failures
    are raised as core.errors.StorageError.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Create tables / structures if they do not exist."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections."""
        pass

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def create_user(self, user: User) -> None:
        pass

    @abstractmethod
    def create_org(self, org: Org) -> None:
        pass

    @abstractmethod
    def create_emoji(self, emojis: List[Emoji]) -> None:
        pass

    @abstractmethod
    def create_gitignore(self, gitignore: Gitignore) -> None:
        pass

    @abstractmethod
    def create_license(self, license: License) -> None:
        pass

    @abstractmethod
    def create_repo_branches(self, branches: List[RepoBranch]) -> None:
        pass

    @abstractmethod
    def count_users(self) -> int:
        pass

    @abstractmethod
    def count_orgs(self) -> int:
        pass

    @abstractmethod
    def count_emojis(self) -> int:
        pass

    @abstractmethod
    def count_gitignores(self) -> int:
        pass

    @abstractmethod
    def count_licenses(self) -> int:
        pass

    @abstractmethod
    def count_repo_branches(self) -> int:
        pass

    @abstractmethod
    def list_user_ids(self) -> List[str]:
        """Logins of every stored user."""
        pass

    @abstractmethod
    def list_org_ids(self) -> List[str]:
        """Logins of every stored organization."""
        pass

    @abstractmethod
    def list_gitignore_ids(self) -> List[str]:
        pass

    @abstractmethod
    def list_license_ids(self) -> List[str]:
        pass

    def counts(self) -> dict:
        """Per-entity record counts."""
        return {
            "users": self.count_users(),
            "orgs": self.count_orgs(),
            "emojis": self.count_emojis(),
            "gitignores": self.count_gitignores(),
            "licenses": self.count_licenses(),
            "repo_branches": self.count_repo_branches(),
        }
