"""
Abstract repository backend and shared data classes.

A repository backs the workspace of exactly one sandbox and is addressed by
its name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


class RepositoryError(Exception):
    """Base class for repository backend failures."""

    def __init__(self, message: str, name: str | None = None):
        self.name = name
        super().__init__(message)


class RepositoryAlreadyExistsError(RepositoryError):
    def __init__(self, name: str):
        super().__init__(f"Repository already exists: {name}", name)


class RepositoryNotFoundError(RepositoryError):
    def __init__(self, name: str):
        super().__init__(f"Repository not found: {name}", name)


@dataclass
class RepositoryTemplate:
    """Starter files written into a freshly created repository."""

    readme: bool = True
    gitignore: bool = True
    project_config: bool = True


@dataclass
class Repository:
    """Metadata about a sandbox repository."""

    name: str
    path: str
    created_at: datetime | None = None
    last_modified: datetime | None = None
    current_branch: str | None = None
    is_dirty: bool = False
    remote_url: str | None = None
    description: str | None = None


class RepositoryBackend(ABC):
    """Abstract interface for repository storage."""

    @abstractmethod
    async def create_repo(
        self,
        name: str,
        description: str | None = None,
        template: RepositoryTemplate | None = None,
        initial_commit: bool = True,
    ) -> Repository:
        """
        Create an empty repository.

        Raises:
            RepositoryAlreadyExistsError: if ``name`` is taken
        """
        ...

    @abstractmethod
    async def clone_repo(self, url: str, name: str, depth: int | None = 1) -> Repository:
        """Clone a remote repository under ``name``."""
        ...

    @abstractmethod
    async def get_repo(self, name: str) -> Repository | None:
        ...

    @abstractmethod
    async def delete_repo(self, name: str) -> None:
        """
        Delete a repository.

        Raises:
            RepositoryNotFoundError: if ``name`` does not exist
        """
        ...

    @abstractmethod
    async def list_repos(self) -> list[Repository]:
        ...

    async def exists(self, name: str) -> bool:
        return await self.get_repo(name) is not None


__all__ = [
    "Repository",
    "RepositoryAlreadyExistsError",
    "RepositoryBackend",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryTemplate",
]
