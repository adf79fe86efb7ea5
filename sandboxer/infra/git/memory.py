"""In-memory repository backend used by tests and Docker-less runs."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from .base import (
    Repository,
    RepositoryAlreadyExistsError,
    RepositoryBackend,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryTemplate,
)


class InMemoryRepositoryBackend(RepositoryBackend):
    """Tracks repository metadata in a dict. No files are written."""

    def __init__(self, root: str = "/repos") -> None:
        self._root = root.rstrip("/")
        self._repos: dict[str, Repository] = {}
        self._failures: dict[str, list[Exception]] = {}
        self.templates: dict[str, RepositoryTemplate | None] = {}

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._failures.setdefault(operation, []).append(error)

    def _check(self, operation: str) -> None:
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _new(self, name: str, remote_url: str | None, description: str | None) -> Repository:
        now = datetime.now(timezone.utc)
        repo = Repository(
            name=name,
            path=f"{self._root}/{name}",
            created_at=now,
            last_modified=now,
            current_branch="main",
            is_dirty=False,
            remote_url=remote_url,
            description=description,
        )
        self._repos[name] = repo
        return replace(repo)

    async def create_repo(
        self,
        name: str,
        description: str | None = None,
        template: RepositoryTemplate | None = None,
        initial_commit: bool = True,
    ) -> Repository:
        self._check("create_repo")
        if name in self._repos:
            raise RepositoryAlreadyExistsError(name)
        self.templates[name] = template
        return self._new(name, None, description)

    async def clone_repo(self, url: str, name: str, depth: int | None = 1) -> Repository:
        self._check("clone_repo")
        if name in self._repos:
            raise RepositoryAlreadyExistsError(name)
        if not url:
            raise RepositoryError("Clone URL is empty", name)
        return self._new(name, url, None)

    async def get_repo(self, name: str) -> Repository | None:
        self._check("get_repo")
        repo = self._repos.get(name)
        return replace(repo) if repo else None

    async def delete_repo(self, name: str) -> None:
        self._check("delete_repo")
        if name not in self._repos:
            raise RepositoryNotFoundError(name)
        del self._repos[name]

    async def list_repos(self) -> list[Repository]:
        self._check("list_repos")
        return [replace(r) for _, r in sorted(self._repos.items())]
