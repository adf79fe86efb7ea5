"""
Filesystem repository backend.

Keeps one git repository per sandbox under ``Git.ReposDir`` and drives the
``git`` CLI through asyncio subprocesses.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from sandboxer.configs.sandbox import GitConfig

from .base import (
    Repository,
    RepositoryAlreadyExistsError,
    RepositoryBackend,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryTemplate,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_GITIGNORE = """# Dependencies
node_modules/
.venv/
__pycache__/

# Build outputs
dist/
build/

# Environment files
.env
.env.local

# IDE
.idea/
.vscode/
*.swp

# OS
.DS_Store
Thumbs.db
"""

_PROJECT_CONFIG = """# Sandboxer project configuration

[project]
name = "{name}"

[environment]
base = "js"

[ports]
# Add any ports you want to expose
# http = 3000
"""


class GitCommandError(RepositoryError):
    """A git invocation exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")


class FilesystemRepositoryBackend(RepositoryBackend):
    """Repository backend storing git repositories on local disk."""

    def __init__(self, config: GitConfig | None = None) -> None:
        if config is None:
            from sandboxer.configs import configs

            config = configs.Sandbox.Git
        self._config = config
        self.repos_dir = Path(config.ReposDir).expanduser().resolve()

    def repo_path(self, name: str) -> Path:
        if not _NAME_RE.match(name) or ".." in name:
            raise RepositoryError(f"Invalid repository name: {name!r}", name)
        return self.repos_dir / name

    async def _fs(self, name: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking filesystem call off the loop, reporting OS failures as repository errors."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except OSError as e:
            raise RepositoryError(f"Filesystem error on repository {name}: {e}", name) from e

    async def _git(self, *args: str, cwd: Path | None = None, check: bool = True) -> str:
        cmd = ["git"]
        if cwd is not None:
            cmd += ["-C", str(cwd)]
        cmd += list(args)
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise RepositoryError(f"Failed to run git: {e}") from e

        timeout = self._config.CommandTimeoutSeconds
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RepositoryError(f"git {' '.join(args)} timed out after {timeout}s")

        if check and process.returncode != 0:
            raise GitCommandError(list(args), process.returncode or -1, stderr.decode("utf-8", errors="replace"))
        return stdout.decode("utf-8", errors="replace").strip()

    # --- Lifecycle ---

    async def create_repo(
        self,
        name: str,
        description: str | None = None,
        template: RepositoryTemplate | None = None,
        initial_commit: bool = True,
    ) -> Repository:
        path = self.repo_path(name)
        if path.exists():
            raise RepositoryAlreadyExistsError(name)

        await self._fs(name, path.mkdir, parents=True)
        try:
            await self._git("init", f"--initial-branch={self._config.DefaultBranch}", cwd=path)
            if description:
                await self._fs(name, (path / ".git" / "description").write_text, description + "\n")
            if template is not None:
                await self._fs(name, self._write_template, path, name, template)
            if initial_commit:
                await self._git("add", "-A", cwd=path)
                await self._git(
                    "-c",
                    f"user.name={self._config.AuthorName}",
                    "-c",
                    f"user.email={self._config.AuthorEmail}",
                    "commit",
                    "--allow-empty",
                    "-m",
                    "Initial commit",
                    cwd=path,
                )
        except Exception:
            await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
            raise

        logger.info("Created repository %s at %s", name, path)
        repo = await self.get_repo(name)
        if repo is None:
            raise RepositoryError(f"Repository {name} vanished after creation", name)
        return repo

    @staticmethod
    def _write_template(path: Path, name: str, template: RepositoryTemplate) -> None:
        if template.readme:
            (path / "README.md").write_text(f"# {name}\n\nA new Sandboxer project.\n")
        if template.gitignore:
            (path / ".gitignore").write_text(_GITIGNORE)
        if template.project_config:
            (path / "sandboxer.toml").write_text(_PROJECT_CONFIG.format(name=name))

    async def clone_repo(self, url: str, name: str, depth: int | None = 1) -> Repository:
        path = self.repo_path(name)
        if path.exists():
            raise RepositoryAlreadyExistsError(name)

        await self._fs(name, self.repos_dir.mkdir, parents=True, exist_ok=True)
        args = ["clone"]
        if depth:
            args += ["--depth", str(depth)]
        args += [url, str(path)]

        logger.info("Cloning %s into %s", url, name)
        try:
            await self._git(*args)
        except RepositoryError:
            if path.exists():
                await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
            raise

        repo = await self.get_repo(name)
        if repo is None:
            raise RepositoryError(f"Clone of {url} did not produce a repository", name)
        return repo

    async def get_repo(self, name: str) -> Repository | None:
        try:
            path = self.repo_path(name)
        except RepositoryError:
            return None
        if not (path / ".git").exists():
            return None

        stat = await self._fs(name, path.stat)

        current_branch: str | None = None
        try:
            current_branch = await self._git("symbolic-ref", "--short", "HEAD", cwd=path) or None
        except RepositoryError:
            # Detached HEAD
            current_branch = None

        is_dirty = False
        try:
            is_dirty = bool(await self._git("status", "--porcelain", cwd=path))
        except RepositoryError as e:
            logger.debug("git status failed for %s: %s", name, e)

        remote_url = await self._git("remote", "get-url", "origin", cwd=path, check=False) or None

        description: str | None = None
        desc_path = path / ".git" / "description"
        if desc_path.exists():
            content = (await self._fs(name, desc_path.read_text)).strip()
            if content and not content.startswith("Unnamed repository"):
                description = content

        return Repository(
            name=name,
            path=str(path),
            created_at=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            current_branch=current_branch,
            is_dirty=is_dirty,
            remote_url=remote_url,
            description=description,
        )

    async def delete_repo(self, name: str) -> None:
        path = self.repo_path(name)
        if not path.exists():
            raise RepositoryNotFoundError(name)
        await self._fs(name, shutil.rmtree, path)
        logger.info("Deleted repository %s", name)

    async def list_repos(self) -> list[Repository]:
        if not self.repos_dir.exists():
            return []
        repos: list[Repository] = []
        entries = await self._fs(str(self.repos_dir), lambda: sorted(self.repos_dir.iterdir()))
        for entry in entries:
            if not entry.is_dir():
                continue
            repo = await self.get_repo(entry.name)
            if repo is not None:
                repos.append(repo)
        return repos
