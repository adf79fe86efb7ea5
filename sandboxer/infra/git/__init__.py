"""
Repository backend factory.

Mirrors the container backend registry: backends are registered by name and
constructed lazily.
"""

from __future__ import annotations

from typing import Callable

from .base import (
    Repository,
    RepositoryAlreadyExistsError,
    RepositoryBackend,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryTemplate,
)

_BACKEND_REGISTRY: dict[str, Callable[[], RepositoryBackend]] = {}


def _register_defaults() -> None:
    def _filesystem() -> RepositoryBackend:
        from .filesystem import FilesystemRepositoryBackend

        return FilesystemRepositoryBackend()

    def _memory() -> RepositoryBackend:
        from .memory import InMemoryRepositoryBackend

        return InMemoryRepositoryBackend()

    _BACKEND_REGISTRY["filesystem"] = _filesystem
    _BACKEND_REGISTRY["memory"] = _memory


_register_defaults()


def register_repository_backend(name: str, factory: Callable[[], RepositoryBackend]) -> None:
    _BACKEND_REGISTRY[name.lower()] = factory


def get_repository_backend(name: str | None = None) -> RepositoryBackend:
    """Return a repository backend instance (defaults to ``configs.Sandbox.RepositoryBackend``)."""
    if name is None:
        from sandboxer.configs import configs

        name = configs.Sandbox.RepositoryBackend

    backend_name = name.lower()
    factory = _BACKEND_REGISTRY.get(backend_name)
    if factory is None:
        available = ", ".join(sorted(_BACKEND_REGISTRY.keys()))
        raise ValueError(f"Unknown repository backend: {backend_name!r}. Available backends: {available}")
    return factory()


__all__ = [
    "Repository",
    "RepositoryAlreadyExistsError",
    "RepositoryBackend",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryTemplate",
    "get_repository_backend",
    "register_repository_backend",
]
