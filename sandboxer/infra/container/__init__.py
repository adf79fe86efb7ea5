"""
Container backend factory.

Provides a registry of container engines and a factory function that returns
the configured implementation. To add a new engine:

1. Implement ContainerBackend in a new module (e.g. ``podman_backend.py``)
2. Register it in ``_BACKEND_REGISTRY`` below
"""

from __future__ import annotations

import logging
from typing import Callable

from .base import (
    ContainerBackend,
    ContainerError,
    ContainerHandle,
    ContainerNotFoundError,
    ContainerSpec,
    ContainerStats,
    EngineInfo,
    EngineState,
    EngineUnavailableError,
    ExecResult,
    ImagePullError,
    PortMapping,
    ResourceLimitError,
    ResourceLimits,
    VolumeMount,
)

logger = logging.getLogger(__name__)

# Maps config name → lazy import callable that returns a ContainerBackend.
# Using callables avoids importing the Docker SDK when it is not used.
_BACKEND_REGISTRY: dict[str, Callable[[], ContainerBackend]] = {}


def _register_defaults() -> None:
    """Register the shipped container backends."""

    def _docker() -> ContainerBackend:
        from .docker_backend import DockerContainerBackend

        return DockerContainerBackend()

    def _memory() -> ContainerBackend:
        from sandboxer.configs import configs

        from .memory_backend import InMemoryContainerBackend

        return InMemoryContainerBackend(prefix=configs.Sandbox.Docker.ContainerPrefix)

    _BACKEND_REGISTRY["docker"] = _docker
    _BACKEND_REGISTRY["memory"] = _memory


_register_defaults()


def register_container_backend(name: str, factory: Callable[[], ContainerBackend]) -> None:
    """Register a custom container backend at runtime.

    Useful for plugins or test doubles.
    """
    _BACKEND_REGISTRY[name.lower()] = factory


def get_container_backend(name: str | None = None) -> ContainerBackend:
    """Return a container backend instance.

    The backend defaults to ``configs.Sandbox.ContainerBackend``.
    """
    if name is None:
        from sandboxer.configs import configs

        name = configs.Sandbox.ContainerBackend

    backend_name = name.lower()
    factory = _BACKEND_REGISTRY.get(backend_name)

    if factory is None:
        available = ", ".join(sorted(_BACKEND_REGISTRY.keys()))
        raise ValueError(f"Unknown container backend: {backend_name!r}. Available backends: {available}")

    logger.info("Using container backend: %s", backend_name)
    return factory()


__all__ = [
    "ContainerBackend",
    "ContainerError",
    "ContainerHandle",
    "ContainerNotFoundError",
    "ContainerSpec",
    "ContainerStats",
    "EngineInfo",
    "EngineState",
    "EngineUnavailableError",
    "ExecResult",
    "ImagePullError",
    "PortMapping",
    "ResourceLimitError",
    "ResourceLimits",
    "VolumeMount",
    "get_container_backend",
    "register_container_backend",
]
