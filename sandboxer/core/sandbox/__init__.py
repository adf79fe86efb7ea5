"""
Sandbox lifecycle core.

``build_orchestrator`` wires the configured container and repository
backends to the shared database session factory. The process entry point
owns the returned instance and calls ``init``/``shutdown`` on it.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.configs import configs
from sandboxer.infra.container import ContainerBackend, get_container_backend
from sandboxer.infra.git import RepositoryBackend, get_repository_backend

from .exceptions import (
    EngineFailureError,
    InvalidRequestError,
    RepositoryFailureError,
    SandboxAlreadyExistsError,
    SandboxError,
    SandboxNotFoundError,
    SandboxTimeoutError,
)
from .manager import ReconcileReport, SandboxInfo, SandboxOrchestrator
from .status import map_engine_state


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    containers: ContainerBackend | None = None,
    repositories: RepositoryBackend | None = None,
) -> SandboxOrchestrator:
    if session_factory is None:
        from sandboxer.infra.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    return SandboxOrchestrator(
        session_factory=session_factory,
        containers=containers or get_container_backend(),
        repositories=repositories or get_repository_backend(),
        settings=configs.Sandbox,
        environment=configs.Environment,
    )


__all__ = [
    "EngineFailureError",
    "InvalidRequestError",
    "ReconcileReport",
    "RepositoryFailureError",
    "SandboxAlreadyExistsError",
    "SandboxError",
    "SandboxInfo",
    "SandboxNotFoundError",
    "SandboxOrchestrator",
    "SandboxTimeoutError",
    "build_orchestrator",
    "map_engine_state",
]
