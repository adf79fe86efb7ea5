"""
Abstract container backend protocol and shared data classes.

Defines the interface that all container engines must implement. Containers
are addressed by the sandbox ID they were created for, never by the engine's
own container ID, so callers do not need to track engine identifiers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EngineState(str, Enum):
    """Raw container state as reported by the engine."""

    creating = "creating"
    running = "running"
    stopped = "stopped"
    paused = "paused"
    restarting = "restarting"
    removing = "removing"
    exited = "exited"
    dead = "dead"
    error = "error"
    unknown = "unknown"


# --- Errors ---


class ContainerError(Exception):
    """Base class for container engine failures."""

    def __init__(self, message: str, sandbox_id: str | None = None):
        self.sandbox_id = sandbox_id
        super().__init__(message)


class ContainerNotFoundError(ContainerError):
    """The engine has no container for the sandbox."""

    def __init__(self, sandbox_id: str):
        super().__init__(f"Container not found for sandbox: {sandbox_id}", sandbox_id)


class EngineUnavailableError(ContainerError):
    """The engine daemon could not be reached."""


class ImagePullError(ContainerError):
    """The image was missing and could not be pulled."""

    def __init__(self, image: str, message: str, sandbox_id: str | None = None):
        self.image = image
        super().__init__(message, sandbox_id)


class ResourceLimitError(ContainerError):
    """The engine refused the requested resources."""


# --- Data classes ---


@dataclass
class ResourceLimits:
    """Resource allocation handed to the engine."""

    cpus: str  # fractional CPU count, e.g. "0.5"
    memory: str  # e.g. "512m"
    pids_limit: int


@dataclass
class PortMapping:
    """A container port, optionally published on the host."""

    container: int
    label: str = ""
    public: bool = False
    host: int | None = None
    protocol: str = "tcp"


@dataclass
class VolumeMount:
    host: str
    container: str
    read_only: bool = False


@dataclass
class ContainerSpec:
    """Everything the engine needs to create a sandbox container."""

    sandbox_id: str
    name: str
    image: str
    resources: ResourceLimits
    labels: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    command: list[str] | None = None
    working_dir: str | None = None
    ports: list[PortMapping] = field(default_factory=list)
    volumes: list[VolumeMount] = field(default_factory=list)
    urls: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerHandle:
    """Engine-side view of a sandbox container."""

    sandbox_id: str
    container_id: str
    name: str
    state: EngineState
    image: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    urls: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class ContainerStats:
    """Point-in-time resource usage of a container."""

    cpu_percent: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_percent: float = 0.0
    network_rx: int = 0
    network_tx: int = 0
    block_read: int = 0
    block_write: int = 0


@dataclass
class ExecResult:
    """Result of executing a command in a container."""

    exit_code: int
    stdout: str
    stderr: str


@dataclass
class EngineInfo:
    """Summary of the container engine daemon."""

    version: str
    api_version: str
    os: str
    arch: str
    cpus: int
    total_memory: int
    containers_running: int
    containers_stopped: int
    images: int
    extra: dict[str, Any] = field(default_factory=dict)


class ContainerBackend(ABC):
    """Abstract interface for container engines."""

    @abstractmethod
    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        """
        Create (but do not start) a container for a sandbox.

        Args:
            spec: Fully resolved container specification

        Returns:
            Handle for the created container
        """
        ...

    @abstractmethod
    async def start(self, sandbox_id: str) -> None:
        """Start the sandbox container. Starting a running container is not an error."""
        ...

    @abstractmethod
    async def stop(self, sandbox_id: str, timeout: int = 10) -> None:
        """Stop the container, killing it after ``timeout`` seconds."""
        ...

    @abstractmethod
    async def restart(self, sandbox_id: str, timeout: int = 10) -> None:
        ...

    @abstractmethod
    async def pause(self, sandbox_id: str) -> None:
        ...

    @abstractmethod
    async def unpause(self, sandbox_id: str) -> None:
        ...

    @abstractmethod
    async def delete(self, sandbox_id: str, remove_volumes: bool = False) -> None:
        """Stop and remove the container.

        Raises:
            ContainerNotFoundError: when there is nothing to remove
        """
        ...

    @abstractmethod
    async def get_status(self, sandbox_id: str) -> EngineState:
        ...

    @abstractmethod
    async def get_stats(self, sandbox_id: str) -> ContainerStats:
        ...

    @abstractmethod
    async def get_logs(
        self,
        sandbox_id: str,
        tail: int | None = 100,
        since: datetime | None = None,
        timestamps: bool = False,
    ) -> str:
        ...

    @abstractmethod
    async def exec(
        self,
        sandbox_id: str,
        command: list[str],
        workdir: str | None = None,
        env: dict[str, str] | None = None,
        user: str | None = None,
    ) -> ExecResult:
        """
        Execute a command inside the container.

        Args:
            sandbox_id: Sandbox the container belongs to
            command: argv list, not a shell string
            workdir: Working directory (optional)
            env: Extra environment variables (optional)
            user: User to run as (optional)

        Returns:
            ExecResult with exit_code, stdout, stderr
        """
        ...

    @abstractmethod
    async def list_containers(self, labels: dict[str, str] | None = None) -> list[ContainerHandle]:
        """List managed containers, optionally narrowed by extra labels."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...

    @abstractmethod
    async def get_info(self) -> EngineInfo:
        ...

    async def get_handle(self, sandbox_id: str) -> ContainerHandle | None:
        """Return the handle for a sandbox, or None if it has no container."""
        for handle in await self.list_containers():
            if handle.sandbox_id == sandbox_id:
                return handle
        return None

    async def close(self) -> None:
        """Release client resources. Default is a no-op."""
        return None


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
]
