"""
In-memory container backend.

Keeps container state in a dict and never touches a real engine. Used by the
test suite and for running the API without Docker. Failures and slow calls
can be injected per operation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

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
)

logger = logging.getLogger(__name__)


@dataclass
class _FakeContainer:
    spec: ContainerSpec
    container_id: str
    state: EngineState = EngineState.creating
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    logs: list[str] = field(default_factory=list)


class InMemoryContainerBackend(ContainerBackend):
    """Container backend that simulates an engine in process memory."""

    def __init__(self, prefix: str = "sandboxer") -> None:
        self._prefix = prefix
        self._containers: dict[str, _FakeContainer] = {}
        self._failures: dict[str, list[Exception]] = {}
        self._delays: dict[str, float] = {}
        self.available = True
        self.calls: list[tuple[str, str | None]] = []
        self.exec_results: dict[tuple[str, ...], ExecResult] = {}

    # --- Fault injection ---

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._failures.setdefault(operation, []).append(error)

    def delay(self, operation: str, seconds: float) -> None:
        """Make every call of ``operation`` sleep first."""
        self._delays[operation] = seconds

    def set_state(self, sandbox_id: str, state: EngineState) -> None:
        """Force the engine-side state, simulating an out-of-band change."""
        self._require(sandbox_id).state = state

    def remove_external(self, sandbox_id: str) -> None:
        """Drop a container as if it had been removed outside the orchestrator."""
        self._containers.pop(sandbox_id, None)

    def add_external(self, spec: ContainerSpec, state: EngineState = EngineState.running) -> ContainerHandle:
        """Register a container that was created outside the orchestrator."""
        container = _FakeContainer(spec=spec, container_id=uuid4().hex, state=state)
        self._containers[spec.sandbox_id] = container
        return self._to_handle(container)

    def has_container(self, sandbox_id: str) -> bool:
        return sandbox_id in self._containers

    async def _enter(self, operation: str, sandbox_id: str | None = None) -> None:
        self.calls.append((operation, sandbox_id))
        delay = self._delays.get(operation)
        if delay:
            await asyncio.sleep(delay)
        if not self.available:
            raise EngineUnavailableError("Container engine is unreachable: connection refused", sandbox_id)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _require(self, sandbox_id: str) -> _FakeContainer:
        container = self._containers.get(sandbox_id)
        if container is None:
            raise ContainerNotFoundError(sandbox_id)
        return container

    def _to_handle(self, container: _FakeContainer) -> ContainerHandle:
        spec = container.spec
        return ContainerHandle(
            sandbox_id=spec.sandbox_id,
            container_id=container.container_id,
            name=spec.name or f"{self._prefix}-{spec.sandbox_id}",
            state=container.state,
            image=spec.image,
            labels=dict(spec.labels),
            urls=dict(spec.urls),
            created_at=container.created_at,
        )

    # --- Lifecycle ---

    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        await self._enter("create", spec.sandbox_id)
        if spec.sandbox_id in self._containers:
            raise ContainerError(f"Container name already in use: {spec.name}", spec.sandbox_id)
        container = _FakeContainer(spec=spec, container_id=uuid4().hex)
        self._containers[spec.sandbox_id] = container
        return self._to_handle(container)

    async def start(self, sandbox_id: str) -> None:
        await self._enter("start", sandbox_id)
        container = self._require(sandbox_id)
        if container.state == EngineState.paused:
            raise ContainerError("Cannot start a paused container, unpause it instead", sandbox_id)
        container.state = EngineState.running
        container.logs.append("container started")

    async def stop(self, sandbox_id: str, timeout: int = 10) -> None:
        await self._enter("stop", sandbox_id)
        container = self._require(sandbox_id)
        container.state = EngineState.exited
        container.logs.append("container stopped")

    async def restart(self, sandbox_id: str, timeout: int = 10) -> None:
        await self._enter("restart", sandbox_id)
        container = self._require(sandbox_id)
        container.state = EngineState.running
        container.logs.append("container restarted")

    async def pause(self, sandbox_id: str) -> None:
        await self._enter("pause", sandbox_id)
        container = self._require(sandbox_id)
        if container.state != EngineState.running:
            raise ContainerError(f"Container for sandbox {sandbox_id} is not running", sandbox_id)
        container.state = EngineState.paused

    async def unpause(self, sandbox_id: str) -> None:
        await self._enter("unpause", sandbox_id)
        container = self._require(sandbox_id)
        if container.state != EngineState.paused:
            raise ContainerError(f"Container for sandbox {sandbox_id} is not paused", sandbox_id)
        container.state = EngineState.running

    async def delete(self, sandbox_id: str, remove_volumes: bool = False) -> None:
        await self._enter("delete", sandbox_id)
        self._require(sandbox_id)
        del self._containers[sandbox_id]

    # --- Inspection ---

    async def get_status(self, sandbox_id: str) -> EngineState:
        await self._enter("get_status", sandbox_id)
        return self._require(sandbox_id).state

    async def get_stats(self, sandbox_id: str) -> ContainerStats:
        await self._enter("get_stats", sandbox_id)
        container = self._require(sandbox_id)
        running = container.state == EngineState.running
        limit = 512 * 1024 * 1024
        usage = 64 * 1024 * 1024 if running else 0
        return ContainerStats(
            cpu_percent=1.5 if running else 0.0,
            memory_usage=usage,
            memory_limit=limit,
            memory_percent=round(usage / limit * 100.0, 2),
        )

    async def get_logs(
        self,
        sandbox_id: str,
        tail: int | None = 100,
        since: datetime | None = None,
        timestamps: bool = False,
    ) -> str:
        await self._enter("get_logs", sandbox_id)
        lines = self._require(sandbox_id).logs
        if tail is not None:
            lines = lines[-tail:] if tail > 0 else []
        return "\n".join(lines)

    async def exec(
        self,
        sandbox_id: str,
        command: list[str],
        workdir: str | None = None,
        env: dict[str, str] | None = None,
        user: str | None = None,
    ) -> ExecResult:
        await self._enter("exec", sandbox_id)
        container = self._require(sandbox_id)
        if container.state != EngineState.running:
            raise ContainerError(f"Container for sandbox {sandbox_id} is not running", sandbox_id)
        scripted = self.exec_results.get(tuple(command))
        if scripted is not None:
            return scripted
        if command and command[0] == "echo":
            return ExecResult(exit_code=0, stdout=" ".join(command[1:]) + "\n", stderr="")
        return ExecResult(exit_code=0, stdout="", stderr="")

    async def list_containers(self, labels: dict[str, str] | None = None) -> list[ContainerHandle]:
        await self._enter("list", None)
        handles = []
        for container in self._containers.values():
            container_labels = container.spec.labels
            if labels and any(container_labels.get(k) != v for k, v in labels.items()):
                continue
            handles.append(self._to_handle(container))
        return handles

    async def get_handle(self, sandbox_id: str) -> ContainerHandle | None:
        await self._enter("get_handle", sandbox_id)
        container = self._containers.get(sandbox_id)
        return self._to_handle(container) if container else None

    async def health_check(self) -> bool:
        return self.available

    async def get_info(self) -> EngineInfo:
        await self._enter("get_info", None)
        states = [c.state for c in self._containers.values()]
        return EngineInfo(
            version="memory",
            api_version="1.0",
            os="in-memory",
            arch="none",
            cpus=0,
            total_memory=0,
            containers_running=sum(1 for s in states if s == EngineState.running),
            containers_stopped=sum(1 for s in states if s != EngineState.running),
            images=len({c.spec.image for c in self._containers.values()}),
        )
