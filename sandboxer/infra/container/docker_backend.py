"""
Docker container backend implementation.

Uses the Docker SDK for Python. The SDK is synchronous, so every call runs in
a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from sandboxer.configs.sandbox import DockerConfig

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
    ResourceLimitError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MEMORY_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([kmgKMG])?[bB]?$")
_MEMORY_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3}

# Engine messages that mean the requested resources cannot be granted
_RESOURCE_HINTS = (
    "range of cpus",
    "nanocpus",
    "memory limit",
    "minimum memory",
    "insufficient",
    "out of memory",
    "pids limit",
    "no space left",
)

_DELETE_STOP_TIMEOUT = 5


def parse_memory(value: str | int | None) -> int | None:
    """Convert a human memory size ("512m", "2g", "1.5GB") to bytes."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    match = _MEMORY_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid memory limit: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _MEMORY_UNITS[(unit or "").lower()])


def parse_nano_cpus(value: str | float | None) -> int | None:
    if value is None or value == "":
        return None
    return int(float(value) * 1_000_000_000)


def map_container_state(state: dict[str, Any] | None) -> EngineState:
    """Translate a container's ``State`` attribute into an EngineState."""
    if not state:
        return EngineState.unknown
    if state.get("Running"):
        if state.get("Paused"):
            return EngineState.paused
        if state.get("Restarting"):
            return EngineState.restarting
        return EngineState.running
    if state.get("Dead"):
        return EngineState.dead
    status = str(state.get("Status", "")).lower()
    if status == "created":
        return EngineState.creating
    if status == "exited":
        return EngineState.exited
    if status == "removing":
        return EngineState.removing
    return EngineState.stopped


def compute_stats(raw: dict[str, Any]) -> ContainerStats:
    """Build ContainerStats from a one-shot ``docker stats`` payload."""
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    cpu_total = (cpu_stats.get("cpu_usage") or {}).get("total_usage", 0)
    precpu_total = (precpu_stats.get("cpu_usage") or {}).get("total_usage", 0)
    cpu_delta = cpu_total - precpu_total
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get("system_cpu_usage", 0)
    online_cpus = cpu_stats.get("online_cpus") or len((cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or []) or 1

    cpu_percent = 0.0
    if cpu_delta > 0 and system_delta > 0:
        cpu_percent = cpu_delta / system_delta * online_cpus * 100.0

    memory = raw.get("memory_stats") or {}
    memory_usage = memory.get("usage", 0)
    memory_limit = memory.get("limit", 0)
    memory_percent = memory_usage / memory_limit * 100.0 if memory_limit else 0.0

    network_rx = 0
    network_tx = 0
    for iface in (raw.get("networks") or {}).values():
        network_rx += iface.get("rx_bytes", 0)
        network_tx += iface.get("tx_bytes", 0)

    block_read = 0
    block_write = 0
    for entry in (raw.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []:
        op = str(entry.get("op", "")).lower()
        if op == "read":
            block_read += entry.get("value", 0)
        elif op == "write":
            block_write += entry.get("value", 0)

    return ContainerStats(
        cpu_percent=round(cpu_percent, 2),
        memory_usage=memory_usage,
        memory_limit=memory_limit,
        memory_percent=round(memory_percent, 2),
        network_rx=network_rx,
        network_tx=network_tx,
        block_read=block_read,
        block_write=block_write,
    )


def _is_already_started(exc: APIError) -> bool:
    return exc.status_code == 304 or "already started" in str(exc).lower()


def _is_not_running(exc: APIError) -> bool:
    return exc.status_code == 304 or "is not running" in str(exc).lower()


class DockerContainerBackend(ContainerBackend):
    """Container backend using a local or remote Docker daemon."""

    def __init__(self, config: DockerConfig | None = None) -> None:
        if config is None:
            from sandboxer.configs import configs

            config = configs.Sandbox.Docker
        self._config = config
        self._namespace = config.LabelNamespace
        self._client: docker.DockerClient | None = None

    # --- Client ---

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                if self._config.BaseUrl:
                    self._client = docker.DockerClient(
                        base_url=self._config.BaseUrl,
                        timeout=self._config.RequestTimeoutSeconds,
                    )
                else:
                    self._client = docker.from_env(timeout=self._config.RequestTimeoutSeconds)
            except DockerException as e:
                raise EngineUnavailableError(f"Docker engine is unreachable: {e}") from e
        return self._client

    @contextmanager
    def _docker_operation(self, action: str, sandbox_id: str | None = None) -> Iterator[None]:
        """Translate SDK errors raised inside the block into ContainerError subclasses."""
        try:
            yield
        except ContainerError:
            raise
        except ImageNotFound as e:
            raise ImagePullError("", f"Failed to {action}: image not found ({e.explanation or e})", sandbox_id) from e
        except NotFound as e:
            if sandbox_id is None:
                raise ContainerError(f"Failed to {action}: {e.explanation or e}") from e
            raise ContainerNotFoundError(sandbox_id) from e
        except APIError as e:
            message = str(e.explanation or e)
            if any(hint in message.lower() for hint in _RESOURCE_HINTS):
                raise ResourceLimitError(f"Failed to {action}: {message}", sandbox_id) from e
            raise ContainerError(f"Failed to {action}: {message}", sandbox_id) from e
        except DockerException as e:
            raise EngineUnavailableError(f"Failed to {action}: Docker engine is unreachable ({e})", sandbox_id) from e
        except OSError as e:
            # requests connection errors surface as OSError subclasses
            raise EngineUnavailableError(f"Failed to {action}: Docker engine is unreachable ({e})", sandbox_id) from e

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(fn, *args, **kwargs)

    def container_name(self, sandbox_id: str) -> str:
        return f"{self._config.ContainerPrefix}-{sandbox_id}"

    def _get_container(self, sandbox_id: str) -> Container:
        with self._docker_operation("inspect container", sandbox_id):
            return self.client.containers.get(self.container_name(sandbox_id))

    def _to_handle(self, container: Container) -> ContainerHandle:
        labels = container.labels or {}
        url_prefix = f"{self._namespace}.url."
        urls = {key[len(url_prefix) :]: value for key, value in labels.items() if key.startswith(url_prefix)}

        created_at: datetime | None = None
        created_label = labels.get(f"{self._namespace}.sandbox.created")
        if created_label:
            try:
                created_at = datetime.fromisoformat(created_label)
            except ValueError:
                created_at = None

        image = ""
        if container.image is not None and container.image.tags:
            image = container.image.tags[0]

        return ContainerHandle(
            sandbox_id=labels.get(f"{self._namespace}.sandbox.id", ""),
            container_id=container.id or "",
            name=container.name or "",
            state=map_container_state(container.attrs.get("State")),
            image=image,
            labels=dict(labels),
            urls=urls,
            created_at=created_at,
        )

    # --- Image ---

    def _ensure_image(self, image: str, sandbox_id: str) -> None:
        try:
            with self._docker_operation(f"inspect image {image}", sandbox_id):
                self.client.images.get(image)
                logger.debug("Sandbox %s using cached image %s", sandbox_id, image)
                return
        except ImagePullError:
            pass

        logger.info("Pulling image %s for sandbox %s", image, sandbox_id)
        try:
            with self._docker_operation(f"pull image {image}", sandbox_id):
                self.client.images.pull(image)
        except EngineUnavailableError:
            raise
        except ContainerError as e:
            raise ImagePullError(image, f"Failed to pull image {image}: {e}", sandbox_id) from e

    def _ensure_network(self, network: str) -> None:
        with self._docker_operation(f"inspect network {network}"):
            if not self.client.networks.list(names=[network]):
                logger.info("Creating Docker network %s", network)
                self.client.networks.create(network, driver="bridge")

    # --- Lifecycle ---

    def _create_blocking(self, spec: ContainerSpec) -> ContainerHandle:
        self._ensure_image(spec.image, spec.sandbox_id)
        network = self._config.Network or None
        if network:
            self._ensure_network(network)

        labels = dict(spec.labels)
        labels[f"{self._namespace}.managed"] = "true"
        labels[f"{self._namespace}.sandbox.id"] = spec.sandbox_id
        for key, url in spec.urls.items():
            labels[f"{self._namespace}.url.{key}"] = url

        volumes = {}
        for mount in spec.volumes:
            host_path = mount.host
            if self._config.HostPathPrefix and host_path.startswith("/"):
                host_path = f"{self._config.HostPathPrefix.rstrip('/')}{host_path}"
            volumes[host_path] = {"bind": mount.container, "mode": "ro" if mount.read_only else "rw"}

        ports = {f"{p.container}/{p.protocol}": p.host for p in spec.ports if p.host is not None}

        with self._docker_operation("create sandbox container", spec.sandbox_id):
            container = self.client.containers.create(
                image=spec.image,
                command=spec.command,
                name=self.container_name(spec.sandbox_id),
                labels=labels,
                environment=spec.env,
                working_dir=spec.working_dir,
                volumes=volumes or None,
                ports=ports or None,
                network=network,
                nano_cpus=parse_nano_cpus(spec.resources.cpus),
                mem_limit=parse_memory(spec.resources.memory),
                pids_limit=spec.resources.pids_limit,
                restart_policy={"Name": "unless-stopped"},
                tty=True,
                stdin_open=True,
            )
            container.reload()
        logger.info("Created container %s (%s) for sandbox %s", container.name, container.short_id, spec.sandbox_id)
        return self._to_handle(container)

    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        return await self._run(self._create_blocking, spec)

    def _start_blocking(self, sandbox_id: str) -> None:
        container = self._get_container(sandbox_id)
        try:
            with self._docker_operation("start sandbox container", sandbox_id):
                container.start()
        except ContainerError as e:
            cause = e.__cause__
            if isinstance(cause, APIError) and _is_already_started(cause):
                logger.info("Container for sandbox %s already started", sandbox_id)
                return
            raise

    async def start(self, sandbox_id: str) -> None:
        await self._run(self._start_blocking, sandbox_id)

    def _stop_blocking(self, sandbox_id: str, timeout: int) -> None:
        container = self._get_container(sandbox_id)
        try:
            with self._docker_operation("stop sandbox container", sandbox_id):
                container.stop(timeout=timeout)
        except ContainerError as e:
            cause = e.__cause__
            if isinstance(cause, APIError) and _is_not_running(cause):
                return
            raise

    async def stop(self, sandbox_id: str, timeout: int = 10) -> None:
        await self._run(self._stop_blocking, sandbox_id, timeout)

    def _restart_blocking(self, sandbox_id: str, timeout: int) -> None:
        container = self._get_container(sandbox_id)
        with self._docker_operation("restart sandbox container", sandbox_id):
            container.restart(timeout=timeout)

    async def restart(self, sandbox_id: str, timeout: int = 10) -> None:
        await self._run(self._restart_blocking, sandbox_id, timeout)

    def _pause_blocking(self, sandbox_id: str) -> None:
        container = self._get_container(sandbox_id)
        with self._docker_operation("pause sandbox container", sandbox_id):
            container.pause()

    async def pause(self, sandbox_id: str) -> None:
        await self._run(self._pause_blocking, sandbox_id)

    def _unpause_blocking(self, sandbox_id: str) -> None:
        container = self._get_container(sandbox_id)
        with self._docker_operation("unpause sandbox container", sandbox_id):
            container.unpause()

    async def unpause(self, sandbox_id: str) -> None:
        await self._run(self._unpause_blocking, sandbox_id)

    def _delete_blocking(self, sandbox_id: str, remove_volumes: bool) -> None:
        container = self._get_container(sandbox_id)
        try:
            with self._docker_operation("stop sandbox container", sandbox_id):
                container.stop(timeout=_DELETE_STOP_TIMEOUT)
        except ContainerNotFoundError:
            raise
        except ContainerError as e:
            # Removal is forced below, a failed graceful stop is not fatal
            logger.debug("Graceful stop before delete failed for %s: %s", sandbox_id, e)
        with self._docker_operation("remove sandbox container", sandbox_id):
            container.remove(v=remove_volumes, force=True)
        logger.info("Removed container for sandbox %s (volumes=%s)", sandbox_id, remove_volumes)

    async def delete(self, sandbox_id: str, remove_volumes: bool = False) -> None:
        await self._run(self._delete_blocking, sandbox_id, remove_volumes)

    # --- Inspection ---

    def _status_blocking(self, sandbox_id: str) -> EngineState:
        container = self._get_container(sandbox_id)
        return map_container_state(container.attrs.get("State"))

    async def get_status(self, sandbox_id: str) -> EngineState:
        return await self._run(self._status_blocking, sandbox_id)

    def _stats_blocking(self, sandbox_id: str) -> ContainerStats:
        container = self._get_container(sandbox_id)
        with self._docker_operation("read container stats", sandbox_id):
            raw = container.stats(stream=False)
        return compute_stats(raw)

    async def get_stats(self, sandbox_id: str) -> ContainerStats:
        return await self._run(self._stats_blocking, sandbox_id)

    def _logs_blocking(self, sandbox_id: str, tail: int | None, since: datetime | None, timestamps: bool) -> str:
        container = self._get_container(sandbox_id)
        kwargs: dict[str, Any] = {
            "stdout": True,
            "stderr": True,
            "timestamps": timestamps,
            "tail": tail if tail is not None else "all",
        }
        if since is not None:
            kwargs["since"] = since
        with self._docker_operation("read container logs", sandbox_id):
            output = container.logs(**kwargs)
        return output.decode("utf-8", errors="replace")

    async def get_logs(
        self,
        sandbox_id: str,
        tail: int | None = 100,
        since: datetime | None = None,
        timestamps: bool = False,
    ) -> str:
        return await self._run(self._logs_blocking, sandbox_id, tail, since, timestamps)

    def _exec_blocking(
        self,
        sandbox_id: str,
        command: list[str],
        workdir: str | None,
        env: dict[str, str] | None,
        user: str | None,
    ) -> ExecResult:
        container = self._get_container(sandbox_id)
        with self._docker_operation("exec in sandbox container", sandbox_id):
            result = container.exec_run(
                command,
                workdir=workdir,
                environment=env,
                user=user or "",
                demux=True,
            )
        stdout, stderr = result.output if result.output else (None, None)
        return ExecResult(
            exit_code=result.exit_code if result.exit_code is not None else -1,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
        )

    async def exec(
        self,
        sandbox_id: str,
        command: list[str],
        workdir: str | None = None,
        env: dict[str, str] | None = None,
        user: str | None = None,
    ) -> ExecResult:
        return await self._run(self._exec_blocking, sandbox_id, command, workdir, env, user)

    def _list_blocking(self, labels: dict[str, str] | None) -> list[ContainerHandle]:
        selectors = [f"{self._namespace}.managed=true"]
        selectors.extend(f"{key}={value}" for key, value in (labels or {}).items())
        with self._docker_operation("list sandbox containers"):
            containers = self.client.containers.list(all=True, filters={"label": selectors})
        return [self._to_handle(c) for c in containers]

    async def list_containers(self, labels: dict[str, str] | None = None) -> list[ContainerHandle]:
        return await self._run(self._list_blocking, labels)

    async def get_handle(self, sandbox_id: str) -> ContainerHandle | None:
        try:
            container = await self._run(self._get_container, sandbox_id)
        except ContainerNotFoundError:
            return None
        return self._to_handle(container)

    def _ping_blocking(self) -> bool:
        with self._docker_operation("ping Docker engine"):
            return bool(self.client.ping())

    async def health_check(self) -> bool:
        try:
            return await self._run(self._ping_blocking)
        except ContainerError as e:
            logger.warning(f"Docker health check failed: {e}")
            return False

    def _info_blocking(self) -> EngineInfo:
        with self._docker_operation("read Docker engine info"):
            info = self.client.info()
            version = self.client.version()
        return EngineInfo(
            version=str(info.get("ServerVersion", "")),
            api_version=str(version.get("ApiVersion", "")),
            os=str(info.get("OperatingSystem", info.get("OSType", ""))),
            arch=str(info.get("Architecture", "")),
            cpus=int(info.get("NCPU", 0)),
            total_memory=int(info.get("MemTotal", 0)),
            containers_running=int(info.get("ContainersRunning", 0)),
            containers_stopped=int(info.get("ContainersStopped", 0)),
            images=int(info.get("Images", 0)),
        )

    async def get_info(self) -> EngineInfo:
        return await self._run(self._info_blocking)

    async def close(self) -> None:
        if self._client is not None:
            await self._run(self._client.close)
            self._client = None
