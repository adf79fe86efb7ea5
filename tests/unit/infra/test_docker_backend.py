"""Unit tests for the Docker adapter. The SDK client is replaced by a MagicMock."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from sandboxer.configs.sandbox import DockerConfig
from sandboxer.infra.container import (
    ContainerError,
    ContainerNotFoundError,
    ContainerSpec,
    EngineState,
    EngineUnavailableError,
    ImagePullError,
    ResourceLimitError,
    ResourceLimits,
    VolumeMount,
)
from sandboxer.infra.container.docker_backend import (
    DockerContainerBackend,
    compute_stats,
    map_container_state,
    parse_memory,
    parse_nano_cpus,
)

SANDBOX_ID = "8d7c6b5a-0000-4000-8000-000000000001"


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


class TestParseMemory:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("512m", 512 * 1024**2),
            ("2g", 2 * 1024**3),
            ("1.5GB", int(1.5 * 1024**3)),
            ("64k", 64 * 1024),
            ("1024", 1024),
            (4096, 4096),
        ],
    )
    def test_valid(self, value: str | int, expected: int) -> None:
        assert parse_memory(value) == expected

    def test_empty(self) -> None:
        assert parse_memory(None) is None
        assert parse_memory("") is None

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_memory("lots")


class TestParseNanoCpus:
    def test_fractional(self) -> None:
        assert parse_nano_cpus("0.5") == 500_000_000
        assert parse_nano_cpus("2") == 2_000_000_000

    def test_empty(self) -> None:
        assert parse_nano_cpus(None) is None


class TestMapContainerState:
    @pytest.mark.parametrize(
        "state,expected",
        [
            (None, EngineState.unknown),
            ({}, EngineState.unknown),
            ({"Running": True, "Paused": True}, EngineState.paused),
            ({"Running": True, "Restarting": True}, EngineState.restarting),
            ({"Running": True}, EngineState.running),
            ({"Running": False, "Dead": True}, EngineState.dead),
            ({"Running": False, "Status": "created"}, EngineState.creating),
            ({"Running": False, "Status": "exited"}, EngineState.exited),
            ({"Running": False, "Status": "removing"}, EngineState.removing),
            ({"Running": False, "Status": "something-new"}, EngineState.stopped),
        ],
    )
    def test_mapping(self, state: dict | None, expected: EngineState) -> None:
        assert map_container_state(state) == expected


class TestComputeStats:
    def test_full_payload(self) -> None:
        raw = {
            "cpu_stats": {"cpu_usage": {"total_usage": 400}, "system_cpu_usage": 2000, "online_cpus": 2},
            "precpu_stats": {"cpu_usage": {"total_usage": 200}, "system_cpu_usage": 1000},
            "memory_stats": {"usage": 256, "limit": 1024},
            "networks": {"eth0": {"rx_bytes": 10, "tx_bytes": 20}, "eth1": {"rx_bytes": 1, "tx_bytes": 2}},
            "blkio_stats": {
                "io_service_bytes_recursive": [
                    {"op": "Read", "value": 100},
                    {"op": "Write", "value": 50},
                    {"op": "Total", "value": 150},
                ]
            },
        }
        stats = compute_stats(raw)
        assert stats.cpu_percent == 40.0
        assert stats.memory_usage == 256
        assert stats.memory_percent == 25.0
        assert stats.network_rx == 11
        assert stats.network_tx == 22
        assert stats.block_read == 100
        assert stats.block_write == 50

    def test_empty_payload(self) -> None:
        stats = compute_stats({})
        assert stats.cpu_percent == 0.0
        assert stats.memory_percent == 0.0


# ------------------------------------------------------------------
# Error translation
# ------------------------------------------------------------------


@pytest.fixture
def backend() -> DockerContainerBackend:
    backend = DockerContainerBackend(DockerConfig(ContainerPrefix="sbx", LabelNamespace="sbx", Network="sbx-net"))
    backend._client = MagicMock()
    return backend


class TestDockerOperation:
    def test_not_found_with_sandbox(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(ContainerNotFoundError):
            with backend._docker_operation("inspect container", SANDBOX_ID):
                raise NotFound("No such container")

    def test_not_found_without_sandbox(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(ContainerError) as exc_info:
            with backend._docker_operation("inspect network"):
                raise NotFound("No such network")
        assert not isinstance(exc_info.value, ContainerNotFoundError)

    def test_image_not_found(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(ImagePullError):
            with backend._docker_operation("pull image", SANDBOX_ID):
                raise ImageNotFound("manifest unknown")

    def test_resource_limit(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(ResourceLimitError):
            with backend._docker_operation("create sandbox container", SANDBOX_ID):
                raise APIError("bad request", explanation="Range of CPUs is from 0.01 to 2.00, as there are only 2 CPUs")

    def test_generic_api_error(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(ContainerError) as exc_info:
            with backend._docker_operation("start sandbox container", SANDBOX_ID):
                raise APIError("conflict", explanation="container name already in use")
        assert type(exc_info.value) is ContainerError
        assert "already in use" in str(exc_info.value)

    def test_daemon_unreachable(self, backend: DockerContainerBackend) -> None:
        with pytest.raises(EngineUnavailableError):
            with backend._docker_operation("ping Docker engine"):
                raise DockerException("Error while fetching server API version")


# ------------------------------------------------------------------
# Backend operations
# ------------------------------------------------------------------


def _container(state: dict, labels: dict | None = None) -> MagicMock:
    container = MagicMock()
    container.id = "abc123"
    container.short_id = "abc123"
    container.name = f"sbx-{SANDBOX_ID}"
    container.labels = labels or {"sbx.sandbox.id": SANDBOX_ID}
    container.attrs = {"State": state}
    container.image.tags = ["codeopen-js"]
    return container


class TestDockerContainerBackend:
    async def test_create_passes_limits_and_labels(self, backend: DockerContainerBackend) -> None:
        """The container is created under the sandbox's name with parsed limits."""
        created = _container({"Status": "created"})
        backend.client.containers.create.return_value = created
        backend.client.networks.list.return_value = [MagicMock()]
        spec = ContainerSpec(
            sandbox_id=SANDBOX_ID,
            name=f"sbx-{SANDBOX_ID}",
            image="codeopen-js",
            resources=ResourceLimits(cpus="0.5", memory="512m", pids_limit=128),
            labels={"sbx.flavor": "js"},
            volumes=[VolumeMount(host="/srv/repos/demo", container="/home/workspace")],
            urls={"opencode": "http://demo-api.localhost"},
        )

        handle = await backend.create(spec)

        kwargs = backend.client.containers.create.call_args.kwargs
        assert kwargs["name"] == f"sbx-{SANDBOX_ID}"
        assert kwargs["nano_cpus"] == 500_000_000
        assert kwargs["mem_limit"] == 512 * 1024**2
        assert kwargs["pids_limit"] == 128
        assert kwargs["network"] == "sbx-net"
        assert kwargs["labels"]["sbx.managed"] == "true"
        assert kwargs["labels"]["sbx.url.opencode"] == "http://demo-api.localhost"
        assert kwargs["volumes"] == {"/srv/repos/demo": {"bind": "/home/workspace", "mode": "rw"}}
        assert handle.sandbox_id == SANDBOX_ID
        assert handle.state == EngineState.creating

    async def test_create_pulls_missing_image(self, backend: DockerContainerBackend) -> None:
        backend.client.images.get.side_effect = ImageNotFound("missing")
        backend.client.networks.list.return_value = [MagicMock()]
        backend.client.containers.create.return_value = _container({"Status": "created"})
        spec = ContainerSpec(
            sandbox_id=SANDBOX_ID,
            name=f"sbx-{SANDBOX_ID}",
            image="codeopen-js",
            resources=ResourceLimits(cpus="1", memory="2g", pids_limit=256),
        )

        await backend.create(spec)

        backend.client.images.pull.assert_called_once_with("codeopen-js")

    async def test_create_image_pull_failure(self, backend: DockerContainerBackend) -> None:
        backend.client.images.get.side_effect = ImageNotFound("missing")
        backend.client.images.pull.side_effect = NotFound("manifest unknown")
        spec = ContainerSpec(
            sandbox_id=SANDBOX_ID,
            name=f"sbx-{SANDBOX_ID}",
            image="codeopen-nope",
            resources=ResourceLimits(cpus="1", memory="2g", pids_limit=256),
        )

        with pytest.raises(ImagePullError) as exc_info:
            await backend.create(spec)
        assert exc_info.value.image == "codeopen-nope"
        backend.client.containers.create.assert_not_called()

    async def test_start_already_started_is_ignored(self, backend: DockerContainerBackend) -> None:
        container = _container({"Running": True})
        container.start.side_effect = APIError("not modified", response=MagicMock(status_code=304))
        backend.client.containers.get.return_value = container

        await backend.start(SANDBOX_ID)

        backend.client.containers.get.assert_called_with(f"sbx-{SANDBOX_ID}")

    async def test_stop_missing_container(self, backend: DockerContainerBackend) -> None:
        backend.client.containers.get.side_effect = NotFound("No such container")
        with pytest.raises(ContainerNotFoundError):
            await backend.stop(SANDBOX_ID)

    async def test_delete_forces_removal(self, backend: DockerContainerBackend) -> None:
        container = _container({"Running": True})
        container.stop.side_effect = APIError("stop failed", explanation="cannot stop")
        backend.client.containers.get.return_value = container

        await backend.delete(SANDBOX_ID, remove_volumes=True)

        container.remove.assert_called_once_with(v=True, force=True)

    async def test_get_status(self, backend: DockerContainerBackend) -> None:
        backend.client.containers.get.return_value = _container({"Running": True, "Paused": True})
        assert await backend.get_status(SANDBOX_ID) == EngineState.paused

    async def test_exec_decodes_output(self, backend: DockerContainerBackend) -> None:
        container = _container({"Running": True})
        container.exec_run.return_value = MagicMock(exit_code=0, output=(b"hello\n", None))
        backend.client.containers.get.return_value = container

        result = await backend.exec(SANDBOX_ID, ["echo", "hello"])

        assert result.exit_code == 0
        assert result.stdout == "hello\n"
        assert result.stderr == ""

    async def test_list_filters_on_managed_label(self, backend: DockerContainerBackend) -> None:
        backend.client.containers.list.return_value = [_container({"Running": True})]

        handles = await backend.list_containers({"sbx.sandbox.user": "user-1"})

        filters = backend.client.containers.list.call_args.kwargs["filters"]
        assert filters == {"label": ["sbx.managed=true", "sbx.sandbox.user=user-1"]}
        assert handles[0].sandbox_id == SANDBOX_ID
        assert handles[0].state == EngineState.running

    async def test_handle_reads_urls_from_labels(self, backend: DockerContainerBackend) -> None:
        labels = {"sbx.sandbox.id": SANDBOX_ID, "sbx.url.code_server": "http://demo-code.localhost"}
        backend.client.containers.get.return_value = _container({"Running": True}, labels)

        handle = await backend.get_handle(SANDBOX_ID)

        assert handle is not None
        assert handle.urls == {"code_server": "http://demo-code.localhost"}

    async def test_get_handle_missing(self, backend: DockerContainerBackend) -> None:
        backend.client.containers.get.side_effect = NotFound("No such container")
        assert await backend.get_handle(SANDBOX_ID) is None

    async def test_health_check_unreachable(self, backend: DockerContainerBackend) -> None:
        backend.client.ping.side_effect = DockerException("connection refused")
        assert await backend.health_check() is False

    async def test_close(self, backend: DockerContainerBackend) -> None:
        client = backend.client
        await backend.close()
        client.close.assert_called_once()
        assert backend._client is None
