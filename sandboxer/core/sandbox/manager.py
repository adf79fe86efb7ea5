"""
Sandbox lifecycle orchestrator.

Coordinates the sandbox record store, the container engine and the
repository backend. It is the only component that writes a sandbox's
status, and every mutation of one sandbox runs under that sandbox's lock so
engine calls and record writes of concurrent requests never interleave.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.common.code import SandboxErrorCode, classify_failure, format_error
from sandboxer.configs.sandbox import SandboxConfig
from sandboxer.core.project_config import ConfigLoadResult, build_container_spec, load_project_config
from sandboxer.core.project_config.schema import ADDON_IDS
from sandboxer.infra.container import (
    ContainerBackend,
    ContainerError,
    ContainerHandle,
    ContainerNotFoundError,
    ContainerStats,
    EngineInfo,
    EngineState,
    ExecResult,
)
from sandboxer.infra.git import (
    Repository,
    RepositoryBackend,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryTemplate,
)
from sandboxer.models.sandbox import Sandbox, SandboxCreate, SandboxStatus
from sandboxer.repos.sandbox import SandboxRepository

from .exceptions import (
    EngineFailureError,
    InvalidRequestError,
    RepositoryFailureError,
    SandboxAlreadyExistsError,
    SandboxError,
    SandboxNotFoundError,
    SandboxTimeoutError,
)
from .locks import KeyedLock
from .policy import resolve_flavor, resolve_image, resolve_tier
from .slug import generate_unique_slug
from .status import can_transition, ensure_transition, map_engine_state

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_NAME_LENGTH = 100

_URL_PREFIXES = ("http://", "https://", "git@")


@dataclass
class SandboxInfo:
    """Record merged with the live view from the engine and the repository."""

    sandbox: Sandbox
    status: SandboxStatus
    engine_state: EngineState | None = None
    stats: ContainerStats | None = None
    repository: Repository | None = None
    project_config: ConfigLoadResult | None = None
    engine_error: str | None = None


@dataclass
class ReconcileReport:
    updated: list[str] = field(default_factory=list)
    marked_error: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)


def _parse_id(sandbox_id: UUID | str) -> UUID | None:
    if isinstance(sandbox_id, UUID):
        return sandbox_id
    try:
        return UUID(str(sandbox_id))
    except ValueError:
        return None


class SandboxOrchestrator:
    """Drives sandbox lifecycles across the record store, engine and git backend."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        containers: ContainerBackend,
        repositories: RepositoryBackend,
        settings: SandboxConfig | None = None,
        environment: str | None = None,
    ) -> None:
        if settings is None or environment is None:
            from sandboxer.configs import configs

            settings = settings or configs.Sandbox
            environment = environment or configs.Environment

        self._session_factory = session_factory
        self._containers = containers
        self._repositories = repositories
        self._settings = settings
        self._environment = environment
        self._locks = KeyedLock()

    @property
    def containers(self) -> ContainerBackend:
        return self._containers

    @property
    def repositories(self) -> RepositoryBackend:
        return self._repositories

    # --- Process lifecycle ---

    async def init(self) -> None:
        """Check the engine and, if configured, reconcile records with it."""
        healthy = await self._containers.health_check()
        if not healthy:
            logger.warning("Container engine is not reachable; sandboxes will report degraded status")
            return

        logger.info("Container engine is healthy")
        if self._settings.ReconcileOnStartup:
            try:
                report = await self.reconcile()
            except (SandboxError, ContainerError):
                logger.warning("Startup reconciliation failed", exc_info=True)
            else:
                logger.info(
                    f"Reconciled sandboxes: {len(report.updated)} updated, "
                    f"{len(report.marked_error)} marked error, {len(report.orphans)} orphan container(s)"
                )

    async def shutdown(self) -> None:
        await self._containers.close()
        logger.info("Sandbox orchestrator shut down")

    # --- Record helpers ---

    async def _get(self, sandbox_id: UUID) -> Sandbox | None:
        async with self._session_factory() as db:
            return await SandboxRepository(db).get_by_id(sandbox_id)

    async def _load(self, sandbox_id: UUID | str) -> Sandbox:
        parsed = _parse_id(sandbox_id)
        sandbox = await self._get(parsed) if parsed is not None else None
        if sandbox is None:
            raise SandboxNotFoundError(str(sandbox_id))
        return sandbox

    async def _transition(
        self,
        sandbox_id: UUID,
        status: SandboxStatus,
        error_message: str | None = None,
    ) -> Sandbox:
        """The single status write path. Same-state writes are no-ops, except error text updates."""
        async with self._session_factory() as db:
            repo = SandboxRepository(db)
            sandbox = await repo.get_by_id(sandbox_id)
            if sandbox is None:
                raise SandboxNotFoundError(str(sandbox_id))

            previous = sandbox.status
            if previous == status and status != SandboxStatus.ERROR:
                return sandbox
            ensure_transition(previous, status, str(sandbox_id))

            updated = await repo.set_status(sandbox_id, status, error_message)
            await db.commit()

        if status == SandboxStatus.ERROR:
            logger.warning(f"Sandbox {sandbox_id}: {previous} -> error ({error_message})")
        else:
            logger.info(f"Sandbox {sandbox_id}: {previous} -> {status}")
        if updated is None:
            raise SandboxNotFoundError(str(sandbox_id))
        return updated

    async def _record_failure(self, sandbox_id: UUID, message: str) -> None:
        try:
            await self._transition(sandbox_id, SandboxStatus.ERROR, message)
        except Exception:
            logger.warning(f"Failed to record error state for sandbox {sandbox_id}", exc_info=True)

    async def _engine_failure(self, sandbox_id: UUID, phase: str, exc: ContainerError) -> EngineFailureError:
        message = format_error(classify_failure(exc).code, phase, str(exc))
        await self._record_failure(sandbox_id, message)
        return EngineFailureError(message, str(sandbox_id), cause=exc)

    async def _guarded(self, sandbox_id: UUID, phase: str, call: Awaitable[T], deadline: float | None = None) -> T:
        """Await an engine call, recording timeouts and cancellation on the record."""
        try:
            if deadline is None:
                return await call
            return await asyncio.wait_for(call, timeout=deadline)
        except asyncio.TimeoutError:
            if deadline is None:
                raise
            message = format_error(
                SandboxErrorCode.OPERATION_TIMEOUT,
                phase,
                f"no response from the container engine within {deadline:g}s",
            )
            await self._record_failure(sandbox_id, message)
            raise SandboxTimeoutError(phase, deadline, str(sandbox_id)) from None
        except asyncio.CancelledError:
            message = format_error(
                SandboxErrorCode.OPERATION_CANCELLED,
                phase,
                "request was cancelled before the container engine finished",
            )
            await asyncio.shield(self._record_failure(sandbox_id, message))
            raise

    def _deadline(self, timeout: int) -> float:
        return float(timeout + self._settings.OperationGraceSeconds)

    # --- Create ---

    def _validate_create(self, user_id: str, name: str, github_url: str | None) -> None:
        if not user_id:
            raise InvalidRequestError("Owner id must not be empty", field="user_id")
        if not name:
            raise InvalidRequestError("Sandbox name must not be empty", field="name")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidRequestError(f"Sandbox name must be at most {MAX_NAME_LENGTH} characters", field="name")
        if github_url is not None and not github_url.startswith(_URL_PREFIXES):
            raise InvalidRequestError(f"Unsupported repository URL: {github_url}", field="github_url")

    def _normalize_addons(self, addons: Iterable[str] | None) -> list[str]:
        requested = list(self._settings.DefaultAddons if addons is None else addons)
        normalized: list[str] = []
        for addon_id in requested:
            addon_id = addon_id.strip().lower()
            if addon_id not in ADDON_IDS:
                raise InvalidRequestError(f"Unknown addon: {addon_id}", field="addon_ids")
            if addon_id not in normalized:
                normalized.append(addon_id)
        return normalized

    async def create_sandbox(
        self,
        user_id: str,
        name: str,
        flavor: str | None = None,
        tier: str | None = None,
        addons: Iterable[str] | None = None,
        github_url: str | None = None,
        description: str | None = None,
        auto_start: bool = False,
    ) -> Sandbox:
        """
        Create a sandbox record, its repository and its container.

        Validation failures and name collisions raise before anything is
        written. Once the record exists, engine and repository failures are
        recorded on it as an ``error`` status and the record is returned;
        calling ``start_sandbox`` retries provisioning.

        Returns:
            The record, in ``created`` (``running`` with ``auto_start``) or ``error``
        """
        user_id = (user_id or "").strip()
        name = (name or "").strip()
        github_url = github_url.strip() if github_url else None
        self._validate_create(user_id, name, github_url)

        flavor_id = resolve_flavor(flavor or self._settings.DefaultFlavor)
        tier_id = resolve_tier(tier or self._settings.DefaultTier).id
        addon_ids = self._normalize_addons(addons)
        data = SandboxCreate(
            name=name,
            description=description,
            github_url=github_url,
            flavor_id=flavor_id,
            resource_tier_id=tier_id,
            addon_ids=addon_ids,
            auto_start=auto_start,
        )

        sandbox_id = uuid4()
        async with self._locks.hold(str(sandbox_id)):
            async with self._locks.hold(f"owner:{user_id}"):
                sandbox = await self._insert_record(data, sandbox_id, user_id)

            try:
                sandbox = await self._provision(sandbox, "create")
                if auto_start:
                    sandbox = await self._start_container(sandbox, EngineState.creating, "start")
            except (EngineFailureError, RepositoryFailureError, SandboxTimeoutError) as e:
                logger.warning(f"Sandbox {sandbox_id} was created in error state: {e}")
                return await self._load(sandbox_id)

        logger.info(f"Created sandbox {sandbox.id} ({sandbox.slug}) for user {user_id}")
        return sandbox

    async def _insert_record(self, data: SandboxCreate, sandbox_id: UUID, user_id: str) -> Sandbox:
        async with self._session_factory() as db:
            repo = SandboxRepository(db)
            slug = await generate_unique_slug(repo, user_id, data.name)
            repo_name = f"{slug}-{sandbox_id.hex[:12]}"

            try:
                repo_taken = await self._repositories.exists(repo_name)
            except RepositoryError as e:
                raise RepositoryFailureError(f"Repository backend failed: {e}", cause=e) from e
            if repo_taken:
                raise SandboxAlreadyExistsError(f"Repository already exists: {repo_name}", repo_name)

            try:
                sandbox = await repo.create(
                    data,
                    sandbox_id=sandbox_id,
                    user_id=user_id,
                    slug=slug,
                    repo_name=repo_name,
                    flavor_id=data.flavor_id or self._settings.DefaultFlavor,
                    resource_tier_id=data.resource_tier_id or self._settings.DefaultTier,
                    addon_ids=data.addon_ids or [],
                )
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise SandboxAlreadyExistsError(f"Slug already in use: {slug}", data.name) from e
        return sandbox

    async def _prepare_repository(self, sandbox: Sandbox) -> Repository:
        repository = await self._repositories.get_repo(sandbox.repo_name)
        if repository is not None:
            return repository
        if sandbox.github_url:
            return await self._repositories.clone_repo(
                sandbox.github_url,
                sandbox.repo_name,
                depth=self._settings.Git.CloneDepth or None,
            )
        return await self._repositories.create_repo(
            sandbox.repo_name,
            description=sandbox.description,
            template=RepositoryTemplate(),
        )

    async def _provision(self, sandbox: Sandbox, phase: str) -> Sandbox:
        """Make sure the repository exists, then create and bind a container."""
        try:
            repository = await self._prepare_repository(sandbox)
        except RepositoryError as e:
            message = format_error(SandboxErrorCode.REPOSITORY_FAILURE, f"{phase} repository", str(e))
            await self._record_failure(sandbox.id, message)
            raise RepositoryFailureError(message, str(sandbox.id), cause=e) from e

        loaded = await asyncio.to_thread(load_project_config, repository.path)
        if not loaded.valid:
            details = "; ".join(f"{issue.path}: {issue.message}" for issue in loaded.errors)
            logger.warning(f"Ignoring invalid project config for sandbox {sandbox.id}: {details}")

        spec = build_container_spec(
            sandbox_id=str(sandbox.id),
            user_id=sandbox.user_id,
            name=sandbox.name,
            slug=sandbox.slug,
            repo_name=sandbox.repo_name,
            repo_path=repository.path,
            image=resolve_image(sandbox.flavor_id, self._environment, self._settings.Registry),
            flavor_id=sandbox.flavor_id,
            tier=resolve_tier(sandbox.resource_tier_id),
            addon_ids=list(sandbox.addon_ids or []),
            settings=self._settings,
            project_config=loaded.config if loaded.path is not None else None,
            github_url=sandbox.github_url,
            created_at=sandbox.created_at.isoformat(),
        )

        try:
            handle = await self._guarded(sandbox.id, phase, self._containers.create(spec))
        except ContainerError as e:
            raise await self._engine_failure(sandbox.id, phase, e) from e

        return await self._bind(sandbox.id, handle)

    async def _bind(self, sandbox_id: UUID, handle: ContainerHandle) -> Sandbox:
        async with self._session_factory() as db:
            bound = await SandboxRepository(db).bind_container(
                sandbox_id, handle.container_id, handle.name, dict(handle.urls)
            )
            await db.commit()
        if bound is None:
            raise SandboxNotFoundError(str(sandbox_id))
        logger.info(f"Bound container {handle.name} to sandbox {sandbox_id}")
        return bound

    # --- Start / stop ---

    async def _ensure_container(self, sandbox: Sandbox, phase: str) -> tuple[Sandbox, EngineState]:
        """Return the sandbox with a live container, provisioning one if it is missing."""
        if sandbox.container_id is not None:
            try:
                state = await self._guarded(sandbox.id, phase, self._containers.get_status(str(sandbox.id)))
            except ContainerNotFoundError:
                logger.warning(f"Container for sandbox {sandbox.id} is missing, provisioning a new one")
            except ContainerError as e:
                raise await self._engine_failure(sandbox.id, phase, e) from e
            else:
                return sandbox, state

        sandbox = await self._provision(sandbox, phase)
        return sandbox, EngineState.creating

    async def _start_container(
        self,
        sandbox: Sandbox,
        state: EngineState,
        phase: str,
        deadline: float | None = None,
    ) -> Sandbox:
        await self._transition(sandbox.id, SandboxStatus.STARTING)
        call = self._containers.unpause if state == EngineState.paused else self._containers.start
        try:
            await self._guarded(sandbox.id, phase, call(str(sandbox.id)), deadline)
        except ContainerError as e:
            raise await self._engine_failure(sandbox.id, phase, e) from e

        sandbox = await self._transition(sandbox.id, SandboxStatus.RUNNING)
        await self.touch_sandbox(sandbox.id)
        return sandbox

    async def start_sandbox(self, sandbox_id: UUID | str) -> Sandbox:
        """Start a sandbox, re-provisioning it first if it has no live container."""
        sandbox = await self._load(sandbox_id)
        async with self._locks.hold(str(sandbox.id)):
            sandbox = await self._load(sandbox.id)
            await self._transition(sandbox.id, SandboxStatus.STARTING)
            sandbox, state = await self._ensure_container(sandbox, "start")
            return await self._start_container(sandbox, state, "start")

    async def _stop_container(self, sandbox: Sandbox, timeout: int, phase: str) -> None:
        try:
            await self._guarded(
                sandbox.id,
                phase,
                self._containers.stop(str(sandbox.id), timeout=timeout),
                self._deadline(timeout),
            )
        except ContainerNotFoundError:
            logger.info(f"Container for sandbox {sandbox.id} is already gone, treating as stopped")
        except ContainerError as e:
            raise await self._engine_failure(sandbox.id, phase, e) from e

    async def stop_sandbox(self, sandbox_id: UUID | str, timeout: int | None = None) -> Sandbox:
        """Stop a sandbox. Stopping an absent or stopped container succeeds."""
        timeout = self._settings.StopTimeoutSeconds if timeout is None else timeout
        sandbox = await self._load(sandbox_id)
        async with self._locks.hold(str(sandbox.id)):
            sandbox = await self._load(sandbox.id)
            await self._transition(sandbox.id, SandboxStatus.STOPPING)
            if sandbox.container_id is not None:
                await self._stop_container(sandbox, timeout, "stop")
            return await self._transition(sandbox.id, SandboxStatus.STOPPED)

    async def restart_sandbox(self, sandbox_id: UUID | str, timeout: int | None = None) -> Sandbox:
        """
        Stop then start a sandbox.

        A failure in either phase leaves the record in ``error`` with the
        phase named in the message; there is no rollback to ``stopped``.
        """
        timeout = self._settings.StopTimeoutSeconds if timeout is None else timeout
        sandbox = await self._load(sandbox_id)
        async with self._locks.hold(str(sandbox.id)):
            sandbox = await self._load(sandbox.id)
            await self._transition(sandbox.id, SandboxStatus.STOPPING)
            if sandbox.container_id is not None:
                await self._stop_container(sandbox, timeout, "restart stop phase")

            await self._transition(sandbox.id, SandboxStatus.STARTING)
            sandbox, state = await self._ensure_container(sandbox, "restart start phase")
            return await self._start_container(sandbox, state, "restart start phase", self._deadline(timeout))

    # --- Pause ---

    async def pause_sandbox(self, sandbox_id: UUID | str) -> Sandbox:
        """Freeze a running sandbox. The record reports it as ``stopped``."""
        sandbox = await self._load(sandbox_id)
        async with self._locks.hold(str(sandbox.id)):
            sandbox = await self._load(sandbox.id)
            if sandbox.status != SandboxStatus.RUNNING:
                raise InvalidRequestError(
                    f"Only running sandboxes can be paused (status is '{sandbox.status}')",
                    sandbox_id=str(sandbox.id),
                )
            if sandbox.container_id is None:
                raise SandboxNotFoundError(str(sandbox.id), f"Sandbox {sandbox.id} has no container")
            try:
                await self._guarded(sandbox.id, "pause", self._containers.pause(str(sandbox.id)))
            except ContainerNotFoundError as e:
                raise SandboxNotFoundError(str(sandbox.id), str(e)) from e
            except ContainerError as e:
                raise await self._engine_failure(sandbox.id, "pause", e) from e
            return await self._transition(sandbox.id, SandboxStatus.STOPPED)

    async def unpause_sandbox(self, sandbox_id: UUID | str) -> Sandbox:
        sandbox = await self._load(sandbox_id)
        async with self._locks.hold(str(sandbox.id)):
            sandbox = await self._load(sandbox.id)
            if sandbox.status != SandboxStatus.STOPPED:
                raise InvalidRequestError(
                    f"Only paused sandboxes can be unpaused (status is '{sandbox.status}')",
                    sandbox_id=str(sandbox.id),
                )
            if sandbox.container_id is None:
                raise SandboxNotFoundError(str(sandbox.id), f"Sandbox {sandbox.id} has no container")
            try:
                state = await self._guarded(sandbox.id, "unpause", self._containers.get_status(str(sandbox.id)))
                if state != EngineState.paused:
                    # Exited containers are also recorded as stopped; they need start, not unpause
                    raise InvalidRequestError(
                        f"Sandbox container is not paused (engine state is '{state.value}')",
                        sandbox_id=str(sandbox.id),
                    )
                await self._guarded(sandbox.id, "unpause", self._containers.unpause(str(sandbox.id)))
            except ContainerNotFoundError as e:
                raise SandboxNotFoundError(str(sandbox.id), str(e)) from e
            except ContainerError as e:
                raise await self._engine_failure(sandbox.id, "unpause", e) from e
            sandbox = await self._transition(sandbox.id, SandboxStatus.RUNNING)
            await self.touch_sandbox(sandbox.id)
            return sandbox

    # --- Delete ---

    async def _delete_unrecorded_container(self, sandbox_id: UUID, remove_volumes: bool) -> None:
        try:
            await self._containers.delete(str(sandbox_id), remove_volumes=remove_volumes)
        except ContainerNotFoundError:
            logger.info(f"Sandbox {sandbox_id} is already deleted")
            return
        except ContainerError as e:
            raise EngineFailureError(
                format_error(classify_failure(e).code, "delete", str(e)), str(sandbox_id), cause=e
            ) from e
        logger.warning(f"Removed container of sandbox {sandbox_id}, which had no record")

    async def delete_sandbox(
        self,
        sandbox_id: UUID | str,
        remove_volumes: bool = False,
        delete_repo: bool = True,
    ) -> None:
        """
        Tear down the container, then the repository, then the record.

        The record is only deleted once the engine confirmed the container
        is gone. A repository that cannot be deleted is logged and left behind.
        Deleting a sandbox that has no record is not an error: any container
        still labelled with its id is removed and the call returns.
        """
        parsed = _parse_id(sandbox_id)
        if parsed is None:
            logger.info(f"Ignoring delete of malformed sandbox id {sandbox_id!r}")
            return

        async with self._locks.hold(str(parsed)):
            sandbox = await self._get(parsed)
            if sandbox is None:
                await self._delete_unrecorded_container(parsed, remove_volumes)
                return

            try:
                await self._guarded(
                    sandbox.id,
                    "delete",
                    self._containers.delete(str(sandbox.id), remove_volumes=remove_volumes),
                )
            except ContainerNotFoundError:
                logger.info(f"Container for sandbox {sandbox.id} is already gone")
            except ContainerError as e:
                raise await self._engine_failure(sandbox.id, "delete", e) from e

            if delete_repo:
                try:
                    await self._repositories.delete_repo(sandbox.repo_name)
                except RepositoryNotFoundError:
                    logger.info(f"Repository {sandbox.repo_name} of sandbox {sandbox.id} was already removed")
                except RepositoryError:
                    logger.warning(
                        f"Failed to delete repository {sandbox.repo_name} of sandbox {sandbox.id}",
                        exc_info=True,
                    )

            async with self._session_factory() as db:
                await SandboxRepository(db).delete(sandbox.id)
                await db.commit()
        logger.info(f"Deleted sandbox {sandbox.id}")

    # --- Reads ---

    async def get_sandbox(self, sandbox_id: UUID | str) -> Sandbox | None:
        parsed = _parse_id(sandbox_id)
        if parsed is None:
            return None
        return await self._get(parsed)

    async def get_sandbox_info(self, sandbox_id: UUID | str) -> SandboxInfo | None:
        """Record plus live engine and repository data. None for an unknown id."""
        sandbox = await self.get_sandbox(sandbox_id)
        if sandbox is None:
            return None

        info = SandboxInfo(sandbox=sandbox, status=sandbox.status)
        if sandbox.container_id is not None:
            try:
                info.engine_state = await self._containers.get_status(str(sandbox.id))
                info.status = map_engine_state(info.engine_state)
                if info.engine_state == EngineState.running:
                    info.stats = await self._containers.get_stats(str(sandbox.id))
            except ContainerNotFoundError as e:
                info.status = SandboxStatus.ERROR
                info.engine_error = str(e)
            except ContainerError as e:
                logger.warning(f"Could not read live state of sandbox {sandbox.id}: {e}")
                info.engine_error = str(e)

        try:
            info.repository = await self._repositories.get_repo(sandbox.repo_name)
        except RepositoryError as e:
            logger.warning(f"Could not read repository of sandbox {sandbox.id}: {e}")
        if info.repository is not None:
            info.project_config = await asyncio.to_thread(load_project_config, info.repository.path)
        return info

    async def list_sandboxes(
        self,
        user_id: str,
        status: SandboxStatus | str | Iterable[SandboxStatus | str] | None = None,
    ) -> list[Sandbox]:
        statuses: list[SandboxStatus] | None = None
        if status is not None:
            raw = [status] if isinstance(status, str) else list(status)
            try:
                statuses = [SandboxStatus(value) for value in raw]
            except ValueError as e:
                raise InvalidRequestError(f"Unknown status filter: {status}", field="status") from e

        async with self._session_factory() as db:
            return await SandboxRepository(db).list_by_user(user_id, statuses)

    async def count_by_status(self, user_id: str | None = None) -> dict[SandboxStatus, int]:
        async with self._session_factory() as db:
            return await SandboxRepository(db).count_by_status(user_id)

    async def touch_sandbox(self, sandbox_id: UUID | str) -> bool:
        parsed = _parse_id(sandbox_id)
        if parsed is None:
            return False
        async with self._session_factory() as db:
            touched = await SandboxRepository(db).touch(parsed)
            await db.commit()
        return touched

    async def get_sandbox_status(self, sandbox_id: UUID | str) -> SandboxStatus:
        """Live status mapped from the engine, falling back to the record when unreachable."""
        sandbox = await self._load(sandbox_id)
        if sandbox.container_id is None:
            return sandbox.status
        try:
            return map_engine_state(await self._containers.get_status(str(sandbox.id)))
        except ContainerNotFoundError:
            return SandboxStatus.ERROR
        except ContainerError as e:
            logger.warning(f"Could not read live state of sandbox {sandbox.id}: {e}")
            return sandbox.status

    async def _require_container(self, sandbox_id: UUID | str) -> Sandbox:
        sandbox = await self._load(sandbox_id)
        if sandbox.container_id is None:
            raise SandboxNotFoundError(str(sandbox.id), f"Sandbox {sandbox.id} has no container")
        return sandbox

    async def get_sandbox_stats(self, sandbox_id: UUID | str) -> ContainerStats:
        sandbox = await self._require_container(sandbox_id)
        try:
            return await self._containers.get_stats(str(sandbox.id))
        except ContainerNotFoundError as e:
            raise SandboxNotFoundError(str(sandbox.id), str(e)) from e
        except ContainerError as e:
            raise EngineFailureError(str(e), str(sandbox.id), cause=e) from e

    async def get_sandbox_logs(
        self,
        sandbox_id: UUID | str,
        tail: int | None = 100,
        since: datetime | None = None,
        timestamps: bool = False,
    ) -> str:
        sandbox = await self._require_container(sandbox_id)
        try:
            return await self._containers.get_logs(str(sandbox.id), tail=tail, since=since, timestamps=timestamps)
        except ContainerNotFoundError as e:
            raise SandboxNotFoundError(str(sandbox.id), str(e)) from e
        except ContainerError as e:
            raise EngineFailureError(str(e), str(sandbox.id), cause=e) from e

    async def exec(
        self,
        sandbox_id: UUID | str,
        command: list[str],
        workdir: str | None = None,
        env: dict[str, str] | None = None,
        user: str | None = None,
    ) -> ExecResult:
        """Run a command inside a sandbox's container. Counts as user activity."""
        if not command or not all(isinstance(part, str) for part in command):
            raise InvalidRequestError("Command must be a non-empty list of strings", field="command")

        sandbox = await self._require_container(sandbox_id)
        try:
            result = await self._containers.exec(str(sandbox.id), command, workdir=workdir, env=env, user=user)
        except ContainerNotFoundError as e:
            raise SandboxNotFoundError(str(sandbox.id), str(e)) from e
        except ContainerError as e:
            raise EngineFailureError(str(e), str(sandbox.id), cause=e) from e
        await self.touch_sandbox(sandbox.id)
        return result

    async def get_repository(self, sandbox_id: UUID | str) -> Repository | None:
        sandbox = await self._load(sandbox_id)
        try:
            return await self._repositories.get_repo(sandbox.repo_name)
        except RepositoryError as e:
            raise RepositoryFailureError(str(e), str(sandbox.id), cause=e) from e

    async def health_check(self) -> bool:
        return await self._containers.health_check()

    async def get_engine_info(self) -> EngineInfo:
        try:
            return await self._containers.get_info()
        except ContainerError as e:
            raise EngineFailureError(str(e), cause=e) from e

    # --- Reconciliation ---

    async def reconcile(self) -> ReconcileReport:
        """
        Bring records in line with the containers the engine reports.

        Records in ``error`` are left for an explicit start. A bound record
        whose container vanished while running or starting becomes ``error``.
        Managed containers without a record are logged, or adopted when
        ``AdoptOrphans`` is set.
        """
        report = ReconcileReport()
        namespace = self._settings.Docker.LabelNamespace
        try:
            handles = await self._containers.list_containers({f"{namespace}.managed": "true"})
        except ContainerError as e:
            raise EngineFailureError(f"Failed to list containers: {e}", cause=e) from e
        by_sandbox = {handle.sandbox_id: handle for handle in handles if handle.sandbox_id}

        async with self._session_factory() as db:
            records = await SandboxRepository(db).list_all()

        for record in records:
            handle = by_sandbox.pop(str(record.id), None)
            async with self._locks.hold(str(record.id)):
                sandbox = await self._get(record.id)
                if sandbox is None:
                    continue
                await self._reconcile_record(sandbox, handle, report)

        for sandbox_id, handle in by_sandbox.items():
            if self._settings.AdoptOrphans:
                adopted = await self._adopt(handle)
                if adopted is not None:
                    report.adopted.append(sandbox_id)
                    continue
            logger.warning(f"Container {handle.name} belongs to unknown sandbox {sandbox_id}; leaving it in place")
            report.orphans.append(sandbox_id)

        return report

    async def _reconcile_record(self, sandbox: Sandbox, handle: ContainerHandle | None, report: ReconcileReport) -> None:
        if handle is None:
            if sandbox.container_id is not None and sandbox.status in (SandboxStatus.RUNNING, SandboxStatus.STARTING):
                message = format_error(
                    SandboxErrorCode.ENGINE_FAILURE,
                    "reconcile",
                    f"container {sandbox.container_name} no longer exists",
                )
                await self._record_failure(sandbox.id, message)
                report.marked_error.append(str(sandbox.id))
            return

        if sandbox.status == SandboxStatus.ERROR:
            return
        # Created but never started
        if sandbox.status == SandboxStatus.CREATED and handle.state == EngineState.creating:
            return

        target = map_engine_state(handle.state)
        if target != sandbox.status:
            if can_transition(sandbox.status, target):
                if target == SandboxStatus.ERROR:
                    message = format_error(
                        SandboxErrorCode.ENGINE_FAILURE,
                        "reconcile",
                        f"container reported state '{handle.state.value}'",
                    )
                    await self._transition(sandbox.id, target, message)
                else:
                    await self._transition(sandbox.id, target)
                report.updated.append(str(sandbox.id))
            else:
                logger.debug(f"Sandbox {sandbox.id}: not moving {sandbox.status} -> {target} during reconcile")

        if handle.urls:
            async with self._session_factory() as db:
                await SandboxRepository(db).update_urls(sandbox.id, dict(handle.urls))
                await db.commit()

    async def _adopt(self, handle: ContainerHandle) -> Sandbox | None:
        """Create a record for a managed container that has none."""
        ns = self._settings.Docker.LabelNamespace
        labels = handle.labels
        sandbox_id = _parse_id(handle.sandbox_id)
        user_id = labels.get(f"{ns}.sandbox.user")
        name = labels.get(f"{ns}.sandbox.name")
        repo_name = labels.get(f"{ns}.sandbox.repo")
        if sandbox_id is None or not user_id or not name or not repo_name:
            logger.warning(f"Cannot adopt container {handle.name}: identifying labels are missing")
            return None

        data = SandboxCreate(
            name=name[:MAX_NAME_LENGTH],
            github_url=labels.get(f"{ns}.sandbox.github"),
            flavor_id=resolve_flavor(labels.get(f"{ns}.flavor")),
            resource_tier_id=resolve_tier(labels.get(f"{ns}.tier")).id,
            addon_ids=[key.rsplit(".", 1)[-1] for key in labels if key.startswith(f"{ns}.addon.")],
        )
        async with self._locks.hold(str(sandbox_id)):
            async with self._locks.hold(f"owner:{user_id}"):
                async with self._session_factory() as db:
                    repo = SandboxRepository(db)
                    slug = await generate_unique_slug(repo, user_id, labels.get(f"{ns}.sandbox.slug") or name)
                    try:
                        await repo.create(
                            data,
                            sandbox_id=sandbox_id,
                            user_id=user_id,
                            slug=slug,
                            repo_name=repo_name,
                            flavor_id=data.flavor_id or self._settings.DefaultFlavor,
                            resource_tier_id=data.resource_tier_id or self._settings.DefaultTier,
                            addon_ids=data.addon_ids or [],
                        )
                        await db.commit()
                    except IntegrityError:
                        await db.rollback()
                        logger.warning(f"Cannot adopt container {handle.name}: record conflicts", exc_info=True)
                        return None

            sandbox = await self._bind(sandbox_id, handle)
            target = map_engine_state(handle.state)
            if target == SandboxStatus.ERROR:
                message = format_error(
                    SandboxErrorCode.ENGINE_FAILURE,
                    "adopt",
                    f"container reported state '{handle.state.value}'",
                )
                sandbox = await self._transition(sandbox_id, target, message)
            elif target == SandboxStatus.RUNNING:
                await self._transition(sandbox_id, SandboxStatus.STARTING)
                sandbox = await self._transition(sandbox_id, target)
            elif can_transition(sandbox.status, target):
                sandbox = await self._transition(sandbox_id, target)

        logger.info(f"Adopted orphan container {handle.name} as sandbox {sandbox_id} for user {user_id}")
        return sandbox
