"""Repository for sandboxes table."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlmodel import col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.models.sandbox import Sandbox, SandboxCreate, SandboxStatus

logger = logging.getLogger(__name__)

_URL_FIELDS = ("opencode_url", "code_server_url", "vnc_url", "acp_gateway_url")


class SandboxRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(
        self,
        data: SandboxCreate,
        *,
        sandbox_id: UUID,
        user_id: str,
        slug: str,
        repo_name: str,
        flavor_id: str,
        resource_tier_id: str,
        addon_ids: list[str],
    ) -> Sandbox:
        sandbox = Sandbox(
            id=sandbox_id,
            user_id=user_id,
            slug=slug,
            repo_name=repo_name,
            name=data.name,
            description=data.description,
            github_url=data.github_url,
            flavor_id=flavor_id,
            resource_tier_id=resource_tier_id,
            addon_ids=list(addon_ids),
            status=SandboxStatus.CREATED,
        )
        self.db.add(sandbox)
        await self.db.flush()
        await self.db.refresh(sandbox)
        logger.info("Created sandbox record %s (user=%s, slug=%s)", sandbox.id, user_id, slug)
        return sandbox

    async def get_by_id(self, sandbox_id: UUID, user_id: str | None = None) -> Sandbox | None:
        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return None
        if user_id is not None and sandbox.user_id != user_id:
            return None
        return sandbox

    async def get_by_slug(self, user_id: str, slug: str) -> Sandbox | None:
        statement = select(Sandbox).where(col(Sandbox.user_id) == user_id).where(col(Sandbox.slug) == slug)
        result = await self.db.exec(statement)
        return result.first()

    async def is_slug_available(self, user_id: str, slug: str) -> bool:
        statement = (
            select(func.count())
            .select_from(Sandbox)
            .where(col(Sandbox.user_id) == user_id)
            .where(col(Sandbox.slug) == slug)
        )
        result = await self.db.exec(statement)
        return result.one() == 0

    async def list_by_user(self, user_id: str, statuses: Iterable[SandboxStatus] | None = None) -> list[Sandbox]:
        statement = select(Sandbox).where(col(Sandbox.user_id) == user_id)
        if statuses is not None:
            statement = statement.where(col(Sandbox.status).in_(list(statuses)))
        statement = statement.order_by(col(Sandbox.created_at).desc(), col(Sandbox.id))
        result = await self.db.exec(statement)
        return list(result.all())

    async def list_all(self, statuses: Iterable[SandboxStatus] | None = None) -> list[Sandbox]:
        statement = select(Sandbox)
        if statuses is not None:
            statement = statement.where(col(Sandbox.status).in_(list(statuses)))
        statement = statement.order_by(col(Sandbox.created_at).desc(), col(Sandbox.id))
        result = await self.db.exec(statement)
        return list(result.all())

    async def count_by_status(self, user_id: str | None = None) -> dict[SandboxStatus, int]:
        statement = select(Sandbox.status, func.count()).group_by(Sandbox.status)
        if user_id is not None:
            statement = statement.where(col(Sandbox.user_id) == user_id)
        result = await self.db.exec(statement)
        counts = {status: 0 for status in SandboxStatus}
        for status, count in result.all():
            counts[SandboxStatus(status)] = count
        return counts

    async def set_status(
        self,
        sandbox_id: UUID,
        status: SandboxStatus,
        error_message: str | None = None,
    ) -> Sandbox | None:
        """Write a status. The error message is kept only for the error state."""
        if status == SandboxStatus.ERROR and not (error_message and error_message.strip()):
            raise ValueError("An error status requires a non-empty error message")

        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return None
        sandbox.status = status
        sandbox.error_message = error_message if status == SandboxStatus.ERROR else None
        sandbox.updated_at = datetime.now(timezone.utc)
        self.db.add(sandbox)
        await self.db.flush()
        await self.db.refresh(sandbox)
        return sandbox

    async def bind_container(
        self,
        sandbox_id: UUID,
        container_id: str,
        container_name: str,
        urls: dict[str, str | None] | None = None,
    ) -> Sandbox | None:
        if not container_id or not container_name:
            raise ValueError("container_id and container_name must be set together")

        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return None
        sandbox.container_id = container_id
        sandbox.container_name = container_name
        self._apply_urls(sandbox, urls or {})
        sandbox.updated_at = datetime.now(timezone.utc)
        self.db.add(sandbox)
        await self.db.flush()
        await self.db.refresh(sandbox)
        return sandbox

    async def update_urls(self, sandbox_id: UUID, urls: dict[str, str | None]) -> Sandbox | None:
        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return None
        if not self._apply_urls(sandbox, urls):
            return sandbox
        sandbox.updated_at = datetime.now(timezone.utc)
        self.db.add(sandbox)
        await self.db.flush()
        await self.db.refresh(sandbox)
        return sandbox

    async def touch(self, sandbox_id: UUID) -> bool:
        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return False
        sandbox.last_accessed_at = datetime.now(timezone.utc)
        self.db.add(sandbox)
        await self.db.flush()
        return True

    async def delete(self, sandbox_id: UUID) -> bool:
        sandbox = await self.db.get(Sandbox, sandbox_id)
        if sandbox is None:
            return False
        await self.db.delete(sandbox)
        await self.db.flush()
        logger.info("Deleted sandbox record %s", sandbox_id)
        return True

    @staticmethod
    def _apply_urls(sandbox: Sandbox, urls: dict[str, str | None]) -> bool:
        changed = False
        for key, value in urls.items():
            field = f"{key}_url"
            if field not in _URL_FIELDS:
                continue
            if getattr(sandbox, field) != value:
                setattr(sandbox, field, value)
                changed = True
        return changed
