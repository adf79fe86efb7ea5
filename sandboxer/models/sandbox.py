"""Sandbox record model."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, Index
from sqlmodel import JSON, Column, Field, SQLModel


class SandboxStatus(StrEnum):
    """Record-level sandbox status.

    Deliberately coarser than the engine's vocabulary; see
    ``sandboxer.core.sandbox.status.map_engine_state``.
    """

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class SandboxBase(SQLModel):
    """Shared fields for sandbox records."""

    name: str = Field(max_length=100, description="Human readable sandbox name")
    description: str | None = Field(default=None, description="Optional free-form description")
    github_url: str | None = Field(default=None, description="Remote repository the workspace was cloned from")
    flavor_id: str = Field(default="fullstack", description="Language/runtime preset")
    resource_tier_id: str = Field(default="starter", description="CPU/memory class")
    addon_ids: list[str] = Field(
        default_factory=lambda: ["code-server"],
        sa_column=Column(JSON, nullable=False),
        description="Enabled optional capabilities, in request order",
    )


class Sandbox(SandboxBase, table=True):
    """Sandbox record stored in DB. Source of truth for sandbox metadata."""

    __tablename__ = "sandboxes"  # type: ignore
    __table_args__ = (Index("uq_sandbox_user_slug", "user_id", "slug", unique=True),)

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: str = Field(index=True, description="Owning user ID")
    slug: str = Field(max_length=64, description="URL-safe identifier, unique per user")
    repo_name: str = Field(description="Name of the backing repository")

    # Runtime binding, written together once the container exists
    container_id: str | None = Field(default=None, description="Engine container ID")
    container_name: str | None = Field(default=None, description="Engine container name")
    opencode_url: str | None = Field(default=None)
    code_server_url: str | None = Field(default=None)
    vnc_url: str | None = Field(default=None)
    acp_gateway_url: str | None = Field(default=None)

    status: SandboxStatus = Field(default=SandboxStatus.CREATED, index=True)
    error_message: str | None = Field(default=None, description="Populated only while status is error")
    last_accessed_at: datetime | None = Field(
        default=None,
        sa_column=Column(TIMESTAMP(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )

    @property
    def urls(self) -> dict[str, str | None]:
        return {
            "opencode": self.opencode_url,
            "code_server": self.code_server_url,
            "vnc": self.vnc_url,
            "acp_gateway": self.acp_gateway_url,
        }


class SandboxRead(SandboxBase):
    """API response schema."""

    id: UUID
    user_id: str
    slug: str
    repo_name: str
    container_id: str | None
    container_name: str | None
    opencode_url: str | None
    code_server_url: str | None
    vnc_url: str | None
    acp_gateway_url: str | None
    status: SandboxStatus
    error_message: str | None
    last_accessed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class SandboxCreate(SQLModel):
    """Create request. Omitted placement fields fall back to configured defaults."""

    name: str
    description: str | None = None
    github_url: str | None = None
    flavor_id: str | None = None
    resource_tier_id: str | None = None
    addon_ids: list[str] | None = None
    auto_start: bool = False
