"""
Project configuration schema.

Models for the ``sandboxer.toml`` file a project keeps at its repository
root. Every section except ``[project]`` is optional.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Flavor(StrEnum):
    BARE = "bare"
    JS = "js"
    PYTHON = "python"
    GO = "go"
    RUST = "rust"
    FULLSTACK = "fullstack"
    POLYGLOT = "polyglot"


class Tier(StrEnum):
    MICRO = "micro"
    STARTER = "starter"
    BUILDER = "builder"
    CREATOR = "creator"
    POWER = "power"


ADDON_IDS = ("code-server", "gui", "gpu", "databases", "cloud")


class ProjectSection(BaseModel):
    name: str = Field(min_length=1, max_length=100, description="Project name")
    description: str | None = Field(default=None, max_length=500)


class EnvironmentSection(BaseModel):
    base: Flavor = Field(default=Flavor.JS, description="Base flavor of the sandbox image")
    variables: dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


class PortSpec(BaseModel):
    port: int | None = Field(default=None, ge=1, le=65535)
    label: str | None = None
    public: bool = False


class ResourcesSection(BaseModel):
    tier: Tier = Tier.BUILDER
    cpu_cores: int | None = Field(default=None, ge=1, le=16)
    memory_gb: float | None = Field(default=None, ge=0.5, le=64)


class AddonSpec(BaseModel):
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class AddonsSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code_server: bool | AddonSpec | None = Field(default=None, alias="code-server")
    gui: bool | AddonSpec | None = None
    gpu: bool | AddonSpec | None = None
    databases: bool | AddonSpec | None = None
    cloud: bool | AddonSpec | None = None

    def enabled(self) -> list[str]:
        """Addon ids switched on, in declaration order."""
        result = []
        for addon_id in ADDON_IDS:
            value = getattr(self, addon_id.replace("-", "_"))
            if value is True or (isinstance(value, AddonSpec) and value.enabled):
                result.append(addon_id)
        return result


class LifecycleSection(BaseModel):
    init: str | None = None
    setup: str | None = None
    dev: str | None = None
    build: str | None = None
    test: str | None = None
    lint: str | None = None
    format: str | None = None


class GitSection(BaseModel):
    default_branch: str = "main"
    auto_commit: bool = False
    user_name: str | None = None
    user_email: str | None = None


class ProjectConfig(BaseModel):
    """A parsed ``sandboxer.toml``."""

    project: ProjectSection
    environment: EnvironmentSection = Field(default_factory=EnvironmentSection)
    ports: dict[int, int | PortSpec] = Field(default_factory=dict)
    resources: ResourcesSection = Field(default_factory=ResourcesSection)
    addons: AddonsSection = Field(default_factory=AddonsSection)
    lifecycle: LifecycleSection = Field(default_factory=LifecycleSection)
    git: GitSection = Field(default_factory=GitSection)

    @field_validator("ports", mode="before")
    @classmethod
    def coerce_port_keys(cls, v: Any) -> Any:
        """TOML table keys are strings; only digit keys name ports."""
        if not isinstance(v, dict):
            return v
        ports: dict[int, Any] = {}
        for key, value in v.items():
            key_str = str(key)
            if not key_str.isdigit():
                raise ValueError(f"Port key must be a number, got {key_str!r}")
            port = int(key_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port {port} is out of range")
            ports[port] = value
        return ports


class ConfigIssue(BaseModel):
    path: str
    message: str
    code: str


class ConfigLoadResult(BaseModel):
    """Outcome of loading a project config. Loading never raises."""

    valid: bool
    config: ProjectConfig | None = None
    errors: list[ConfigIssue] = Field(default_factory=list)
    path: str | None = None


def default_project_config(name: str) -> ProjectConfig:
    return ProjectConfig(project=ProjectSection(name=(name or "untitled")[:100]))
