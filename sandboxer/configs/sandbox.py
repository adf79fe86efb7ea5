"""Sandbox lifecycle configuration.

Generic lifecycle settings live at the top level. Provider-specific settings
are nested under their own model so adding a new backend never pollutes the
shared namespace.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class DockerConfig(BaseModel):
    """Docker engine configuration."""

    BaseUrl: str = Field(
        default="",
        description="Docker daemon URL (e.g. unix:///var/run/docker.sock). Empty uses DOCKER_HOST / docker.from_env()",
    )
    RequestTimeoutSeconds: int = Field(
        default=120,
        description="Timeout for individual Docker API requests",
    )
    Network: str = Field(
        default="sandboxer-net",
        description="Docker network sandbox containers are attached to. Empty keeps the engine default",
    )
    ContainerPrefix: str = Field(
        default="sandboxer",
        description="Prefix for sandbox container names ({prefix}-{sandbox_id})",
    )
    LabelNamespace: str = Field(
        default="sandboxer",
        description="Namespace for container labels ({namespace}.sandbox.id, ...)",
    )
    HostPathPrefix: str = Field(
        default="",
        description="Host path prefix for workspace bind mounts when the API itself runs inside a container",
    )
    WorkspaceMount: str = Field(
        default="/home/workspace",
        description="Mount point of the sandbox repository inside the container",
    )


class GitConfig(BaseModel):
    """Local git repository backend configuration."""

    ReposDir: str = Field(
        default="./data/repos",
        description="Directory holding one git repository per sandbox",
    )
    DefaultBranch: str = Field(
        default="main",
        description="Initial branch name for new repositories",
    )
    AuthorName: str = Field(
        default="Sandboxer",
        description="Author name used for template commits",
    )
    AuthorEmail: str = Field(
        default="sandboxer@localhost",
        description="Author email used for template commits",
    )
    CloneDepth: int = Field(
        default=1,
        description="Depth for repository clones. 0 disables shallow cloning",
    )
    CommandTimeoutSeconds: int = Field(
        default=300,
        description="Timeout for a single git command",
    )


class RegistryConfig(BaseModel):
    """Container image registry configuration."""

    Url: str = Field(
        default="ghcr.io",
        description="Registry host used for production images",
    )
    Owner: str = Field(
        default="sandboxer",
        description="Registry namespace / organisation",
    )
    Version: str = Field(
        default="latest",
        description="Image tag used for production images",
    )


class RoutingConfig(BaseModel):
    """Public URL generation for sandbox services."""

    BaseDomain: str = Field(
        default="localhost",
        description="Wildcard base domain sandbox services are exposed under",
    )
    Protocol: str = Field(
        default="http",
        description="Protocol for service URLs (http or https)",
    )


class SandboxConfig(BaseModel):
    """Configuration for the sandbox lifecycle orchestrator.

    Generic fields at top level, provider configs nested.
    """

    # --- Generic ---
    ContainerBackend: str = Field(
        default="docker",
        description="Container backend: 'docker' or 'memory'",
    )
    RepositoryBackend: str = Field(
        default="filesystem",
        description="Repository backend: 'filesystem' or 'memory'",
    )
    StopTimeoutSeconds: int = Field(
        default=10,
        description="Graceful stop period handed to the engine before it kills the container",
    )
    OperationGraceSeconds: int = Field(
        default=15,
        description="Extra wall-clock time on top of the stop timeout before an operation is declared timed out",
    )
    DefaultFlavor: str = Field(
        default="fullstack",
        description="Flavor used when a create request does not name one",
    )
    DefaultTier: str = Field(
        default="starter",
        description="Resource tier used when a create request does not name one",
    )
    DefaultAddons: list[str] = Field(
        default_factory=lambda: ["code-server"],
        description="Addons enabled when a create request does not name any",
    )
    ReconcileOnStartup: bool = Field(
        default=True,
        description="Sync records with managed containers when the orchestrator starts",
    )
    AdoptOrphans: bool = Field(
        default=False,
        description="Create records for managed containers that have no record instead of only logging them",
    )

    # --- Providers ---
    Docker: DockerConfig = Field(
        default_factory=lambda: DockerConfig(),
        description="Docker engine settings",
    )
    Git: GitConfig = Field(
        default_factory=lambda: GitConfig(),
        description="Git repository backend settings",
    )
    Registry: RegistryConfig = Field(
        default_factory=lambda: RegistryConfig(),
        description="Image registry settings",
    )
    Routing: RoutingConfig = Field(
        default_factory=lambda: RoutingConfig(),
        description="Service URL settings",
    )
