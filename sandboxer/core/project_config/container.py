"""
Project configuration to container specification.

Merges the explicit create request (flavor image, tier, addons) with the
workspace's ``sandboxer.toml`` into the ContainerSpec handed to the engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sandboxer.configs.sandbox import SandboxConfig
from sandboxer.infra.container.base import ContainerSpec, PortMapping, ResourceLimits, VolumeMount

from .schema import PortSpec, ProjectConfig

if TYPE_CHECKING:
    from sandboxer.core.sandbox.policy import ResourceTier

OPENCODE_PORT = 4096
HOMEPAGE_PORT = 4000

# Container port for each addon that serves HTTP
ADDON_PORTS: dict[str, int] = {
    "code-server": 8080,
    "gui": 6080,
}

DEFAULT_ENV: dict[str, str] = {
    "TERM": "xterm-256color",
    "LANG": "en_US.UTF-8",
    "WORKSPACE_DIR": "/home/workspace",
}

DEFAULT_COMMAND = ["/bin/sh", "-c", "echo 'Container started. Waiting...' && tail -f /dev/null"]


def merge_addons(requested: list[str], project_config: ProjectConfig | None) -> list[str]:
    """Requested addons first, then any the project config enables, without duplicates."""
    addons: list[str] = []
    for addon_id in list(requested) + (project_config.addons.enabled() if project_config else []):
        if addon_id not in addons:
            addons.append(addon_id)
    return addons


def build_urls(route: str, addons: list[str], settings: SandboxConfig) -> dict[str, str]:
    """Service URLs of a sandbox, keyed by service."""
    protocol = settings.Routing.Protocol
    domain = settings.Routing.BaseDomain
    urls = {
        "homepage": f"{protocol}://{route}.{domain}",
        "opencode": f"{protocol}://{route}-api.{domain}",
    }
    if "code-server" in addons:
        urls["code_server"] = f"{protocol}://{route}-code.{domain}"
    if "gui" in addons:
        urls["vnc"] = f"{protocol}://{route}-vnc.{domain}"
    return urls


def _routing_labels(route: str, ports: dict[str, int], settings: SandboxConfig) -> dict[str, str]:
    domain = settings.Routing.BaseDomain
    labels = {
        "traefik.enable": "true",
        "traefik.docker.network": settings.Docker.Network,
    }
    for suffix, port in ports.items():
        router = f"{route}{suffix}"
        labels[f"traefik.http.routers.{router}.rule"] = f"Host(`{router}.{domain}`)"
        labels[f"traefik.http.routers.{router}.service"] = router
        labels[f"traefik.http.services.{router}.loadbalancer.server.port"] = str(port)
        if settings.Routing.Protocol == "https":
            labels[f"traefik.http.routers.{router}.tls"] = "true"
    return labels


def _convert_ports(project_config: ProjectConfig | None, addons: list[str]) -> list[PortMapping]:
    ports = [
        PortMapping(container=OPENCODE_PORT, label="OpenCode", public=True),
        PortMapping(container=HOMEPAGE_PORT, label="Homepage", public=True),
    ]
    for addon_id in addons:
        if addon_id in ADDON_PORTS:
            ports.append(PortMapping(container=ADDON_PORTS[addon_id], label=addon_id, public=True))

    if project_config is not None:
        for key, value in project_config.ports.items():
            if isinstance(value, PortSpec):
                ports.append(
                    PortMapping(
                        container=value.port or key,
                        label=value.label or f"Port {key}",
                        public=value.public,
                    )
                )
            else:
                ports.append(PortMapping(container=value, label=f"Port {key}"))
    return ports


def build_container_spec(
    *,
    sandbox_id: str,
    user_id: str,
    name: str,
    slug: str,
    repo_name: str,
    repo_path: str,
    image: str,
    flavor_id: str,
    tier: ResourceTier,
    addon_ids: list[str],
    settings: SandboxConfig,
    project_config: ProjectConfig | None = None,
    github_url: str | None = None,
    created_at: str | None = None,
) -> ContainerSpec:
    """Assemble the engine-facing spec for one sandbox.

    Args:
        sandbox_id: Record id; also the container address
        repo_name: Globally unique repository name, used as the routing host
        repo_path: Host path of the repository, bind-mounted as the workspace
        tier: Resolved resource tier; ``[resources]`` overrides apply on top
        addon_ids: Addons from the request, merged with the project config's
        project_config: Parsed ``sandboxer.toml``, None when it was invalid
    """
    ns = settings.Docker.LabelNamespace
    addons = merge_addons(addon_ids, project_config)
    git = project_config.git if project_config else None

    resources = ResourceLimits(cpus=tier.cpus, memory=tier.memory, pids_limit=tier.pids_limit)
    if project_config is not None:
        if project_config.resources.cpu_cores:
            resources.cpus = str(project_config.resources.cpu_cores)
        if project_config.resources.memory_gb:
            resources.memory = f"{project_config.resources.memory_gb:g}g"

    author_name = (git.user_name if git else None) or settings.Git.AuthorName
    author_email = (git.user_email if git else None) or settings.Git.AuthorEmail
    env = {
        **DEFAULT_ENV,
        "WORKSPACE_DIR": settings.Docker.WorkspaceMount,
        "SANDBOX_ID": sandbox_id,
        "SANDBOX_USER_ID": user_id,
        "PROJECT_NAME": project_config.project.name if project_config else name,
        "GIT_AUTHOR_NAME": author_name,
        "GIT_AUTHOR_EMAIL": author_email,
        "GIT_COMMITTER_NAME": author_name,
        "GIT_COMMITTER_EMAIL": author_email,
    }
    if project_config is not None:
        env.update(project_config.environment.variables)
    if "code-server" in addons:
        env["CODE_SERVER_ENABLED"] = "true"
    if "gui" in addons:
        env["GUI_ENABLED"] = "true"

    init = project_config.lifecycle.init if project_config else None
    command = ["/bin/sh", "-c", init] if init else list(DEFAULT_COMMAND)

    urls = build_urls(repo_name, addons, settings)

    route_ports = {"": HOMEPAGE_PORT, "-api": OPENCODE_PORT}
    if "code-server" in addons:
        route_ports["-code"] = ADDON_PORTS["code-server"]
    if "gui" in addons:
        route_ports["-vnc"] = ADDON_PORTS["gui"]

    labels = _routing_labels(repo_name, route_ports, settings)
    labels.update(
        {
            f"{ns}.managed": "true",
            f"{ns}.sandbox.id": sandbox_id,
            f"{ns}.sandbox.name": name,
            f"{ns}.sandbox.slug": slug,
            f"{ns}.sandbox.user": user_id,
            f"{ns}.sandbox.repo": repo_name,
            f"{ns}.flavor": flavor_id,
            f"{ns}.tier": tier.id,
        }
    )
    if created_at:
        labels[f"{ns}.sandbox.created"] = created_at
    if github_url:
        labels[f"{ns}.sandbox.github"] = github_url
    if project_config is not None:
        labels[f"{ns}.project.name"] = project_config.project.name
    for addon_id in addons:
        labels[f"{ns}.addon.{addon_id}"] = "true"

    return ContainerSpec(
        sandbox_id=sandbox_id,
        name=f"{settings.Docker.ContainerPrefix}-{sandbox_id}",
        image=image,
        resources=resources,
        labels=labels,
        env=env,
        command=command,
        working_dir=settings.Docker.WorkspaceMount,
        ports=_convert_ports(project_config, addons),
        volumes=[VolumeMount(host=repo_path, container=settings.Docker.WorkspaceMount)],
        urls=urls,
    )
