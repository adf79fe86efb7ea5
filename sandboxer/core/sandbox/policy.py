"""Resource policy: flavor → image and tier → resource allocation.

Pure lookups with fixed fallbacks. No I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

from sandboxer.configs.sandbox import RegistryConfig


@dataclass(frozen=True)
class ResourceTier:
    """A named CPU/memory/process-count allocation class."""

    id: str
    cpus: str
    memory: str
    pids_limit: int


RESOURCE_TIERS: dict[str, ResourceTier] = {
    "starter": ResourceTier(id="starter", cpus="0.5", memory="512m", pids_limit=128),
    "builder": ResourceTier(id="builder", cpus="1", memory="2g", pids_limit=256),
    "creator": ResourceTier(id="creator", cpus="2", memory="4g", pids_limit=512),
    "power": ResourceTier(id="power", cpus="4", memory="8g", pids_limit=1024),
}

FALLBACK_TIER = "builder"

FLAVOR_IMAGES: dict[str, str] = {
    "js": "codeopen-js",
    "python": "codeopen-python",
    "go": "codeopen-go",
    "rust": "codeopen-rust",
    "fullstack": "codeopen-fullstack",
    "polyglot": "codeopen-polyglot",
}

FALLBACK_FLAVOR = "fullstack"


def resolve_tier(tier_id: str | None) -> ResourceTier:
    """Look up a tier, falling back to ``builder`` for anything unknown."""
    return RESOURCE_TIERS.get((tier_id or "").lower(), RESOURCE_TIERS[FALLBACK_TIER])


def resolve_flavor(flavor_id: str | None) -> str:
    """Normalise a flavor id, falling back to ``fullstack``."""
    flavor = (flavor_id or "").lower()
    return flavor if flavor in FLAVOR_IMAGES else FALLBACK_FLAVOR


def resolve_image(flavor_id: str | None, environment: str, registry: RegistryConfig | None = None) -> str:
    """Resolve a flavor to an image reference.

    Development uses the locally built image (``codeopen-js``). Production uses
    ``{registry}/{owner}/codeopen-js:{version}``.
    """
    image_name = FLAVOR_IMAGES[resolve_flavor(flavor_id)]
    if environment.lower() != "production":
        return image_name

    registry = registry or RegistryConfig()
    return f"{registry.Url.rstrip('/')}/{registry.Owner}/{image_name}:{registry.Version}"


def list_tiers() -> list[ResourceTier]:
    return list(RESOURCE_TIERS.values())


def list_flavors() -> list[str]:
    return list(FLAVOR_IMAGES.keys())
