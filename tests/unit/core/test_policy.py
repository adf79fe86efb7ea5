"""Unit tests for flavor and tier resolution."""

from sandboxer.configs.sandbox import RegistryConfig
from sandboxer.core.sandbox.policy import (
    FLAVOR_IMAGES,
    RESOURCE_TIERS,
    list_flavors,
    list_tiers,
    resolve_flavor,
    resolve_image,
    resolve_tier,
)


class TestResolveTier:
    """Tier lookup with the builder fallback."""

    def test_known_tiers(self) -> None:
        """Each named tier resolves to its own allocation."""
        assert resolve_tier("starter").cpus == "0.5"
        assert resolve_tier("starter").memory == "512m"
        assert resolve_tier("power").pids_limit == 1024

    def test_lookup_is_case_insensitive(self) -> None:
        """Tier ids are matched regardless of case."""
        assert resolve_tier("CREATOR").id == "creator"

    def test_unknown_tier_falls_back_to_builder(self) -> None:
        """Unknown, empty and missing tiers all use the builder allocation."""
        assert resolve_tier("enterprise").id == "builder"
        assert resolve_tier("").id == "builder"
        assert resolve_tier(None).id == "builder"

    def test_list_tiers(self) -> None:
        """All tiers are listed in catalogue order."""
        assert [tier.id for tier in list_tiers()] == list(RESOURCE_TIERS)


class TestResolveFlavor:
    """Flavor normalisation and image resolution."""

    def test_known_flavor(self) -> None:
        """Known flavors are returned lowercased."""
        assert resolve_flavor("Python") == "python"

    def test_unknown_flavor_falls_back_to_fullstack(self) -> None:
        """Unknown flavors use the fullstack image."""
        assert resolve_flavor("cobol") == "fullstack"
        assert resolve_flavor(None) == "fullstack"

    def test_development_image_is_local(self) -> None:
        """Development uses the locally built image name."""
        assert resolve_image("js", "development") == "codeopen-js"

    def test_production_image_uses_registry(self) -> None:
        """Production images are qualified with registry, owner and version."""
        registry = RegistryConfig(Url="registry.example.com/", Owner="acme", Version="1.2.3")
        assert resolve_image("go", "production", registry) == "registry.example.com/acme/codeopen-go:1.2.3"

    def test_production_image_default_registry(self) -> None:
        """Without a registry config the defaults apply."""
        assert resolve_image("rust", "Production") == "ghcr.io/sandboxer/codeopen-rust:latest"

    def test_unknown_flavor_image(self) -> None:
        """An unknown flavor resolves to the fullstack image."""
        assert resolve_image("cobol", "development") == FLAVOR_IMAGES["fullstack"]

    def test_list_flavors(self) -> None:
        """All flavors are listed."""
        assert set(list_flavors()) == {"js", "python", "go", "rust", "fullstack", "polyglot"}
