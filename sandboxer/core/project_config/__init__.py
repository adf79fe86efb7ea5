from .container import build_container_spec, build_urls, merge_addons
from .loader import CONFIG_FILENAMES, load_project_config, parse_config
from .schema import ConfigLoadResult, Flavor, ProjectConfig, Tier

__all__ = [
    "CONFIG_FILENAMES",
    "ConfigLoadResult",
    "Flavor",
    "ProjectConfig",
    "Tier",
    "build_container_spec",
    "build_urls",
    "load_project_config",
    "merge_addons",
    "parse_config",
]
