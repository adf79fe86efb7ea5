"""Find and parse the project configuration file in a workspace."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from .schema import ConfigIssue, ConfigLoadResult, ProjectConfig, default_project_config

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("sandboxer.toml", ".sandboxer.toml", "sandboxer.config.toml")


def find_config_file(workspace_path: str | Path) -> Path | None:
    root = Path(workspace_path)
    for filename in CONFIG_FILENAMES:
        candidate = root / filename
        if candidate.is_file():
            return candidate
    return None


def parse_config(content: str) -> ConfigLoadResult:
    """Parse TOML text into a validated ProjectConfig."""
    try:
        raw = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        return ConfigLoadResult(
            valid=False,
            errors=[ConfigIssue(path="", message=f"TOML parse error: {e}", code="toml_parse_error")],
        )

    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as e:
        issues = [
            ConfigIssue(
                path=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code=err["type"],
            )
            for err in e.errors()
        ]
        return ConfigLoadResult(valid=False, errors=issues)

    return ConfigLoadResult(valid=True, config=config)


def load_project_config(workspace_path: str | Path) -> ConfigLoadResult:
    """Load the project config from a workspace directory.

    A workspace without a config file yields a valid default config named
    after the directory. Read, parse and validation failures are reported in
    the result, never raised.
    """
    root = Path(workspace_path)
    config_file = find_config_file(root)
    if config_file is None:
        return ConfigLoadResult(valid=True, config=default_project_config(root.name))

    try:
        content = config_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read project config {config_file}: {e}")
        return ConfigLoadResult(
            valid=False,
            errors=[ConfigIssue(path="", message=f"Failed to read file: {e}", code="file_read_error")],
            path=str(config_file),
        )

    result = parse_config(content)
    result.path = str(config_file)
    if not result.valid:
        logger.info(f"Project config {config_file} is invalid: {len(result.errors)} error(s)")
    return result
