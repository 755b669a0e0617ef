"""Settings for taglib discovery.

File names and directory conventions are configurable. Resolution priority:

1. Explicit overrides (keyword arguments / CLI flags)
2. A YAML settings file
3. TAGRES_* environment variables
4. Defaults
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from tagres.errors import ConfigError

log = logging.getLogger(__name__)

ENV_PREFIX = "TAGRES_"


class TagresSettings(BaseModel):
    """Naming conventions and limits used by the loader, scanner and walker."""

    model_config = ConfigDict(frozen=True)

    taglib_filename: str = Field(
        default="marko-taglib.json",
        description="Taglib definition file looked up at each directory level",
    )
    tag_filename: str = Field(
        default="marko-tag.json",
        description="Standalone tag schema file inside a scanned tag directory",
    )
    renderer_filename: str = Field(
        default="renderer.py", description="Renderer implementation file name"
    )
    template_filename: str = Field(
        default="template.marko", description="Compiled-template file name"
    )
    packages_dirname: str = Field(
        default="node_modules",
        description="Dependency-package subdirectory searched at each level",
    )
    embedded_schema_name: str = Field(
        default="tag",
        description="Module-level name holding a schema embedded in a renderer",
    )
    max_workers: int = Field(
        default=4, ge=1, description="Threads used to load directory levels"
    )
    boundary: Path | None = Field(
        default=None,
        description="Last directory visited when walking upward (inclusive)",
    )


def settings_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect TAGRES_* overrides from the environment."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    for name in TagresSettings.model_fields:
        value = env.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            data[name] = value
    return data


def load_settings_file(path: Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file."""
    if not path.exists():
        raise ConfigError("Settings file not found", path=path)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse settings: {exc}", path=path) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read settings: {exc}", path=path) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Settings file must be a mapping", path=path)
    return data


def resolve_settings(
    overrides: Mapping[str, Any] | None = None,
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TagresSettings:
    """Build settings from env, an optional YAML file and explicit overrides."""
    data = settings_from_env(environ)
    if config_file is not None:
        data.update(load_settings_file(config_file))
        log.debug(f"Loaded settings from {config_file}")
    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return TagresSettings(**data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}", path=config_file) from exc
