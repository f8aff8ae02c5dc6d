"""
Configuration loader — nodestrap.yml → NodestrapConfig.

Lookup order:
    1. ``--config PATH`` (must exist)
    2. the nearest nodestrap.yml in the working directory or its parents
    3. built-in defaults

Every problem with a file that *was* found (unreadable, bad YAML, wrong
shape, schema violation) is a ``ConfigError`` naming the file.
"""

from __future__ import annotations

import logging
from itertools import islice
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from nodestrap.core.models.config import NodestrapConfig

logger = logging.getLogger(__name__)

CONFIG_FILE = "nodestrap.yml"

# Parent directories examined above the starting one.
_MAX_ASCENT = 20


class ConfigError(Exception):
    """The configuration file is missing, unreadable or invalid."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Nearest nodestrap.yml at or above ``start_dir`` (default: cwd)."""
    start = (start_dir or Path.cwd()).resolve()
    for directory in islice([start, *start.parents], _MAX_ASCENT + 1):
        candidate = directory / CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def _read_document(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(
            f"{path} must contain a YAML mapping at the top level, not {type(document).__name__}"
        )
    return document


def load_config(path: Path | None = None, *, search: bool = True) -> NodestrapConfig:
    """Resolve, read and validate the configuration.

    Args:
        path: Explicit file; a missing file is an error.
        search: Without ``path``, look upward from the working directory.

    Raises:
        ConfigError: For any problem with the selected file.
    """
    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    if path is None:
        path = find_config_file() if search else None
    if path is None:
        logger.debug("No %s found; using built-in defaults", CONFIG_FILE)
        return NodestrapConfig()

    document = _read_document(path)
    try:
        config = NodestrapConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Configuration loaded from %s", path)
    return config
