"""scim-steward configuration loader."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .catalog import JsonFileCatalog
from .registry import SchemaRegistry, default_registry

logger = logging.getLogger(__name__)

# --- Defaults & locations --- #

DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {"level": "WARNING"},
    "base_url": None,
    "catalog": None,
}

PROJECT_CONFIG_NAME = "scim-steward.json"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# --- Public API --- #

def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration with layered precedence.

    Order:
        1. Built-in defaults
        2. Config file (``path``, else ./scim-steward.json when present)
        3. Environment overrides:
           - SCIM_STEWARD_LOG_LEVEL
           - SCIM_STEWARD_BASE_URL
           - SCIM_STEWARD_CATALOG
    """
    config = _merge_dicts(DEFAULT_CONFIG, {})

    config_path = Path(path) if path is not None else Path.cwd() / PROJECT_CONFIG_NAME
    if path is not None or config_path.is_file():
        config = _merge_dicts(config, _load_json_file(config_path))

    log_level_env = os.getenv("SCIM_STEWARD_LOG_LEVEL")
    if log_level_env:
        config.setdefault("logging", {})["level"] = log_level_env

    base_url_env = os.getenv("SCIM_STEWARD_BASE_URL")
    if base_url_env:
        config["base_url"] = base_url_env

    catalog_env = os.getenv("SCIM_STEWARD_CATALOG")
    if catalog_env:
        config["catalog"] = str(Path(catalog_env).expanduser())

    return config


def configure_logging(level: Union[str, int] = "WARNING") -> None:
    """Route the package's loggers to stderr at ``level``."""
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    logging.getLogger("scim_steward").setLevel(level)


def build_registry(config: Optional[Dict[str, Any]] = None) -> SchemaRegistry:
    """Default registry, with the configured extension catalog loaded on top."""
    registry = default_registry()
    catalog_path = (config or {}).get("catalog")
    if catalog_path:
        registry.load_catalog(JsonFileCatalog(catalog_path))
        logger.info("Extension catalog loaded from %s", catalog_path)
    return registry


# --- Internals --- #

def _load_json_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = {k: (_merge_dicts(v, {}) if isinstance(v, dict) else v) for k, v in base.items()}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged
