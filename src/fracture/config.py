"""User configuration file management for Fracture."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

from fracture.constants import DEFAULT_CONFIG_PATH

logger = logging.getLogger(__name__)


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    The FRACTURE_CONFIG environment variable overrides the default location.

    Returns:
        Path to ~/.fracture/config.toml
    """
    override = os.environ.get("FRACTURE_CONFIG")
    return Path(override) if override else DEFAULT_CONFIG_PATH


def load_config() -> dict[str, Any]:
    """
    Load configuration from TOML file.

    Returns:
        Configuration dictionary. Returns empty dict if the file doesn't exist
        or is corrupted.
    """
    config_path = get_config_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Treating config as empty. Fix or delete the file to resolve.")
        return {}


def save_config(config: dict[str, Any]) -> None:
    """
    Save configuration to TOML file using a temp file + rename.

    Args:
        config: Configuration dictionary to save

    Raises:
        PermissionError: If directory cannot be created or file cannot be written
    """
    config_path = get_config_path()

    try:
        os.makedirs(config_path.parent, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_path.parent}: {e}"
        ) from e

    temp_path = config_path.with_suffix(".toml.tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(config, f)
        os.replace(temp_path, config_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def get_default_domain() -> str | None:
    """
    Get the default domain name from config.

    Returns:
        Domain name from [engine] default_domain, or None if not set
    """
    default: str | None = load_config().get("engine", {}).get("default_domain")
    return default


def set_default_domain(name: str) -> None:
    """
    Set the default domain name in config.

    Args:
        name: Domain name (must be a registered domain)
    """
    config = load_config()
    config.setdefault("engine", {})["default_domain"] = name
    save_config(config)


def get_domain_overrides(name: str) -> dict[str, Any]:
    """
    Get user overrides for a domain from its [domains.<name>] section.

    Args:
        name: Domain name

    Returns:
        Field overrides, or empty dict if none are configured
    """
    section = load_config().get("domains", {}).get(name, {})
    if not isinstance(section, dict):
        logger.warning(f"Ignoring malformed [domains.{name}] section in config")
        return {}
    return dict(section)
