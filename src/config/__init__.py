"""
Configuration Module for the webmention service.

This module provides configuration loading and management. Configuration is
loaded from config.yml; missing sections fall back to defaults.

Usage:
    >>> from config import load_config
    >>> config = load_config()
    >>> receiver = Receiver.from_config(config, store)
"""
import copy
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml


logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "receiver": {
        "require_attribute": "webmention",
        "accepted_protocols": ["http:", "https:"],
        "accepted_target_domains": None,
        "accepted_content_types": ["text/html", "application/json", "text/plain"],
        "ban_unknown_extensions": False,
        "timeout": 10,
        "block_private_networks": True,
    },
    "sender": {
        "cross_origin_policy": "cross-origin",
        "allowed_origins": ["https://webmention.io"],
        "timeout": 30,
        "block_private_networks": True,
    },
    "storage": {
        "path": "./data/webmentions",
    },
    "cors": {
        "enabled": False,
        "origins": [],
    },
    "security": {
        "rate_limit_enabled": True,
        "rate_limit_requests": 60,
        "rate_limit_window_seconds": 60,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from config.yml file.

    Sections missing from the file are filled in from the defaults, one
    level deep, so ``config["receiver"]["timeout"]`` is always present.

    Args:
        config_path: Path to config.yml file. If None, looks in current directory
                    and parent directories.

    Returns:
        Dictionary containing configuration settings

    Example:
        >>> config = load_config()
        >>> policy = config["sender"]["cross_origin_policy"]
    """
    if config_path is None:
        # Try to find config.yml in current directory or parent directories
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            candidate = parent / "config.yml"
            if candidate.exists():
                config_path = str(candidate)
                break

        # If still not found, check the project root (where this file is located)
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            candidate = project_root / "config.yml"
            if candidate.exists():
                config_path = str(candidate)

    if config_path is None:
        logger.warning("config.yml not found, using default configuration")
        return get_default_config()

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}")
        return get_default_config()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing configuration file: {e}")
        return get_default_config()

    if config is None:
        config = {}
    if not isinstance(config, dict):
        logger.warning("Configuration root must be a mapping, using default configuration")
        return get_default_config()

    logger.info(f"Loaded configuration from {config_path}")
    return merge_with_defaults(config)


def get_default_config() -> Dict[str, Any]:
    """Return default configuration when config.yml is not available.

    Returns:
        Dictionary with default configuration values
    """
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in missing sections and keys from the defaults."""
    merged = get_default_config()
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged

