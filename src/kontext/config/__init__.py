"""
Configuration management for kontext.

This module handles loading, validating, and saving the tool's own settings:
which kubeconfig to manage, logging verbosity, and credential refresh timing.
"""

from kontext.config.settings import (
    ConfigurationError,
    RefreshConfig,
    Settings,
    get_config_path,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "RefreshConfig",
    "load_config",
    "save_config",
    "get_config_path",
    "ConfigurationError",
]
