"""
Configuration settings management for kontext.

This module handles loading, validating, and saving the tool's own settings
(not the kubeconfig it manages) from a YAML file with support for environment
variable overrides.

Settings are loaded from ~/.kontext/config.yaml by default, with the path
overridable via the KONTEXT_CONFIG environment variable.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".kontext"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

DEFAULT_REFRESH_TIMEOUT_SECONDS = 30.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_EXPIRY_MARGIN_SECONDS = 60.0


@dataclass
class RefreshConfig:
    """Credential refresh settings."""

    timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    # A credential expiring within this window is treated as expired
    expiry_margin_seconds: float = DEFAULT_EXPIRY_MARGIN_SECONDS


@dataclass
class Settings:
    """
    Complete kontext configuration settings.

    Attributes:
        kubeconfig: Kubeconfig path to manage. Empty means "resolve from
            $KUBECONFIG, then ~/.kube/config".
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        refresh: Credential refresh settings.
    """

    kubeconfig: str = ""
    log_level: str = "WARNING"

    refresh: RefreshConfig = field(default_factory=RefreshConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def get_config_path() -> Path:
    """
    Get the configuration file path.

    Returns the path from KONTEXT_CONFIG environment variable if set,
    otherwise returns the default path (~/.kontext/config.yaml).

    Returns:
        Path to the configuration file.
    """
    env_path = os.environ.get("KONTEXT_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or default if not provided),
    applies environment variable overrides, and validates the configuration.
    A missing file is not an error: defaults are used.

    Args:
        config_path: Optional path to configuration file. If not provided,
                    uses KONTEXT_CONFIG environment variable or default path.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = get_config_path()

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                f"Config file must contain a mapping, got {type(config_data).__name__}"
            )
        settings = _apply_config_data(settings, config_data)

    settings = _apply_environment_overrides(settings)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        settings: Settings instance to save.
        config_path: Optional path to configuration file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = get_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    kontext_data = data.get("kontext") or {}

    if "kubeconfig" in kontext_data:
        settings.kubeconfig = str(kontext_data["kubeconfig"] or "")
    if "log_level" in kontext_data:
        settings.log_level = str(kontext_data["log_level"]).upper()

    refresh = data.get("refresh") or {}
    try:
        if "timeout_seconds" in refresh:
            settings.refresh.timeout_seconds = float(refresh["timeout_seconds"])
        if "probe_timeout_seconds" in refresh:
            settings.refresh.probe_timeout_seconds = float(
                refresh["probe_timeout_seconds"]
            )
        if "expiry_margin_seconds" in refresh:
            settings.refresh.expiry_margin_seconds = float(
                refresh["expiry_margin_seconds"]
            )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid refresh setting: {e}") from e

    return settings


def _apply_environment_overrides(settings: Settings) -> Settings:
    """Apply environment variable overrides to settings."""
    env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
        "KONTEXT_KUBECONFIG": ("kubeconfig", str),
        "KONTEXT_LOG_LEVEL": ("log_level", lambda x: x.upper()),
        "KONTEXT_REFRESH_TIMEOUT": ("refresh.timeout_seconds", float),
        "KONTEXT_PROBE_TIMEOUT": ("refresh.probe_timeout_seconds", float),
        "KONTEXT_EXPIRY_MARGIN": ("refresh.expiry_margin_seconds", float),
    }

    for env_var, (attr_path, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            try:
                converted = converter(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e
            _set_nested_attr(settings, attr_path, converted)

    return settings


def _set_nested_attr(obj: Any, path: str, value: Any) -> None:
    """Set a nested attribute on an object using dot notation."""
    parts = path.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if settings.log_level not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(valid_log_levels))}"
        )

    if settings.refresh.timeout_seconds <= 0:
        raise ConfigurationError("refresh.timeout_seconds must be positive")

    if settings.refresh.probe_timeout_seconds <= 0:
        raise ConfigurationError("refresh.probe_timeout_seconds must be positive")

    if settings.refresh.expiry_margin_seconds < 0:
        raise ConfigurationError("refresh.expiry_margin_seconds cannot be negative")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "kontext": {
            "kubeconfig": settings.kubeconfig,
            "log_level": settings.log_level,
        },
        "refresh": {
            "timeout_seconds": settings.refresh.timeout_seconds,
            "probe_timeout_seconds": settings.refresh.probe_timeout_seconds,
            "expiry_margin_seconds": settings.refresh.expiry_margin_seconds,
        },
    }
