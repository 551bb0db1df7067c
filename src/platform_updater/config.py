"""
Configuration management for the platform updater.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/platform-updater/config.yml or --config path)
3. Environment variables (PLATFORM_UPDATER_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from platform_updater.errors import InvalidArgumentError
from platform_updater.updates.compatibility import DeactivationFilter
from platform_updater.updates.version import parse_semantic_version

DEFAULT_CONFIG_PATH = Path("/etc/platform-updater/config.yml")
DEFAULT_ENV_PREFIX = "PLATFORM_UPDATER_"

# =============================================================================
# Updates Configuration
# =============================================================================


class UpdatesConfig(BaseModel):
    """Update check and extension deactivation configuration.

    Attributes:
        current_version: Version of the running platform.
        disable_update_check: If True, update checks always report nothing.
        api_url: Release metadata endpoint queried by the version oracle.
        channel: Release channel to query.
        request_timeout_seconds: Timeout for the remote version check.
        batch_size: Number of extensions deactivated per batch call.
        default_deactivation_filter: Filter used when a caller omits one.
    """

    current_version: str = Field(
        default="0.0.0",
        description="Version of the running platform",
    )
    disable_update_check: bool = Field(
        default=False,
        description="Report no update regardless of the remote release",
    )
    api_url: str = Field(
        default="https://updates.example.invalid/v1/release/update",
        description="Release metadata endpoint",
    )
    channel: str = Field(
        default="stable",
        description="Release channel: 'stable', 'rc', 'beta'",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for the remote version check in seconds",
    )
    batch_size: int = Field(
        default=50,
        ge=1,
        description="Extensions deactivated per batch call",
    )
    default_deactivation_filter: DeactivationFilter = Field(
        default=DeactivationFilter.NOT_COMPATIBLE,
        description="Deactivation filter used when a caller omits one",
    )

    @field_validator("current_version")
    @classmethod
    def validate_current_version(cls, v: str) -> str:
        """Validate the running version is a semantic version."""
        try:
            parse_semantic_version(v)
        except InvalidArgumentError as e:
            raise ValueError(e.message) from e
        return v


# =============================================================================
# Requirements Configuration
# =============================================================================


class RequirementsConfig(BaseModel):
    """Environment prerequisite configuration.

    Attributes:
        writable_paths: Paths that must be writable before updating.
        license_host: Host the licence is registered for, if any.
    """

    writable_paths: list[str] = Field(
        default_factory=list,
        description="Paths that must exist and be writable",
    )
    license_host: str | None = Field(
        default=None,
        description="Host the platform licence is registered for",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Whether to emit JSON log records.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON log records",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        updates: Update check and deactivation settings.
        requirements: Environment prerequisite settings.
        logging: Logging configuration.
    """

    updates: UpdatesConfig = Field(
        default_factory=UpdatesConfig,
        description="Update settings",
    )
    requirements: RequirementsConfig = Field(
        default_factory=RequirementsConfig,
        description="Environment prerequisite settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Version-like strings ("6.5.0") stay strings; only plain integers and
    floats are converted.
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Example: PLATFORM_UPDATER_UPDATES__BATCH_SIZE=25
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Platform updater",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result["logging"] = {"level": "debug", "json_format": False}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Later sources override earlier ones: defaults, YAML file, environment
    variables, command-line arguments.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If the configuration is invalid.
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
