"""
Configuration management for the home dashboard server.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/homedash/config.yml or --config path)
3. Environment variables (HOMEDASH_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/homedash/config.yml")
DEFAULT_ENV_PREFIX = "HOMEDASH_"

# Keys whose environment values are taken verbatim (credentials, paths, URLs)
_RAW_STRING_KEYS = frozenset({"password", "username", "base_url", "socket_path", "binary"})


def _as_str_list(v: Any) -> Any:
    """
    Accept a single scalar where a list of strings is expected.

    Environment variables only become lists when they contain a comma, so a
    single origin or argument arrives as a scalar.
    """
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, (int, float)):
        return [str(v)]
    return v

# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """Server settings configuration.

    Attributes:
        listen: Listen address and port (e.g., "0.0.0.0:2022").
        log_level: Initial application log level.
        cors_origins: Origins allowed to call the RPC surface from a browser.
    """

    listen: str = Field(
        default="0.0.0.0:2022",
        description="Listen address and port (e.g., '127.0.0.1:2022')",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware",
    )

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, v: str) -> str:
        """Validate the host:port pair."""
        host, sep, port = v.rpartition(":")
        if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"Invalid listen address: {v}. Expected 'host:port'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        # Normalize 'warn' to 'warning'
        if v_lower == "warn":
            return "warning"
        return v_lower

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: Any) -> Any:
        """Allow a single origin without list syntax."""
        return _as_str_list(v)

    @property
    def host(self) -> str:
        """Return the host part of ``listen``."""
        return self.listen.rpartition(":")[0]

    @property
    def port(self) -> int:
        """Return the port part of ``listen``."""
        return int(self.listen.rpartition(":")[2])


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Emit JSON log lines instead of plain text.
        debug_mode: Force DEBUG level for extra diagnostics.
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log lines",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable extra diagnostic logging",
    )


# =============================================================================
# Device (router) Configuration
# =============================================================================


class DeviceConfig(BaseModel):
    """Router RPC endpoint configuration.

    The password has no default; it must come from the YAML file or the
    HOMEDASH_DEVICE__PASSWORD environment variable.

    Attributes:
        base_url: Router base URL (scheme and host).
        username: Login user.
        password: Login password.
        request_timeout_seconds: Upper bound for every outbound request.
        token_ttl_seconds: Validity window of a session token.
    """

    base_url: str = Field(
        default="http://192.168.1.1",
        description="Router base URL, without the /cgi-bin/luci/rpc suffix",
    )
    username: str = Field(
        default="root",
        description="Router login user",
    )
    password: str | None = Field(
        default=None,
        description="Router login password",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for each outbound router request in seconds",
        gt=0,
        le=120,
    )
    token_ttl_seconds: int = Field(
        default=3600,
        description="Session token validity window in seconds",
        ge=60,
        le=86400,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and strip the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid base_url: {v}. Must start with http:// or https://")
        return v.rstrip("/")


# =============================================================================
# Player Configuration
# =============================================================================


class PlayerConfig(BaseModel):
    """Media player (mpv) configuration.

    Attributes:
        enabled: Whether the player procedures are available.
        binary: mpv executable.
        socket_path: Unix socket used for mpv's JSON IPC.
        audio_only: Start mpv without video output.
        idle_shutdown_seconds: Quit the player this long after playback stops.
        command_timeout_seconds: Timeout for a single IPC command.
        start_timeout_seconds: How long to wait for the IPC socket on start.
        extra_args: Additional command-line arguments for mpv.
    """

    enabled: bool = Field(
        default=True,
        description="Whether the player procedures are available",
    )
    binary: str = Field(
        default="mpv",
        description="mpv executable name or path",
    )
    socket_path: str = Field(
        default="/tmp/homedash-mpv.sock",
        description="Unix socket path for mpv JSON IPC",
    )
    audio_only: bool = Field(
        default=True,
        description="Start mpv without video output",
    )
    idle_shutdown_seconds: float = Field(
        default=600.0,
        description="Idle time after a stop before the player quits",
        ge=0,
    )
    command_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for a single IPC command in seconds",
        gt=0,
    )
    start_timeout_seconds: float = Field(
        default=5.0,
        description="How long to wait for the IPC socket after spawning mpv",
        gt=0,
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Additional mpv command-line arguments",
    )

    @field_validator("extra_args", mode="before")
    @classmethod
    def validate_extra_args(cls, v: Any) -> Any:
        """Allow a single argument without list syntax."""
        return _as_str_list(v)


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Built from multiple layers following the precedence rules:
    1. Built-in defaults (defined in this model)
    2. YAML config file
    3. Environment variables (HOMEDASH_* prefix)
    4. Command-line arguments

    Attributes:
        server: Server settings.
        logging: Logging configuration.
        device: Router RPC endpoint settings.
        player: Media player settings.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="Server settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    device: DeviceConfig = Field(
        default_factory=DeviceConfig,
        description="Router RPC endpoint settings",
    )
    player: PlayerConfig = Field(
        default_factory=PlayerConfig,
        description="Media player settings",
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

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

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

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
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

    # Comma-separated lists
    if "," in value:
        items = [item.strip() for item in value.split(",")]
        return [_parse_env_value(item) for item in items]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Rules:
    - Prefix: HOMEDASH_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: HOMEDASH_DEVICE__BASE_URL=http://10.0.0.1

    Values for credential, path and URL keys are kept as raw strings.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        leaf = parts[-1]
        current[leaf] = value if leaf in _RAW_STRING_KEYS else _parse_env_value(value)

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
        description="Home dashboard server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--listen",
        type=str,
        help="Override listen address (host:port)",
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
        help="Enable debug mode",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.listen:
        result["server"] = {"listen": parsed.listen}

    if parsed.log_level:
        result.setdefault("server", {})["log_level"] = parsed.log_level
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})["debug_mode"] = True
        result.setdefault("server", {})["log_level"] = "debug"

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.server.port
        2022
    """
    config_dict: dict[str, Any] = {}

    # Parse CLI args first to get config path
    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        if isinstance(config_path, str):
            config_path = Path(config_path)

    if config_path is not None:
        yaml_config = _load_yaml_config(config_path)
        config_dict = _deep_merge(config_dict, yaml_config)

    env_config = _load_env_config(env_prefix)
    config_dict = _deep_merge(config_dict, env_config)

    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
