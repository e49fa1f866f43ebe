"""Configuration management for Image Resizer.

Handles loading config.json, applying environment overrides, validating
settings, and building the ServerConfig used by the server and CLI.
"""

import json
import os
from pathlib import Path
from typing import Any

from .models import ServerConfig


ENV_PREFIX = "IMAGE_RESIZER_"

# Field name -> parser for environment overrides
ENV_FIELDS = {
    "host": str,
    "port": int,
    "data_dir": str,
    "max_upload_bytes": int,
    "max_image_pixels": int,
    "retention_seconds": float,
    "sweep_interval_seconds": float,
    "log_level": str,
}


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


def get_config_dir() -> Path:
    """Get the config directory.

    Returns:
        Path to config directory (~/.config/image-resizer/)
    """
    return Path.home() / ".config" / "image-resizer"


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load config.json and apply environment overrides.

    Searches for config.json in the following order:
    1. Explicit path if provided
    2. ~/.config/image-resizer/config.json
    3. ./config.json (current directory)

    A missing file is not an error unless the path was given explicitly;
    built-in defaults are used instead.

    Args:
        config_path: Optional explicit path to config.json

    Returns:
        Dictionary of raw settings

    Raises:
        ConfigError: If the explicit file is missing or any file is invalid
    """
    found_path = None

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"config.json not found at {config_path}")
        found_path = config_path
    else:
        for candidate in (get_config_dir() / "config.json", Path("config.json")):
            if candidate.exists():
                found_path = candidate
                break

    raw: dict[str, Any] = {}
    if found_path is not None:
        try:
            with open(found_path) as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {found_path}: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"Expected a JSON object in {found_path}")

    raw.update(read_env_overrides())
    return raw


def read_env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect IMAGE_RESIZER_* environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Dictionary of parsed overrides

    Raises:
        ConfigError: If a numeric override cannot be parsed
    """
    if environ is None:
        environ = dict(os.environ)

    overrides: dict[str, Any] = {}
    for name, parse in ENV_FIELDS.items():
        key = ENV_PREFIX + name.upper()
        if key not in environ:
            continue
        try:
            overrides[name] = parse(environ[key])
        except ValueError:
            raise ConfigError(f"Invalid value for {key}: {environ[key]!r}")

    origins = environ.get(ENV_PREFIX + "CORS_ORIGINS")
    if origins is not None:
        overrides["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

    return overrides


def validate_config(raw: dict[str, Any]) -> None:
    """Validate configuration values.

    Args:
        raw: Dictionary returned by load_config

    Raises:
        ConfigError: If a value is out of range or of the wrong type
    """
    unknown = set(raw) - set(ENV_FIELDS) - {"cors_origins"}
    if unknown:
        raise ConfigError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

    positive_fields = [
        "max_upload_bytes",
        "max_image_pixels",
        "retention_seconds",
        "sweep_interval_seconds",
    ]
    for name in positive_fields:
        if name in raw:
            value = raw[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number")

    if "port" in raw:
        port = raw["port"]
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigError("port must be an integer between 1 and 65535")

    if "log_level" in raw:
        if str(raw["log_level"]).upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError(f"Unknown log_level: {raw['log_level']}")

    if "cors_origins" in raw and not isinstance(raw["cors_origins"], list):
        raise ConfigError("cors_origins must be a list of origins")


def get_server_config(raw: dict[str, Any]) -> ServerConfig:
    """Build a ServerConfig from validated settings.

    Args:
        raw: Dictionary returned by load_config

    Returns:
        ServerConfig with defaults filled in
    """
    config = ServerConfig()
    for name in ENV_FIELDS:
        if name in raw:
            setattr(config, name, raw[name])
    if "cors_origins" in raw:
        config.cors_origins = list(raw["cors_origins"])

    config.data_dir = Path(config.data_dir).expanduser()
    config.log_level = str(config.log_level).upper()
    return config


def load_server_config(config_path: Path | None = None) -> ServerConfig:
    """Load, validate and build the configuration in one step."""
    raw = load_config(config_path)
    validate_config(raw)
    return get_server_config(raw)
