"""Configuration management module.

Handles loading, saving, and validating the releve configuration.
Config is stored at ~/.config/releve/config.toml

Usage:
    from releve.config import load_config, validate_config

    config = load_config()
    api_token, backup_directory = validate_config(config)
"""

import os
import tomllib
from pathlib import Path

import tomli_w

from releve.errors import ConfigError

from .paths import CONFIG_FILE, ensure_config_dir
from .schema import ReleveConfig

# Re-export for convenience
__all__ = [
    "load_config",
    "save_config",
    "validate_config",
    "get_api_token",
    "API_TOKEN_ENV",
    "CONFIG_FILE",
]

# Environment variable for the API token.
# Takes precedence over the value stored in config.toml.
API_TOKEN_ENV = "RELEVE_API_TOKEN"

# Module-level cache for loaded config.
# Avoids repeated disk reads during a single CLI invocation.
_cached_config: ReleveConfig | None = None


def load_config(*, force_reload: bool = False) -> ReleveConfig:
    """Load configuration from disk.

    Returns empty dict if config file doesn't exist.
    Uses module-level caching to avoid repeated disk reads.

    Args:
        force_reload: Bypass cache and read from disk (useful after saving).

    Returns:
        The configuration dictionary.

    Raises:
        ConfigError: If the config file exists but is not valid TOML.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    if not CONFIG_FILE.exists():
        _cached_config = {}
        return _cached_config

    try:
        with open(CONFIG_FILE, "rb") as f:
            _cached_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Config file {CONFIG_FILE} is not valid TOML: {e}") from e

    return _cached_config


def save_config(config: ReleveConfig) -> None:
    """Save configuration to disk.

    Creates config directory if needed. The file is readable by the
    owner only since it may contain the API token. Updates the module cache.

    Args:
        config: The configuration dictionary to save.
    """
    global _cached_config

    ensure_config_dir()

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(config, f)
    CONFIG_FILE.chmod(0o600)

    # Keep cache in sync with disk
    _cached_config = config


def get_api_token(config: ReleveConfig) -> str | None:
    """Get the API token from the environment or config.

    Args:
        config: The loaded configuration dictionary.

    Returns:
        The token, or None if neither source provides a non-empty one.
    """
    token = os.environ.get(API_TOKEN_ENV) or config.get("api_token")
    return token or None


def validate_config(config: ReleveConfig) -> tuple[str, Path]:
    """Check that the configuration is complete enough to run a backup.

    Args:
        config: The loaded configuration dictionary.

    Returns:
        Tuple of (api_token, backup_directory).

    Raises:
        ConfigError: If the token is missing, or the backup directory is
            missing or does not exist.
    """
    if not config and not os.environ.get(API_TOKEN_ENV):
        raise ConfigError(
            f"Config file not found at {CONFIG_FILE} - run `releve config` to create."
        )

    api_token = get_api_token(config)
    if not api_token:
        raise ConfigError("API token not found - run `releve config` to set.")

    directory = config.get("backup_directory")
    if not directory:
        raise ConfigError("Backup directory not found - run `releve config` to set.")

    backup_directory = Path(directory).expanduser()
    if not backup_directory.is_dir():
        raise ConfigError(f"Backup directory {backup_directory} does not exist.")

    return api_token, backup_directory
