"""Path constants and directory utilities for releve config.

Follows the XDG Base Directory specification:
- Config: ~/.config/releve/config.toml
"""

from pathlib import Path


# XDG-compliant config directory
CONFIG_DIR = Path.home() / ".config" / "releve"
CONFIG_FILE = CONFIG_DIR / "config.toml"


def ensure_config_dir() -> Path:
    """Create config directory with restricted permissions.

    The config file holds the API token, so the directory is 700
    (owner read/write/execute only).

    Returns the config directory path.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    CONFIG_DIR.chmod(0o700)
    return CONFIG_DIR
