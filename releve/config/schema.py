"""Configuration schema definitions.

Uses TypedDict for type safety without runtime overhead.
These types match the structure of config.toml.
"""

from typing import TypedDict


class ReleveConfig(TypedDict, total=False):
    """Root configuration structure.

    Attributes:
        api_token: Fastmail API token (prefer the RELEVE_API_TOKEN env var).
        backup_directory: Existing directory that receives the .eml files
            and the per-kind watermark files.
    """

    api_token: str
    backup_directory: str
