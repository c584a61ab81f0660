"""CLI commands module."""

from . import backup, config

__all__ = ["backup", "config"]
