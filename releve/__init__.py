"""Incremental backup of a JMAP mailbox to local storage."""

__version__ = "0.1.0"
