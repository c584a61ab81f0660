"""Local storage for downloaded messages.

Each message is one .eml file in the backup directory, named

    <receivedAt as unix seconds>_<email id>.eml

so that a directory listing sorts by receive time and the same message
always maps to the same file. The file existing is the only record that
a message has been backed up.

Files are written to a hidden temporary name first and renamed into
place, so an interrupted write never leaves a truncated file under the
final name.
"""

import logging
import os
from pathlib import Path

from releve.sync.models import ItemDescriptor

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".eml"


class ItemStore:
    """Storage backend for backed-up messages.

    Example:
        store = ItemStore(Path("~/Backups/Fastmail"))
        if not store.exists(descriptor):
            store.write(descriptor, raw_bytes)
    """

    def __init__(self, base_path: Path):
        """Initialize the store.

        Args:
            base_path: Directory receiving the .eml files. Must exist.
        """
        self._base_path = base_path.expanduser().resolve()

    @property
    def base_path(self) -> Path:
        """Get the directory this store writes to."""
        return self._base_path

    def filename_for(self, descriptor: ItemDescriptor) -> str:
        """Return the file name for a message.

        Deterministic: identical (received_at, id) pairs give identical
        names and pairs differing in either field give different names.
        """
        timestamp = int(descriptor.received_at.timestamp())
        return f"{timestamp}_{descriptor.id}{ARTIFACT_SUFFIX}"

    def path_for(self, descriptor: ItemDescriptor) -> Path:
        """Return the full path a message is stored at."""
        return self._base_path / self.filename_for(descriptor)

    def exists(self, descriptor: ItemDescriptor) -> bool:
        """Check whether a message has already been backed up."""
        return self.path_for(descriptor).is_file()

    def write(self, descriptor: ItemDescriptor, content: bytes) -> Path:
        """Store a message.

        Args:
            descriptor: The message being stored.
            content: Raw message bytes.

        Returns:
            Path to the written file.

        Raises:
            OSError: If the file cannot be written (disk full,
                permissions, missing directory).
        """
        dest_path = self.path_for(descriptor)
        tmp_path = dest_path.with_name(f".{dest_path.name}.tmp")

        try:
            tmp_path.write_bytes(content)
            # Atomic on POSIX when both paths are on the same filesystem
            os.replace(tmp_path, dest_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug("Wrote %d bytes to %s", len(content), dest_path)
        return dest_path
