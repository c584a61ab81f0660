"""Watermark persistence for incremental backups.

The watermark is the receive time up to which every message is known to
be backed up. Each backup kind has its own state file in the backup
directory, e.g. <backup_directory>/emails.toml:

    downloaded_until = 2024-01-15 09:30:00+00:00

The file is rewritten only at the end of a complete pass. There is no
atomic rename: a torn write loses the watermark and the next run falls
back to the default lookback. That is reported loudly by the caller,
never silently ignored.
"""

import logging
import tomllib
from datetime import datetime, timezone
from pathlib import Path

import tomli_w

logger = logging.getLogger(__name__)

WATERMARK_KEY = "downloaded_until"


class WatermarkTracker:
    """Loads and saves the watermark of each backup kind.

    Example:
        tracker = WatermarkTracker(Path("~/Backups/Fastmail"))
        since = tracker.load("emails")  # None on first run
        # ... perform backup ...
        tracker.save("emails", window.end)
    """

    def __init__(self, directory: Path):
        """Initialize the tracker.

        Args:
            directory: Directory holding the state files (the backup directory).
        """
        self._directory = directory.expanduser()

    def state_file(self, kind: str) -> Path:
        """Get the path to the state file of a backup kind."""
        return self._directory / f"{kind}.toml"

    def _read(self, kind: str) -> dict:
        path = self.state_file(kind)

        if not path.exists():
            return {}

        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            # Corrupted or unreadable file - treat as no state
            logger.warning("Ignoring unreadable state file %s: %s", path, e)
            return {}

    def load(self, kind: str) -> datetime | None:
        """Load the watermark of a backup kind.

        Returns:
            Timezone-aware watermark, or None if there is no usable state.
        """
        value = self._read(kind).get(WATERMARK_KEY)

        if not isinstance(value, datetime):
            if value is not None:
                logger.warning("Ignoring non-datetime %s in %s", WATERMARK_KEY, kind)
            return None

        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)

        return value

    def save(self, kind: str, watermark: datetime) -> bool:
        """Persist the watermark of a backup kind.

        Other keys already present in the state file are kept.

        Args:
            kind: Backup kind (names the state file).
            watermark: New watermark.

        Returns:
            False if nothing was written, True otherwise.
        """
        data = self._read(kind)
        data[WATERMARK_KEY] = watermark.astimezone(timezone.utc)

        written = self.state_file(kind).write_text(tomli_w.dumps(data))
        if written == 0:
            logger.error("Wrote 0 bytes to %s", self.state_file(kind))
            return False

        return True

    def clear(self, kind: str) -> None:
        """Delete the state file (next run starts from the default lookback)."""
        self.state_file(kind).unlink(missing_ok=True)
