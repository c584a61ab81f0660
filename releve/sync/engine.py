"""Sync engine for incremental mailbox backup.

One pass backs up every message received inside a time window:

1. The window runs from the saved watermark (or a default lookback on the
   first run) up to now minus a safety margin, leaving out messages the
   server may still be indexing.
2. Discovery lists every message in the window before anything is
   downloaded.
3. Each message is downloaded unless its file already exists, pausing
   between downloads to stay under the server's rate limit.
4. The watermark is moved to the end of the window and saved.

Listing failures abort the pass with the watermark untouched. A failed
download only fails that message. The watermark still moves past it at
the end of the pass, so it will not be retried by later runs; such
messages are listed in the report so they can be recovered by hand
(e.g. with `releve backup --reset`).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from releve.errors import TransportError
from releve.sync.context import SyncContext
from releve.sync.discovery import EmailDiscovery
from releve.sync.models import ItemDescriptor, SyncWindow

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(days=7)
DEFAULT_SAFETY_MARGIN = timedelta(hours=1)

# Backup kinds and the discovery used to list them
DISCOVERIES = {
    "emails": EmailDiscovery,
}


class ItemOutcome(Enum):
    """What happened to one discovered message."""

    DOWNLOADED = "downloaded"
    SKIPPED_BOUNDARY = "skipped_boundary"
    SKIPPED_EXISTING = "skipped_existing"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncEvent:
    """Notification sent to the caller after each message is handled.

    Attributes:
        outcome: What happened to the message.
        descriptor: The message.
        index: Position of the message in the pass (0-based).
        total: Number of messages discovered in the pass.
        detail: File name on success, error description on failure.
    """

    outcome: ItemOutcome
    descriptor: ItemDescriptor
    index: int
    total: int
    detail: str = ""


EventCallback = Callable[[SyncEvent], None]


@dataclass
class SyncReport:
    """Result of a backup pass.

    Tracks counts of messages processed and any errors encountered.
    """

    window: SyncWindow | None = None
    discovered: int = 0
    downloaded: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: list[str] = field(default_factory=list)
    watermark_saved: bool = False

    def add_error(self, item_id: str, error: str) -> None:
        """Record an error for a specific message.

        Args:
            item_id: ID of the message that failed.
            error: Error description.
        """
        self.errors += 1
        self.error_details.append(f"{item_id}: {error}")


def compute_window(
    watermark: datetime | None,
    now: datetime,
    lookback: timedelta = DEFAULT_LOOKBACK,
    safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
) -> SyncWindow:
    """Compute the receive-time window of a pass.

    `now` is truncated to whole seconds: the server compares and reports
    receive times at second resolution, so the window end must be
    representable exactly for boundary checks to work.

    Args:
        watermark: Saved watermark, or None on the first run.
        now: Current time (timezone-aware).
        lookback: How far back the first run reaches.
        safety_margin: How far behind now the window stops.

    Returns:
        The window. It is empty (start > end) if the watermark is newer
        than now minus the safety margin.
    """
    now = now.replace(microsecond=0)
    start = watermark if watermark is not None else now - lookback
    return SyncWindow(start=start, end=now - safety_margin)


class SyncEngine:
    """Engine for backing up one kind of item from a JMAP account.

    Example:
        context = SyncContext(client, session, store, tracker)
        engine = SyncEngine(context)
        report = engine.run()
        print(f"Downloaded {report.downloaded} messages")
    """

    def __init__(
        self,
        context: SyncContext,
        kind: str = "emails",
        lookback: timedelta = DEFAULT_LOOKBACK,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
    ):
        """Initialize the engine.

        Args:
            context: Collaborators for this pass.
            kind: Backup kind; names the watermark file.
            lookback: How far back the first run reaches.
            safety_margin: How far behind now each window stops.

        Raises:
            ValueError: If the kind is not supported.
        """
        if kind not in DISCOVERIES:
            raise ValueError(f"Unsupported backup kind '{kind}'")

        self._ctx = context
        self._kind = kind
        self._lookback = lookback
        self._safety_margin = safety_margin
        self._discovery = DISCOVERIES[kind](context.client, context.session)

    def current_window(self) -> SyncWindow:
        """Compute the window the next pass will cover."""
        return compute_window(
            self._ctx.tracker.load(self._kind),
            self._ctx.clock(),
            lookback=self._lookback,
            safety_margin=self._safety_margin,
        )

    def run(self, on_event: EventCallback | None = None) -> SyncReport:
        """Run one backup pass.

        Args:
            on_event: Optional callback invoked after each message.

        Returns:
            SyncReport with counts of downloaded, skipped and failed messages.

        Raises:
            ProtocolError: If listing returns a malformed or error response.
            TransportError: If a listing request fails at the network level.
            OSError: If the watermark file cannot be written.
        """
        window = self.current_window()
        report = SyncReport(window=window)

        if window.is_empty:
            logger.info("Window %s - %s is empty, nothing to do", window.start, window.end)
            return report

        # Listing errors propagate from here, before anything is written
        descriptors = list(self._discovery.discover(window))
        report.discovered = len(descriptors)
        logger.info("Discovered %d %s", len(descriptors), self._kind)

        for index, descriptor in enumerate(descriptors):
            outcome, detail = self._process(descriptor, window)

            if outcome is ItemOutcome.DOWNLOADED:
                report.downloaded += 1
            elif outcome is ItemOutcome.FAILED:
                report.add_error(descriptor.id, detail)
            else:
                report.skipped += 1

            if on_event:
                on_event(SyncEvent(outcome, descriptor, index, len(descriptors), detail))

            # Only requests to the server are paced
            if outcome in (ItemOutcome.DOWNLOADED, ItemOutcome.FAILED):
                self._ctx.limiter.wait(index)

        # Advanced even when some downloads failed
        report.watermark_saved = self._ctx.tracker.save(self._kind, window.end)

        return report

    def _process(
        self, descriptor: ItemDescriptor, window: SyncWindow
    ) -> tuple[ItemOutcome, str]:
        """Back up one message, returning its outcome and a detail string."""
        # Left for the next pass, whose window starts at this instant
        if descriptor.received_at == window.end:
            return ItemOutcome.SKIPPED_BOUNDARY, "at the end of the time window"

        if self._ctx.store.exists(descriptor):
            return ItemOutcome.SKIPPED_EXISTING, "already exists"

        url = self._ctx.session.download_url(descriptor.blob_id)
        try:
            response = self._ctx.client.get(url)
        except TransportError as e:
            logger.warning("Download of %s failed: %s", descriptor.id, e)
            return ItemOutcome.FAILED, str(e)

        if not response.is_success:
            logger.warning(
                "Download of %s returned HTTP %d: %s",
                descriptor.id,
                response.status_code,
                response.text,
            )
            return ItemOutcome.FAILED, f"unexpected HTTP status {response.status_code}"

        try:
            path = self._ctx.store.write(descriptor, response.content)
        except OSError as e:
            logger.warning("Could not write %s: %s", descriptor.id, e)
            return ItemOutcome.FAILED, f"write failed: {e}"

        return ItemOutcome.DOWNLOADED, path.name
