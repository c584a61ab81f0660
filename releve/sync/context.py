"""Per-run context for the sync engine.

Everything a backup pass touches is built once by the caller and passed
in explicitly. Components never reach for shared connections or config
through module globals.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from releve.jmap.client import JmapClient
from releve.jmap.session import JmapSession
from releve.storage.store import ItemStore
from releve.sync.ratelimit import RateLimiter
from releve.sync.state import WatermarkTracker


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncContext:
    """Collaborators of one backup pass.

    Attributes:
        client: Authenticated JMAP client.
        session: JMAP session fetched at startup.
        store: Where downloaded messages are written.
        tracker: Where the watermark is loaded from and saved to.
        limiter: Pacing between downloads.
        clock: Returns the current time (timezone-aware).
    """

    client: JmapClient
    session: JmapSession
    store: ItemStore
    tracker: WatermarkTracker
    limiter: RateLimiter = field(default_factory=RateLimiter)
    clock: Callable[[], datetime] = utc_now
