"""Data types shared by the sync components."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ItemDescriptor:
    """Remote metadata identifying one message before its content is fetched.

    Attributes:
        id: JMAP Email id.
        blob_id: Blob id of the raw RFC 5322 message.
        received_at: Time the message was received (timezone-aware, UTC).
        subject: Message subject, for display only.
    """

    id: str
    blob_id: str
    received_at: datetime
    subject: str = ""


@dataclass(frozen=True)
class SyncWindow:
    """Half-open [start, end) receive-time range queried in one pass."""

    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.start > self.end
