"""JMAP access for Fastmail.

Usage:
    from releve.jmap import JmapClient, fetch_session

    with JmapClient(token) as client:
        session = fetch_session(client)
"""

from .client import JmapClient
from .session import JmapSession, fetch_session

__all__ = [
    "JmapClient",
    "JmapSession",
    "fetch_session",
]
