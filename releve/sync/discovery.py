"""Paginated discovery of messages in a sync window.

Walks JMAP Email/query results page by page, newest first, and turns each
page into ItemDescriptors using an Email/get call in the same request.

Pagination uses anchors: after each page the next query is anchored on
the last id seen, with anchorOffset 1, so it resumes strictly after it.
This relies on the server keeping its sort order stable between pages. If
it does not, an item may be seen twice or missed; duplicates are harmless
because the item store skips files that already exist.
"""

import logging
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

from releve.errors import ProtocolError
from releve.jmap.client import JmapClient
from releve.jmap.session import USING, JmapSession
from releve.sync.models import ItemDescriptor, SyncWindow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

# Properties fetched for each email, besides its id
EMAIL_PROPERTIES = ["blobId", "receivedAt", "subject"]


def format_utc_date(value: datetime) -> str:
    """Format a datetime as a JMAP UTCDate (e.g. 2024-01-15T10:30:00Z)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_utc_date(value: str) -> datetime:
    """Parse a JMAP UTCDate into a timezone-aware datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class EmailDiscovery:
    """Lists the emails received in a sync window.

    Example:
        discovery = EmailDiscovery(client, session)
        for descriptor in discovery.discover(window):
            print(descriptor.id, descriptor.subject)
    """

    def __init__(
        self,
        client: JmapClient,
        session: JmapSession,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """Initialize discovery.

        Args:
            client: Authenticated JMAP client.
            session: Session giving the account id and API path.
            page_size: Maximum number of ids requested per page.
        """
        self._client = client
        self._session = session
        self._page_size = page_size

    def build_request(
        self, window: SyncWindow, anchor: str | None = None
    ) -> dict[str, Any]:
        """Build the JMAP request for one page.

        Args:
            window: Receive-time range to filter on.
            anchor: Id of the last email of the previous page, if any.

        Returns:
            JMAP request document with Email/query and Email/get calls.
        """
        query: dict[str, Any] = {
            "accountId": self._session.account_id,
            "sort": [{"property": "receivedAt", "isAscending": False}],
            "filter": {
                "after": format_utc_date(window.start),
                "before": format_utc_date(window.end),
            },
            "limit": self._page_size,
        }
        if anchor is not None:
            query["anchor"] = anchor
            query["anchorOffset"] = 1

        return {
            "using": USING,
            "methodCalls": [
                ["Email/query", query, "0"],
                [
                    "Email/get",
                    {
                        "accountId": self._session.account_id,
                        "#ids": {
                            "resultOf": "0",
                            "name": "Email/query",
                            "path": "/ids/*",
                        },
                        "properties": EMAIL_PROPERTIES,
                    },
                    "1",
                ],
            ],
        }

    def discover(self, window: SyncWindow) -> Iterator[ItemDescriptor]:
        """Yield every email in the window, newest first.

        The iterator is lazy and cannot be resumed: calling discover()
        again starts over from the first page.

        Args:
            window: Receive-time range to list.

        Yields:
            One ItemDescriptor per email, in the server's sort order.

        Raises:
            ProtocolError: If a page response is malformed or flagged as an error.
            TransportError: If a page request fails at the network level.
        """
        anchor: str | None = None

        while True:
            ids, emails = self._fetch_page(window, anchor)

            if not ids:
                return

            logger.debug("Found %d emails on page anchored at %s", len(ids), anchor)

            by_id = {email.get("id"): email for email in emails}
            for email_id in ids:
                email = by_id.get(email_id)
                if email is None:
                    logger.warning("Email %s listed but not returned by Email/get", email_id)
                    continue
                yield self._to_descriptor(email)

            anchor = ids[-1]

    def _fetch_page(
        self, window: SyncWindow, anchor: str | None
    ) -> tuple[list[str], list[dict]]:
        """Request one page and return its (ids, email objects)."""
        response = self._client.post(
            self._session.api_path, self.build_request(window, anchor)
        )

        if not response.is_success:
            raise ProtocolError(
                f"JMAP request returned HTTP {response.status_code}: {response.text}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"JMAP response is not JSON: {e}") from e

        method_responses = body.get("methodResponses") if isinstance(body, dict) else None
        if not method_responses or not isinstance(method_responses, list):
            raise ProtocolError(f"JMAP response has no methodResponses: {body}")

        # Each invocation is a [name, arguments, call id] triple
        for method_response in method_responses:
            if not isinstance(method_response, list) or len(method_response) < 2:
                raise ProtocolError(f"Unexpected JMAP response shape: {method_responses}")

        # Any method-level error aborts the whole listing
        for method_response in method_responses:
            if str(method_response[0]).lower() == "error":
                raise ProtocolError(f"Error in JMAP response: {method_responses}")

        try:
            ids = method_responses[0][1]["ids"]
            emails = method_responses[-1][1]["list"] if ids else []
        except (IndexError, KeyError, TypeError) as e:
            raise ProtocolError(f"Unexpected JMAP response shape: {method_responses}") from e

        if not isinstance(ids, list) or not isinstance(emails, list):
            raise ProtocolError(f"Unexpected JMAP response shape: {method_responses}")

        return ids, emails

    def _to_descriptor(self, email: dict) -> ItemDescriptor:
        try:
            return ItemDescriptor(
                id=email["id"],
                blob_id=email["blobId"],
                received_at=parse_utc_date(email["receivedAt"]),
                subject=email.get("subject") or "",
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed email object {email}: {e}") from e
