"""Authenticated HTTP transport for the Fastmail JMAP API.

Wraps httpx to provide the two calls the sync engine needs: a JSON POST to
the JMAP API endpoint and a plain GET for session discovery and blob
downloads. Redirects are followed and every request has a fixed timeout.

Request-level failures (connection errors, timeouts, redirect loops, bad
content encodings) are converted to releve.errors.TransportError so
callers never deal with httpx exception types. HTTP error statuses are
not raised: the response is returned and the caller decides.
"""

import logging
from typing import Any

import httpx

from releve.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.fastmail.com"

# Seconds, applied to connect, read, write and pool acquisition alike
DEFAULT_TIMEOUT = 30.0


class JmapClient:
    """HTTP client for JMAP requests.

    Example:
        with JmapClient(token) as client:
            response = client.get("/.well-known/jmap")
            print(response.json()["apiUrl"])
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            api_token: Fastmail API token, sent as a bearer token.
            base_url: Base URL that relative paths are resolved against.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (for testing).
        """
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._client.close()

    def __enter__(self) -> "JmapClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def post(self, path: str, json_body: dict[str, Any]) -> httpx.Response:
        """POST a JSON document.

        Args:
            path: Path (or absolute URL) of the endpoint.
            json_body: Request document, serialized as JSON.

        Returns:
            The response, whatever its status.

        Raises:
            TransportError: On connection failure, timeout or redirect loop.
        """
        logger.debug("POST %s", path)
        try:
            return self._client.post(path, json=json_body)
        except httpx.RequestError as e:
            raise TransportError(f"POST {path} failed: {e}") from e

    def get(self, url_or_path: str) -> httpx.Response:
        """GET a resource.

        Args:
            url_or_path: Absolute URL, or path relative to the base URL.

        Returns:
            The response, whatever its status.

        Raises:
            TransportError: On connection failure, timeout or redirect loop.
        """
        logger.debug("GET %s", url_or_path)
        try:
            return self._client.get(url_or_path)
        except httpx.RequestError as e:
            raise TransportError(f"GET {url_or_path} failed: {e}") from e
