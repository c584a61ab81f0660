"""JMAP session discovery.

The session resource at /.well-known/jmap tells us which account to use,
where to POST method calls, and how to build blob download URLs. It is
fetched once per run, before any sync work starts.
"""

from dataclasses import dataclass
from urllib.parse import quote, urlsplit

from releve.errors import ProtocolError
from releve.jmap.client import JmapClient

SESSION_PATH = "/.well-known/jmap"

MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
USING = ["urn:ietf:params:jmap:core", MAIL_CAPABILITY]


@dataclass(frozen=True)
class JmapSession:
    """The parts of the JMAP session resource the engine needs.

    Attributes:
        account_id: Mail account that queries and downloads are scoped to.
        api_path: Request URI (path and query) of the JMAP API endpoint.
        download_url_template: URI template with {accountId}, {blobId},
            {name} and {type} variables.
    """

    account_id: str
    api_path: str
    download_url_template: str

    def download_url(
        self,
        blob_id: str,
        name: str = "email",
        type: str = "application/octet-stream",
    ) -> str:
        """Expand the download template for one blob."""
        values = {
            "accountId": self.account_id,
            "blobId": blob_id,
            "name": name,
            "type": type,
        }
        url = self.download_url_template
        for key, value in values.items():
            url = url.replace("{" + key + "}", quote(value, safe=""))
        return url


def fetch_session(client: JmapClient) -> JmapSession:
    """Fetch and parse the JMAP session resource.

    Args:
        client: Authenticated JMAP client.

    Returns:
        The parsed session.

    Raises:
        ProtocolError: If the response is not a usable session resource.
        TransportError: If the request itself fails.
    """
    response = client.get(SESSION_PATH)
    if not response.is_success:
        raise ProtocolError(
            f"Session request returned HTTP {response.status_code}: {response.text}"
        )

    try:
        body = response.json()
    except ValueError as e:
        raise ProtocolError(f"Session response is not JSON: {e}") from e

    if not isinstance(body, dict):
        raise ProtocolError("Session response is not a JSON object")

    accounts = body.get("accounts") or {}
    primary = (body.get("primaryAccounts") or {}).get(MAIL_CAPABILITY)
    if primary:
        account_id = primary
    elif accounts:
        # No primary mail account advertised, use the first one listed
        account_id = next(iter(accounts))
    else:
        raise ProtocolError("Session response lists no accounts")

    api_url = body.get("apiUrl")
    download_url = body.get("downloadUrl")
    if not api_url or not download_url:
        raise ProtocolError("Session response is missing apiUrl or downloadUrl")

    parts = urlsplit(api_url)
    api_path = parts.path or "/"
    if parts.query:
        api_path = f"{api_path}?{parts.query}"

    return JmapSession(
        account_id=account_id,
        api_path=api_path,
        download_url_template=download_url,
    )
