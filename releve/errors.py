"""Error types raised by releve.

Fatal conditions are raised as exceptions and handled once, at the CLI.
Failures of a single item during a backup pass are not raised: they are
recorded in the pass's SyncReport and the pass continues.

Local write failures are plain OSError.
"""


class ReleveError(Exception):
    """Base class for all releve errors."""


class ConfigError(ReleveError):
    """Local configuration is missing or invalid.

    Raised before any network call is made.
    """


class ProtocolError(ReleveError):
    """The remote returned a malformed or error-flagged response.

    During discovery this aborts the whole pass and leaves the
    watermark untouched.
    """


class TransportError(ReleveError):
    """A request failed at the network level (connection failure, timeout).

    Fatal while listing messages, recorded per item while downloading.
    """
