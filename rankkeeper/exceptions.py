"""
Error taxonomy for RankKeeper.

Catalog (App Store) failures are split so callers can tell a bad request
from a dead network, a non-200 status and an unreadable payload.  Storage
failures have their own branch; quota exhaustion on the remote store is
surfaced separately from ordinary storage errors.
"""


class RankKeeperError(Exception):
    """Base class for every error raised by this package."""


# --------------------------------------------------------------------------- #
# Catalog client
# --------------------------------------------------------------------------- #


class AppStoreError(RankKeeperError):
    """Base class for App Store client failures."""


class MalformedRequestError(AppStoreError):
    """The request could not be built (empty term, bad id, bad country)."""


class TransportError(AppStoreError):
    """Network unreachable, connection reset or timeout."""


class ProtocolError(AppStoreError):
    """The server answered with a non-success HTTP status."""

    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP error: {status_code}")


class DecodingError(AppStoreError):
    """The payload was not valid JSON or did not have the expected shape."""


class NotFoundError(AppStoreError):
    """A lookup or search yielded nothing where a result was required."""


# --------------------------------------------------------------------------- #
# Key-value stores
# --------------------------------------------------------------------------- #


class StoreError(RankKeeperError):
    """A key-value store could not be read or written."""


class CapacityError(StoreError):
    """The remote store's byte quota would be exceeded by a write."""

    def __init__(self, used_bytes: int, quota_bytes: int):
        self.used_bytes = used_bytes
        self.quota_bytes = quota_bytes
        super().__init__(
            f"Remote store quota exceeded: {used_bytes:,} of {quota_bytes:,} bytes"
        )


class CollectionDecodeError(RankKeeperError):
    """A serialized collection could not be decoded."""
