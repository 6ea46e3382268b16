"""Error kinds raised by the sync stages."""


class SyncError(Exception):
    """Base class for sync failures."""


class AuthError(SyncError):
    """Raised when an access token cannot be obtained."""


class FetchError(SyncError):
    """Raised when the listings endpoint fails (transport, status, or body).

    A fetch failure must never be treated as an empty catalog: callers abort
    the cycle before touching the store.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EntryValidationError(SyncError):
    """Raised when a single raw entry cannot be sanitized."""

    def __init__(self, reason: str, *, external_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.external_id = external_id


class AssetCacheError(SyncError):
    """Raised when a remote image cannot be downloaded or stored locally."""
