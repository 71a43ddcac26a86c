"""Error taxonomy for the Whoop notes sync.

Only ``TransientFetchError`` is recovered locally (at the fetch boundary).
Everything else propagates to ``src.main`` and fails the run.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync failures."""


class ConfigError(SyncError):
    """A required setting is missing or invalid.  Raised before any network call."""


class AuthError(SyncError):
    """Token refresh failed, or a request was still unauthorized after refreshing.

    The user has to re-authorize out of band.
    """


class ApiError(SyncError):
    """A provider answered with a status outside [200, 300).

    Attributes:
        status_code: HTTP status code.
        body:        Raw response body.
    """

    def __init__(self, status_code: int, body: str, url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"API error ({status_code}): {body[:500]}")


class TransientFetchError(SyncError):
    """One data category could not be fetched.  The run continues without it."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        super().__init__(f"{category}: {message}")


class StorageError(SyncError):
    """Writing a note or creating a folder failed."""
