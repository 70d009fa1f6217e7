"""Error types raised by the analytics sync pipeline."""
from __future__ import annotations


class AnalyticsSyncError(RuntimeError):
    """Base class for failures that abort a user's sync run."""


class AccountNotConnectedError(AnalyticsSyncError):
    """The user has no connected Google Analytics account."""


class UpstreamFetchError(AnalyticsSyncError):
    """A Google Analytics API call failed or was rejected."""


class CredentialExpiredError(AnalyticsSyncError):
    """The access token was rejected and could not be refreshed."""


class PersistenceError(AnalyticsSyncError):
    """The store rejected a read or write."""


def http_status_for(exc: AnalyticsSyncError) -> int:
    """HTTP status the API layer answers with for a sync failure."""
    if isinstance(exc, AccountNotConnectedError):
        return 404
    if isinstance(exc, CredentialExpiredError):
        return 401
    if isinstance(exc, UpstreamFetchError):
        return 502
    return 500
