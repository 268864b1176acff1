"""
Error types shared by the store, the download proxy and the API layer.

Every ``LinkServiceError`` carries the HTTP status it maps to and a message
that is safe to show to clients.
"""
from typing import Optional


class LinkServiceError(Exception):
    """Base exception for all application-specific errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(LinkServiceError):
    """Raised when an environment setting cannot be parsed."""


class StoreError(LinkServiceError):
    """Raised when MongoDB rejects or fails an operation."""

    default_message = "Database operation failed"


class DownloadError(LinkServiceError):
    """Base class for failures while serving a tracking link."""


class LinkNotFoundError(DownloadError):
    status_code = 404
    default_message = "Link not found"


class LinkRejectedError(DownloadError):
    """The link exists but its lifecycle forbids another download."""

    status_code = 400


class LinkInactiveError(LinkRejectedError):
    default_message = "This link is no longer active"


class LinkExpiredError(LinkRejectedError):
    default_message = "This link has expired"


class DownloadLimitReachedError(LinkRejectedError):
    default_message = "Download limit reached"


class UpstreamFetchError(DownloadError):
    default_message = "Failed to fetch file"


class UpstreamTimeoutError(UpstreamFetchError):
    default_message = "Request timeout"
