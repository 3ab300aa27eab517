"""
Domain-specific exception hierarchy for the free/busy connector.
"""


class FbSyncError(Exception):
    """Base class for all application-level errors."""


class InvalidWindowError(FbSyncError, ValueError):
    """Raised when a batch reconciliation is requested without a concrete window."""


class CalendarAPIError(FbSyncError):
    """Raised when calendar data cannot be fetched or parsed."""


class AuthenticationError(FbSyncError):
    """Raised when authentication or secret handling fails."""
