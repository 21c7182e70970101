"""
Exception types for the watcher agent.

Errors fall into four domains: configuration, messaging transport,
listing fetches and session persistence. Only AuthRejectedError and
ConfigurationError are meant to stop the process; everything else is
retried or logged by the component that catches it.
"""

from typing import Any, Dict, Optional


class WatcherError(Exception):
    """Base exception for all agent errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(WatcherError):
    """Raised when settings are missing or contradictory."""

    pass


# ============================================================================
# Transport Errors
# ============================================================================


class TransportError(WatcherError):
    """Base exception for messaging transport failures."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errcode: Optional[str] = None,
    ):
        details = {}
        if status_code is not None:
            details['status_code'] = status_code
        if errcode:
            details['errcode'] = errcode
        super().__init__(message, details)
        self.status_code = status_code
        self.errcode = errcode


class TransientError(TransportError):
    """Network timeout, connection reset or server-side hiccup."""

    pass


class RateLimitedError(TransportError):
    """Raised when the server asks the client to slow down."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429, errcode='M_LIMIT_EXCEEDED')
        self.retry_after = retry_after


class InvalidTokenError(TransportError):
    """The access token is unknown, expired or missing."""

    pass


class AuthRejectedError(TransportError):
    """Fresh login was refused (wrong username or password)."""

    pass


# ============================================================================
# Listing Errors
# ============================================================================


class SourceFetchError(WatcherError):
    """Raised when a directory listing cannot be fetched or parsed."""

    def __init__(self, source: str, url: str, reason: str):
        super().__init__(
            f"Failed to fetch listing for {source}: {reason}",
            {'source': source, 'url': url},
        )
        self.source = source
        self.url = url
        self.reason = reason


# ============================================================================
# Session Errors
# ============================================================================


class SessionError(WatcherError):
    """Base exception for session store failures."""

    pass


class SessionNotFound(SessionError):
    """No stored session exists for this backend."""

    pass


class SessionCorrupt(SessionError):
    """A stored session exists but cannot be decoded."""

    pass


class PersistenceError(SessionError):
    """Writing to the session backend failed."""

    pass
