"""
Structured error classes for the connection health engine.

Every error carries a machine-readable ErrorKind so callers (HTTP layer,
CLIs, schedulers) can tell "platform not connected" from "store
unreachable" from "probe timed out" without parsing messages.

Per-platform failures are normally surfaced as values inside reports
(HealthResult.error_kind, RefreshResult.error_kind); these exceptions
are raised at the seams where a single operation cannot continue.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Machine-readable error codes."""
    USER_NOT_FOUND = "user_not_found"
    NOT_CONNECTED = "not_connected"
    PLATFORM_UNSUPPORTED = "platform_unsupported"
    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_FAILED = "refresh_failed"
    PROBE_ERROR = "probe_error"
    STORE_WRITE_FAILED = "store_write_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    UNEXPECTED = "unexpected"


class ConnectionHealthError(Exception):
    """Base exception for connection health errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, platform: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON responses and reports."""
        payload = {
            "error": self.kind.value,
            "message": self.message,
        }
        if self.platform:
            payload["platform"] = self.platform
        return payload

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, kind={self.kind.value})"


class UserNotFoundError(ConnectionHealthError):
    """Raised when no store holds a record for the identifier."""

    kind = ErrorKind.USER_NOT_FOUND

    def __init__(self, identifier: str):
        super().__init__(f"User not found: {identifier}")
        self.identifier = identifier


class PlatformUnsupportedError(ConnectionHealthError):
    """Raised when a platform is not in the registry or not in a store schema."""

    kind = ErrorKind.PLATFORM_UNSUPPORTED

    def __init__(self, platform: str, detail: Optional[str] = None):
        message = f"Platform not supported: {platform}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, platform=platform)


class NoRefreshTokenError(ConnectionHealthError):
    """Raised when a refresh is needed but no refresh token is stored."""

    kind = ErrorKind.NO_REFRESH_TOKEN


class RefreshFailedError(ConnectionHealthError):
    """
    Raised when a provider rejects a refresh-token exchange.

    Attributes:
        permanent: If True, retrying will not help (token revoked, grant
                   invalid, refresh unsupported). Usually means the user
                   must reconnect.
    """

    kind = ErrorKind.REFRESH_FAILED

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        permanent: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, platform=platform)
        self.permanent = permanent
        self.status_code = status_code


class ProbeError(ConnectionHealthError):
    """
    Raised when a probe could not reach the provider.

    Distinct from an invalid token: a network failure or provider outage
    says nothing about the credential itself.
    """

    kind = ErrorKind.PROBE_ERROR


class StoreWriteFailedError(ConnectionHealthError):
    """Raised by a store backend when persistence did not confirm."""

    kind = ErrorKind.STORE_WRITE_FAILED

    def __init__(self, message: str, store: Optional[str] = None, platform: Optional[str] = None):
        super().__init__(message, platform=platform)
        self.store = store


class StoreUnavailableError(ConnectionHealthError):
    """Raised when a store cannot be queried (or every store failed during lookup)."""

    kind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str, store: Optional[str] = None):
        super().__init__(message)
        self.store = store
