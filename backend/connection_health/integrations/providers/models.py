"""
Data models for provider probe and refresh calls.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from connection_health.models.platform_connection import Platform


@dataclass
class ProbeResult:
    """Outcome of one lightweight read-only call with a bearer token."""

    valid: bool
    reason: Optional[str] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "status_code": self.status_code,
        }


@dataclass
class TokenGrant:
    """
    Token endpoint response for a refresh-token exchange.

    SECURITY: Tokens are NEVER exposed in __repr__.
    """

    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenGrant":
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            expires_in=int(expires_in) if expires_in is not None else None,
            refresh_token=data.get("refresh_token") or None,
            scope=data.get("scope"),
        )

    def __repr__(self) -> str:
        return (
            f"TokenGrant(expires_in={self.expires_in}, "
            f"rotated_refresh_token={self.refresh_token is not None})"
        )


@dataclass
class RefreshIdentity:
    """
    What a provider needs to exchange a refresh token.

    SECURITY: refresh_token is NEVER exposed in __repr__.
    """

    user_identifier: str
    platform: Platform
    refresh_token: str

    def __repr__(self) -> str:
        return f"RefreshIdentity(user_identifier={self.user_identifier!r}, platform={self.platform.value})"
