"""
Canonical connection types shared by every layer of the engine.

Both user-record stores translate their native schema into these
dataclasses; nothing above the repositories layer sees a store row.

SECURITY:
- Tokens are NEVER logged or exposed in __repr__
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union


class Platform(str, enum.Enum):
    """Third-party OAuth platforms known to the engine."""
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"
    REDDIT = "reddit"
    PINTEREST = "pinterest"
    APPLE = "apple"
    GMAIL = "gmail"

    @classmethod
    def parse(cls, value: Union[str, "Platform"]) -> Optional["Platform"]:
        """Return the Platform for a name, or None if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


# Platforms included in the default health fan-out. Gmail is an extension
# provider that callers request explicitly.
SUPPORTED_PLATFORMS: List[Platform] = [
    Platform.YOUTUBE,
    Platform.LINKEDIN,
    Platform.REDDIT,
    Platform.PINTEREST,
    Platform.APPLE,
]


class StoreKind(str, enum.Enum):
    """Which user-record store owns a user."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601 (UTC) for JSON storage."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


@dataclass
class PlatformConnection:
    """
    One user's OAuth connection to one platform.

    A connection exists iff access_token is present and non-empty.
    A missing token_expiry is treated as already expired.
    """
    platform: Platform
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    last_validated: Optional[datetime] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def __repr__(self) -> str:
        return (
            f"<PlatformConnection(platform={self.platform.value}, "
            f"connected={self.is_connected}, has_refresh={self.has_refresh_token}, "
            f"expiry={self.token_expiry})>"
        )


@dataclass
class ConnectionUpdate:
    """
    Partial update for a connection.

    Only fields that are not None are written; platform_metadata is merged
    key by key.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)

    def apply_to(self, existing: PlatformConnection, now: datetime) -> PlatformConnection:
        """Return a new connection with these fields merged over existing."""
        metadata = dict(existing.platform_metadata)
        metadata.update(self.platform_metadata)
        return PlatformConnection(
            platform=existing.platform,
            access_token=self.access_token if self.access_token is not None else existing.access_token,
            refresh_token=self.refresh_token if self.refresh_token is not None else existing.refresh_token,
            token_expiry=self.token_expiry if self.token_expiry is not None else existing.token_expiry,
            connected_at=(
                self.connected_at
                if self.connected_at is not None
                else (existing.connected_at or now)
            ),
            last_validated=now,
            platform_metadata=metadata,
        )

    def __repr__(self) -> str:
        return (
            f"<ConnectionUpdate(access_token={'set' if self.access_token else 'unset'}, "
            f"refresh_token={'set' if self.refresh_token else 'unset'}, "
            f"token_expiry={self.token_expiry})>"
        )


@dataclass
class UserRecord:
    """
    A user resolved from exactly one store.

    identifier is the store-native primary key and stays stable across
    lookups by username or email; lookup_key is whatever the caller used.
    """
    identifier: str
    store: StoreKind
    lookup_key: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    connections: Dict[Platform, PlatformConnection] = field(default_factory=dict)

    def connected_platforms(self) -> List[Platform]:
        return [p for p, c in self.connections.items() if c.is_connected]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "store": self.store.value,
            "lookup_key": self.lookup_key,
            "username": self.username,
            "email": self.email,
            "connected_platforms": [p.value for p in self.connected_platforms()],
        }
