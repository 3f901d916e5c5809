"""
PrimaryUserRecord model - user rows of the nested-map store.

Each user carries an ``accounts`` JSON map keyed by platform name:

    {
        "youtube": {
            "access_token": "...",
            "refresh_token": "...",
            "token_expiry": "2026-01-01T00:00:00+00:00",
            "connected_at": "...",
            "last_validated": "...",
            "channel_name": "...",      # free-form metadata
        },
        ...
    }

Timestamps inside the map are ISO-8601 strings.

SECURITY:
- Tokens are NEVER logged or exposed in __repr__
"""

from sqlalchemy import Column, String

from connection_health.db_base import PrimaryBase
from connection_health.models.base import JSONType, TimestampMixin, generate_uuid

# Keys of an accounts entry that map onto PlatformConnection fields.
# Everything else in the entry is platform metadata.
ACCOUNT_CORE_KEYS = (
    "access_token",
    "refresh_token",
    "token_expiry",
    "connected_at",
    "last_validated",
)


class PrimaryUserRecord(PrimaryBase, TimestampMixin):
    """
    User record in the primary (nested-map) store.

    Lookup keys: id, user_name, email.
    """

    __tablename__ = "primary_users"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Store-native user id"
    )

    user_name = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        comment="Unique username"
    )

    email = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Primary email address"
    )

    accounts = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Per-platform OAuth connection map"
    )

    def __repr__(self) -> str:
        platforms = sorted((self.accounts or {}).keys())
        return f"<PrimaryUserRecord(id={self.id}, user_name={self.user_name}, platforms={platforms})>"
