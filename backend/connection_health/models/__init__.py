"""
Connection health data models.

Canonical dataclasses (PlatformConnection, UserRecord) plus the ORM rows
of the two user-record stores.
"""

from connection_health.models.base import TimestampMixin
from connection_health.models.platform_connection import (
    ConnectionUpdate,
    Platform,
    PlatformConnection,
    StoreKind,
    SUPPORTED_PLATFORMS,
    UserRecord,
)
from connection_health.models.primary_user import PrimaryUserRecord
from connection_health.models.secondary_user import SecondaryUserRecord, FLAT_FIELD_COLUMNS

__all__ = [
    "TimestampMixin",
    "ConnectionUpdate",
    "Platform",
    "PlatformConnection",
    "StoreKind",
    "SUPPORTED_PLATFORMS",
    "UserRecord",
    "PrimaryUserRecord",
    "SecondaryUserRecord",
    "FLAT_FIELD_COLUMNS",
]
