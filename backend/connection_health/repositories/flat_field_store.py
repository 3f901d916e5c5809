"""
Secondary store: user rows with one column per platform field.

Only YouTube and LinkedIn exist in this schema (see FLAT_FIELD_COLUMNS);
writes for any other platform raise PlatformUnsupportedError.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from connection_health.models.platform_connection import (
    Platform,
    PlatformConnection,
    StoreKind,
    ensure_utc,
)
from connection_health.models.secondary_user import FLAT_FIELD_COLUMNS, SecondaryUserRecord
from connection_health.repositories.user_store import UserStore

logger = logging.getLogger(__name__)

_METADATA_PREFIX = "metadata:"
_TIMESTAMP_FIELDS = ("token_expiry", "connected_at", "last_validated")


class FlatFieldStore(UserStore):
    """User store backed by SecondaryUserRecord (flat-field schema)."""

    kind = StoreKind.SECONDARY

    def _get_model_class(self) -> type:
        return SecondaryUserRecord

    def _username_columns(self) -> Sequence[Any]:
        return (SecondaryUserRecord.name,)

    def _email_columns(self) -> Sequence[Any]:
        return (SecondaryUserRecord.email, SecondaryUserRecord.alt_email)

    def _row_username(self, row: SecondaryUserRecord) -> Optional[str]:
        return row.name

    def _row_email(self, row: SecondaryUserRecord) -> Optional[str]:
        return row.email or row.alt_email

    def _new_row(self, identifier: str, username: Optional[str], email: Optional[str]) -> SecondaryUserRecord:
        return SecondaryUserRecord(id=identifier, name=username, email=email)

    def supports_platform(self, platform: Platform) -> bool:
        return platform.value in FLAT_FIELD_COLUMNS

    def _row_connections(self, row: SecondaryUserRecord) -> Dict[Platform, PlatformConnection]:
        connections: Dict[Platform, PlatformConnection] = {}
        for name, columns in FLAT_FIELD_COLUMNS.items():
            access_token = getattr(row, columns["access_token"])
            if not access_token:
                continue
            metadata = {}
            for canonical, column in columns.items():
                if canonical.startswith(_METADATA_PREFIX):
                    value = getattr(row, column)
                    if value is not None:
                        metadata[canonical[len(_METADATA_PREFIX):]] = value
            platform = Platform(name)
            connections[platform] = PlatformConnection(
                platform=platform,
                access_token=access_token,
                refresh_token=getattr(row, columns["refresh_token"]) or None,
                token_expiry=ensure_utc(getattr(row, columns["token_expiry"])),
                connected_at=ensure_utc(getattr(row, columns["connected_at"])),
                last_validated=ensure_utc(getattr(row, columns["last_validated"])),
                platform_metadata=metadata,
            )
        return connections

    def _apply_connection(self, row: SecondaryUserRecord, connection: PlatformConnection) -> None:
        columns = FLAT_FIELD_COLUMNS[connection.platform.value]
        for canonical, column in columns.items():
            if canonical.startswith(_METADATA_PREFIX):
                key = canonical[len(_METADATA_PREFIX):]
                if key in connection.platform_metadata:
                    setattr(row, column, connection.platform_metadata[key])
            elif canonical in _TIMESTAMP_FIELDS:
                setattr(row, column, ensure_utc(getattr(connection, canonical)))
            else:
                setattr(row, column, getattr(connection, canonical))

    def _clear_connection(self, row: SecondaryUserRecord, platform: Platform) -> None:
        for column in FLAT_FIELD_COLUMNS[platform.value].values():
            setattr(row, column, None)
