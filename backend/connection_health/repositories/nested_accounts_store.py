"""
Primary store: user rows with a nested ``accounts`` JSON map.

Every platform can be stored. Timestamps inside the map are ISO-8601
strings; keys other than the core token fields are platform metadata.
"""

import logging
from typing import Any, Dict, Optional, Sequence

from connection_health.models.platform_connection import (
    Platform,
    PlatformConnection,
    StoreKind,
    format_timestamp,
    parse_timestamp,
)
from connection_health.models.primary_user import ACCOUNT_CORE_KEYS, PrimaryUserRecord
from connection_health.repositories.user_store import UserStore

logger = logging.getLogger(__name__)


class NestedAccountsStore(UserStore):
    """User store backed by PrimaryUserRecord (nested-map schema)."""

    kind = StoreKind.PRIMARY

    def _get_model_class(self) -> type:
        return PrimaryUserRecord

    def _username_columns(self) -> Sequence[Any]:
        return (PrimaryUserRecord.user_name,)

    def _email_columns(self) -> Sequence[Any]:
        return (PrimaryUserRecord.email,)

    def _row_username(self, row: PrimaryUserRecord) -> Optional[str]:
        return row.user_name

    def _row_email(self, row: PrimaryUserRecord) -> Optional[str]:
        return row.email

    def _new_row(self, identifier: str, username: Optional[str], email: Optional[str]) -> PrimaryUserRecord:
        return PrimaryUserRecord(id=identifier, user_name=username, email=email, accounts={})

    def supports_platform(self, platform: Platform) -> bool:
        return True

    def _row_connections(self, row: PrimaryUserRecord) -> Dict[Platform, PlatformConnection]:
        connections: Dict[Platform, PlatformConnection] = {}
        for name, entry in (row.accounts or {}).items():
            platform = Platform.parse(name)
            if platform is None or not isinstance(entry, dict):
                continue
            if not entry.get("access_token"):
                continue
            connections[platform] = PlatformConnection(
                platform=platform,
                access_token=entry.get("access_token"),
                refresh_token=entry.get("refresh_token") or None,
                token_expiry=parse_timestamp(entry.get("token_expiry")),
                connected_at=parse_timestamp(entry.get("connected_at")),
                last_validated=parse_timestamp(entry.get("last_validated")),
                platform_metadata={
                    k: v for k, v in entry.items() if k not in ACCOUNT_CORE_KEYS
                },
            )
        return connections

    def _apply_connection(self, row: PrimaryUserRecord, connection: PlatformConnection) -> None:
        entry: Dict[str, Any] = dict(connection.platform_metadata)
        entry.update({
            "access_token": connection.access_token,
            "refresh_token": connection.refresh_token,
            "token_expiry": format_timestamp(connection.token_expiry),
            "connected_at": format_timestamp(connection.connected_at),
            "last_validated": format_timestamp(connection.last_validated),
        })
        # Reassign a copy so SQLAlchemy detects the JSON change
        accounts = dict(row.accounts or {})
        accounts[connection.platform.value] = entry
        row.accounts = accounts

    def _clear_connection(self, row: PrimaryUserRecord, platform: Platform) -> None:
        accounts = dict(row.accounts or {})
        accounts.pop(platform.value, None)
        row.accounts = accounts
