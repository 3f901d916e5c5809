"""User-record store repositories (one per native schema)."""

from connection_health.repositories.user_store import StoreStats, UserStore, UserSummary
from connection_health.repositories.nested_accounts_store import NestedAccountsStore
from connection_health.repositories.flat_field_store import FlatFieldStore

__all__ = [
    "StoreStats",
    "UserStore",
    "UserSummary",
    "NestedAccountsStore",
    "FlatFieldStore",
]
