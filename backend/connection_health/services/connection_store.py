"""
Connection store adapter.

Resolves users across the two user-record stores and reads/writes their
connections in the canonical shape. The stores fail independently:

- lookup: a store raising SQLAlchemyError is recorded as failed and the
  search continues; only "every store failed" raises StoreUnavailableError
- write:  any persistence failure returns False and is logged, never raised

Usage:
    adapter = ConnectionStoreAdapter({StoreKind.PRIMARY: primary, StoreKind.SECONDARY: secondary})
    lookup = adapter.resolve_user("alice@example.com")
    if lookup.user:
        connections = adapter.get_connections(lookup.user)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from connection_health.errors import ConnectionHealthError, StoreUnavailableError
from connection_health.models.platform_connection import (
    Clock,
    ConnectionUpdate,
    Platform,
    PlatformConnection,
    StoreKind,
    UserRecord,
    utc_now,
)
from connection_health.repositories.user_store import StoreStats, UserStore, UserSummary

logger = logging.getLogger(__name__)

# Default search order; a preferred store is moved to the front.
DEFAULT_SEARCH_ORDER = [StoreKind.PRIMARY, StoreKind.SECONDARY]


@dataclass
class UserLookup:
    """Result of resolving an identifier across stores."""
    identifier: str
    user: Optional[UserRecord] = None
    searched_stores: List[StoreKind] = field(default_factory=list)
    failed_stores: List[StoreKind] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.user is not None

    @property
    def found_in(self) -> Optional[StoreKind]:
        return self.user.store if self.user else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "found": self.found,
            "found_in": self.found_in.value if self.found_in else None,
            "searched_stores": [s.value for s in self.searched_stores],
            "failed_stores": [s.value for s in self.failed_stores],
            "user": self.user.to_dict() if self.user else None,
        }


@dataclass
class SyncResult:
    """Outcome of an explicit cross-store user sync."""
    success: bool
    created: bool
    source_store: StoreKind
    target_store: StoreKind
    target_identifier: Optional[str] = None
    message: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "created": self.created,
            "source_store": self.source_store.value,
            "target_store": self.target_store.value,
            "target_identifier": self.target_identifier,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class PlatformUserListing:
    """Users of every reachable store holding a platform connection."""
    platform: Platform
    users: List[UserSummary] = field(default_factory=list)
    failed_stores: List[StoreKind] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "total": len(self.users),
            "users": [u.to_dict() for u in self.users],
            "failed_stores": [s.value for s in self.failed_stores],
        }


class ConnectionStoreAdapter:
    """
    Canonical access to connections across both stores.

    Nothing above this class knows which native schema a user lives in.
    """

    def __init__(self, stores: Dict[StoreKind, UserStore], clock: Clock = utc_now):
        """
        Initialize adapter.

        Args:
            stores: Store per StoreKind (either may be absent)
            clock: Injectable UTC clock
        """
        self._stores = dict(stores)
        self._clock = clock

    def _search_order(self, preferred_store: Optional[StoreKind]) -> List[StoreKind]:
        order = list(DEFAULT_SEARCH_ORDER)
        if preferred_store is not None and preferred_store in order:
            order.remove(preferred_store)
            order.insert(0, preferred_store)
        return [kind for kind in order if kind in self._stores]

    def _store_for(self, user: UserRecord) -> UserStore:
        store = self._stores.get(user.store)
        if store is None:
            raise StoreUnavailableError(
                f"Store not configured: {user.store.value}", store=user.store.value
            )
        return store

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve_user(
        self,
        identifier: str,
        preferred_store: Optional[StoreKind] = None,
    ) -> UserLookup:
        """
        Find a user in the first store that answers.

        Each store is queried once (id, then username-like, then email-like
        fields). Records are never merged across stores.

        Returns:
            UserLookup; lookup.user is None when no store holds the identifier

        Raises:
            StoreUnavailableError: If every store failed
        """
        lookup = UserLookup(identifier=identifier)
        order = self._search_order(preferred_store)

        for kind in order:
            lookup.searched_stores.append(kind)
            try:
                user = self._stores[kind].find(identifier)
            except SQLAlchemyError as e:
                lookup.failed_stores.append(kind)
                logger.warning(
                    "Store lookup failed, continuing with next store",
                    extra={
                        "lookup_key": identifier,
                        "store": kind.value,
                        "error_type": type(e).__name__,
                    },
                )
                continue
            if user is not None:
                lookup.user = user
                logger.info(
                    "User resolved",
                    extra={"lookup_key": identifier, "user_id": user.identifier, "store": kind.value},
                )
                return lookup

        if order and len(lookup.failed_stores) == len(order):
            raise StoreUnavailableError(
                f"All stores unavailable while resolving {identifier}"
            )

        logger.info(
            "User not found in any store",
            extra={
                "lookup_key": identifier,
                "searched_stores": [s.value for s in lookup.searched_stores],
                "failed_stores": [s.value for s in lookup.failed_stores],
            },
        )
        return lookup

    # =========================================================================
    # Connections
    # =========================================================================

    def get_connections(self, user: UserRecord) -> Dict[Platform, PlatformConnection]:
        """
        Read the user's connections from the owning store.

        Also refreshes the user.connections snapshot.

        Raises:
            StoreUnavailableError: If the owning store cannot be read
        """
        store = self._store_for(user)
        try:
            connections = store.read_connections(user.identifier)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to read connections",
                extra={"user_id": user.identifier, "store": user.store.value, "error_type": type(e).__name__},
            )
            raise StoreUnavailableError(
                f"Could not read connections from {user.store.value} store",
                store=user.store.value,
            ) from e
        user.connections = connections
        return connections

    def update_connection(
        self,
        user: UserRecord,
        platform: Platform,
        fields: ConnectionUpdate,
    ) -> bool:
        """
        Merge partial fields into the platform's connection and persist.

        Creates the connection if absent and stamps last_validated = now.

        Returns:
            True if the owning store confirmed the write, False otherwise
        """
        now = self._clock()
        try:
            store = self._store_for(user)
            existing = store.read_connections(user.identifier).get(platform) or PlatformConnection(
                platform=platform
            )
            merged = fields.apply_to(existing, now)
            store.write_connection(user.identifier, merged)
        except (ConnectionHealthError, SQLAlchemyError) as e:
            logger.error(
                "Connection update failed",
                extra={
                    "user_id": user.identifier,
                    "platform": platform.value,
                    "store": user.store.value,
                    "error_type": type(e).__name__,
                    "error": getattr(e, "message", type(e).__name__),
                },
            )
            return False

        if merged.is_connected:
            user.connections[platform] = merged
        logger.info(
            "Connection updated",
            extra={"user_id": user.identifier, "platform": platform.value, "store": user.store.value},
        )
        return True

    def remove_connection(self, user: UserRecord, platform: Platform) -> bool:
        """
        Unset every field of the platform in the owning store.

        Returns:
            True if the owning store confirmed the write, False otherwise
        """
        try:
            self._store_for(user).unset_connection(user.identifier, platform)
        except (ConnectionHealthError, SQLAlchemyError) as e:
            logger.error(
                "Connection removal failed",
                extra={
                    "user_id": user.identifier,
                    "platform": platform.value,
                    "store": user.store.value,
                    "error_type": type(e).__name__,
                },
            )
            return False

        user.connections.pop(platform, None)
        logger.info(
            "Connection removed",
            extra={"user_id": user.identifier, "platform": platform.value, "store": user.store.value},
        )
        return True

    # =========================================================================
    # Cross-store operations
    # =========================================================================

    def sync_user(self, user: UserRecord, target_store: StoreKind) -> SyncResult:
        """
        Ensure a bare record for the user exists in the other store.

        First writer wins: an existing matching record (email / username /
        id) in the target makes this a no-op. Connections are never copied
        and ownership does not move.
        """
        result = SyncResult(
            success=False,
            created=False,
            source_store=user.store,
            target_store=target_store,
        )

        if target_store == user.store:
            result.error = "Source and target stores must differ"
            return result
        if not user.email and not user.username:
            result.error = "User must have an email or username to sync"
            return result

        target = self._stores.get(target_store)
        if target is None:
            result.error = f"Store not configured: {target_store.value}"
            return result

        try:
            existing = target.find_matching(
                identifier=user.identifier, username=user.username, email=user.email
            )
            if existing is not None:
                result.success = True
                result.target_identifier = existing.identifier
                result.message = "User already exists in target store"
                return result

            created = target.create_user(user.identifier, username=user.username, email=user.email)
        except (ConnectionHealthError, SQLAlchemyError) as e:
            logger.error(
                "User sync failed",
                extra={
                    "user_id": user.identifier,
                    "store": user.store.value,
                    "target_store": target_store.value,
                    "error_type": type(e).__name__,
                },
            )
            result.error = getattr(e, "message", None) or f"Sync failed: {type(e).__name__}"
            return result

        result.success = True
        result.created = True
        result.target_identifier = created.identifier
        result.message = "User created in target store"
        logger.info(
            "User synced across stores",
            extra={"user_id": user.identifier, "store": user.store.value, "target_store": target_store.value},
        )
        return result

    def users_with_platform(
        self,
        platform: Platform,
        has_refresh_token: Optional[bool] = None,
    ) -> PlatformUserListing:
        """List users of every store holding a connection for a platform."""
        listing = PlatformUserListing(platform=platform)
        for kind in DEFAULT_SEARCH_ORDER:
            store = self._stores.get(kind)
            if store is None:
                continue
            try:
                listing.users.extend(store.list_users_with_platform(platform, has_refresh_token))
            except SQLAlchemyError as e:
                listing.failed_stores.append(kind)
                logger.warning(
                    "Store listing failed",
                    extra={"store": kind.value, "platform": platform.value, "error_type": type(e).__name__},
                )
        return listing

    def store_statistics(self) -> Dict[StoreKind, StoreStats]:
        """Per-store user and connection counts; unreachable stores are flagged."""
        stats: Dict[StoreKind, StoreStats] = {}
        for kind in DEFAULT_SEARCH_ORDER:
            store = self._stores.get(kind)
            if store is None:
                stats[kind] = StoreStats(store=kind, available=False, error="not configured")
                continue
            try:
                stats[kind] = store.stats()
            except SQLAlchemyError as e:
                logger.warning(
                    "Store statistics unavailable",
                    extra={"store": kind.value, "error_type": type(e).__name__},
                )
                stats[kind] = StoreStats(store=kind, available=False, error=type(e).__name__)
        return stats
