"""
Tests for ConnectionStoreAdapter.

Covers:
- Cross-store lookup order and fallback
- Degradation when one store is down; error when every store is down
- Partial updates (merge, last_validated stamp) and removal
- Explicit cross-store sync (first writer wins)
- Listings and statistics across stores
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from connection_health.errors import StoreUnavailableError
from connection_health.models.platform_connection import ConnectionUpdate, Platform, StoreKind
from connection_health.services.connection_store import ConnectionStoreAdapter
from connection_health.tests.fakes import EXPIRED, FIXED_NOW, account_entry


def _outage():
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


# =============================================================================
# Lookup
# =============================================================================

class TestResolveUser:

    def test_primary_found_first(self, make_primary_user, make_secondary_user, store_adapter):
        make_primary_user(email="shared@example.com")
        make_secondary_user(email="shared@example.com")

        lookup = store_adapter.resolve_user("shared@example.com")

        assert lookup.found_in == StoreKind.PRIMARY
        assert lookup.searched_stores == [StoreKind.PRIMARY]

    def test_falls_back_to_secondary(self, make_primary_user, make_secondary_user, store_adapter):
        make_primary_user()
        make_secondary_user(youtube_access_token="yt")

        lookup = store_adapter.resolve_user("bob@example.com")

        assert lookup.found is True
        assert lookup.found_in == StoreKind.SECONDARY
        assert lookup.searched_stores == [StoreKind.PRIMARY, StoreKind.SECONDARY]
        assert lookup.user.connected_platforms() == [Platform.YOUTUBE]

    def test_preferred_store_searched_first(self, make_primary_user, make_secondary_user, store_adapter):
        make_primary_user(email="shared@example.com")
        make_secondary_user(email="shared@example.com")

        lookup = store_adapter.resolve_user("shared@example.com", preferred_store=StoreKind.SECONDARY)

        assert lookup.found_in == StoreKind.SECONDARY

    def test_not_found(self, store_adapter):
        lookup = store_adapter.resolve_user("nobody")

        assert lookup.user is None
        assert lookup.failed_stores == []
        assert lookup.to_dict()["found"] is False

    def test_primary_outage_degrades_to_secondary(self, primary_store, make_secondary_user, store_adapter):
        make_secondary_user()
        primary_store.find = MagicMock(side_effect=_outage())

        lookup = store_adapter.resolve_user("bob")

        assert lookup.found_in == StoreKind.SECONDARY
        assert lookup.failed_stores == [StoreKind.PRIMARY]

    def test_every_store_down_raises(self, primary_store, secondary_store, store_adapter):
        primary_store.find = MagicMock(side_effect=_outage())
        secondary_store.find = MagicMock(side_effect=_outage())

        with pytest.raises(StoreUnavailableError):
            store_adapter.resolve_user("bob")

    def test_only_configured_store_is_searched(self, secondary_store, make_secondary_user, fixed_clock):
        make_secondary_user()
        adapter = ConnectionStoreAdapter({StoreKind.SECONDARY: secondary_store}, clock=fixed_clock)

        lookup = adapter.resolve_user("bob")

        assert lookup.searched_stores == [StoreKind.SECONDARY]
        assert lookup.found is True


# =============================================================================
# Connections
# =============================================================================

class TestConnections:

    def test_get_connections_refreshes_snapshot(self, make_primary_user, store_adapter):
        make_primary_user()
        user = store_adapter.resolve_user("user-1").user
        assert user.connections == {}

        store_adapter.update_connection(user, Platform.REDDIT, ConnectionUpdate(access_token="rd"))
        connections = store_adapter.get_connections(user)

        assert set(connections) == {Platform.REDDIT}
        assert user.connections is connections

    def test_read_failure_raises_store_unavailable(self, make_primary_user, primary_store, store_adapter):
        make_primary_user()
        user = store_adapter.resolve_user("user-1").user
        primary_store.read_connections = MagicMock(side_effect=_outage())

        with pytest.raises(StoreUnavailableError):
            store_adapter.get_connections(user)

    def test_update_merges_and_stamps_last_validated(self, make_primary_user, store_adapter):
        make_primary_user(accounts={
            "youtube": account_entry(
                access_token="old",
                refresh_token="keep-me",
                token_expiry=EXPIRED,
                last_validated=FIXED_NOW - timedelta(days=90),
                channel_name="Alice TV",
            ),
        })
        user = store_adapter.resolve_user("user-1").user
        new_expiry = FIXED_NOW + timedelta(hours=1)

        ok = store_adapter.update_connection(
            user,
            Platform.YOUTUBE,
            ConnectionUpdate(access_token="new", token_expiry=new_expiry, platform_metadata={"channel_id": "UC1"}),
        )

        assert ok is True
        youtube = store_adapter.get_connections(user)[Platform.YOUTUBE]
        assert youtube.access_token == "new"
        assert youtube.refresh_token == "keep-me"
        assert youtube.token_expiry == new_expiry
        assert youtube.last_validated == FIXED_NOW
        assert youtube.platform_metadata == {"channel_name": "Alice TV", "channel_id": "UC1"}

    def test_update_creates_missing_connection(self, make_secondary_user, store_adapter):
        make_secondary_user()
        user = store_adapter.resolve_user("bob").user

        ok = store_adapter.update_connection(user, Platform.LINKEDIN, ConnectionUpdate(access_token="li"))

        assert ok is True
        linkedin = store_adapter.get_connections(user)[Platform.LINKEDIN]
        assert linkedin.connected_at == FIXED_NOW
        assert linkedin.last_validated == FIXED_NOW

    def test_update_unsupported_platform_returns_false(self, make_secondary_user, store_adapter):
        make_secondary_user()
        user = store_adapter.resolve_user("bob").user

        assert store_adapter.update_connection(user, Platform.PINTEREST, ConnectionUpdate(access_token="pn")) is False

    def test_update_write_failure_returns_false(self, make_primary_user, primary_store, store_adapter):
        make_primary_user()
        user = store_adapter.resolve_user("user-1").user
        primary_store.write_connection = MagicMock(side_effect=_outage())

        assert store_adapter.update_connection(user, Platform.YOUTUBE, ConnectionUpdate(access_token="yt")) is False

    def test_remove_connection(self, make_primary_user, store_adapter):
        make_primary_user(accounts={"youtube": account_entry(), "reddit": account_entry()})
        user = store_adapter.resolve_user("user-1").user

        assert store_adapter.remove_connection(user, Platform.REDDIT) is True
        assert set(store_adapter.get_connections(user)) == {Platform.YOUTUBE}

    def test_remove_unsupported_platform_returns_false(self, make_secondary_user, store_adapter):
        make_secondary_user()
        user = store_adapter.resolve_user("bob").user

        assert store_adapter.remove_connection(user, Platform.APPLE) is False


# =============================================================================
# Cross-store operations
# =============================================================================

class TestSyncUser:

    def test_creates_bare_record_in_target(self, make_primary_user, secondary_store, store_adapter):
        make_primary_user(accounts={"youtube": account_entry()})
        user = store_adapter.resolve_user("alice").user

        result = store_adapter.sync_user(user, StoreKind.SECONDARY)

        assert result.success is True
        assert result.created is True
        assert result.target_identifier == "user-1"
        copy = secondary_store.find("alice@example.com")
        assert copy.connections == {}
        assert store_adapter.resolve_user("alice").found_in == StoreKind.PRIMARY

    def test_existing_record_is_noop(self, make_primary_user, make_secondary_user, store_adapter):
        make_primary_user()
        make_secondary_user(user_id="legacy-7", name="someone", email="alice@example.com")
        user = store_adapter.resolve_user("alice").user

        result = store_adapter.sync_user(user, StoreKind.SECONDARY)

        assert result.success is True
        assert result.created is False
        assert result.target_identifier == "legacy-7"

    def test_same_store_rejected(self, make_primary_user, store_adapter):
        make_primary_user()
        user = store_adapter.resolve_user("alice").user

        result = store_adapter.sync_user(user, StoreKind.PRIMARY)

        assert result.success is False
        assert result.error

    def test_user_without_email_or_username_rejected(self, make_primary_user, store_adapter):
        make_primary_user(user_name=None, email=None)
        user = store_adapter.resolve_user("user-1").user

        assert store_adapter.sync_user(user, StoreKind.SECONDARY).success is False


class TestListingsAndStats:

    def test_users_with_platform_across_stores(self, make_primary_user, make_secondary_user, store_adapter):
        make_primary_user(accounts={"youtube": account_entry(refresh_token="r")})
        make_secondary_user(youtube_access_token="yt")

        listing = store_adapter.users_with_platform(Platform.YOUTUBE)

        assert [(u.identifier, u.store) for u in listing.users] == [
            ("user-1", StoreKind.PRIMARY),
            ("legacy-1", StoreKind.SECONDARY),
        ]
        assert listing.to_dict()["total"] == 2

    def test_listing_tolerates_store_outage(self, make_secondary_user, primary_store, store_adapter):
        make_secondary_user(youtube_access_token="yt")
        primary_store.list_users_with_platform = MagicMock(side_effect=_outage())

        listing = store_adapter.users_with_platform(Platform.YOUTUBE)

        assert listing.failed_stores == [StoreKind.PRIMARY]
        assert len(listing.users) == 1

    def test_store_statistics(self, make_primary_user, secondary_store, store_adapter):
        make_primary_user(accounts={"youtube": account_entry()})
        secondary_store.stats = MagicMock(side_effect=_outage())

        stats = store_adapter.store_statistics()

        assert stats[StoreKind.PRIMARY].total_users == 1
        assert stats[StoreKind.PRIMARY].users_with_connections == 1
        assert stats[StoreKind.SECONDARY].available is False
