"""
Tests for the user-record store repositories.

Covers:
- NestedAccountsStore: accounts JSON map <-> canonical connections
- FlatFieldStore: per-platform columns <-> canonical connections
- Lookup by id / username-like / email-like fields
- Listing and statistics
"""

from datetime import timedelta

import pytest

from connection_health.errors import PlatformUnsupportedError, StoreWriteFailedError
from connection_health.models.platform_connection import Platform, PlatformConnection, StoreKind
from connection_health.tests.fakes import EXPIRED, FIXED_NOW, VALID_UNTIL, account_entry


# =============================================================================
# Nested-map store
# =============================================================================

class TestNestedAccountsStore:

    @pytest.mark.parametrize("identifier", ["user-1", "alice", "alice@example.com"])
    def test_find_by_id_username_or_email(self, make_primary_user, primary_store, identifier):
        make_primary_user()

        user = primary_store.find(identifier)

        assert user.identifier == "user-1"
        assert user.store == StoreKind.PRIMARY
        assert user.lookup_key == identifier
        assert user.username == "alice"

    def test_find_unknown_returns_none(self, make_primary_user, primary_store):
        make_primary_user()

        assert primary_store.find("nobody@example.com") is None

    def test_reads_connections_and_metadata(self, make_primary_user, primary_store):
        make_primary_user(accounts={
            "youtube": account_entry(access_token="yt", refresh_token="r", channel_name="Alice TV"),
            "reddit": account_entry(access_token=""),
            "myspace": account_entry(access_token="legacy"),
        })

        connections = primary_store.read_connections("user-1")

        assert list(connections) == [Platform.YOUTUBE]
        youtube = connections[Platform.YOUTUBE]
        assert youtube.access_token == "yt"
        assert youtube.refresh_token == "r"
        assert youtube.token_expiry == VALID_UNTIL
        assert youtube.platform_metadata == {"channel_name": "Alice TV"}

    def test_write_then_unset_connection(self, make_primary_user, primary_store):
        make_primary_user(accounts={"youtube": account_entry(access_token="yt")})
        primary_store.write_connection(
            "user-1",
            PlatformConnection(
                platform=Platform.GMAIL,
                access_token="gm",
                token_expiry=EXPIRED,
                last_validated=FIXED_NOW,
                platform_metadata={"email_address": "alice@example.com"},
            ),
        )

        connections = primary_store.read_connections("user-1")
        assert set(connections) == {Platform.YOUTUBE, Platform.GMAIL}
        assert connections[Platform.GMAIL].token_expiry == EXPIRED
        assert connections[Platform.GMAIL].platform_metadata == {"email_address": "alice@example.com"}

        primary_store.unset_connection("user-1", Platform.GMAIL)
        assert set(primary_store.read_connections("user-1")) == {Platform.YOUTUBE}

    def test_write_for_missing_user_fails(self, primary_store):
        with pytest.raises(StoreWriteFailedError):
            primary_store.write_connection("ghost", PlatformConnection(platform=Platform.YOUTUBE, access_token="x"))

    def test_create_user_has_no_connections(self, primary_store):
        user = primary_store.create_user("user-9", username="zed", email="zed@example.com")

        assert user.connections == {}
        assert primary_store.find("zed").identifier == "user-9"

    def test_list_users_with_platform_filters_refresh_token(self, make_primary_user, primary_store):
        make_primary_user("user-1", "alice", "alice@example.com", {"youtube": account_entry(refresh_token="r")})
        make_primary_user("user-2", "carol", "carol@example.com", {"youtube": account_entry()})
        make_primary_user("user-3", "dave", "dave@example.com", {})

        assert [u.identifier for u in primary_store.list_users_with_platform(Platform.YOUTUBE)] == [
            "user-1", "user-2",
        ]
        with_refresh = primary_store.list_users_with_platform(Platform.YOUTUBE, has_refresh_token=True)
        assert [u.identifier for u in with_refresh] == ["user-1"]

    def test_stats(self, make_primary_user, primary_store):
        make_primary_user("user-1", "alice", "alice@example.com", {"youtube": account_entry(), "reddit": account_entry()})
        make_primary_user("user-2", "carol", "carol@example.com", {})

        stats = primary_store.stats()

        assert stats.available is True
        assert stats.total_users == 2
        assert stats.users_with_connections == 1
        assert stats.platform_breakdown["youtube"] == 1
        assert stats.platform_breakdown["reddit"] == 1
        assert stats.platform_breakdown["apple"] == 0


# =============================================================================
# Flat-field store
# =============================================================================

class TestFlatFieldStore:

    def test_find_by_alt_email(self, make_secondary_user, secondary_store):
        make_secondary_user(alt_email="bob@work.example.com")

        user = secondary_store.find("bob@work.example.com")

        assert user.identifier == "legacy-1"
        assert user.store == StoreKind.SECONDARY

    def test_reads_columns_as_utc_connections(self, make_secondary_user, secondary_store):
        make_secondary_user(
            youtube_access_token="yt",
            youtube_refresh_token="r",
            youtube_token_expiry=VALID_UNTIL,
            youtube_channel_name="Bob Live",
            linkedin_access_token=None,
        )

        connections = secondary_store.read_connections("legacy-1")

        assert list(connections) == [Platform.YOUTUBE]
        youtube = connections[Platform.YOUTUBE]
        assert youtube.token_expiry == VALID_UNTIL
        assert youtube.token_expiry.tzinfo is not None
        assert youtube.platform_metadata == {"channel_name": "Bob Live"}

    def test_write_and_unset_linkedin(self, make_secondary_user, secondary_store):
        make_secondary_user()
        secondary_store.write_connection(
            "legacy-1",
            PlatformConnection(
                platform=Platform.LINKEDIN,
                access_token="li",
                refresh_token="lr",
                token_expiry=FIXED_NOW + timedelta(days=60),
                platform_metadata={"user_name": "Bob B."},
            ),
        )

        linkedin = secondary_store.read_connections("legacy-1")[Platform.LINKEDIN]
        assert linkedin.refresh_token == "lr"
        assert linkedin.platform_metadata == {"user_name": "Bob B."}

        secondary_store.unset_connection("legacy-1", Platform.LINKEDIN)
        assert secondary_store.read_connections("legacy-1") == {}

    def test_unsupported_platform_rejected(self, make_secondary_user, secondary_store):
        make_secondary_user()

        assert secondary_store.supports_platform(Platform.REDDIT) is False
        with pytest.raises(PlatformUnsupportedError):
            secondary_store.write_connection(
                "legacy-1", PlatformConnection(platform=Platform.REDDIT, access_token="rd")
            )
        assert secondary_store.list_users_with_platform(Platform.REDDIT) == []

    def test_stats_breakdown_only_stored_platforms(self, make_secondary_user, secondary_store):
        make_secondary_user(youtube_access_token="yt")

        stats = secondary_store.stats()

        assert stats.platform_breakdown == {"youtube": 1, "linkedin": 0}
