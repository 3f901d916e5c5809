"""
Shared test configuration and fixtures for the connection health engine.

Provides:
- primary_session_factory / secondary_session_factory: in-memory SQLite stores
- make_primary_user / make_secondary_user: row factories
- store_adapter: ConnectionStoreAdapter over both stores
- make_registry: PlatformRegistry built from FakeProviders
- fixed_clock: deterministic UTC clock
"""

import os
from typing import Any, Dict, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from connection_health.config.provider_config import reset_provider_config_loader
from connection_health.config.settings import reset_settings
from connection_health.db_base import PrimaryBase, SecondaryBase
from connection_health.integrations.providers.registry import PlatformRegistry
from connection_health.models.platform_connection import StoreKind
from connection_health.models.primary_user import PrimaryUserRecord
from connection_health.models.secondary_user import SecondaryUserRecord
from connection_health.repositories.flat_field_store import FlatFieldStore
from connection_health.repositories.nested_accounts_store import NestedAccountsStore
from connection_health.services.connection_store import ConnectionStoreAdapter
from connection_health.tests.fakes import FIXED_NOW, FakeProvider

# Set test environment
os.environ.setdefault("ENV", "test")


@pytest.fixture
def clean_config():
    """Drop cached settings and provider catalogue around a test."""
    reset_settings()
    reset_provider_config_loader()
    yield
    reset_settings()
    reset_provider_config_loader()


# =============================================================================
# Clock
# =============================================================================

@pytest.fixture
def fixed_clock():
    """Clock pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


# =============================================================================
# Stores
# =============================================================================

def _sqlite_engine(base):
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def primary_session_factory():
    engine = _sqlite_engine(PrimaryBase)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def secondary_session_factory():
    engine = _sqlite_engine(SecondaryBase)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def primary_store(primary_session_factory):
    return NestedAccountsStore(primary_session_factory)


@pytest.fixture
def secondary_store(secondary_session_factory):
    return FlatFieldStore(secondary_session_factory)


@pytest.fixture
def store_adapter(primary_store, secondary_store, fixed_clock):
    return ConnectionStoreAdapter(
        {StoreKind.PRIMARY: primary_store, StoreKind.SECONDARY: secondary_store},
        clock=fixed_clock,
    )


@pytest.fixture
def make_primary_user(primary_session_factory):
    """Factory inserting a PrimaryUserRecord row."""

    def _make(
        user_id: str = "user-1",
        user_name: Optional[str] = "alice",
        email: Optional[str] = "alice@example.com",
        accounts: Optional[Dict[str, Any]] = None,
    ) -> str:
        session = primary_session_factory()
        try:
            session.add(PrimaryUserRecord(id=user_id, user_name=user_name, email=email, accounts=accounts or {}))
            session.commit()
        finally:
            session.close()
        return user_id

    return _make


@pytest.fixture
def make_secondary_user(secondary_session_factory):
    """Factory inserting a SecondaryUserRecord row (extra kwargs are columns)."""

    def _make(
        user_id: str = "legacy-1",
        name: Optional[str] = "bob",
        email: Optional[str] = "bob@example.com",
        **columns: Any,
    ) -> str:
        session = secondary_session_factory()
        try:
            session.add(SecondaryUserRecord(id=user_id, name=name, email=email, **columns))
            session.commit()
        finally:
            session.close()
        return user_id

    return _make


# =============================================================================
# Providers
# =============================================================================

@pytest.fixture
def make_registry():
    """Factory building a PlatformRegistry from FakeProviders."""

    def _make(*providers: FakeProvider) -> PlatformRegistry:
        registry = PlatformRegistry()
        for provider in providers:
            registry.register(provider)
        return registry

    return _make
