"""
Database session management for the two user-record stores.

The primary (nested-map) and secondary (flat-field) stores are separate
databases, so each gets its own engine and session factory singleton.

Usage:
    from connection_health.database.session import get_session_factory
    from connection_health.models import StoreKind

    factory = get_session_factory(StoreKind.PRIMARY)
    with session_scope(factory) as session:
        session.query(PrimaryUserRecord).count()
"""

import logging
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from connection_health.config.settings import EngineSettings, get_settings
from connection_health.db_base import PrimaryBase, SecondaryBase
from connection_health.models.platform_connection import StoreKind

logger = logging.getLogger(__name__)

# Module-level engine singletons, one per store
_engines: Dict[StoreKind, Engine] = {}
_session_factories: Dict[StoreKind, sessionmaker] = {}

_URL_VARIABLES = {
    StoreKind.PRIMARY: "PRIMARY_DATABASE_URL",
    StoreKind.SECONDARY: "SECONDARY_DATABASE_URL",
}


def _get_database_url(store: StoreKind, settings: EngineSettings) -> str:
    """Get the (already normalized) database URL for a store."""
    if store == StoreKind.PRIMARY:
        database_url = settings.primary_database_url
    else:
        database_url = settings.secondary_database_url
    if not database_url:
        raise ValueError(f"{_URL_VARIABLES[store]} environment variable is not set")
    return database_url


def create_store_engine(database_url: str) -> Engine:
    """
    Create an engine for one store.

    Uses connection pooling with sensible defaults for production:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: Verify connections before use
    SQLite URLs (local development) use SQLAlchemy's default pool.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connection health
        pool_recycle=1800,   # Recycle connections after 30 minutes
    )


def get_engine(store: StoreKind, settings: Optional[EngineSettings] = None) -> Engine:
    """Get or create the engine singleton for a store."""
    if store not in _engines:
        try:
            database_url = _get_database_url(store, settings or get_settings())
            _engines[store] = create_store_engine(database_url)
            logger.info(
                "Database engine created with connection pooling",
                extra={"store": store.value},
            )
        except ValueError as e:
            logger.error(
                "Failed to create database engine",
                extra={"store": store.value, "error": str(e)},
            )
            raise
    return _engines[store]


def get_session_factory(store: StoreKind, settings: Optional[EngineSettings] = None) -> sessionmaker:
    """Get or create the session factory singleton for a store."""
    if store not in _session_factories:
        engine = get_engine(store, settings)
        _session_factories[store] = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=engine,
        )
    return _session_factories[store]


def init_store_schema(store: StoreKind, settings: Optional[EngineSettings] = None) -> None:
    """Create the store's tables if they do not exist (local development)."""
    from connection_health.models import primary_user, secondary_user  # noqa: F401 - register tables

    base = PrimaryBase if store == StoreKind.PRIMARY else SecondaryBase
    base.metadata.create_all(bind=get_engine(store, settings))


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Provide a session that commits on success and rolls back on error.

    Usage:
        with session_scope(factory) as session:
            session.add(record)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_engines() -> None:
    """Dispose engines and drop singletons (for tests only)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()
