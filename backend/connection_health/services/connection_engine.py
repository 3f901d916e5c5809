"""
Connection health engine facade.

Single entry point for callers (HTTP layer, CLIs, schedulers). Wires the
store adapter, provider registry, classifier, refresh orchestrator,
health aggregator, repair engine and migration analyzer together with
one shared clock.

Usage:
    engine = build_engine_from_env()
    lookup = engine.resolve_user("alice@example.com")
    if lookup.user is None:
        raise UserNotFoundError(lookup.identifier)
    report = await engine.check_all_health(lookup.user)
"""

import logging
from typing import Dict, Optional, Sequence

from connection_health.config.settings import EngineSettings, get_settings
from connection_health.database.session import get_session_factory
from connection_health.errors import PlatformUnsupportedError, UserNotFoundError
from connection_health.integrations.providers.registry import PlatformRegistry, build_default_registry
from connection_health.models.platform_connection import (
    Clock,
    ConnectionUpdate,
    Platform,
    PlatformConnection,
    StoreKind,
    UserRecord,
    utc_now,
)
from connection_health.repositories.flat_field_store import FlatFieldStore
from connection_health.repositories.nested_accounts_store import NestedAccountsStore
from connection_health.repositories.user_store import StoreStats, UserStore
from connection_health.services.connection_insights import ConnectionInsights, build_insights
from connection_health.services.connection_store import (
    ConnectionStoreAdapter,
    PlatformUserListing,
    SyncResult,
    UserLookup,
)
from connection_health.services.health_aggregator import (
    HealthAggregator,
    HealthComparison,
    HealthReport,
)
from connection_health.services.migration_analyzer import MigrationReport, analyze_migration
from connection_health.services.refresh_orchestrator import RefreshOrchestrator, RefreshResult
from connection_health.services.repair_engine import RepairEngine, RepairReport
from connection_health.services.single_flight import SingleFlight
from connection_health.services.token_classifier import HealthResult, TokenLifecycleClassifier

logger = logging.getLogger(__name__)

# Extra time the aggregator allows a platform beyond the probe timeout
PLATFORM_TIMEOUT_GRACE_SECONDS = 1.0


class ConnectionHealthEngine:
    """
    Facade over the connection health components.

    Per-platform problems are reported inside results; the only
    exceptions raised are StoreUnavailableError (store unreadable) and,
    from require_user, UserNotFoundError.
    """

    def __init__(
        self,
        store: ConnectionStoreAdapter,
        registry: PlatformRegistry,
        settings: Optional[EngineSettings] = None,
        clock: Clock = utc_now,
        single_flight: Optional[SingleFlight] = None,
    ):
        """
        Initialize engine.

        Args:
            store: Store adapter over both user-record stores
            registry: Platform probe/refresh registry
            settings: Engine settings (default: EngineSettings())
            clock: Injectable UTC clock shared by every component
            single_flight: Refresh guard table (default: a new one)
        """
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.store = store
        self.registry = registry

        self.classifier = TokenLifecycleClassifier(
            registry,
            clock=clock,
            expiry_buffer_minutes=self.settings.expiry_buffer_minutes,
            probe_timeout_seconds=self.settings.probe_timeout_seconds,
        )
        self.orchestrator = RefreshOrchestrator(
            self.classifier,
            registry,
            store,
            single_flight=single_flight,
            clock=clock,
            refresh_timeout_seconds=self.settings.refresh_timeout_seconds,
            default_token_lifetime_seconds=self.settings.default_token_lifetime_seconds,
        )
        self.aggregator = HealthAggregator(
            self.classifier,
            store,
            clock=clock,
            max_concurrency=self.settings.health_max_concurrency,
            platform_timeout_seconds=self.settings.probe_timeout_seconds + PLATFORM_TIMEOUT_GRACE_SECONDS,
            default_deadline_seconds=self.settings.health_check_deadline_seconds,
        )
        self.repair_engine = RepairEngine(self.classifier, self.orchestrator, store, clock=clock)

    # =========================================================================
    # Users and connections
    # =========================================================================

    def resolve_user(self, identifier: str, preferred_store: Optional[StoreKind] = None) -> UserLookup:
        return self.store.resolve_user(identifier, preferred_store=preferred_store)

    def require_user(self, identifier: str, preferred_store: Optional[StoreKind] = None) -> UserRecord:
        """Resolve a user or raise UserNotFoundError."""
        lookup = self.resolve_user(identifier, preferred_store=preferred_store)
        if lookup.user is None:
            raise UserNotFoundError(identifier)
        return lookup.user

    def get_connections(self, user: UserRecord) -> Dict[Platform, PlatformConnection]:
        return self.store.get_connections(user)

    def update_connection(self, user: UserRecord, platform: Platform, fields: ConnectionUpdate) -> bool:
        return self.store.update_connection(user, platform, fields)

    def remove_connection(self, user: UserRecord, platform: Platform) -> bool:
        return self.store.remove_connection(user, platform)

    def sync_user(self, user: UserRecord, target_store: StoreKind) -> SyncResult:
        return self.store.sync_user(user, target_store)

    def users_with_platform(
        self,
        platform: Platform,
        has_refresh_token: Optional[bool] = None,
    ) -> PlatformUserListing:
        return self.store.users_with_platform(platform, has_refresh_token=has_refresh_token)

    def store_statistics(self) -> Dict[StoreKind, StoreStats]:
        return self.store.store_statistics()

    # =========================================================================
    # Health
    # =========================================================================

    async def check_health(self, user: UserRecord, platform: Platform) -> HealthResult:
        return await self.aggregator.check_platform_health(user, platform)

    async def check_all_health(
        self,
        user: UserRecord,
        platforms: Optional[Sequence[Platform]] = None,
        deadline: Optional[float] = None,
    ) -> HealthReport:
        return await self.aggregator.check_all_platforms_health(user, platforms=platforms, deadline=deadline)

    async def compare_health(self, user: UserRecord, previous: HealthReport) -> HealthComparison:
        return await self.aggregator.compare_health_reports(user, previous)

    async def connection_insights(self, user: UserRecord) -> ConnectionInsights:
        report = await self.check_all_health(user)
        return build_insights(report, self.clock())

    # =========================================================================
    # Refresh, repair, migration
    # =========================================================================

    async def refresh_if_needed(self, user: UserRecord, platform: Platform) -> RefreshResult:
        return await self.orchestrator.refresh_if_needed(user, platform)

    async def repair_connections(
        self,
        user: UserRecord,
        platforms: Optional[Sequence[Platform]] = None,
    ) -> RepairReport:
        return await self.repair_engine.repair_connections(user, platforms=platforms)

    def migration_status(self, user: UserRecord) -> MigrationReport:
        connections = self.store.get_connections(user)
        return analyze_migration(
            user,
            connections,
            self.clock(),
            stale_after_days=self.settings.stale_validation_days,
        )

    async def close(self) -> None:
        """Release provider HTTP resources."""
        await self.registry.close()


def parse_platform(value: str) -> Platform:
    """Parse a platform name or raise PlatformUnsupportedError."""
    platform = Platform.parse(value)
    if platform is None:
        raise PlatformUnsupportedError(value)
    return platform


def build_engine_from_env(settings: Optional[EngineSettings] = None) -> ConnectionHealthEngine:
    """
    Build an engine from environment configuration.

    A store whose database URL is unset is left out; lookups then search
    only the configured store.
    """
    settings = settings or get_settings()
    stores: Dict[StoreKind, UserStore] = {}

    if settings.primary_database_url:
        stores[StoreKind.PRIMARY] = NestedAccountsStore(get_session_factory(StoreKind.PRIMARY, settings))
    if settings.secondary_database_url:
        stores[StoreKind.SECONDARY] = FlatFieldStore(get_session_factory(StoreKind.SECONDARY, settings))

    if not stores:
        logger.warning("No user-record store configured")

    engine = ConnectionHealthEngine(
        store=ConnectionStoreAdapter(stores),
        registry=build_default_registry(settings),
        settings=settings,
    )
    logger.info(
        "Connection health engine initialized",
        extra={"stores": [kind.value for kind in stores]},
    )
    return engine
