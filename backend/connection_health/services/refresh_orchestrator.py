"""
Refresh orchestrator.

Refreshes a connection's access token only when classification says it
is needed and possible, deduplicating concurrent refreshes for the same
(user, platform) through an injected SingleFlight guard.

Outcomes:
- not needed                   -> refreshed=False, success=True
- not connected                -> refreshed=False, success=False (NOT_CONNECTED)
- classification failed        -> refreshed=False, success=False (PROBE_ERROR, PLATFORM_UNSUPPORTED, ...)
- needed, no refresh token     -> refreshed=False, success=False (NO_REFRESH_TOKEN)
- provider refresh failed      -> refreshed=True,  success=False (REFRESH_FAILED)
- provider raised unexpectedly -> refreshed=True,  success=False (UNEXPECTED)
- refreshed, persist failed    -> refreshed=True,  success=False (STORE_WRITE_FAILED)
- refreshed and persisted      -> refreshed=True,  success=True

Usage:
    orchestrator = RefreshOrchestrator(classifier, registry, store_adapter)
    result = await orchestrator.refresh_if_needed(user, Platform.YOUTUBE)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from connection_health.config.settings import (
    DEFAULT_REFRESH_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
)
from connection_health.errors import ErrorKind, RefreshFailedError, StoreUnavailableError
from connection_health.integrations.providers.models import RefreshIdentity, TokenGrant
from connection_health.integrations.providers.registry import PlatformRegistry
from connection_health.models.platform_connection import (
    Clock,
    ConnectionUpdate,
    Platform,
    UserRecord,
    utc_now,
)
from connection_health.services.connection_store import ConnectionStoreAdapter
from connection_health.services.single_flight import SingleFlight
from connection_health.services.token_classifier import (
    HealthResult,
    HealthStatus,
    TokenLifecycleClassifier,
)

logger = logging.getLogger(__name__)

NO_REFRESH_TOKEN_MESSAGE = "no refresh token — manual reconnection required"


@dataclass
class RefreshResult:
    """Outcome of a refresh_if_needed call."""
    platform: Platform
    refreshed: bool
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    new_expiry: Optional[datetime] = None
    joined_in_flight: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "refreshed": self.refreshed,
            "success": self.success,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "new_expiry": self.new_expiry.isoformat() if self.new_expiry else None,
            "joined_in_flight": self.joined_in_flight,
        }


class RefreshOrchestrator:
    """
    Classify-then-refresh with single-flight deduplication.

    The single-flight table is owned by this instance; share one
    orchestrator across callers that should deduplicate against each other.
    """

    def __init__(
        self,
        classifier: TokenLifecycleClassifier,
        registry: PlatformRegistry,
        store: ConnectionStoreAdapter,
        single_flight: Optional[SingleFlight] = None,
        clock: Clock = utc_now,
        refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        default_token_lifetime_seconds: int = DEFAULT_TOKEN_LIFETIME_SECONDS,
    ):
        """
        Initialize orchestrator.

        Args:
            classifier: Token lifecycle classifier
            registry: Platform probe/refresh registry
            store: Store adapter used to read and persist connections
            single_flight: Guard table (default: a new one)
            clock: Injectable UTC clock
            refresh_timeout_seconds: Upper bound for one provider refresh
            default_token_lifetime_seconds: Lifetime when expires_in is absent
        """
        self.classifier = classifier
        self.registry = registry
        self.store = store
        self.single_flight = single_flight or SingleFlight()
        self.clock = clock
        self.refresh_timeout_seconds = refresh_timeout_seconds
        self.default_token_lifetime_seconds = default_token_lifetime_seconds

    # =========================================================================
    # Public API
    # =========================================================================

    async def refresh_if_needed(self, user: UserRecord, platform: Platform) -> RefreshResult:
        """Classify the connection and refresh it if needed and possible."""
        connection = self.store.get_connections(user).get(platform)
        health = await self.classifier.classify(platform, connection)
        return await self.refresh_classified(user, platform, health)

    async def refresh_classified(
        self,
        user: UserRecord,
        platform: Platform,
        health: HealthResult,
    ) -> RefreshResult:
        """Refresh from an existing classification (no second probe)."""
        if health.status == HealthStatus.NOT_CONNECTED:
            return RefreshResult(
                platform=platform,
                refreshed=False,
                success=False,
                error=f"{platform.value} is not connected",
                error_kind=ErrorKind.NOT_CONNECTED,
            )

        if health.status == HealthStatus.ERROR:
            logger.warning(
                "Refresh skipped, connection could not be classified",
                extra={
                    "user_id": user.identifier,
                    "platform": platform.value,
                    "error_kind": health.error_kind.value if health.error_kind else None,
                },
            )
            return RefreshResult(
                platform=platform,
                refreshed=False,
                success=False,
                error=health.error,
                error_kind=health.error_kind or ErrorKind.UNEXPECTED,
            )

        if not health.needs_refresh:
            return RefreshResult(platform=platform, refreshed=False, success=True)

        if not health.can_refresh:
            logger.info(
                "Refresh needed but no refresh token",
                extra={"user_id": user.identifier, "platform": platform.value},
            )
            return RefreshResult(
                platform=platform,
                refreshed=False,
                success=False,
                error=NO_REFRESH_TOKEN_MESSAGE,
                error_kind=ErrorKind.NO_REFRESH_TOKEN,
            )

        key = (user.identifier, platform.value)
        result, joined = await self.single_flight.run(key, lambda: self._do_refresh(user, platform))
        if joined:
            logger.info(
                "Joined in-flight refresh",
                extra={"user_id": user.identifier, "platform": platform.value},
            )
            return RefreshResult(
                platform=result.platform,
                refreshed=result.refreshed,
                success=result.success,
                error=result.error,
                error_kind=result.error_kind,
                new_expiry=result.new_expiry,
                joined_in_flight=True,
            )
        return result

    # =========================================================================
    # Internal
    # =========================================================================

    async def _do_refresh(self, user: UserRecord, platform: Platform) -> RefreshResult:
        """Run one provider refresh and persist the grant. Runs under the guard."""
        provider = self.registry.get(platform)
        if provider is None:
            return RefreshResult(
                platform=platform,
                refreshed=True,
                success=False,
                error=f"Platform not supported: {platform.value}",
                error_kind=ErrorKind.PLATFORM_UNSUPPORTED,
            )

        # Re-read inside the guard: a refresh that just finished may have rotated it
        try:
            connection = self.store.get_connections(user).get(platform)
        except StoreUnavailableError as e:
            return RefreshResult(
                platform=platform,
                refreshed=False,
                success=False,
                error=e.message,
                error_kind=ErrorKind.STORE_UNAVAILABLE,
            )
        if connection is None or not connection.refresh_token:
            return RefreshResult(
                platform=platform,
                refreshed=False,
                success=False,
                error=NO_REFRESH_TOKEN_MESSAGE,
                error_kind=ErrorKind.NO_REFRESH_TOKEN,
            )

        identity = RefreshIdentity(
            user_identifier=user.identifier,
            platform=platform,
            refresh_token=connection.refresh_token,
        )

        logger.info(
            "Refreshing access token",
            extra={"user_id": user.identifier, "platform": platform.value, "store": user.store.value},
        )

        try:
            grant: TokenGrant = await asyncio.wait_for(
                provider.refresh(identity),
                timeout=self.refresh_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Token refresh timed out",
                extra={"user_id": user.identifier, "platform": platform.value},
            )
            return RefreshResult(
                platform=platform,
                refreshed=True,
                success=False,
                error=f"Refresh timed out after {self.refresh_timeout_seconds}s",
                error_kind=ErrorKind.REFRESH_FAILED,
            )
        except RefreshFailedError as e:
            logger.warning(
                "Token refresh failed",
                extra={
                    "user_id": user.identifier,
                    "platform": platform.value,
                    "permanent": e.permanent,
                    "status_code": e.status_code,
                },
            )
            kind = ErrorKind.PLATFORM_UNSUPPORTED if e.message == "unsupported" else ErrorKind.REFRESH_FAILED
            return RefreshResult(
                platform=platform,
                refreshed=True,
                success=False,
                error=e.message,
                error_kind=kind,
            )
        except Exception as e:
            logger.error(
                "Token refresh raised unexpectedly",
                extra={
                    "user_id": user.identifier,
                    "platform": platform.value,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return RefreshResult(
                platform=platform,
                refreshed=True,
                success=False,
                error=f"Refresh failed: {type(e).__name__}",
                error_kind=ErrorKind.UNEXPECTED,
            )

        lifetime = grant.expires_in if grant.expires_in is not None else self.default_token_lifetime_seconds
        new_expiry = self.clock() + timedelta(seconds=int(lifetime))

        persisted = self.store.update_connection(
            user,
            platform,
            ConnectionUpdate(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_expiry=new_expiry,
            ),
        )
        if not persisted:
            return RefreshResult(
                platform=platform,
                refreshed=True,
                success=False,
                error="Refreshed token could not be persisted",
                error_kind=ErrorKind.STORE_WRITE_FAILED,
                new_expiry=new_expiry,
            )

        logger.info(
            "Access token refreshed",
            extra={
                "user_id": user.identifier,
                "platform": platform.value,
                "expires_in": lifetime,
                "rotated_refresh_token": grant.refresh_token is not None,
            },
        )
        return RefreshResult(
            platform=platform,
            refreshed=True,
            success=True,
            new_expiry=new_expiry,
        )
