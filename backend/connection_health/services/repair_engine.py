"""
Repair engine.

Walks a user's platforms one at a time and fixes what can be fixed
automatically (an expired token with a refresh token). Everything else
is reported with the action a human has to take.

    HEALTHY              -> no_action_needed
    EXPIRED_REFRESHABLE  -> refresh; token_refreshed | manual_intervention_required
    EXPIRED_NO_REFRESH   -> manual_intervention_required (no provider call)
    INVALID_TOKEN        -> manual_intervention_required (no provider call)
    NOT_CONNECTED        -> manual_intervention_required (no provider call)
    ERROR                -> retry_later
    unexpected exception -> error_occurred

After a successful refresh the platform is classified again and the new
status is reported as status_after (None if the store cannot be re-read).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from connection_health.errors import StoreUnavailableError
from connection_health.models.platform_connection import Clock, Platform, UserRecord, utc_now
from connection_health.services.connection_store import ConnectionStoreAdapter
from connection_health.services.health_aggregator import Recommendation
from connection_health.services.refresh_orchestrator import RefreshOrchestrator, RefreshResult
from connection_health.services.token_classifier import HealthStatus, TokenLifecycleClassifier

logger = logging.getLogger(__name__)


@dataclass
class PlatformRepair:
    """Repair outcome for one platform."""
    platform: Platform
    attempted: bool
    success: bool
    action: str
    reason: str
    status_before: Optional[HealthStatus] = None
    status_after: Optional[HealthStatus] = None
    refresh: Optional[RefreshResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "attempted": self.attempted,
            "success": self.success,
            "action": self.action,
            "reason": self.reason,
            "status_before": self.status_before.value if self.status_before else None,
            "status_after": self.status_after.value if self.status_after else None,
            "refresh": self.refresh.to_dict() if self.refresh else None,
            "error": self.error,
        }


@dataclass
class RepairSummary:
    attempted: int = 0
    successful: int = 0
    manual_required: int = 0
    success_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "successful": self.successful,
            "manual_required": self.manual_required,
            "success_rate": self.success_rate,
        }


@dataclass
class RepairReport:
    identifier: str
    results: Dict[Platform, PlatformRepair]
    summary: RepairSummary
    recommendations: List[Recommendation] = field(default_factory=list)
    repaired_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "summary": self.summary.to_dict(),
            "results": {p.value: r.to_dict() for p, r in self.results.items()},
            "recommendations": [r.to_dict() for r in self.recommendations],
            "repaired_at": self.repaired_at.isoformat() if self.repaired_at else None,
        }


def summarize_repairs(results: Dict[Platform, PlatformRepair]) -> RepairSummary:
    attempted = [r for r in results.values() if r.attempted]
    successful = [r for r in attempted if r.success]
    manual = [r for r in results.values() if "manual" in r.action]
    rate = int(round(100.0 * len(successful) / len(attempted))) if attempted else 0
    return RepairSummary(
        attempted=len(attempted),
        successful=len(successful),
        manual_required=len(manual),
        success_rate=rate,
    )


def repair_recommendations(results: Dict[Platform, PlatformRepair]) -> List[Recommendation]:
    """One recommendation per platform that could not be repaired."""
    recommendations: List[Recommendation] = []
    for platform, result in results.items():
        if result.success:
            continue
        name = platform.value
        if result.status_before in (HealthStatus.EXPIRED_NO_REFRESH, HealthStatus.INVALID_TOKEN):
            recommendations.append(Recommendation(
                type="manual_reconnection_required",
                platform=platform,
                message=f"{name} requires manual reconnection",
                severity="error",
                action="reconnect",
                action_required=True,
            ))
        elif result.status_before == HealthStatus.NOT_CONNECTED:
            recommendations.append(Recommendation(
                type="platform_not_connected",
                platform=platform,
                message=f"{name} is not connected - establish connection first",
                severity="info",
                action="connect",
                action_required=False,
            ))
        else:
            recommendations.append(Recommendation(
                type="repair_failed",
                platform=platform,
                message=f"{name} repair failed: {result.error or result.reason or 'Unknown error'}",
                severity="error",
                action="debug",
                action_required=True,
            ))
    return recommendations


class RepairEngine:
    """Sequential, per-platform-isolated connection repair."""

    def __init__(
        self,
        classifier: TokenLifecycleClassifier,
        orchestrator: RefreshOrchestrator,
        store: ConnectionStoreAdapter,
        clock: Clock = utc_now,
    ):
        self.classifier = classifier
        self.orchestrator = orchestrator
        self.store = store
        self.clock = clock

    async def repair_connections(
        self,
        user: UserRecord,
        platforms: Optional[Sequence[Platform]] = None,
    ) -> RepairReport:
        """
        Repair the given platforms (default: every connected platform).

        Raises:
            StoreUnavailableError: If the user's store cannot be read
        """
        connections = self.store.get_connections(user)
        targets = list(dict.fromkeys(platforms)) if platforms else list(connections.keys())

        results: Dict[Platform, PlatformRepair] = {}
        for platform in targets:
            try:
                results[platform] = await self._repair_platform(user, platform, connections.get(platform))
            except Exception as e:
                logger.error(
                    "Repair failed unexpectedly",
                    extra={"user_id": user.identifier, "platform": platform.value, "error_type": type(e).__name__},
                    exc_info=True,
                )
                results[platform] = PlatformRepair(
                    platform=platform,
                    attempted=True,
                    success=False,
                    action="error_occurred",
                    reason=f"Unexpected error: {type(e).__name__}",
                    error=str(e),
                )

        summary = summarize_repairs(results)
        logger.info(
            "Connection repair completed",
            extra={
                "user_id": user.identifier,
                "attempted": summary.attempted,
                "successful": summary.successful,
                "manual_required": summary.manual_required,
            },
        )
        return RepairReport(
            identifier=user.identifier,
            results=results,
            summary=summary,
            recommendations=repair_recommendations(results),
            repaired_at=self.clock(),
        )

    async def _repair_platform(self, user: UserRecord, platform: Platform, connection) -> PlatformRepair:
        health = await self.classifier.classify(platform, connection)
        status = health.status

        if status == HealthStatus.HEALTHY:
            return PlatformRepair(
                platform=platform,
                attempted=False,
                success=True,
                action="no_action_needed",
                reason="Connection is already healthy",
                status_before=status,
                status_after=status,
            )

        if status == HealthStatus.NOT_CONNECTED:
            return PlatformRepair(
                platform=platform,
                attempted=False,
                success=False,
                action="manual_intervention_required",
                reason="Platform not connected",
                status_before=status,
            )

        if status == HealthStatus.EXPIRED_NO_REFRESH:
            return PlatformRepair(
                platform=platform,
                attempted=False,
                success=False,
                action="manual_intervention_required",
                reason="No refresh token available",
                status_before=status,
            )

        if status == HealthStatus.INVALID_TOKEN:
            return PlatformRepair(
                platform=platform,
                attempted=False,
                success=False,
                action="manual_intervention_required",
                reason="Token was rejected before expiry; reconnection required",
                status_before=status,
            )

        if status == HealthStatus.ERROR:
            return PlatformRepair(
                platform=platform,
                attempted=False,
                success=False,
                action="retry_later",
                reason="Provider could not be reached",
                status_before=status,
                error=health.error,
            )

        # EXPIRED_REFRESHABLE
        refresh = await self.orchestrator.refresh_classified(user, platform, health)
        if not refresh.success:
            return PlatformRepair(
                platform=platform,
                attempted=True,
                success=False,
                action="manual_intervention_required",
                reason=refresh.error or "Token refresh failed",
                status_before=status,
                refresh=refresh,
                error=refresh.error,
            )

        status_after: Optional[HealthStatus] = None
        try:
            connections = self.store.get_connections(user)
        except StoreUnavailableError:
            logger.warning(
                "Refreshed connection could not be re-read",
                extra={"user_id": user.identifier, "platform": platform.value, "store": user.store.value},
            )
        else:
            after = await self.classifier.classify(platform, connections.get(platform))
            status_after = after.status

        return PlatformRepair(
            platform=platform,
            attempted=True,
            success=True,
            action="token_refreshed",
            reason="Token refreshed successfully",
            status_before=status,
            status_after=status_after,
            refresh=refresh,
        )
