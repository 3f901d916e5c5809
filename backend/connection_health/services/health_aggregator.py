"""
Health aggregator.

Classifies every platform of a user concurrently and summarizes the
result into a HealthReport: a 0-100 score, a qualitative band, action
items and typed recommendations.

Concurrency:
- one sub-task per platform, bounded by an asyncio.Semaphore
- each sub-task joined with a per-platform timeout; a timeout or
  exception becomes an ERROR result for that platform only
- an optional whole-operation deadline cancels still-pending platforms,
  which are reported as ERROR ("deadline exceeded") with partial=True

Usage:
    aggregator = HealthAggregator(classifier, store_adapter)
    report = await aggregator.check_all_platforms_health(user)
    print(report.summary.overall_score, report.summary.overall_status)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from connection_health.config.settings import (
    DEFAULT_HEALTH_MAX_CONCURRENCY,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
)
from connection_health.errors import ErrorKind
from connection_health.models.platform_connection import (
    Clock,
    Platform,
    PlatformConnection,
    StoreKind,
    SUPPORTED_PLATFORMS,
    UserRecord,
    utc_now,
)
from connection_health.services.connection_store import ConnectionStoreAdapter
from connection_health.services.token_classifier import (
    HealthResult,
    HealthStatus,
    TokenLifecycleClassifier,
    error_result,
)

logger = logging.getLogger(__name__)

NEXT_CHECK_INTERVAL = timedelta(hours=24)
DEADLINE_EXCEEDED = "deadline exceeded"

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def overall_status_for(score: float) -> str:
    """Qualitative band for a 0-100 score."""
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    if score >= 30:
        return "poor"
    return "critical"


@dataclass
class ActionItem:
    """One thing to do about a connected, unhealthy platform."""
    platform: Platform
    priority: str
    action: str
    description: str
    automated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "priority": self.priority,
            "action": self.action,
            "description": self.description,
            "automated": self.automated,
        }


@dataclass
class Recommendation:
    """Typed recommendation (health, repair or migration)."""
    type: str
    message: str
    severity: str
    action: str
    action_required: bool
    platform: Optional[Platform] = None
    benefits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "type": self.type,
            "platform": self.platform.value if self.platform else None,
            "message": self.message,
            "severity": self.severity,
            "action": self.action,
            "action_required": self.action_required,
        }
        if self.benefits:
            payload["benefits"] = list(self.benefits)
        return payload


@dataclass
class HealthSummary:
    total_platforms: int
    connected_platforms: int
    healthy_platforms: int
    needing_attention: int
    overall_score: int
    overall_status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_platforms": self.total_platforms,
            "connected_platforms": self.connected_platforms,
            "healthy_platforms": self.healthy_platforms,
            "needing_attention": self.needing_attention,
            "overall_score": self.overall_score,
            "overall_status": self.overall_status,
        }


@dataclass
class HealthReport:
    """Health of every requested platform for one user."""
    identifier: str
    store: StoreKind
    summary: HealthSummary
    platforms: Dict[Platform, HealthResult]
    action_items: List[ActionItem]
    recommendations: List[Recommendation]
    checked_at: datetime
    next_check_recommended: datetime
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "store": self.store.value,
            "summary": self.summary.to_dict(),
            "platforms": {p.value: r.to_dict() for p, r in self.platforms.items()},
            "action_items": [a.to_dict() for a in self.action_items],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "checked_at": self.checked_at.isoformat(),
            "next_check_recommended": self.next_check_recommended.isoformat(),
            "partial": self.partial,
        }


@dataclass
class PlatformChange:
    platform: Platform
    previous_status: HealthStatus
    previous_healthy: bool
    current_status: HealthStatus
    current_healthy: bool
    change: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "previous": {"status": self.previous_status.value, "healthy": self.previous_healthy},
            "current": {"status": self.current_status.value, "healthy": self.current_healthy},
            "change": self.change,
        }


@dataclass
class HealthComparison:
    """Diff between two health reports for the same user."""
    identifier: str
    previous_checked_at: datetime
    current_checked_at: datetime
    changes: Dict[Platform, PlatformChange]
    improvements: List[Platform]
    degradations: List[Platform]
    overall_trend: str
    current: Optional[HealthReport] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "comparison_period": {
                "from": self.previous_checked_at.isoformat(),
                "to": self.current_checked_at.isoformat(),
            },
            "changes": {p.value: c.to_dict() for p, c in self.changes.items()},
            "summary": {
                "total_changes": len(self.changes),
                "improvements": len(self.improvements),
                "degradations": len(self.degradations),
                "overall_trend": self.overall_trend,
            },
            "improved_platforms": [p.value for p in self.improvements],
            "degraded_platforms": [p.value for p in self.degradations],
        }


# =============================================================================
# Report building
# =============================================================================

def build_action_items(results: Dict[Platform, HealthResult]) -> List[ActionItem]:
    """One item per connected, unhealthy platform; high priority first."""
    items: List[ActionItem] = []
    for platform, result in results.items():
        if result.healthy or not result.connected:
            continue
        items.append(
            ActionItem(
                platform=platform,
                priority="high" if result.status == HealthStatus.EXPIRED_NO_REFRESH else "medium",
                action="refresh_token" if result.can_refresh else "reconnect_account",
                description=result.guidance[0] if result.guidance else "Manual intervention required",
                automated=result.can_refresh,
            )
        )
    # sorted() is stable: platform order is kept within a priority
    return sorted(items, key=lambda item: _PRIORITY_ORDER.get(item.priority, 0), reverse=True)


def build_recommendations(
    results: Dict[Platform, HealthResult],
    overall_score: int,
) -> List[Recommendation]:
    """Typed recommendations per platform status, plus report-level ones."""
    recommendations: List[Recommendation] = []
    for platform, result in results.items():
        name = platform.value
        if result.status == HealthStatus.EXPIRED_REFRESHABLE:
            recommendations.append(Recommendation(
                type="token_refresh_available",
                platform=platform,
                message=f"{name} token is expired but can be refreshed automatically",
                severity="warning",
                action="auto_refresh",
                action_required=False,
            ))
        elif result.status == HealthStatus.EXPIRED_NO_REFRESH:
            recommendations.append(Recommendation(
                type="reconnection_required",
                platform=platform,
                message=f"{name} token is expired and requires reconnection",
                severity="error",
                action="reconnect",
                action_required=True,
            ))
        elif result.status == HealthStatus.INVALID_TOKEN:
            recommendations.append(Recommendation(
                type="invalid_token",
                platform=platform,
                message=f"{name} token is invalid and requires reconnection",
                severity="error",
                action="reconnect",
                action_required=True,
            ))
        elif result.status == HealthStatus.ERROR:
            recommendations.append(Recommendation(
                type="connection_error",
                platform=platform,
                message=f"{name} connection has errors: {result.error or 'unknown error'}",
                severity="error",
                action="debug",
                action_required=True,
            ))
        elif result.status == HealthStatus.NOT_CONNECTED:
            recommendations.append(Recommendation(
                type="platform_not_connected",
                platform=platform,
                message=f"{name} is not connected",
                severity="info",
                action="connect",
                action_required=False,
            ))

    connected = sum(1 for r in results.values() if r.connected)
    if connected < len(results):
        recommendations.append(Recommendation(
            type="expand_connections",
            message=(
                f"Consider connecting to {len(results) - connected} more platforms "
                "for better data coverage"
            ),
            severity="info",
            action="connect_more",
            action_required=False,
        ))
    if connected and overall_score < 50:
        recommendations.append(Recommendation(
            type="low_health_score",
            message="Overall connection health is low - multiple platforms need attention",
            severity="warning",
            action="repair_connections",
            action_required=True,
        ))
    return recommendations


def build_report(
    user: UserRecord,
    results: Dict[Platform, HealthResult],
    checked_at: datetime,
    partial: bool = False,
) -> HealthReport:
    """Summarize per-platform results into a HealthReport."""
    connected = [r for r in results.values() if r.connected]
    healthy = [r for r in connected if r.healthy]
    raw_score = (100.0 * len(healthy) / len(connected)) if connected else 0.0
    overall_score = int(round(raw_score))

    summary = HealthSummary(
        total_platforms=len(results),
        connected_platforms=len(connected),
        healthy_platforms=len(healthy),
        needing_attention=len(connected) - len(healthy),
        overall_score=overall_score,
        overall_status=overall_status_for(raw_score),
    )
    return HealthReport(
        identifier=user.identifier,
        store=user.store,
        summary=summary,
        platforms=results,
        action_items=build_action_items(results),
        recommendations=build_recommendations(results, overall_score),
        checked_at=checked_at,
        next_check_recommended=checked_at + NEXT_CHECK_INTERVAL,
        partial=partial,
    )


def diff_health_reports(previous: HealthReport, current: HealthReport) -> HealthComparison:
    """
    Compare two reports platform by platform.

    A platform counts as changed if its status or its healthy flag
    differs. Only healthy flips count as improvements/degradations.
    """
    changes: Dict[Platform, PlatformChange] = {}
    improvements: List[Platform] = []
    degradations: List[Platform] = []

    for platform, curr in current.platforms.items():
        prev = previous.platforms.get(platform)
        if prev is None:
            continue
        if prev.status == curr.status and prev.healthy == curr.healthy:
            continue

        if curr.healthy and not prev.healthy:
            change = "improved"
            improvements.append(platform)
        elif prev.healthy and not curr.healthy:
            change = "degraded"
            degradations.append(platform)
        else:
            change = "changed"

        changes[platform] = PlatformChange(
            platform=platform,
            previous_status=prev.status,
            previous_healthy=prev.healthy,
            current_status=curr.status,
            current_healthy=curr.healthy,
            change=change,
        )

    if len(improvements) > len(degradations):
        trend = "improving"
    elif len(degradations) > len(improvements):
        trend = "degrading"
    else:
        trend = "stable"

    return HealthComparison(
        identifier=current.identifier,
        previous_checked_at=previous.checked_at,
        current_checked_at=current.checked_at,
        changes=changes,
        improvements=improvements,
        degradations=degradations,
        overall_trend=trend,
        current=current,
    )


# =============================================================================
# Aggregator
# =============================================================================

class HealthAggregator:
    """Concurrent per-platform classification for one user."""

    def __init__(
        self,
        classifier: TokenLifecycleClassifier,
        store: ConnectionStoreAdapter,
        clock: Clock = utc_now,
        max_concurrency: int = DEFAULT_HEALTH_MAX_CONCURRENCY,
        platform_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        default_deadline_seconds: Optional[float] = None,
    ):
        """
        Initialize aggregator.

        Args:
            classifier: Token lifecycle classifier
            store: Store adapter (connections are read once per report)
            clock: Injectable UTC clock
            max_concurrency: Max platforms classified at the same time
            platform_timeout_seconds: Upper bound for one platform's classification
            default_deadline_seconds: Whole-operation deadline when the caller gives none
        """
        self.classifier = classifier
        self.store = store
        self.clock = clock
        self.max_concurrency = max(1, max_concurrency)
        self.platform_timeout_seconds = platform_timeout_seconds
        self.default_deadline_seconds = default_deadline_seconds

    async def check_platform_health(self, user: UserRecord, platform: Platform) -> HealthResult:
        """Classify a single platform for a user."""
        connection = self.store.get_connections(user).get(platform)
        return await self._classify_isolated(platform, connection)

    async def _classify_isolated(
        self,
        platform: Platform,
        connection: Optional[PlatformConnection],
    ) -> HealthResult:
        """Classify one platform; never raises (except for cancellation)."""
        try:
            return await asyncio.wait_for(
                self.classifier.classify(platform, connection),
                timeout=self.platform_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Platform health check timed out",
                extra={"platform": platform.value, "timeout_seconds": self.platform_timeout_seconds},
            )
            return error_result(
                platform,
                f"Health check timed out after {self.platform_timeout_seconds}s",
                ErrorKind.PROBE_ERROR,
                self.clock(),
                connection,
            )
        except Exception as e:
            logger.error(
                "Platform health check failed",
                extra={"platform": platform.value, "error_type": type(e).__name__},
                exc_info=True,
            )
            return error_result(
                platform,
                f"Unexpected error: {type(e).__name__}",
                ErrorKind.UNEXPECTED,
                self.clock(),
                connection,
            )

    async def check_all_platforms_health(
        self,
        user: UserRecord,
        platforms: Optional[Sequence[Platform]] = None,
        deadline: Optional[float] = None,
    ) -> HealthReport:
        """
        Classify every requested platform (default: the supported set).

        Args:
            user: Resolved user
            platforms: Platforms to check (default SUPPORTED_PLATFORMS)
            deadline: Seconds for the whole operation; pending platforms are
                      cancelled and reported as ERROR when it passes

        Raises:
            StoreUnavailableError: If the user's store cannot be read
        """
        requested = list(dict.fromkeys(platforms or SUPPORTED_PLATFORMS))
        connections = self.store.get_connections(user)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        deadline = deadline if deadline is not None else self.default_deadline_seconds

        async def bounded(platform: Platform) -> HealthResult:
            async with semaphore:
                return await self._classify_isolated(platform, connections.get(platform))

        tasks = {platform: asyncio.ensure_future(bounded(platform)) for platform in requested}
        try:
            done, pending = await asyncio.wait(set(tasks.values()), timeout=deadline)
        finally:
            # Also runs when the caller cancels us; no platform task outlives the call
            unfinished = [task for task in tasks.values() if not task.done()]
            for task in unfinished:
                task.cancel()
            if unfinished:
                # Let cancellations settle before reading results
                await asyncio.gather(*unfinished, return_exceptions=True)

        checked_at = self.clock()
        results: Dict[Platform, HealthResult] = {}
        for platform, task in tasks.items():
            if task in done:
                results[platform] = task.result()
            else:
                results[platform] = error_result(
                    platform,
                    DEADLINE_EXCEEDED,
                    ErrorKind.PROBE_ERROR,
                    checked_at,
                    connections.get(platform),
                )

        partial = bool(pending)
        report = build_report(user, results, checked_at, partial=partial)

        logger.info(
            "Health check completed",
            extra={
                "user_id": user.identifier,
                "store": user.store.value,
                "overall_score": report.summary.overall_score,
                "overall_status": report.summary.overall_status,
                "connected_platforms": report.summary.connected_platforms,
                "partial": partial,
            },
        )
        return report

    async def compare_health_reports(self, user: UserRecord, previous: HealthReport) -> HealthComparison:
        """Run a fresh check and diff it against a previous report."""
        current = await self.check_all_platforms_health(user, platforms=list(previous.platforms) or None)
        return diff_health_reports(previous, current)
