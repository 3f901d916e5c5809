"""
Migration analyzer.

Scores each connected platform on how future-proof its credential is:

    no refresh token                          -> 25  (needs upgrade)
    last_validated missing or > 30 days old   -> 50  (legacy)
    otherwise                                 -> 100

The report status is "needed" if any platform lacks a refresh token,
"recommended" if the mean score is below 75, else "completed".
No provider calls are made.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from connection_health.config.settings import DEFAULT_STALE_VALIDATION_DAYS
from connection_health.models.platform_connection import (
    Platform,
    PlatformConnection,
    UserRecord,
    ensure_utc,
)
from connection_health.services.health_aggregator import Recommendation

logger = logging.getLogger(__name__)

SCORE_NO_REFRESH_TOKEN = 25
SCORE_LEGACY = 50
SCORE_CURRENT = 100
RECOMMENDED_BELOW = 75


@dataclass
class PlatformMigrationStatus:
    platform: Platform
    has_refresh_token: bool
    needs_upgrade: bool
    is_legacy_connection: bool
    migration_score: int
    last_validated: Optional[datetime] = None
    connected_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "connected": True,
            "has_refresh_token": self.has_refresh_token,
            "needs_upgrade": self.needs_upgrade,
            "is_legacy_connection": self.is_legacy_connection,
            "migration_score": self.migration_score,
            "last_validated": self.last_validated.isoformat() if self.last_validated else None,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
        }


@dataclass
class MigrationReport:
    identifier: str
    status: str
    message: str
    overall_score: int
    connected_platforms: int
    migration_progress: int
    platform_statuses: Dict[Platform, PlatformMigrationStatus] = field(default_factory=dict)
    migration_needed: List[Platform] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "migration_status": {
                "status": self.status,
                "message": self.message,
                "overall_score": self.overall_score,
                "connected_platforms": self.connected_platforms,
                "platforms_needing_migration": len(self.migration_needed),
                "migration_progress": self.migration_progress,
            },
            "platform_statuses": {p.value: s.to_dict() for p, s in self.platform_statuses.items()},
            "migration_needed": [p.value for p in self.migration_needed],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


def score_connection(
    connection: PlatformConnection,
    now: datetime,
    stale_after_days: int = DEFAULT_STALE_VALIDATION_DAYS,
) -> PlatformMigrationStatus:
    needs_upgrade = not connection.has_refresh_token
    last_validated = ensure_utc(connection.last_validated)
    is_legacy = last_validated is None or (ensure_utc(now) - last_validated) > timedelta(days=stale_after_days)

    if needs_upgrade:
        score = SCORE_NO_REFRESH_TOKEN
    elif is_legacy:
        score = SCORE_LEGACY
    else:
        score = SCORE_CURRENT

    return PlatformMigrationStatus(
        platform=connection.platform,
        has_refresh_token=connection.has_refresh_token,
        needs_upgrade=needs_upgrade,
        is_legacy_connection=is_legacy,
        migration_score=score,
        last_validated=last_validated,
        connected_at=ensure_utc(connection.connected_at),
    )


def analyze_migration(
    user: UserRecord,
    connections: Dict[Platform, PlatformConnection],
    now: datetime,
    stale_after_days: int = DEFAULT_STALE_VALIDATION_DAYS,
) -> MigrationReport:
    """Build a MigrationReport from the user's current connections."""
    statuses: Dict[Platform, PlatformMigrationStatus] = {}
    needed: List[Platform] = []
    recommendations: List[Recommendation] = []

    for platform, connection in connections.items():
        if not connection.is_connected:
            continue
        status = score_connection(connection, now, stale_after_days)
        statuses[platform] = status

        if status.needs_upgrade:
            needed.append(platform)
            recommendations.append(Recommendation(
                type="refresh_token_upgrade",
                platform=platform,
                message=f"{platform.value} connection needs upgrade to include refresh token",
                severity="warning",
                action="upgrade_connection",
                action_required=False,
                benefits=[
                    "Automatic token refresh",
                    "Reduced connection failures",
                    "Better user experience",
                ],
            ))
        if status.is_legacy_connection:
            recommendations.append(Recommendation(
                type="legacy_connection",
                platform=platform,
                message=f"{platform.value} connection is legacy and should be refreshed",
                severity="info",
                action="refresh_connection",
                action_required=False,
            ))

    connected = len(statuses)
    if connected:
        overall = int(round(sum(s.migration_score for s in statuses.values()) / connected))
        progress = int(round(100.0 * (connected - len(needed)) / connected))
    else:
        overall = SCORE_CURRENT
        progress = 100

    if needed:
        status_text, message = "needed", f"{len(needed)} platforms need migration"
    elif overall < RECOMMENDED_BELOW:
        status_text, message = "recommended", "Some connections could benefit from refresh"
    else:
        status_text, message = "completed", "All connections are up to date"

    logger.info(
        "Migration status computed",
        extra={
            "user_id": user.identifier,
            "migration_status": status_text,
            "overall_score": overall,
            "platforms_needing_migration": len(needed),
        },
    )
    return MigrationReport(
        identifier=user.identifier,
        status=status_text,
        message=message,
        overall_score=overall,
        connected_platforms=connected,
        migration_progress=progress,
        platform_statuses=statuses,
        migration_needed=needed,
        recommendations=recommendations,
    )
