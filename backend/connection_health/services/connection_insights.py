"""
Connection insights derived from a health report.

Pure functions over a HealthReport: connection strength, risks,
optimization suggestions, data readiness and an upcoming maintenance
schedule (connections expiring within 7 days).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List

from connection_health.models.platform_connection import Platform, ensure_utc
from connection_health.services.health_aggregator import HealthReport
from connection_health.services.token_classifier import HealthStatus

MAINTENANCE_WINDOW = timedelta(days=7)
MAINTENANCE_LEAD_TIME = timedelta(days=1)
MIN_DIVERSE_CONNECTIONS = 3
MIN_REFRESH_COVERAGE = 0.8


@dataclass
class ConnectionStrength:
    total_connected: int
    healthy_connections: int
    connections_with_refresh: int
    strength_score: int
    refresh_capability: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_connected": self.total_connected,
            "healthy_connections": self.healthy_connections,
            "connections_with_refresh": self.connections_with_refresh,
            "strength_score": self.strength_score,
            "refresh_capability": self.refresh_capability,
        }


@dataclass
class Risk:
    platform: Platform
    risk: str
    issue: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return {"platform": self.platform.value, "risk": self.risk, "issue": self.issue, "impact": self.impact}


@dataclass
class OptimizationSuggestion:
    type: str
    priority: str
    suggestion: str
    platforms: List[Platform] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "priority": self.priority,
            "suggestion": self.suggestion,
            "platforms": [p.value for p in self.platforms],
        }


@dataclass
class DataReadiness:
    ready: bool
    connected_platforms: int
    healthy_platforms: int
    readiness_score: int
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "connected_platforms": self.connected_platforms,
            "healthy_platforms": self.healthy_platforms,
            "readiness_score": self.readiness_score,
            "recommendations": list(self.recommendations),
        }


@dataclass
class MaintenanceTask:
    platform: Platform
    action: str
    scheduled_for: datetime
    priority: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "action": self.action,
            "scheduled_for": self.scheduled_for.isoformat(),
            "priority": self.priority,
        }


@dataclass
class ConnectionInsights:
    identifier: str
    strength: ConnectionStrength
    risks: List[Risk]
    optimization_suggestions: List[OptimizationSuggestion]
    readiness: DataReadiness
    maintenance_schedule: List[MaintenanceTask]
    health_report: HealthReport
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "connection_strength": self.strength.to_dict(),
            "risk_assessment": [r.to_dict() for r in self.risks],
            "optimization_suggestions": [s.to_dict() for s in self.optimization_suggestions],
            "data_readiness": self.readiness.to_dict(),
            "maintenance_schedule": [t.to_dict() for t in self.maintenance_schedule],
            "health_report": self.health_report.to_dict(),
            "generated_at": self.generated_at.isoformat(),
        }


def _percent(part: int, whole: int) -> int:
    return int(round(100.0 * part / whole)) if whole else 0


def assess_strength(report: HealthReport) -> ConnectionStrength:
    connected = [r for r in report.platforms.values() if r.connected]
    healthy = [r for r in connected if r.healthy]
    with_refresh = [r for r in connected if r.can_refresh]
    return ConnectionStrength(
        total_connected=len(connected),
        healthy_connections=len(healthy),
        connections_with_refresh=len(with_refresh),
        strength_score=_percent(len(healthy), len(connected)),
        refresh_capability=_percent(len(with_refresh), len(connected)),
    )


def assess_risks(report: HealthReport) -> List[Risk]:
    risks: List[Risk] = []
    for platform, result in report.platforms.items():
        if result.status == HealthStatus.EXPIRED_NO_REFRESH:
            risks.append(Risk(
                platform=platform,
                risk="high",
                issue="No refresh token available",
                impact="Connection will fail and require manual reconnection",
            ))
        elif result.status == HealthStatus.INVALID_TOKEN:
            risks.append(Risk(
                platform=platform,
                risk="medium",
                issue="Token validation failed",
                impact="Data collection may be interrupted",
            ))
    return risks


def suggest_optimizations(report: HealthReport) -> List[OptimizationSuggestion]:
    suggestions: List[OptimizationSuggestion] = []
    connected = [p for p, r in report.platforms.items() if r.connected]
    refreshable = [p for p, r in report.platforms.items() if r.can_refresh]

    if len(connected) < MIN_DIVERSE_CONNECTIONS:
        suggestions.append(OptimizationSuggestion(
            type="connection_diversity",
            priority="medium",
            suggestion="Connect more platforms for better data coverage",
            platforms=[p for p, r in report.platforms.items() if not r.connected],
        ))

    if len(refreshable) < len(connected) * MIN_REFRESH_COVERAGE:
        suggestions.append(OptimizationSuggestion(
            type="refresh_token_setup",
            priority="high",
            suggestion="Improve OAuth configuration to include refresh tokens",
            platforms=[p for p in connected if not report.platforms[p].can_refresh],
        ))
    return suggestions


def assess_readiness(report: HealthReport) -> DataReadiness:
    connected = [r for r in report.platforms.values() if r.connected]
    healthy = [r for r in connected if r.healthy]
    if healthy:
        recommendations = [
            "Data collection can proceed with current connections",
            "More platforms will improve data coverage",
        ]
    else:
        recommendations = [
            "At least one healthy platform connection is required",
            "Fix existing connections or add new ones",
        ]
    return DataReadiness(
        ready=len(healthy) >= 1,
        connected_platforms=len(connected),
        healthy_platforms=len(healthy),
        readiness_score=_percent(len(healthy), len(connected)),
        recommendations=recommendations,
    )


def build_maintenance_schedule(report: HealthReport, now: datetime) -> List[MaintenanceTask]:
    """Connections expiring within the window, scheduled one day ahead."""
    schedule: List[MaintenanceTask] = []
    for platform, result in report.platforms.items():
        details = result.token_details
        if details is None or details.token_expiry is None:
            continue
        expiry = ensure_utc(details.token_expiry)
        remaining = expiry - ensure_utc(now)
        if timedelta(0) < remaining < MAINTENANCE_WINDOW:
            schedule.append(MaintenanceTask(
                platform=platform,
                action="auto_refresh" if result.can_refresh else "manual_reconnect",
                scheduled_for=expiry - MAINTENANCE_LEAD_TIME,
                priority="low" if result.can_refresh else "high",
            ))
    return sorted(schedule, key=lambda task: task.scheduled_for)


def build_insights(report: HealthReport, now: datetime) -> ConnectionInsights:
    """Assemble every insight section from one health report."""
    return ConnectionInsights(
        identifier=report.identifier,
        strength=assess_strength(report),
        risks=assess_risks(report),
        optimization_suggestions=suggest_optimizations(report),
        readiness=assess_readiness(report),
        maintenance_schedule=build_maintenance_schedule(report, now),
        health_report=report,
        generated_at=now,
    )
