"""
Connection health API schemas.

Response models mirror the engine's to_dict() payloads so routes can
build them with ``Model(**result.to_dict())``.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Users and connections
# =============================================================================

class UserResponse(BaseModel):
    """A user resolved from one store."""
    identifier: str
    store: str
    lookup_key: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    connected_platforms: List[str] = []


class ConnectionSummary(BaseModel):
    """Stored connection facts. Tokens are never returned."""
    platform: str
    connected: bool
    has_refresh_token: bool
    token_expiry: Optional[str] = None
    connected_at: Optional[str] = None
    last_validated: Optional[str] = None
    platform_metadata: Dict[str, Any] = {}


class UserConnectionsResponse(BaseModel):
    """Response for GET /api/connections/{identifier}."""
    user: UserResponse
    searched_stores: List[str]
    failed_stores: List[str]
    connections: Dict[str, ConnectionSummary]


class RemoveConnectionResponse(BaseModel):
    identifier: str
    platform: str
    removed: bool


# =============================================================================
# Health
# =============================================================================

class HealthResultResponse(BaseModel):
    """Classification of one platform."""
    platform: str
    status: str
    healthy: bool
    needs_refresh: bool
    can_refresh: bool
    token_details: Optional[Dict[str, Any]] = None
    platform_metadata: Dict[str, Any] = {}
    guidance: List[str] = []
    error: Optional[str] = None
    error_kind: Optional[str] = None
    checked_at: Optional[str] = None


class HealthSummaryResponse(BaseModel):
    total_platforms: int
    connected_platforms: int
    healthy_platforms: int
    needing_attention: int
    overall_score: int = Field(description="Health score from 0-100")
    overall_status: str


class ActionItemResponse(BaseModel):
    platform: str
    priority: str
    action: str
    description: str
    automated: bool


class RecommendationResponse(BaseModel):
    type: str
    platform: Optional[str] = None
    message: str
    severity: str
    action: str
    action_required: bool
    benefits: List[str] = []


class HealthReportResponse(BaseModel):
    """Health of every checked platform for one user."""
    identifier: str
    store: str
    summary: HealthSummaryResponse
    platforms: Dict[str, HealthResultResponse]
    action_items: List[ActionItemResponse]
    recommendations: List[RecommendationResponse]
    checked_at: str
    next_check_recommended: str
    partial: bool = False


# =============================================================================
# Refresh and repair
# =============================================================================

class RefreshResponse(BaseModel):
    platform: str
    refreshed: bool
    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    new_expiry: Optional[str] = None
    joined_in_flight: bool = False


class RepairRequest(BaseModel):
    """Optional body for POST /repair; omit platforms to repair every connected one."""
    platforms: Optional[List[str]] = None


class PlatformRepairResponse(BaseModel):
    platform: str
    attempted: bool
    success: bool
    action: str
    reason: str
    status_before: Optional[str] = None
    status_after: Optional[str] = None
    refresh: Optional[RefreshResponse] = None
    error: Optional[str] = None


class RepairSummaryResponse(BaseModel):
    attempted: int
    successful: int
    manual_required: int
    success_rate: int


class RepairReportResponse(BaseModel):
    identifier: str
    summary: RepairSummaryResponse
    results: Dict[str, PlatformRepairResponse]
    recommendations: List[RecommendationResponse]
    repaired_at: Optional[str] = None


# =============================================================================
# Migration and insights
# =============================================================================

class MigrationSummaryResponse(BaseModel):
    status: str
    message: str
    overall_score: int
    connected_platforms: int
    platforms_needing_migration: int
    migration_progress: int


class PlatformMigrationResponse(BaseModel):
    platform: str
    connected: bool
    has_refresh_token: bool
    needs_upgrade: bool
    is_legacy_connection: bool
    migration_score: int
    last_validated: Optional[str] = None
    connected_at: Optional[str] = None


class MigrationReportResponse(BaseModel):
    identifier: str
    migration_status: MigrationSummaryResponse
    platform_statuses: Dict[str, PlatformMigrationResponse]
    migration_needed: List[str]
    recommendations: List[RecommendationResponse]


class InsightsResponse(BaseModel):
    identifier: str
    connection_strength: Dict[str, Any]
    risk_assessment: List[Dict[str, Any]]
    optimization_suggestions: List[Dict[str, Any]]
    data_readiness: Dict[str, Any]
    maintenance_schedule: List[Dict[str, Any]]
    health_report: HealthReportResponse
    generated_at: str
