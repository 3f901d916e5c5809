"""
Connection health API routes.

Provides:
- GET    /api/connections/{identifier}                   - Resolve user, list connections
- GET    /api/connections/{identifier}/health            - Health of every supported platform
- GET    /api/connections/{identifier}/health/{platform} - Health of one platform
- POST   /api/connections/{identifier}/refresh/{platform} - Refresh if needed
- POST   /api/connections/{identifier}/repair            - Repair connections
- GET    /api/connections/{identifier}/migration-status  - Migration report
- GET    /api/connections/{identifier}/insights          - Connection insights
- DELETE /api/connections/{identifier}/{platform}        - Disconnect a platform

Routes only delegate to ConnectionHealthEngine. Authentication and rate
limiting are applied by the hosting application.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from connection_health.api.schemas.connections import (
    ConnectionSummary,
    HealthReportResponse,
    HealthResultResponse,
    InsightsResponse,
    MigrationReportResponse,
    RefreshResponse,
    RemoveConnectionResponse,
    RepairReportResponse,
    RepairRequest,
    UserConnectionsResponse,
    UserResponse,
)
from connection_health.errors import (
    ConnectionHealthError,
    PlatformUnsupportedError,
    StoreUnavailableError,
    UserNotFoundError,
)
from connection_health.models.platform_connection import Platform, PlatformConnection, StoreKind, UserRecord
from connection_health.services.connection_engine import (
    ConnectionHealthEngine,
    build_engine_from_env,
    parse_platform,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/connections", tags=["connections"])


# =============================================================================
# Dependencies
# =============================================================================

_engine: Optional[ConnectionHealthEngine] = None


def get_connection_engine() -> ConnectionHealthEngine:
    """Get (or lazily build) the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = build_engine_from_env()
    return _engine


async def close_connection_engine() -> None:
    """Close and drop the cached engine, if one was built."""
    global _engine
    if _engine is not None:
        await _engine.close()
    _engine = None


# =============================================================================
# Helper Functions
# =============================================================================

_ERROR_STATUS = {
    UserNotFoundError: status.HTTP_404_NOT_FOUND,
    PlatformUnsupportedError: status.HTTP_400_BAD_REQUEST,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _to_http_error(error: ConnectionHealthError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=error.to_dict())


def _resolve(
    engine: ConnectionHealthEngine,
    identifier: str,
    preferred_store: Optional[StoreKind],
) -> UserRecord:
    try:
        return engine.require_user(identifier, preferred_store=preferred_store)
    except ConnectionHealthError as e:
        raise _to_http_error(e)


def _platform(value: str) -> Platform:
    try:
        return parse_platform(value)
    except PlatformUnsupportedError as e:
        raise _to_http_error(e)


def _connection_summary(connection: PlatformConnection) -> ConnectionSummary:
    return ConnectionSummary(
        platform=connection.platform.value,
        connected=connection.is_connected,
        has_refresh_token=connection.has_refresh_token,
        token_expiry=connection.token_expiry.isoformat() if connection.token_expiry else None,
        connected_at=connection.connected_at.isoformat() if connection.connected_at else None,
        last_validated=connection.last_validated.isoformat() if connection.last_validated else None,
        platform_metadata=dict(connection.platform_metadata),
    )


# =============================================================================
# Routes
# =============================================================================

@router.get(
    "/{identifier}",
    response_model=UserConnectionsResponse,
)
async def get_user_connections(
    identifier: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """
    Resolve a user by id, username or email and list stored connections.

    Token values are never returned.
    """
    try:
        lookup = engine.resolve_user(identifier, preferred_store=preferred_store)
        if lookup.user is None:
            raise UserNotFoundError(identifier)
        connections = engine.get_connections(lookup.user)
    except ConnectionHealthError as e:
        raise _to_http_error(e)

    return UserConnectionsResponse(
        user=UserResponse(**lookup.user.to_dict()),
        searched_stores=[s.value for s in lookup.searched_stores],
        failed_stores=[s.value for s in lookup.failed_stores],
        connections={p.value: _connection_summary(c) for p, c in connections.items()},
    )


@router.get(
    "/{identifier}/health",
    response_model=HealthReportResponse,
)
async def get_all_health(
    identifier: str,
    preferred_store: Optional[StoreKind] = Query(None),
    deadline: Optional[float] = Query(None, gt=0, description="Seconds for the whole check"),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Check health of every supported platform for a user."""
    user = _resolve(engine, identifier, preferred_store)
    try:
        report = await engine.check_all_health(user, deadline=deadline)
    except ConnectionHealthError as e:
        raise _to_http_error(e)
    return HealthReportResponse(**report.to_dict())


@router.get(
    "/{identifier}/health/{platform}",
    response_model=HealthResultResponse,
)
async def get_platform_health(
    identifier: str,
    platform: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Check health of one platform for a user."""
    target = _platform(platform)
    user = _resolve(engine, identifier, preferred_store)
    try:
        result = await engine.check_health(user, target)
    except ConnectionHealthError as e:
        raise _to_http_error(e)
    return HealthResultResponse(**result.to_dict())


@router.post(
    "/{identifier}/refresh/{platform}",
    response_model=RefreshResponse,
)
async def refresh_platform(
    identifier: str,
    platform: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Refresh one platform's access token if it needs it."""
    target = _platform(platform)
    user = _resolve(engine, identifier, preferred_store)
    try:
        result = await engine.refresh_if_needed(user, target)
    except ConnectionHealthError as e:
        raise _to_http_error(e)

    logger.info(
        "Refresh requested",
        extra={
            "user_id": user.identifier,
            "platform": target.value,
            "refreshed": result.refreshed,
            "success": result.success,
        },
    )
    return RefreshResponse(**result.to_dict())


@router.post(
    "/{identifier}/repair",
    response_model=RepairReportResponse,
)
async def repair_connections(
    identifier: str,
    body: Optional[RepairRequest] = Body(None),
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Repair the requested platforms (default: every connected platform)."""
    platforms: Optional[List[Platform]] = None
    if body is not None and body.platforms:
        platforms = [_platform(p) for p in body.platforms]
    user = _resolve(engine, identifier, preferred_store)
    try:
        report = await engine.repair_connections(user, platforms=platforms)
    except ConnectionHealthError as e:
        raise _to_http_error(e)
    return RepairReportResponse(**report.to_dict())


@router.get(
    "/{identifier}/migration-status",
    response_model=MigrationReportResponse,
)
async def get_migration_status(
    identifier: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Report which connections lack refresh tokens or are stale."""
    user = _resolve(engine, identifier, preferred_store)
    try:
        report = engine.migration_status(user)
    except ConnectionHealthError as e:
        raise _to_http_error(e)
    return MigrationReportResponse(**report.to_dict())


@router.get(
    "/{identifier}/insights",
    response_model=InsightsResponse,
)
async def get_connection_insights(
    identifier: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Connection strength, risks, suggestions and maintenance schedule."""
    user = _resolve(engine, identifier, preferred_store)
    try:
        insights = await engine.connection_insights(user)
    except ConnectionHealthError as e:
        raise _to_http_error(e)
    return InsightsResponse(**insights.to_dict())


@router.delete(
    "/{identifier}/{platform}",
    response_model=RemoveConnectionResponse,
)
async def remove_connection(
    identifier: str,
    platform: str,
    preferred_store: Optional[StoreKind] = Query(None),
    engine: ConnectionHealthEngine = Depends(get_connection_engine),
):
    """Disconnect a platform: unset every stored field for it."""
    target = _platform(platform)
    user = _resolve(engine, identifier, preferred_store)
    removed = engine.remove_connection(user, target)
    if not removed:
        logger.warning(
            "Connection removal not confirmed",
            extra={"user_id": user.identifier, "platform": target.value, "store": user.store.value},
        )
    return RemoveConnectionResponse(identifier=user.identifier, platform=target.value, removed=removed)
