"""
Token lifecycle classifier.

Decides, for one user/platform connection, whether the stored access
token works, and if not, whether it can be refreshed:

    no access token                          -> NOT_CONNECTED (no probe)
    probe valid                              -> HEALTHY
    probe invalid, expired, refresh token    -> EXPIRED_REFRESHABLE
    probe invalid, expired, no refresh token -> EXPIRED_NO_REFRESH
    probe invalid, not expired               -> INVALID_TOKEN (revoked externally)
    probe raised / timed out / no provider   -> ERROR

"Expired" means now >= token_expiry - buffer (5 minutes by default);
a missing expiry counts as expired.

Usage:
    classifier = TokenLifecycleClassifier(registry)
    result = await classifier.classify(Platform.YOUTUBE, connection)
    if result.needs_refresh and result.can_refresh:
        ...
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from connection_health.config.settings import (
    DEFAULT_EXPIRY_BUFFER_MINUTES,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
)
from connection_health.errors import ErrorKind, ProbeError
from connection_health.integrations.providers.models import ProbeResult
from connection_health.integrations.providers.registry import PlatformRegistry
from connection_health.models.platform_connection import (
    Clock,
    Platform,
    PlatformConnection,
    ensure_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Derived connection status. Never stored."""
    NOT_CONNECTED = "not_connected"
    HEALTHY = "healthy"
    EXPIRED_REFRESHABLE = "expired_refreshable"
    EXPIRED_NO_REFRESH = "expired_no_refresh"
    INVALID_TOKEN = "invalid_token"
    ERROR = "error"


def guidance_for(status: HealthStatus, platform: Platform) -> List[str]:
    """Human-readable next steps for a status."""
    name = platform.value
    guidance = {
        HealthStatus.HEALTHY: [
            "Connection is working properly",
            "No action required",
        ],
        HealthStatus.EXPIRED_REFRESHABLE: [
            "Token will be automatically refreshed",
            "Monitor for successful refresh",
        ],
        HealthStatus.EXPIRED_NO_REFRESH: [
            f"User needs to reconnect {name} account",
            "Use proper OAuth flow with offline access",
            "Ensure refresh token is properly configured",
        ],
        HealthStatus.INVALID_TOKEN: [
            "Token may have been revoked by user",
            f"User needs to reconnect {name} account",
            "Check API permissions and scopes",
        ],
        HealthStatus.NOT_CONNECTED: [
            f"User needs to connect {name} account",
            "Guide user through connection process",
        ],
        HealthStatus.ERROR: [
            f"Check {name} API configuration",
            "Review error logs for specific issues",
            "Contact support if problem persists",
        ],
    }
    return list(guidance.get(status, ["Manual intervention required"]))


@dataclass
class ExpiryCountdown:
    """Time remaining until a token's nominal expiry."""
    expired: bool
    seconds: int = 0
    minutes: int = 0
    hours: int = 0
    human_readable: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": self.expired,
            "seconds": self.seconds,
            "minutes": self.minutes,
            "hours": self.hours,
            "human_readable": self.human_readable,
        }


def time_until_expiry(expiry: Optional[datetime], now: datetime) -> ExpiryCountdown:
    """Countdown to the nominal expiry (no buffer applied)."""
    if expiry is None:
        return ExpiryCountdown(expired=True)

    remaining = (ensure_utc(expiry) - ensure_utc(now)).total_seconds()
    if remaining <= 0:
        return ExpiryCountdown(expired=True)

    seconds = int(remaining)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        human = f"{hours}h {minutes % 60}m"
    else:
        human = f"{minutes}m {seconds % 60}s"
    return ExpiryCountdown(
        expired=False,
        seconds=seconds,
        minutes=minutes,
        hours=hours,
        human_readable=human,
    )


def is_token_expired(
    expiry: Optional[datetime],
    now: datetime,
    buffer_minutes: int = DEFAULT_EXPIRY_BUFFER_MINUTES,
) -> bool:
    """True if now is within buffer_minutes of expiry (or past it). Missing expiry is expired."""
    if expiry is None:
        return True
    return ensure_utc(now) >= ensure_utc(expiry) - timedelta(minutes=buffer_minutes)


@dataclass
class TokenDetails:
    """Facts the classification was derived from. Never contains tokens."""
    has_access_token: bool
    has_refresh_token: bool
    is_expired: bool
    token_expiry: Optional[datetime] = None
    probe_valid: Optional[bool] = None
    probe_reason: Optional[str] = None
    probe_status_code: Optional[int] = None
    time_until_expiry: Optional[ExpiryCountdown] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_access_token": self.has_access_token,
            "has_refresh_token": self.has_refresh_token,
            "is_expired": self.is_expired,
            "token_expiry": self.token_expiry.isoformat() if self.token_expiry else None,
            "probe_valid": self.probe_valid,
            "probe_reason": self.probe_reason,
            "probe_status_code": self.probe_status_code,
            "time_until_expiry": self.time_until_expiry.to_dict() if self.time_until_expiry else None,
        }


@dataclass
class HealthResult:
    """Classification of one user/platform connection."""
    platform: Platform
    status: HealthStatus
    needs_refresh: bool = False
    can_refresh: bool = False
    token_details: Optional[TokenDetails] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)
    guidance: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    checked_at: Optional[datetime] = None

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def connected(self) -> bool:
        return self.status != HealthStatus.NOT_CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "status": self.status.value,
            "healthy": self.healthy,
            "needs_refresh": self.needs_refresh,
            "can_refresh": self.can_refresh,
            "token_details": self.token_details.to_dict() if self.token_details else None,
            "platform_metadata": dict(self.platform_metadata),
            "guidance": list(self.guidance),
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


def error_result(
    platform: Platform,
    message: str,
    kind: ErrorKind,
    now: datetime,
    connection: Optional[PlatformConnection] = None,
) -> HealthResult:
    """Build an ERROR classification (probe failure, timeout, missing provider)."""
    has_refresh = bool(connection and connection.has_refresh_token)
    return HealthResult(
        platform=platform,
        status=HealthStatus.ERROR,
        needs_refresh=False,
        can_refresh=has_refresh,
        platform_metadata=dict(connection.platform_metadata) if connection else {},
        guidance=guidance_for(HealthStatus.ERROR, platform),
        error=message,
        error_kind=kind,
        checked_at=now,
    )


class TokenLifecycleClassifier:
    """
    Classifies connections by probing the provider.

    The classifier is stateless apart from its collaborators; it never
    writes to a store.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        clock: Clock = utc_now,
        expiry_buffer_minutes: int = DEFAULT_EXPIRY_BUFFER_MINUTES,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ):
        """
        Initialize classifier.

        Args:
            registry: Platform probe/refresh registry
            clock: Injectable UTC clock
            expiry_buffer_minutes: Safety buffer before nominal expiry
            probe_timeout_seconds: Upper bound for one probe call
        """
        self.registry = registry
        self.clock = clock
        self.expiry_buffer_minutes = expiry_buffer_minutes
        self.probe_timeout_seconds = probe_timeout_seconds

    async def classify(
        self,
        platform: Platform,
        connection: Optional[PlatformConnection],
    ) -> HealthResult:
        """
        Classify one connection.

        Never raises for provider problems: probe exceptions and timeouts
        become an ERROR result.
        """
        now = self.clock()

        if connection is None or not connection.is_connected:
            return HealthResult(
                platform=platform,
                status=HealthStatus.NOT_CONNECTED,
                needs_refresh=False,
                can_refresh=False,
                token_details=TokenDetails(
                    has_access_token=False,
                    has_refresh_token=bool(connection and connection.has_refresh_token),
                    is_expired=True,
                ),
                guidance=guidance_for(HealthStatus.NOT_CONNECTED, platform),
                error_kind=ErrorKind.NOT_CONNECTED,
                checked_at=now,
            )

        provider = self.registry.get(platform)
        if provider is None:
            logger.warning(
                "No provider registered for platform",
                extra={"platform": platform.value},
            )
            return error_result(
                platform,
                f"Platform not supported: {platform.value}",
                ErrorKind.PLATFORM_UNSUPPORTED,
                now,
                connection,
            )

        expired = is_token_expired(connection.token_expiry, now, self.expiry_buffer_minutes)
        has_refresh = connection.has_refresh_token

        try:
            probe: ProbeResult = await asyncio.wait_for(
                provider.probe(connection.access_token),
                timeout=self.probe_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Probe timed out",
                extra={"platform": platform.value, "timeout_seconds": self.probe_timeout_seconds},
            )
            return error_result(
                platform,
                f"Probe timed out after {self.probe_timeout_seconds}s",
                ErrorKind.PROBE_ERROR,
                now,
                connection,
            )
        except ProbeError as e:
            return error_result(platform, e.message, ErrorKind.PROBE_ERROR, now, connection)
        except Exception as e:
            logger.error(
                "Probe raised unexpectedly",
                extra={"platform": platform.value, "error_type": type(e).__name__},
                exc_info=True,
            )
            return error_result(
                platform,
                f"Probe failed: {type(e).__name__}",
                ErrorKind.UNEXPECTED,
                now,
                connection,
            )

        details = TokenDetails(
            has_access_token=True,
            has_refresh_token=has_refresh,
            is_expired=expired,
            token_expiry=connection.token_expiry,
            probe_valid=probe.valid,
            probe_reason=probe.reason,
            probe_status_code=probe.status_code,
            time_until_expiry=time_until_expiry(connection.token_expiry, now),
        )

        if probe.valid:
            status, needs_refresh, can_refresh = HealthStatus.HEALTHY, False, has_refresh
        elif expired and has_refresh:
            status, needs_refresh, can_refresh = HealthStatus.EXPIRED_REFRESHABLE, True, True
        elif expired:
            status, needs_refresh, can_refresh = HealthStatus.EXPIRED_NO_REFRESH, True, False
        else:
            status, needs_refresh, can_refresh = HealthStatus.INVALID_TOKEN, True, has_refresh

        logger.debug(
            "Connection classified",
            extra={"platform": platform.value, "status": status.value},
        )

        return HealthResult(
            platform=platform,
            status=status,
            needs_refresh=needs_refresh,
            can_refresh=can_refresh,
            token_details=details,
            platform_metadata=dict(connection.platform_metadata),
            guidance=guidance_for(status, platform),
            error=None if probe.valid else probe.reason,
            checked_at=now,
        )
