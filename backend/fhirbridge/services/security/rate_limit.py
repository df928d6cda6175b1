"""Fixed-window rate limiting backed by the security repository."""

import logging

from fhirbridge.errors import FhirBridgeError, RateLimitExceededError
from fhirbridge.repositories.security import SecurityRepository
from fhirbridge.schemas.security import LimitType, Severity
from fhirbridge.services.security.audit import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 100
DEFAULT_WINDOW_MINUTES = 60


class RateLimiter:
    """Checks and enforces per-type request limits.

    ``check`` fails open: if the counter store is unavailable the request is
    allowed and a warning is logged.
    """

    def __init__(self, repository: SecurityRepository, audit: AuditLogger):
        self.repository = repository
        self.audit = audit

    async def check(
        self,
        limit_type: LimitType | str,
        threshold: int = DEFAULT_THRESHOLD,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
        caller_id: str | None = None,
    ) -> bool:
        """Count this request and return whether it is within the limit."""
        limit = LimitType(limit_type).value
        try:
            return await self.repository.check_rate_limit(
                limit, threshold, window_minutes, caller_id=caller_id
            )
        except (FhirBridgeError, OSError, RuntimeError) as e:
            logger.warning("Rate limit check failed for %s, allowing request: %s", limit, e)
            return True

    async def enforce(
        self,
        limit_type: LimitType | str,
        threshold: int = DEFAULT_THRESHOLD,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
        caller_id: str | None = None,
    ) -> None:
        """Raise if the limit is exceeded, after logging a security event.

        Raises:
            RateLimitExceededError: When the caller is over the limit.
        """
        limit = LimitType(limit_type).value
        if await self.check(limit, threshold, window_minutes, caller_id=caller_id):
            return

        await self.audit.log_security_event(
            "RATE_LIMIT_EXCEEDED",
            Severity.MEDIUM,
            f"Rate limit exceeded for {limit}",
            metadata={
                "limit_type": limit,
                "threshold": threshold,
                "window_minutes": window_minutes,
            },
        )
        raise RateLimitExceededError(limit, threshold, window_minutes)
