"""HIPAA audit logging.

Every write to the audit sinks goes through ``AuditLogger._record``, the one
place where sink failures are absorbed: an audit outage is logged locally and
never fails the clinical operation that triggered it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fhirbridge.errors import FhirBridgeError
from fhirbridge.repositories.security import SecurityRepository
from fhirbridge.schemas.security import AuditEntry, PhiOperation, SecurityEventEntry, Severity
from fhirbridge.services.security.sanitizer import ErrorSanitizer

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes audit and security events to the security repository."""

    def __init__(self, repository: SecurityRepository):
        self.repository = repository

    async def _record(self, description: str, write: Callable[[], Awaitable[None]]) -> None:
        """Run a sink write, shielded from cancellation, swallowing sink failures."""
        try:
            await asyncio.shield(write())
        except (FhirBridgeError, OSError, RuntimeError) as e:
            logger.warning("Audit sink failed for %s: %s", description, ErrorSanitizer.sanitize(e))

    async def log(self, entry: AuditEntry) -> None:
        """Append an audit entry; the error message is sanitized first."""
        payload = entry.model_dump()
        if entry.error_message:
            payload["error_message"] = ErrorSanitizer.sanitize(entry.error_message)
        await self._record(entry.event_type, lambda: self.repository.log_audit_event(payload))

    async def log_phi_access(
        self,
        resource_type: str,
        resource_id: str | None,
        operation: PhiOperation | str,
        target_user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record access to protected health information."""
        op = operation.value if isinstance(operation, PhiOperation) else str(operation)
        await self.log(
            AuditEntry(
                event_type=f"PHI_{op}",
                event_category="PHI_ACCESS",
                resource_type=resource_type,
                resource_id=resource_id,
                target_user_id=target_user_id,
                operation=op,
                metadata=metadata or {},
            )
        )

    async def log_fhir_operation(
        self,
        operation: str,
        resource_type: str,
        success: bool,
        metadata: dict[str, Any] | None = None,
        error: Any = None,
    ) -> None:
        """Record a FHIR sync/import/export operation."""
        await self.log(
            AuditEntry(
                event_type=operation,
                event_category="FHIR_SYNC",
                resource_type=resource_type,
                operation=operation,
                metadata=metadata or {},
                success=success,
                error_message=ErrorSanitizer.sanitize(error) if error is not None else None,
            )
        )

    async def log_security_event(
        self,
        event_type: str,
        severity: Severity,
        description: str,
        metadata: dict[str, Any] | None = None,
        requires_investigation: bool = False,
    ) -> None:
        entry = SecurityEventEntry(
            event_type=event_type,
            severity=severity,
            description=description,
            metadata=metadata or {},
            requires_investigation=requires_investigation,
        )
        payload = entry.model_dump(mode="json")
        await self._record(event_type, lambda: self.repository.log_security_event(payload))

    async def log_error(self, error: Any, context: dict[str, Any] | None = None) -> None:
        """Record an unexpected error as a MEDIUM ``SYSTEM_ERROR`` security event."""
        await self.log_security_event(
            "SYSTEM_ERROR",
            Severity.MEDIUM,
            ErrorSanitizer.sanitize(error),
            metadata={"error_type": type(error).__name__, **(context or {})},
        )
