"""Security repository: rate-limit counters and audit sinks."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fhirbridge.errors import PersistenceError
from fhirbridge.models.security import AuditEvent, RateLimitCounter, SecurityEvent


def window_start(now: datetime, window_minutes: int) -> datetime:
    """Start of the fixed window containing ``now``."""
    window_seconds = max(window_minutes, 1) * 60
    epoch = int(now.timestamp())
    return datetime.fromtimestamp(epoch - epoch % window_seconds, tz=timezone.utc)


class SecurityRepository:
    """Persistence for the security gateway.

    The audit tables are write-only from this package's point of view.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize repository with a session factory.

        Args:
            session_factory: Factory producing async SQLAlchemy sessions.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except (SQLAlchemyError, OSError) as exc:
                await db.rollback()
                raise PersistenceError(str(getattr(exc, "orig", None) or exc)) from exc

    async def check_rate_limit(
        self,
        limit_type: str,
        threshold: int,
        window_minutes: int,
        caller_id: str | None = None,
    ) -> bool:
        """Count one request and report whether it is within the limit.

        The increment is a single atomic upsert on the window's counter row,
        so concurrent callers cannot both slip under the threshold.

        Args:
            limit_type: Limit bucket (e.g. 'FHIR_EXPORT').
            threshold: Maximum requests per window.
            window_minutes: Window length.
            caller_id: Optional caller the limit applies to.

        Returns:
            True if this request is allowed.
        """
        stmt = (
            pg_insert(RateLimitCounter)
            .values(
                id=uuid.uuid4(),
                limit_type=limit_type,
                caller_id=caller_id or "",
                window_start=window_start(datetime.now(timezone.utc), window_minutes),
                count=1,
            )
            .on_conflict_do_update(
                constraint="uq_rate_limit_window",
                set_={"count": RateLimitCounter.count + 1},
            )
            .returning(RateLimitCounter.count)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.scalar_one() <= threshold

    async def log_audit_event(self, event: dict[str, Any]) -> None:
        """Append an audit event.

        Args:
            event: Audit fields (event_type, event_category, resource_type,
                resource_id, actor_id, target_user_id, operation, metadata,
                success, error_message).
        """
        row = AuditEvent(
            event_type=event["event_type"],
            event_category=event["event_category"],
            resource_type=event.get("resource_type"),
            resource_id=event.get("resource_id"),
            actor_id=event.get("actor_id"),
            target_user_id=event.get("target_user_id"),
            operation=event.get("operation"),
            metadata_=event.get("metadata") or {},
            success=event.get("success", True),
            error_message=event.get("error_message"),
        )
        async with self._session() as db:
            db.add(row)

    async def log_security_event(self, event: dict[str, Any]) -> None:
        """Append a security event.

        Args:
            event: Event fields (event_type, severity, description, metadata,
                requires_investigation).
        """
        row = SecurityEvent(
            event_type=event["event_type"],
            severity=event["severity"],
            description=event["description"],
            metadata_=event.get("metadata") or {},
            requires_investigation=event.get("requires_investigation", False),
        )
        async with self._session() as db:
            db.add(row)
