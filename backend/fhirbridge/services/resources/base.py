"""Shared machinery for the per-type resource services.

Service methods are written in the raising style: they return plain data
and let repository or domain errors propagate. ``result_boundary`` wraps each
public method so callers always receive a ``ServiceResult`` instead.
"""

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar

from sqlalchemy.exc import SQLAlchemyError

from fhirbridge.errors import ClinicalSafetyError, FhirBridgeError, ImmutableResourceError
from fhirbridge.registry import DeletePolicy, ResourceDefinition, ResourceRegistry
from fhirbridge.repositories.clinical import ClinicalRepository, ResourceQuery
from fhirbridge.schemas.results import ServiceResult
from fhirbridge.services.security.sanitizer import ErrorSanitizer

logger = logging.getLogger(__name__)


Record = dict[str, Any]


def result_boundary(
    action: str,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[ServiceResult]]]:
    """Convert a raising service method into one returning ``ServiceResult``.

    Clinical safety refusals keep their message verbatim and attach the
    structured alert. Other domain, database and value errors become a
    sanitized failure. Anything else is a bug and propagates.
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[ServiceResult]]:
        @functools.wraps(func)
        async def wrapper(self: "ResourceService", *args: Any, **kwargs: Any) -> ServiceResult:
            try:
                return ServiceResult.ok(await func(self, *args, **kwargs))
            except ClinicalSafetyError as e:
                logger.info("%s %s refused by safety check", action, self.resource_type)
                return ServiceResult.fail(str(e), alert=e.alert())
            except (FhirBridgeError, SQLAlchemyError, ValueError) as e:
                message = ErrorSanitizer.sanitize(e)
                logger.warning("Failed to %s %s: %s", action, self.definition.label, message)
                return ServiceResult.fail(message)

        return wrapper

    return decorator


def days_ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResourceService:
    """CRUD and common queries for one resource type.

    Subclasses set ``resource_type`` and add their type-specific queries;
    ordering, active states and delete policy come from the registry.
    """

    resource_type: ClassVar[str]

    def __init__(self, repository: ClinicalRepository):
        self.repository = repository
        self.definition: ResourceDefinition = ResourceRegistry.get(self.resource_type)

    async def _find(self, **filters: Any) -> list[Record]:
        return await self.repository.find(ResourceQuery(resource_type=self.resource_type, **filters))

    async def _first(self, **filters: Any) -> Record | None:
        records = await self._find(limit=1, **filters)
        return records[0] if records else None

    async def before_create(self, record: Record) -> Record:
        """Hook for pre-conditions and defaults; may raise to refuse creation."""
        return record

    def soft_delete_changes(self) -> dict[str, Any]:
        """Extra body fields written by a soft delete."""
        return {}

    def to_fhir(self, record: Mapping[str, Any]) -> dict[str, Any]:
        return self.definition.to_fhir(record)

    @result_boundary("fetch")
    async def get_by_patient(self, patient_id: str) -> list[Record]:
        """All records for a patient, newest first."""
        return await self._find(patient_id=patient_id)

    @result_boundary("fetch")
    async def get_active(self, patient_id: str) -> list[Record]:
        """Records for a patient in a currently relevant state."""
        return await self._find(patient_id=patient_id, statuses=self.definition.active_statuses)

    @result_boundary("fetch")
    async def get_by_id(self, resource_id: str) -> Record | None:
        """One record by internal id; ``data`` is None when it does not exist."""
        return await self.repository.get_by_id(self.resource_type, resource_id)

    @result_boundary("create")
    async def create(self, data: Mapping[str, Any]) -> Record:
        record = self.definition.normalize(dict(data))
        if self.definition.patient_scoped and not record.get("patient_id"):
            raise ValueError("patient_id is required")
        record = await self.before_create(record)
        return await self.repository.insert(self.resource_type, record)

    @result_boundary("update")
    async def update(self, resource_id: str, changes: Mapping[str, Any]) -> Record:
        return await self.repository.update(self.resource_type, resource_id, changes)

    @result_boundary("delete")
    async def delete(self, resource_id: str) -> None:
        policy = self.definition.delete_policy
        if policy is DeletePolicy.NEVER:
            raise ImmutableResourceError(self.resource_type)
        if policy is DeletePolicy.SOFT:
            await self.repository.soft_delete(
                self.resource_type, resource_id, self.soft_delete_changes()
            )
        else:
            await self.repository.delete(self.resource_type, resource_id)
