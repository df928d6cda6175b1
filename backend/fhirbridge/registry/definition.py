"""Resource definitions and the registry that holds them.

A definition tells the repository how to index a resource type (which record
fields become query columns) and tells the services how to order, filter,
normalize, serialize and delete it. The record body stays the source of
truth; the columns are re-derived from it on every write.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fhirbridge.mappers.helpers import as_list, parse_timestamp, text_or_none


class DeletePolicy(str, Enum):
    """How ``delete`` behaves for a resource type."""

    HARD = "hard"
    SOFT = "soft"
    NEVER = "never"


@dataclass(frozen=True)
class ResourceDefinition:
    """Configuration for one persisted resource type.

    Args:
        resource_type: FHIR resource type (e.g. 'Condition').
        label: Plural human label used in failure messages.
        serializer: Record -> FHIR resource function.
        recency_field: Record field that orders results newest-first.
        status_field: Record field holding the lifecycle status.
        code_field: Record field indexed as the primary code.
        category_field: Record field indexed as the primary category.
        practitioner_field: Record field indexed as the practitioner reference.
        period_end_field: Record field indexed as the end of an active window.
        active_statuses: Statuses that count as "currently relevant".
        delete_policy: Hard, soft or never.
        patient_scoped: Whether records belong to a patient.
        normalizer: Optional record normalizer applied before persisting.
    """

    resource_type: str
    label: str
    serializer: Callable[[Any], dict[str, Any]]
    recency_field: str | None = None
    status_field: str | None = "status"
    code_field: str | None = "code"
    category_field: str | None = None
    practitioner_field: str | None = None
    period_end_field: str | None = None
    active_statuses: tuple[str, ...] = ()
    delete_policy: DeletePolicy = DeletePolicy.HARD
    patient_scoped: bool = True
    normalizer: Callable[[dict[str, Any]], dict[str, Any]] | None = None

    def normalize(self, record: dict[str, Any]) -> dict[str, Any]:
        return self.normalizer(record) if self.normalizer else dict(record)

    def to_fhir(self, record: Any) -> dict[str, Any]:
        return self.serializer(record)

    def extract_columns(self, record: dict[str, Any]) -> dict[str, Any]:
        """Derive the indexed columns from a record body.

        Args:
            record: Persisted record (already normalized).

        Returns:
            Dictionary mapping column names to values.
        """
        category = as_list(record.get(self.category_field)) if self.category_field else []
        active = record.get("active")
        return {
            "status": text_or_none(record.get(self.status_field)) if self.status_field else None,
            "code": text_or_none(record.get(self.code_field)) if self.code_field else None,
            "category": text_or_none(category[0]) if category else None,
            "effective_at": parse_timestamp(record.get(self.recency_field))
            if self.recency_field
            else None,
            "ends_at": parse_timestamp(record.get(self.period_end_field))
            if self.period_end_field
            else None,
            "encounter_id": text_or_none(record.get("encounter_id")),
            "practitioner_id": text_or_none(record.get(self.practitioner_field))
            if self.practitioner_field
            else None,
            "active": active if isinstance(active, bool) else True,
        }


# Module-level storage (not class-level to avoid shared mutable state)
_definitions: dict[str, ResourceDefinition] = {}


class ResourceRegistry:
    """Registry of resource definitions by resource type."""

    @classmethod
    def register(cls, definition: ResourceDefinition) -> None:
        _definitions[definition.resource_type] = definition

    @classmethod
    def get(cls, resource_type: str) -> ResourceDefinition:
        """Get the definition for a resource type.

        Raises:
            KeyError: If the type is not registered.
        """
        try:
            return _definitions[resource_type]
        except KeyError:
            raise KeyError(f"Unknown resource type: {resource_type}") from None

    @classmethod
    def has(cls, resource_type: str) -> bool:
        return resource_type in _definitions

    @classmethod
    def all_definitions(cls) -> dict[str, ResourceDefinition]:
        return _definitions.copy()

    @classmethod
    def _clear_for_testing(cls) -> None:
        """Clear all registered definitions. Internal use in tests only."""
        _definitions.clear()
