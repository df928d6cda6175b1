"""Resource registry.

Maps resource types to their indexing, ordering, lifecycle and serialization
rules. All built-in definitions are registered on import.
"""

from typing import Any

from fhirbridge.registry.definition import DeletePolicy, ResourceDefinition, ResourceRegistry
from fhirbridge.registry.resources import DEFINITIONS, register_all

register_all()


def to_fhir(resource_type: str, record: Any) -> dict[str, Any]:
    """Serialize a record of any registered type.

    Raises:
        KeyError: If the type is not registered.
    """
    return ResourceRegistry.get(resource_type).to_fhir(record)


__all__ = [
    "DEFINITIONS",
    "DeletePolicy",
    "ResourceDefinition",
    "ResourceRegistry",
    "register_all",
    "to_fhir",
]
