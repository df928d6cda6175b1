"""Repository layer for database operations."""

from fhirbridge.repositories.clinical import ClinicalRepository, ResourceQuery
from fhirbridge.repositories.security import SecurityRepository

__all__ = ["ClinicalRepository", "ResourceQuery", "SecurityRepository"]
