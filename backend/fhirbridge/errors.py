"""Exception hierarchy for the FHIR bridge.

Repositories and mappers raise these; the service result boundary turns them
into failure results and the security gateway sanitizes their messages before
they leave the process.
"""

from typing import Any


class FhirBridgeError(Exception):
    """Base class for all domain errors."""


class PersistenceError(FhirBridgeError):
    """A database operation failed.

    Attributes:
        code: SQLSTATE (or driver error code) of the underlying failure, if known.
    """

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class ResourceNotFoundError(FhirBridgeError, LookupError):
    """Raised when a write targets a record that does not exist."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id


class MappingError(FhirBridgeError, ValueError):
    """Raised when an external FHIR resource cannot be mapped to a record."""


class FhirFetchError(FhirBridgeError):
    """Raised when a remote FHIR server cannot be queried."""


class RateLimitExceededError(FhirBridgeError):
    """Raised when a caller exceeds a rate limit window."""

    def __init__(self, limit_type: str, threshold: int, window_minutes: int):
        super().__init__(
            f"Rate limit exceeded. Maximum {threshold} requests per {window_minutes} minutes."
        )
        self.limit_type = limit_type
        self.threshold = threshold
        self.window_minutes = window_minutes


class ClinicalSafetyError(FhirBridgeError):
    """A clinical safety rule refused an operation.

    The message is shown to clinicians verbatim and is never sanitized.
    """

    def alert(self) -> dict[str, Any]:
        return {"message": str(self)}


class AllergyConflictError(ClinicalSafetyError):
    """A medication order matches an active allergy on file."""

    def __init__(
        self,
        allergen_name: str,
        criticality: str | None = None,
        reaction: str | None = None,
    ):
        self.allergen_name = allergen_name
        self.criticality = criticality
        self.reaction = reaction
        super().__init__(
            f"ALLERGY ALERT: Patient is allergic to {allergen_name}. "
            f"Severity: {criticality or 'Unknown'}. {reaction or ''}".rstrip()
        )

    def alert(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "allergen_name": self.allergen_name,
            "criticality": self.criticality,
            "reaction": self.reaction,
        }


class ImmutableResourceError(FhirBridgeError):
    """Raised when deleting a resource type that is never deleted (e.g. Provenance)."""

    def __init__(self, resource_type: str):
        super().__init__(f"{resource_type} records cannot be deleted")
        self.resource_type = resource_type
