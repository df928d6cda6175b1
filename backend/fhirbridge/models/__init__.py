"""SQLAlchemy models."""

from fhirbridge.models.clinical import ClinicalResourceRow, SelfReport
from fhirbridge.models.security import AuditEvent, RateLimitCounter, SecurityEvent

__all__ = [
    "AuditEvent",
    "ClinicalResourceRow",
    "RateLimitCounter",
    "SecurityEvent",
    "SelfReport",
]
