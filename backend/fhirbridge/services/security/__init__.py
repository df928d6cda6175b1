"""Security gateway: validation, sanitization, audit logging and rate limiting."""

from fhirbridge.services.security.audit import AuditLogger
from fhirbridge.services.security.rate_limit import RateLimiter
from fhirbridge.services.security.sanitizer import ErrorSanitizer
from fhirbridge.services.security.validator import FhirValidator

__all__ = [
    "AuditLogger",
    "ErrorSanitizer",
    "FhirValidator",
    "RateLimiter",
]
