"""Pydantic schemas for the security gateway."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class LimitType(str, Enum):
    """Rate limit buckets."""

    FHIR_SYNC = "FHIR_SYNC"
    FHIR_EXPORT = "FHIR_EXPORT"
    API_CALL = "API_CALL"
    DATA_QUERY = "DATA_QUERY"


class PhiOperation(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    EXPORT = "EXPORT"


class AuditEntry(BaseModel):
    """One audit trail record."""

    event_type: str
    event_category: str
    resource_type: str | None = None
    resource_id: str | None = None
    actor_id: str | None = None
    target_user_id: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: str | None = None


class SecurityEventEntry(BaseModel):
    event_type: str
    severity: Severity
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    requires_investigation: bool = False


class SafeError(BaseModel):
    """Error payload safe to show a user."""

    message: str
    code: str = "UNKNOWN_ERROR"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    sanitized_input: Any = None


class ExportOptions(BaseModel):
    include_all_patients: bool = False
