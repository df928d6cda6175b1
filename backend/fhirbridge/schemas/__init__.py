"""Pydantic schemas for API requests and responses."""

from fhirbridge.schemas.bundle import BundleEntry, FhirBundle
from fhirbridge.schemas.encounter import EncounterSearchParams
from fhirbridge.schemas.results import (
    BundleExportResult,
    ExportResult,
    ImportResult,
    NdjsonExportResult,
    SelfReportBatchResult,
    SelfReportSyncResult,
    ServiceResult,
    SyncResult,
    SyncSummary,
)
from fhirbridge.schemas.security import (
    AuditEntry,
    ExportOptions,
    LimitType,
    PhiOperation,
    SafeError,
    SecurityEventEntry,
    Severity,
    ValidationResult,
)
from fhirbridge.schemas.sync import SyncConnection

__all__ = [
    "AuditEntry",
    "BundleEntry",
    "BundleExportResult",
    "EncounterSearchParams",
    "ExportOptions",
    "ExportResult",
    "FhirBundle",
    "ImportResult",
    "LimitType",
    "NdjsonExportResult",
    "PhiOperation",
    "SafeError",
    "SecurityEventEntry",
    "SelfReportBatchResult",
    "SelfReportSyncResult",
    "ServiceResult",
    "Severity",
    "SyncConnection",
    "SyncResult",
    "SyncSummary",
    "ValidationResult",
]
