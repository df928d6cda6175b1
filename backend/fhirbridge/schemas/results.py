"""Result models returned by services, sync and export operations."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

from fhirbridge.schemas.bundle import FhirBundle

T = TypeVar("T")


class ServiceResult(BaseModel, Generic[T]):
    """Uniform outcome of a resource service call.

    ``alert`` carries structured detail when a clinical safety rule refused
    the operation (e.g. an allergy conflict); ``error`` then holds the
    clinician-facing message verbatim.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    alert: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, alert: dict[str, Any] | None = None) -> "ServiceResult":
        return cls(success=False, error=error, alert=alert)


class SyncResult(BaseModel):
    """Outcome of syncing one resource type for one patient."""

    success: bool = True
    count: int = 0
    errors: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _success_reflects_errors(self) -> "SyncResult":
        self.success = not self.errors
        return self


class SyncSummary(BaseModel):
    """Outcome of syncing every supported type for one patient."""

    success: bool
    count: int
    summary: dict[str, int]
    errors: list[str] = Field(default_factory=list)


class SelfReportSyncResult(BaseModel):
    success: bool
    observation_ids: list[str] = Field(default_factory=list)
    error: str | None = None


class SelfReportBatchResult(BaseModel):
    success: bool
    synced_count: int = 0
    error_count: int = 0
    error: str | None = None


class BundleExportResult(BaseModel):
    success: bool
    bundle: FhirBundle | None = None
    error: str | None = None


class NdjsonExportResult(BaseModel):
    success: bool
    resources: dict[str, str] | None = None
    error: str | None = None


class ImportResult(BaseModel):
    success: bool
    errors: list[str] = Field(default_factory=list)
    imported_count: int = 0


class ExportResult(BaseModel):
    """Gateway export outcome: a bundle (empty on failure) and an optional error."""

    bundle: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
