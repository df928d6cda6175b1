"""FHIR API routes: export, import, sync and encounter views."""

import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from fhirbridge.auth import verify_api_key
from fhirbridge.dependencies import (
    get_bundle_exporter,
    get_encounter_bundle_service,
    get_secure_operations,
    get_sync_engine,
)
from fhirbridge.schemas.bundle import BundleEntry, FhirBundle
from fhirbridge.schemas.encounter import EncounterSearchParams
from fhirbridge.schemas.results import (
    ImportResult,
    NdjsonExportResult,
    SelfReportBatchResult,
    SyncSummary,
)
from fhirbridge.schemas.security import ExportOptions
from fhirbridge.schemas.sync import SyncConnection
from fhirbridge.services.export import BundleExporter, EncounterBundleService
from fhirbridge.services.security.operations import SecureFhirOperations
from fhirbridge.services.sync import FhirSyncEngine

router = APIRouter(prefix="/fhir", tags=["fhir"])

_RATE_LIMIT_PREFIX = "Rate limit exceeded"


class ImportRequest(BaseModel):
    """FHIR data to import for one patient."""

    connection_id: str
    data: dict[str, Any]


def _failure_status(error: str | None, default: int) -> int:
    if error and error.startswith(_RATE_LIMIT_PREFIX):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return default


@router.get("/patients/{patient_id}/export")
async def export_patient(
    patient_id: str,
    include_all_patients: bool = False,
    operations: SecureFhirOperations = Depends(get_secure_operations),
    _api_key: str = Depends(verify_api_key),
) -> dict[str, Any]:
    """Export a patient's clinical record as a FHIR collection Bundle.

    Raises:
        HTTPException: 429 when rate limited, 500 when the export failed.
    """
    result = await operations.export_fhir_data(
        patient_id, ExportOptions(include_all_patients=include_all_patients)
    )
    if result.error:
        raise HTTPException(
            status_code=_failure_status(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=result.error,
        )
    return result.bundle


@router.get("/patients/{patient_id}/ndjson", response_model=None)
async def export_patient_ndjson(
    patient_id: str,
    resource_type: str | None = None,
    exporter: BundleExporter = Depends(get_bundle_exporter),
    _api_key: str = Depends(verify_api_key),
) -> NdjsonExportResult | PlainTextResponse:
    """Export a patient's record as NDJSON grouped by resource type.

    With ``resource_type`` the single NDJSON document is returned as
    ``application/fhir+ndjson``.
    """
    result = await exporter.export_patient_ndjson(patient_id)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=result.error or "Export failed",
        )
    if resource_type is None:
        return result
    return PlainTextResponse(
        (result.resources or {}).get(resource_type, ""),
        media_type="application/fhir+ndjson",
    )


@router.post("/patients/{patient_id}/import", response_model=ImportResult)
async def import_patient_data(
    patient_id: str,
    request: ImportRequest,
    operations: SecureFhirOperations = Depends(get_secure_operations),
    _api_key: str = Depends(verify_api_key),
) -> ImportResult:
    """Validate and store FHIR data for a patient (all or nothing).

    Raises:
        HTTPException: 429 when rate limited, 400 with every error otherwise.
    """
    result = await operations.import_fhir_data(patient_id, request.data, request.connection_id)
    if not result.success:
        first_error = result.errors[0] if result.errors else None
        raise HTTPException(
            status_code=_failure_status(first_error, status.HTTP_400_BAD_REQUEST),
            detail={"errors": result.errors},
        )
    return result


@router.post("/sync", response_model=SyncSummary)
async def sync_patient(
    connection: SyncConnection,
    engine: FhirSyncEngine = Depends(get_sync_engine),
    _api_key: str = Depends(verify_api_key),
) -> SyncSummary:
    """Pull medication requests, conditions, reports and procedures from a FHIR server."""
    return await engine.sync_all_new_resources_for_patient(connection)


@router.post("/self-reports/sync", response_model=SelfReportBatchResult)
async def sync_self_reports(
    engine: FhirSyncEngine = Depends(get_sync_engine),
    _api_key: str = Depends(verify_api_key),
) -> SelfReportBatchResult:
    return await engine.sync_all_self_reports_to_fhir()


@router.get("/encounters/{encounter_id}/bundle")
async def get_encounter_bundle(
    encounter_id: str,
    service: EncounterBundleService = Depends(get_encounter_bundle_service),
    _api_key: str = Depends(verify_api_key),
) -> dict[str, Any]:
    """An encounter with its diagnoses and procedures as a searchset Bundle.

    Raises:
        HTTPException: 404 if the encounter or its details could not be loaded.
    """
    bundle = await service.get_encounter_bundle(encounter_id)
    if bundle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Encounter not found",
        )
    return bundle.to_fhir()


@router.get("/Encounter")
async def search_encounters(
    patient: str | None = None,
    date: datetime.date | None = None,
    date_from: datetime.date | None = None,
    date_to: datetime.date | None = None,
    encounter_status: str | None = Query(default=None, alias="status"),
    encounter_class: str | None = Query(default=None, alias="class"),
    service: EncounterBundleService = Depends(get_encounter_bundle_service),
    _api_key: str = Depends(verify_api_key),
) -> dict[str, Any]:
    """FHIR-style encounter search returning a searchset Bundle."""
    params = EncounterSearchParams(
        patient=patient,
        date=date,
        date_from=date_from,
        date_to=date_to,
        status=encounter_status,
        encounter_class=encounter_class,
    )
    encounters = await service.search_encounters(params)
    entries = [
        BundleEntry(full_url=f"urn:uuid:{encounter.get('id')}", resource=encounter)
        for encounter in encounters
    ]
    return FhirBundle.of(entries, bundle_type="searchset").to_fhir()
