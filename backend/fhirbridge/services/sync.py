"""Pull clinical resources from an external FHIR server.

Each sync fetches one searchset for one resource type, maps every entry and
upserts it keyed on ``(resource_type, external_id)`` so re-running a sync
never duplicates records. Entries are independent: one malformed or failing
entry is reported in ``errors`` while the rest are still stored.

Self reports go the other way, turning patient-entered vitals into
Observation records.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from fhirbridge.config import settings
from fhirbridge.errors import FhirBridgeError, FhirFetchError
from fhirbridge.mappers.from_fhir import FROM_FHIR
from fhirbridge.mappers.self_report import self_report_to_observations
from fhirbridge.repositories.clinical import ClinicalRepository
from fhirbridge.schemas.results import (
    SelfReportBatchResult,
    SelfReportSyncResult,
    SyncResult,
    SyncSummary,
)
from fhirbridge.schemas.sync import SyncConnection
from fhirbridge.services.security.audit import AuditLogger
from fhirbridge.services.security.sanitizer import ErrorSanitizer

logger = logging.getLogger(__name__)

# Search filters sent with each type's fetch
STATUS_FILTERS: dict[str, dict[str, str]] = {
    "MedicationRequest": {"status": "active"},
    "Condition": {"clinical-status": "active"},
    "DiagnosticReport": {"status": "final"},
    "Procedure": {"status": "completed"},
}

# Types pulled by a full patient sync, in order, with their summary keys
PATIENT_SYNC_TYPES = (
    ("MedicationRequest", "medication_requests"),
    ("Condition", "conditions"),
    ("DiagnosticReport", "diagnostic_reports"),
    ("Procedure", "procedures"),
)

ENTRY_ERRORS = (FhirBridgeError, SQLAlchemyError, ValueError, KeyError, TypeError)


class FhirSyncEngine:
    """Synchronizes clinical resources between a FHIR server and local storage.

    Args:
        repository: Clinical repository used for upserts.
        http_client: Optional shared client; when omitted a client is created
            for each fetch and closed afterwards.
        audit: Optional audit logger; every sync call is recorded when set.
    """

    def __init__(
        self,
        repository: ClinicalRepository,
        http_client: httpx.AsyncClient | None = None,
        audit: AuditLogger | None = None,
    ):
        self.repository = repository
        self.http_client = http_client
        self.audit = audit

    # =========================================================================
    # External FHIR -> local
    # =========================================================================

    async def _fetch_entries(
        self, connection: SyncConnection, resource_type: str
    ) -> list[Any]:
        """Fetch a searchset for the connection's patient.

        Raises:
            FhirFetchError: On transport failure, timeout, non-2xx status or invalid JSON.
        """
        url = f"{connection.fhir_server_url.rstrip('/')}/{resource_type}"
        params = {"patient": connection.external_patient_id, **STATUS_FILTERS.get(resource_type, {})}
        headers = {
            "Authorization": f"Bearer {connection.access_token.get_secret_value()}",
            "Accept": "application/fhir+json",
        }
        try:
            if self.http_client is not None:
                response = await self.http_client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=settings.fhir_request_timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=settings.fhir_request_timeout_seconds) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException:
            raise FhirFetchError("FHIR server request timed out") from None
        except httpx.HTTPError as e:
            raise FhirFetchError(f"FHIR server request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise FhirFetchError(f"FHIR server returned {response.status_code}")
        try:
            bundle = response.json()
        except ValueError:
            raise FhirFetchError("FHIR server returned invalid JSON") from None

        entries = bundle.get("entry") if isinstance(bundle, Mapping) else None
        return entries if isinstance(entries, list) else []

    async def _sync_entry(
        self,
        semaphore: asyncio.Semaphore,
        connection: SyncConnection,
        resource_type: str,
        entry: Any,
    ) -> str | None:
        """Map and upsert one entry; returns an error string or None on success."""
        resource = entry.get("resource") if isinstance(entry, Mapping) else None
        external_id = resource.get("id") if isinstance(resource, Mapping) else None
        async with semaphore:
            try:
                record = FROM_FHIR[resource_type](
                    resource, connection.patient_id, connection.connection_id
                )
                # The upsert completes even if the caller is cancelled mid-sync
                await asyncio.shield(self.repository.upsert_by_external_id(resource_type, record))
            except ENTRY_ERRORS as e:
                return f"{resource_type} {external_id}: {ErrorSanitizer.sanitize(e)}"
        return None

    async def sync_resource_type(
        self, connection: SyncConnection, resource_type: str
    ) -> SyncResult:
        """Fetch, map and upsert one resource type for one patient.

        Args:
            connection: Patient's link to the external server.
            resource_type: One of the types in ``FROM_FHIR``.

        Returns:
            SyncResult with the count of stored entries and per-entry errors.
        """
        if resource_type not in FROM_FHIR:
            raise ValueError(f"Unsupported sync resource type: {resource_type}")

        try:
            entries = await self._fetch_entries(connection, resource_type)
        except FhirFetchError as e:
            logger.warning(
                "Fetch of %s for connection %s failed: %s",
                resource_type,
                connection.connection_id,
                e,
            )
            result = SyncResult(count=0, errors=[str(e)])
            await self._audit(connection, resource_type, result)
            return result

        semaphore = asyncio.Semaphore(settings.sync_entry_concurrency)
        outcomes = await asyncio.gather(
            *(self._sync_entry(semaphore, connection, resource_type, entry) for entry in entries)
        )
        errors = [outcome for outcome in outcomes if outcome is not None]
        result = SyncResult(count=len(entries) - len(errors), errors=errors)
        logger.info(
            "Synced %d/%d %s entries for connection %s",
            result.count,
            len(entries),
            resource_type,
            connection.connection_id,
        )
        await self._audit(connection, resource_type, result)
        return result

    async def sync_medication_requests(self, connection: SyncConnection) -> SyncResult:
        return await self.sync_resource_type(connection, "MedicationRequest")

    async def sync_conditions(self, connection: SyncConnection) -> SyncResult:
        return await self.sync_resource_type(connection, "Condition")

    async def sync_diagnostic_reports(self, connection: SyncConnection) -> SyncResult:
        return await self.sync_resource_type(connection, "DiagnosticReport")

    async def sync_procedures(self, connection: SyncConnection) -> SyncResult:
        return await self.sync_resource_type(connection, "Procedure")

    async def sync_all_new_resources_for_patient(self, connection: SyncConnection) -> SyncSummary:
        """Sync every supported type sequentially.

        A type whose sync fails unexpectedly contributes its error and a
        zero count; the remaining types still run.
        """
        summary: dict[str, int] = {}
        errors: list[str] = []
        for resource_type, key in PATIENT_SYNC_TYPES:
            try:
                result = await self.sync_resource_type(connection, resource_type)
            except ENTRY_ERRORS as e:
                message = ErrorSanitizer.sanitize(e)
                logger.warning("Sync of %s failed unexpectedly: %s", resource_type, message)
                result = SyncResult(count=0, errors=[f"{resource_type}: {message}"])
            summary[key] = result.count
            errors.extend(result.errors)
        return SyncSummary(
            success=not errors,
            count=sum(summary.values()),
            summary=summary,
            errors=errors,
        )

    async def _audit(
        self, connection: SyncConnection, resource_type: str, result: SyncResult
    ) -> None:
        if self.audit is None:
            return
        await self.audit.log_fhir_operation(
            "FHIR_SYNC",
            resource_type,
            success=result.success,
            metadata={
                "connection_id": connection.connection_id,
                "patient_id": connection.patient_id,
                "count": result.count,
                "error_count": len(result.errors),
            },
        )

    # =========================================================================
    # Self reports -> Observations
    # =========================================================================

    async def _sync_report(self, report: Mapping[str, Any]) -> list[str]:
        observations = self_report_to_observations(report)
        stored = await asyncio.shield(
            self.repository.record_self_report_observations(str(report["id"]), observations)
        )
        return [str(observation["id"]) for observation in stored]

    async def sync_self_report_to_fhir(self, report_id: str) -> SelfReportSyncResult:
        """Convert one self report's vitals into Observation records.

        Re-syncing a report updates the same Observations.
        """
        try:
            report = await self.repository.get_self_report(report_id)
            if report is None:
                return SelfReportSyncResult(success=False, error="Self report not found")
            observation_ids = await self._sync_report(report)
        except ENTRY_ERRORS as e:
            message = ErrorSanitizer.sanitize(e)
            logger.warning("Self report %s sync failed: %s", report_id, message)
            return SelfReportSyncResult(success=False, error=message)
        return SelfReportSyncResult(success=True, observation_ids=observation_ids)

    async def sync_all_self_reports_to_fhir(self) -> SelfReportBatchResult:
        """Sync up to ``SELF_REPORT_BATCH_SIZE`` unsynced reports, oldest first."""
        try:
            reports = await self.repository.list_unsynced_self_reports(
                settings.self_report_batch_size
            )
        except ENTRY_ERRORS as e:
            return SelfReportBatchResult(success=False, error=ErrorSanitizer.sanitize(e))

        synced = failed = 0
        for report in reports:
            try:
                await self._sync_report(report)
                synced += 1
            except ENTRY_ERRORS as e:
                logger.warning(
                    "Self report %s sync failed: %s", report.get("id"), ErrorSanitizer.sanitize(e)
                )
                failed += 1
        logger.info("Self report batch: %d synced, %d failed", synced, failed)
        return SelfReportBatchResult(success=failed == 0, synced_count=synced, error_count=failed)
