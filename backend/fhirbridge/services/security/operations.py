"""Rate-limited, validated and audited FHIR import/export entry points."""

import logging
from typing import Any

from fhirbridge.config import settings
from fhirbridge.errors import FhirBridgeError, RateLimitExceededError
from fhirbridge.mappers.from_fhir import FROM_FHIR, record_from_fhir
from fhirbridge.repositories.clinical import ClinicalRepository
from fhirbridge.schemas.bundle import BundleEntry, FhirBundle
from fhirbridge.schemas.results import ExportResult, ImportResult
from fhirbridge.schemas.security import ExportOptions, LimitType, PhiOperation, Severity
from fhirbridge.services.export import EXPORT_RESOURCE_TYPES, BundleExporter
from fhirbridge.services.security.audit import AuditLogger
from fhirbridge.services.security.rate_limit import RateLimiter
from fhirbridge.services.security.sanitizer import ErrorSanitizer
from fhirbridge.services.security.validator import FhirValidator

logger = logging.getLogger(__name__)


def _observation_resources(fhir_data: dict[str, Any]) -> list[Any]:
    """Observations may arrive as bare resources or wrapped in ``{"resource": ...}``."""
    observations = fhir_data.get("observations") or []
    if not isinstance(observations, list):
        return [observations]
    return [
        item.get("resource") if isinstance(item, dict) and "resource" in item else item
        for item in observations
    ]


class SecureFhirOperations:
    """Gateway wrapping FHIR import and export with security controls."""

    def __init__(
        self,
        repository: ClinicalRepository,
        exporter: BundleExporter,
        rate_limiter: RateLimiter,
        audit: AuditLogger,
    ):
        self.repository = repository
        self.exporter = exporter
        self.rate_limiter = rate_limiter
        self.audit = audit

    def validate_import(self, fhir_data: dict[str, Any]) -> list[str]:
        """Validate every sub-resource in an import payload.

        Returns:
            All validation errors (empty when the payload is acceptable).
        """
        errors: list[str] = []
        if "patient" in fhir_data:
            errors.extend(FhirValidator.validate_patient(fhir_data["patient"]).errors)

        for observation in _observation_resources(fhir_data):
            errors.extend(FhirValidator.validate_observation(observation).errors)

        if "bundle" in fhir_data:
            bundle_result = FhirValidator.validate_bundle(fhir_data["bundle"])
            errors.extend(bundle_result.errors)
            if bundle_result.is_valid:
                for entry in fhir_data["bundle"]["entry"]:
                    resource = entry["resource"]
                    if resource["resourceType"] == "Patient":
                        errors.extend(FhirValidator.validate_patient(resource).errors)
                    elif resource["resourceType"] == "Observation":
                        errors.extend(FhirValidator.validate_observation(resource).errors)
        return errors

    def _import_items(
        self, user_id: str, fhir_data: dict[str, Any], connection_id: str
    ) -> list[tuple[str, dict[str, Any]]]:
        """Map the importable clinical resources of a validated payload."""
        resources = list(_observation_resources(fhir_data))
        if "bundle" in fhir_data:
            resources.extend(
                entry["resource"]
                for entry in fhir_data["bundle"]["entry"]
                if entry["resource"]["resourceType"] in FROM_FHIR
            )
        return [
            record_from_fhir(FhirValidator.sanitize_input(resource), user_id, connection_id)
            for resource in resources
        ]

    async def import_fhir_data(
        self, user_id: str, fhir_data: dict[str, Any], connection_id: str
    ) -> ImportResult:
        """Validate and persist FHIR data for a patient, all or nothing.

        Args:
            user_id: Internal patient id the data belongs to.
            fhir_data: Payload with optional ``patient``, ``observations`` and ``bundle``.
            connection_id: Source connection recorded as ``sync_source``.

        Returns:
            ImportResult with every validation or persistence error.
        """
        try:
            await self.rate_limiter.enforce(
                LimitType.FHIR_SYNC,
                settings.rate_limit_threshold,
                settings.rate_limit_window_minutes,
                caller_id=user_id,
            )
        except RateLimitExceededError as e:
            return ImportResult(success=False, errors=[str(e)])

        errors = self.validate_import(fhir_data)
        if errors:
            await self.audit.log_fhir_operation(
                "FHIR_IMPORT",
                "Bundle",
                success=False,
                metadata={"connection_id": connection_id, "error_count": len(errors)},
            )
            return ImportResult(success=False, errors=errors)

        try:
            items = self._import_items(user_id, fhir_data, connection_id)
            stored = await self.repository.upsert_many(items) if items else []
        except (FhirBridgeError, ValueError) as e:
            logger.warning("FHIR import failed for connection %s", connection_id)
            await self.audit.log_fhir_operation(
                "FHIR_IMPORT",
                "Bundle",
                success=False,
                metadata={"connection_id": connection_id},
                error=e,
            )
            return ImportResult(success=False, errors=[ErrorSanitizer.sanitize(e)])

        await self.audit.log_phi_access(
            "Bundle",
            None,
            PhiOperation.WRITE,
            target_user_id=user_id,
            metadata={"connection_id": connection_id, "imported_count": len(stored)},
        )
        return ImportResult(success=True, imported_count=len(stored))

    async def export_fhir_data(
        self, user_id: str, options: ExportOptions | None = None
    ) -> ExportResult:
        """Export a patient's record (or every patient's) as a Bundle.

        Args:
            user_id: Requesting user, whose own record is exported by default.
            options: ``include_all_patients`` requests a mass export, which is
                always logged as a HIGH severity security event.

        Returns:
            ExportResult with the bundle JSON, or ``{}`` and a sanitized error.
        """
        options = options or ExportOptions()
        try:
            await self.rate_limiter.enforce(
                LimitType.FHIR_EXPORT,
                settings.export_rate_limit_threshold,
                settings.export_rate_limit_window_minutes,
                caller_id=user_id,
            )

            if options.include_all_patients:
                await self.audit.log_security_event(
                    "MASS_DATA_EXPORT",
                    Severity.HIGH,
                    "Export of all patient records requested",
                    metadata={"user_id": user_id},
                    requires_investigation=True,
                )
                patient_ids = await self.repository.patient_ids_with_records(EXPORT_RESOURCE_TYPES)
            else:
                patient_ids = [user_id]

            entries: list[BundleEntry] = []
            for patient_id in patient_ids:
                result = await self.exporter.export_patient_bundle(patient_id)
                if not result.success or result.bundle is None:
                    return ExportResult(error=result.error or "Export failed")
                entries.extend(result.bundle.entry)
        except (FhirBridgeError, ValueError) as e:
            await self.audit.log_error(e, {"operation": "FHIR_EXPORT"})
            return ExportResult(error=ErrorSanitizer.sanitize(e))

        await self.audit.log_phi_access(
            "Bundle",
            None,
            PhiOperation.EXPORT,
            target_user_id=None if options.include_all_patients else user_id,
            metadata={"entry_count": len(entries), "patient_count": len(patient_ids)},
        )
        return ExportResult(bundle=FhirBundle.of(entries).to_fhir())
