"""Bundle and NDJSON export.

``BundleExporter`` builds a patient's clinical record as a FHIR collection
Bundle (or NDJSON grouped by type) from six concurrent reads that succeed or
fail as one unit. ``EncounterBundleService`` exposes encounters as FHIR,
including a searchset bundle scoped to one encounter.
"""

import asyncio
import datetime
import json
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from fhirbridge.errors import FhirBridgeError
from fhirbridge.mappers.encounter import encounter_to_fhir
from fhirbridge.registry import to_fhir
from fhirbridge.repositories.clinical import ClinicalRepository, ResourceQuery
from fhirbridge.schemas.bundle import BundleEntry, FhirBundle
from fhirbridge.schemas.encounter import EncounterSearchParams
from fhirbridge.schemas.results import BundleExportResult, NdjsonExportResult
from fhirbridge.services.security.sanitizer import ErrorSanitizer

logger = logging.getLogger(__name__)

EXPORT_RESOURCE_TYPES = (
    "Observation",
    "Condition",
    "MedicationRequest",
    "Procedure",
    "CarePlan",
    "Immunization",
)

# Failures that end an export cleanly; anything else is a bug and propagates
EXPORT_ERRORS = (FhirBridgeError, SQLAlchemyError, ValueError)


def bundle_entry(resource_type: str, record: Mapping[str, Any]) -> BundleEntry:
    """Serialize a record into a Bundle entry keyed by its internal id."""
    resource = to_fhir(resource_type, record)
    return BundleEntry(full_url=f"urn:uuid:{record.get('id')}", resource=resource)


def _raise_unexpected(results: list[Any]) -> BaseException | None:
    """Return the first expected failure in a gather result, re-raising bugs."""
    first = None
    for result in results:
        if isinstance(result, BaseException):
            if not isinstance(result, EXPORT_ERRORS):
                raise result
            first = first or result
    return first


class BundleExporter:
    """Exports a patient's clinical data as a FHIR Bundle or NDJSON."""

    def __init__(self, repository: ClinicalRepository):
        self.repository = repository

    async def export_patient_bundle(self, patient_id: str) -> BundleExportResult:
        """Export every exportable resource for a patient as one collection Bundle.

        Args:
            patient_id: Internal patient UUID.

        Returns:
            BundleExportResult with the bundle, or a sanitized error when any
            of the reads failed.
        """
        results = await asyncio.gather(
            *(
                self.repository.find(ResourceQuery(resource_type=t, patient_id=patient_id))
                for t in EXPORT_RESOURCE_TYPES
            ),
            return_exceptions=True,
        )
        failure = _raise_unexpected(results)
        if failure is not None:
            message = ErrorSanitizer.sanitize(failure)
            logger.warning("Bundle export failed for patient %s: %s", patient_id, message)
            return BundleExportResult(success=False, error=message)

        entries = [
            bundle_entry(resource_type, record)
            for resource_type, records in zip(EXPORT_RESOURCE_TYPES, results)
            for record in records
        ]
        logger.info("Exported %d resources for patient %s", len(entries), patient_id)
        return BundleExportResult(success=True, bundle=FhirBundle.of(entries))

    async def export_patient_ndjson(self, patient_id: str) -> NdjsonExportResult:
        """Export a patient's resources as NDJSON, one document per resource type."""
        result = await self.export_patient_bundle(patient_id)
        if not result.success or result.bundle is None:
            return NdjsonExportResult(success=False, error=result.error)

        grouped: dict[str, list[str]] = {}
        for entry in result.bundle.entry:
            resource_type = entry.resource.get("resourceType")
            if resource_type:
                grouped.setdefault(resource_type, []).append(
                    json.dumps(entry.resource, separators=(",", ":"))
                )
        return NdjsonExportResult(
            success=True,
            resources={resource_type: "\n".join(lines) for resource_type, lines in grouped.items()},
        )


def _day_bounds(
    date_from: datetime.date | None, date_to: datetime.date | None
) -> tuple[datetime.datetime | None, datetime.datetime | None]:
    """Inclusive UTC bounds covering whole days."""
    since = (
        datetime.datetime.combine(date_from, datetime.time.min, tzinfo=datetime.timezone.utc)
        if date_from
        else None
    )
    until = (
        datetime.datetime.combine(date_to, datetime.time.max, tzinfo=datetime.timezone.utc)
        if date_to
        else None
    )
    return since, until


class EncounterBundleService:
    """Encounters as FHIR resources.

    Reads degrade instead of failing: a missing encounter or a failed read
    yields ``None`` (or an empty list for searches) and is logged.
    """

    def __init__(self, repository: ClinicalRepository):
        self.repository = repository

    async def get_fhir_encounter(self, encounter_id: str) -> dict[str, Any] | None:
        try:
            record = await self.repository.get_by_id("Encounter", encounter_id)
        except EXPORT_ERRORS as e:
            logger.warning("Failed to load encounter %s: %s", encounter_id, ErrorSanitizer.sanitize(e))
            return None
        return encounter_to_fhir(record) if record else None

    async def get_patient_encounters(self, patient_id: str) -> list[dict[str, Any]]:
        try:
            records = await self.repository.find(
                ResourceQuery(resource_type="Encounter", patient_id=patient_id)
            )
        except EXPORT_ERRORS as e:
            logger.warning(
                "Failed to load encounters for patient %s: %s",
                patient_id,
                ErrorSanitizer.sanitize(e),
            )
            return []
        return [encounter_to_fhir(record) for record in records]

    async def search_encounters(self, params: EncounterSearchParams) -> list[dict[str, Any]]:
        """Search encounters FHIR-style.

        ``date`` searches a single day. The class filter is applied to the
        mapped resources, so encounters without a stored class match the
        default ambulatory class.
        """
        date_from = params.date or params.date_from
        date_to = params.date or params.date_to
        since, until = _day_bounds(date_from, date_to)
        try:
            records = await self.repository.find(
                ResourceQuery(
                    resource_type="Encounter",
                    patient_id=params.patient,
                    statuses=[params.status] if params.status else None,
                    since=since,
                    until=until,
                )
            )
        except EXPORT_ERRORS as e:
            logger.warning("Encounter search failed: %s", ErrorSanitizer.sanitize(e))
            return []

        encounters = [encounter_to_fhir(record) for record in records]
        if params.encounter_class:
            wanted = params.encounter_class.upper()
            encounters = [e for e in encounters if e["class"]["code"] == wanted]
        return encounters

    async def get_encounter_bundle(self, encounter_id: str) -> FhirBundle | None:
        """A searchset Bundle of one encounter with its diagnoses and procedures.

        Diagnoses are the Condition records linked to the encounter and
        procedures the linked Procedure records; ``total`` counts all three.

        Returns:
            The bundle, or None when the encounter is missing or a later read failed.
        """
        try:
            encounter = await self.repository.get_by_id("Encounter", encounter_id)
        except EXPORT_ERRORS as e:
            logger.warning("Failed to load encounter %s: %s", encounter_id, ErrorSanitizer.sanitize(e))
            return None
        if encounter is None:
            return None

        try:
            diagnoses, procedures = await asyncio.gather(
                self.repository.find(
                    ResourceQuery(resource_type="Condition", encounter_id=encounter_id)
                ),
                self.repository.find(
                    ResourceQuery(resource_type="Procedure", encounter_id=encounter_id)
                ),
            )
        except EXPORT_ERRORS as e:
            logger.warning(
                "Failed to load details for encounter %s: %s",
                encounter_id,
                ErrorSanitizer.sanitize(e),
            )
            return None

        entries = [bundle_entry("Encounter", encounter)]
        entries.extend(bundle_entry("Condition", record) for record in diagnoses)
        entries.extend(bundle_entry("Procedure", record) for record in procedures)
        return FhirBundle.of(entries, bundle_type="searchset")
