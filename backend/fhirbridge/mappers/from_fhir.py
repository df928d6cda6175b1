"""External FHIR resource -> persisted record.

Used by the sync engine and by FHIR imports. Each mapper fills the documented
safe defaults for fields a remote server may omit and stamps the sync envelope
(``external_id``, ``sync_source``, ``last_synced_at``). A resource without an
``id`` cannot be upserted idempotently and is rejected with ``MappingError``.
"""

from collections.abc import Callable, Mapping
from typing import Any

from fhirbridge.errors import MappingError
from fhirbridge.mappers.constants import (
    DEFAULT_CONDITION_CATEGORY,
    DEFAULT_DIAGNOSTIC_REPORT_CATEGORY,
    SYSTEM_CVX,
    SYSTEM_LOINC,
    SYSTEM_SNOMED,
)
from fhirbridge.mappers.helpers import (
    extract_first_coding,
    extract_first_concept,
    extract_reference_id,
    text_or_none,
    utc_now_iso,
)
from fhirbridge.mappers.normalize import normalize_condition, normalize_diagnostic_report

Mapper = Callable[[Mapping[str, Any], str, str | None], dict[str, Any]]


def _envelope(
    resource: Any, expected_type: str, patient_id: str, sync_source: str | None
) -> dict[str, Any]:
    """Validate the entry and build the shared sync fields."""
    if not isinstance(resource, Mapping):
        raise MappingError(f"Entry is not a {expected_type} resource")
    resource_type = resource.get("resourceType")
    if resource_type is not None and resource_type != expected_type:
        raise MappingError(f"Expected {expected_type}, got {resource_type}")
    external_id = text_or_none(resource.get("id"))
    if external_id is None:
        raise MappingError(f"{expected_type} has no id")
    return {
        "patient_id": patient_id,
        "external_id": external_id,
        "sync_source": sync_source,
        "last_synced_at": utc_now_iso(),
    }


def _reference_id(resource: Mapping[str, Any], key: str) -> str | None:
    value = resource.get(key)
    return extract_reference_id(value.get("reference")) if isinstance(value, Mapping) else None


def _concept_parts(concept: Any, default_system: str, default_display: str) -> tuple[str, str, str]:
    """(system, code, display) of a CodeableConcept with fallbacks."""
    first = extract_first_coding(concept)
    text = concept.get("text") if isinstance(concept, Mapping) else None
    return (
        text_or_none(first.get("system")) or default_system,
        text_or_none(first.get("code")) or "",
        text_or_none(first.get("display")) or text_or_none(text) or default_display,
    )


def medication_request_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "MedicationRequest", patient_id, sync_source)
    medication = resource.get("medicationCodeableConcept")
    first = extract_first_coding(medication)
    dosage = resource.get("dosageInstruction")
    first_dosage = extract_first_concept(dosage)
    record.update(
        {
            "status": text_or_none(resource.get("status")) or "unknown",
            "intent": text_or_none(resource.get("intent")) or "order",
            "medication_code": text_or_none(first.get("code")) or "",
            "medication_display": text_or_none(first.get("display"))
            or text_or_none(medication.get("text") if isinstance(medication, Mapping) else None)
            or "Unknown medication",
            "medication_code_system": text_or_none(first.get("system")),
            "dosage_text": text_or_none(first_dosage.get("text")),
            "authored_on": text_or_none(resource.get("authoredOn")) or utc_now_iso(),
            "requester_id": _reference_id(resource, "requester"),
        }
    )
    return {key: value for key, value in record.items() if value is not None}


def condition_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "Condition", patient_id, sync_source)
    system, code, display = _concept_parts(resource.get("code"), SYSTEM_SNOMED, "Unknown condition")
    categories = [
        text_or_none(extract_first_coding(c).get("code"))
        for c in resource.get("category") or []
        if isinstance(c, Mapping)
    ]
    record.update(
        {
            "clinical_status": text_or_none(
                extract_first_coding(resource.get("clinicalStatus")).get("code")
            )
            or "active",
            "verification_status": text_or_none(
                extract_first_coding(resource.get("verificationStatus")).get("code")
            )
            or "confirmed",
            "code_system": system,
            "code": code,
            "code_display": display,
            "category": [c for c in categories if c] or [DEFAULT_CONDITION_CATEGORY],
            "onset_datetime": text_or_none(resource.get("onsetDateTime")),
            "recorded_date": text_or_none(resource.get("recordedDate")) or utc_now_iso(),
            "encounter_id": _reference_id(resource, "encounter"),
        }
    )
    return normalize_condition({key: value for key, value in record.items() if value is not None})


def diagnostic_report_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "DiagnosticReport", patient_id, sync_source)
    system, code, display = _concept_parts(resource.get("code"), SYSTEM_LOINC, "Unknown report")
    first_category = extract_first_concept(resource.get("category"))
    categories = [
        text_or_none(c.get("code"))
        for c in first_category.get("coding") or []
        if isinstance(c, Mapping)
    ]
    record.update(
        {
            "status": text_or_none(resource.get("status")) or "final",
            "category": [c for c in categories if c] or [DEFAULT_DIAGNOSTIC_REPORT_CATEGORY],
            "code_system": system,
            "code": code,
            "code_display": display,
            "effective_datetime": text_or_none(resource.get("effectiveDateTime")),
            "issued": text_or_none(resource.get("issued")) or utc_now_iso(),
            "conclusion": text_or_none(resource.get("conclusion")),
            "encounter_id": _reference_id(resource, "encounter"),
        }
    )
    return normalize_diagnostic_report(
        {key: value for key, value in record.items() if value is not None}
    )


def procedure_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "Procedure", patient_id, sync_source)
    system, code, display = _concept_parts(resource.get("code"), SYSTEM_SNOMED, "Unknown procedure")
    period = resource.get("performedPeriod")
    if not isinstance(period, Mapping):
        period = {}
    record.update(
        {
            "status": text_or_none(resource.get("status")) or "completed",
            "code_system": system,
            "code": code,
            "code_display": display,
            "performed_datetime": text_or_none(resource.get("performedDateTime")),
            "performed_period_start": text_or_none(period.get("start")),
            "performed_period_end": text_or_none(period.get("end")),
            "encounter_id": _reference_id(resource, "encounter"),
        }
    )
    return {key: value for key, value in record.items() if value is not None}


def observation_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "Observation", patient_id, sync_source)
    system, code, display = _concept_parts(resource.get("code"), SYSTEM_LOINC, "Unknown observation")
    categories = []
    for concept in resource.get("category") or []:
        if isinstance(concept, Mapping):
            categories.extend(
                c.get("code") for c in concept.get("coding") or [] if isinstance(c, Mapping)
            )
    quantity = resource.get("valueQuantity")
    if not isinstance(quantity, Mapping):
        quantity = {}
    components = resource.get("component")
    record.update(
        {
            "status": text_or_none(resource.get("status")) or "unknown",
            "category": [c for c in categories if text_or_none(c)],
            "code_system": system,
            "code": code,
            "code_display": display,
            "effective_datetime": text_or_none(resource.get("effectiveDateTime")) or utc_now_iso(),
            "value_quantity_value": quantity.get("value"),
            "value_quantity_unit": text_or_none(quantity.get("unit")),
            "value_quantity_code": text_or_none(quantity.get("code")),
            "value_string": text_or_none(resource.get("valueString")),
            "components": components if isinstance(components, list) and components else None,
        }
    )
    return {key: value for key, value in record.items() if value is not None}


def immunization_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> dict[str, Any]:
    record = _envelope(resource, "Immunization", patient_id, sync_source)
    system, code, display = _concept_parts(resource.get("vaccineCode"), SYSTEM_CVX, "Unknown vaccine")
    record.update(
        {
            "status": text_or_none(resource.get("status")) or "completed",
            "vaccine_code_system": system,
            "vaccine_code": code,
            "vaccine_display": display,
            "occurrence_datetime": text_or_none(resource.get("occurrenceDateTime")) or utc_now_iso(),
            "lot_number": text_or_none(resource.get("lotNumber")),
        }
    )
    return {key: value for key, value in record.items() if value is not None}


FROM_FHIR: dict[str, Mapper] = {
    "MedicationRequest": medication_request_from_fhir,
    "Condition": condition_from_fhir,
    "DiagnosticReport": diagnostic_report_from_fhir,
    "Procedure": procedure_from_fhir,
    "Observation": observation_from_fhir,
    "Immunization": immunization_from_fhir,
}


def record_from_fhir(
    resource: Mapping[str, Any], patient_id: str, sync_source: str | None = None
) -> tuple[str, dict[str, Any]]:
    """Map any supported resource, dispatching on ``resourceType``.

    Returns:
        Tuple of (resource type, persisted record).

    Raises:
        MappingError: If the resource type is not importable or the entry is invalid.
    """
    resource_type = resource.get("resourceType") if isinstance(resource, Mapping) else None
    mapper = FROM_FHIR.get(resource_type) if isinstance(resource_type, str) else None
    if mapper is None:
        raise MappingError(f"Unsupported resource type: {resource_type}")
    return resource_type, mapper(resource, patient_id, sync_source)
