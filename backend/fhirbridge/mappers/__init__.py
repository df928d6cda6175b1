"""Mapping between persisted clinical records and FHIR R4 resources."""

from fhirbridge.mappers.encounter import encounter_to_fhir
from fhirbridge.mappers.from_fhir import FROM_FHIR, record_from_fhir
from fhirbridge.mappers.normalize import (
    normalize_condition,
    normalize_diagnostic_report,
    normalize_encounter,
)
from fhirbridge.mappers.self_report import self_report_to_observations
from fhirbridge.mappers.to_fhir import (
    map_to_fhir_allergy_intolerance,
    map_to_fhir_care_plan,
    map_to_fhir_care_team,
    map_to_fhir_condition,
    map_to_fhir_diagnostic_report,
    map_to_fhir_document_reference,
    map_to_fhir_goal,
    map_to_fhir_immunization,
    map_to_fhir_location,
    map_to_fhir_medication,
    map_to_fhir_medication_request,
    map_to_fhir_observation,
    map_to_fhir_organization,
    map_to_fhir_practitioner,
    map_to_fhir_practitioner_role,
    map_to_fhir_procedure,
    map_to_fhir_provenance,
)

__all__ = [
    "FROM_FHIR",
    "encounter_to_fhir",
    "map_to_fhir_allergy_intolerance",
    "map_to_fhir_care_plan",
    "map_to_fhir_care_team",
    "map_to_fhir_condition",
    "map_to_fhir_diagnostic_report",
    "map_to_fhir_document_reference",
    "map_to_fhir_goal",
    "map_to_fhir_immunization",
    "map_to_fhir_location",
    "map_to_fhir_medication",
    "map_to_fhir_medication_request",
    "map_to_fhir_observation",
    "map_to_fhir_organization",
    "map_to_fhir_practitioner",
    "map_to_fhir_practitioner_role",
    "map_to_fhir_procedure",
    "map_to_fhir_provenance",
    "normalize_condition",
    "normalize_diagnostic_report",
    "normalize_encounter",
    "record_from_fhir",
    "self_report_to_observations",
]
