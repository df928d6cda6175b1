"""Definitions for every resource type the core persists."""

from fhirbridge.mappers.encounter import encounter_to_fhir
from fhirbridge.mappers.normalize import (
    normalize_condition,
    normalize_diagnostic_report,
    normalize_encounter,
)
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
from fhirbridge.registry.definition import DeletePolicy, ResourceDefinition, ResourceRegistry

DEFINITIONS = (
    ResourceDefinition(
        resource_type="Condition",
        label="conditions",
        serializer=map_to_fhir_condition,
        recency_field="recorded_date",
        status_field="clinical_status",
        category_field="category",
        active_statuses=("active", "recurrence", "relapse"),
        normalizer=normalize_condition,
    ),
    ResourceDefinition(
        resource_type="DiagnosticReport",
        label="diagnostic reports",
        serializer=map_to_fhir_diagnostic_report,
        recency_field="issued",
        category_field="category",
        practitioner_field="performer_id",
        active_statuses=("final", "amended", "corrected", "appended"),
        normalizer=normalize_diagnostic_report,
    ),
    ResourceDefinition(
        resource_type="MedicationRequest",
        label="medication requests",
        serializer=map_to_fhir_medication_request,
        recency_field="authored_on",
        code_field="medication_code",
        practitioner_field="requester_id",
        active_statuses=("active",),
    ),
    ResourceDefinition(
        resource_type="Observation",
        label="observations",
        serializer=map_to_fhir_observation,
        recency_field="effective_datetime",
        category_field="category",
        active_statuses=("registered", "preliminary", "final", "amended", "corrected"),
    ),
    ResourceDefinition(
        resource_type="Procedure",
        label="procedures",
        serializer=map_to_fhir_procedure,
        recency_field="performed_datetime",
        category_field="category",
        practitioner_field="performer_id",
        active_statuses=("preparation", "in-progress", "on-hold"),
    ),
    ResourceDefinition(
        resource_type="CarePlan",
        label="care plans",
        serializer=map_to_fhir_care_plan,
        recency_field="created",
        code_field=None,
        category_field="category",
        period_end_field="period_end",
        active_statuses=("proposed", "planned", "accepted", "active", "on-hold"),
    ),
    ResourceDefinition(
        resource_type="CareTeam",
        label="care teams",
        serializer=map_to_fhir_care_team,
        recency_field="period_start",
        code_field=None,
        category_field="category",
        period_end_field="period_end",
        active_statuses=("active",),
        delete_policy=DeletePolicy.SOFT,
    ),
    ResourceDefinition(
        resource_type="Immunization",
        label="immunizations",
        serializer=map_to_fhir_immunization,
        recency_field="occurrence_datetime",
        code_field="vaccine_code",
        practitioner_field="performer_id",
        active_statuses=("completed",),
    ),
    ResourceDefinition(
        resource_type="Encounter",
        label="encounters",
        serializer=encounter_to_fhir,
        recency_field="period_start",
        code_field="class_code",
        practitioner_field="provider_id",
        period_end_field="period_end",
        active_statuses=("arrived", "triaged", "in-progress", "onleave"),
        normalizer=normalize_encounter,
    ),
    ResourceDefinition(
        resource_type="DocumentReference",
        label="documents",
        serializer=map_to_fhir_document_reference,
        recency_field="date",
        code_field="type_code",
        category_field="category",
        practitioner_field="author_id",
        active_statuses=("current",),
    ),
    ResourceDefinition(
        resource_type="Goal",
        label="goals",
        serializer=map_to_fhir_goal,
        recency_field="start_date",
        status_field="lifecycle_status",
        code_field=None,
        category_field="category",
        active_statuses=("proposed", "planned", "accepted", "active"),
    ),
    ResourceDefinition(
        resource_type="AllergyIntolerance",
        label="allergies",
        serializer=map_to_fhir_allergy_intolerance,
        recency_field="recorded_date",
        status_field="clinical_status",
        code_field="allergen_code",
        category_field="allergen_type",
        active_statuses=("active",),
        delete_policy=DeletePolicy.SOFT,
    ),
    ResourceDefinition(
        resource_type="Practitioner",
        label="practitioners",
        serializer=map_to_fhir_practitioner,
        status_field=None,
        code_field="npi",
        category_field="specialties",
        delete_policy=DeletePolicy.SOFT,
        patient_scoped=False,
    ),
    ResourceDefinition(
        resource_type="PractitionerRole",
        label="practitioner roles",
        serializer=map_to_fhir_practitioner_role,
        recency_field="period_start",
        status_field=None,
        code_field="role_code",
        category_field="specialty_code",
        practitioner_field="practitioner_id",
        period_end_field="period_end",
        patient_scoped=False,
    ),
    ResourceDefinition(
        resource_type="Location",
        label="locations",
        serializer=map_to_fhir_location,
        code_field="type_code",
        active_statuses=("active",),
        patient_scoped=False,
    ),
    ResourceDefinition(
        resource_type="Organization",
        label="organizations",
        serializer=map_to_fhir_organization,
        status_field=None,
        code_field="npi",
        category_field="type_code",
        patient_scoped=False,
    ),
    ResourceDefinition(
        resource_type="Medication",
        label="medications",
        serializer=map_to_fhir_medication,
        code_field="code",
        active_statuses=("active",),
        patient_scoped=False,
    ),
    ResourceDefinition(
        resource_type="Provenance",
        label="provenance records",
        serializer=map_to_fhir_provenance,
        recency_field="recorded",
        status_field=None,
        code_field="activity",
        delete_policy=DeletePolicy.NEVER,
        patient_scoped=False,
    ),
)


def register_all() -> None:
    for definition in DEFINITIONS:
        ResourceRegistry.register(definition)
