"""Persisted record -> FHIR R4 resource serializers.

Every ``map_to_fhir_*`` function is total: it accepts any mapping (including
partially populated or malformed rows) and returns a resource dict. Fields
absent from the record are absent from the resource; ``resourceType``, the
status element and the patient reference are always present.

FHIR reference: https://hl7.org/fhir/R4/resourcelist.html
"""

import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from fhirbridge.mappers.constants import (
    SYSTEM_ALLERGY_CLINICAL,
    SYSTEM_ALLERGY_VERIFICATION,
    SYSTEM_CONDITION_CATEGORY,
    SYSTEM_CONDITION_CLINICAL,
    SYSTEM_CONDITION_VERIFICATION,
    SYSTEM_CVX,
    SYSTEM_DATA_OPERATION,
    SYSTEM_DIAGNOSTIC_SERVICE,
    SYSTEM_GOAL_ACHIEVEMENT,
    SYSTEM_LOINC,
    SYSTEM_NPI,
    SYSTEM_OBSERVATION_CATEGORY,
    SYSTEM_PROVENANCE_AGENT_TYPE,
    SYSTEM_RXNORM,
    SYSTEM_SNOMED,
    SYSTEM_UCUM,
)
from fhirbridge.mappers.helpers import (
    as_list,
    compact,
    concept,
    coding,
    reference,
    text_or_none,
)

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


def _fallback(
    resource_type: str,
    record: Any,
    status: str | None,
    defaults: Mapping[str, Any] | None,
    patient_element: str | None,
) -> dict[str, Any]:
    """Minimal resource used when a record is too malformed to serialize."""
    resource: dict[str, Any] = {"resourceType": resource_type, **(defaults or {})}
    if isinstance(record, Mapping):
        resource_id = text_or_none(record.get("fhir_id")) or text_or_none(record.get("id"))
        if resource_id:
            resource["id"] = resource_id
    if patient_element:
        patient_id = record.get("patient_id") if isinstance(record, Mapping) else None
        resource[patient_element] = reference("Patient", patient_id) or {
            "reference": "Patient/unknown"
        }
    if status:
        resource["status"] = status
    return resource


def total_mapper(
    resource_type: str,
    default_status: str | None = None,
    defaults: Mapping[str, Any] | None = None,
    patient_element: str | None = None,
):
    """Decorator guaranteeing a mapper returns a resource instead of raising.

    ``patient_element`` names the patient reference (``subject`` or
    ``patient``) that the fallback resource must still carry.
    """

    def decorator(func: Callable[[Record], dict[str, Any]]):
        def fallback(record: Any) -> dict[str, Any]:
            return _fallback(resource_type, record, default_status, defaults, patient_element)

        @functools.wraps(func)
        def wrapper(record: Any) -> dict[str, Any]:
            if not isinstance(record, Mapping):
                return fallback(record)
            try:
                return func(record)
            except (TypeError, ValueError, AttributeError, KeyError, IndexError):
                logger.warning(
                    "Falling back to minimal %s for record %s",
                    resource_type,
                    record.get("id"),
                )
                return fallback(record)

        return wrapper

    return decorator


def _id(record: Record) -> str | None:
    return text_or_none(record.get("fhir_id")) or text_or_none(record.get("id"))


def _subject(record: Record) -> dict[str, str]:
    return reference("Patient", record.get("patient_id"), record.get("patient_display")) or {
        "reference": "Patient/unknown"
    }


def _status_concept(system: str, code: Any, default: str) -> dict[str, Any]:
    return {"coding": [coding(system, text_or_none(code) or default)]}


def _period(start: Any, end: Any) -> dict[str, str] | None:
    return compact({"start": text_or_none(start), "end": text_or_none(end)}) or None


def _category_concepts(values: Any, system: str) -> list[dict[str, Any]]:
    """One CodeableConcept per category tag."""
    concepts = []
    for value in as_list(values):
        built = concept(system, value)
        if built:
            concepts.append(built)
    return concepts


def _one(item: Any) -> list | None:
    """Wrap a single element in a list, or None when it is absent."""
    return [item] if item else None


def _notes(value: Any) -> list[dict[str, str]] | None:
    text = text_or_none(value)
    return [{"text": text}] if text else None


# =============================================================================
# Clinical resources
# =============================================================================


@total_mapper("Observation", "unknown", patient_element="subject")
def map_to_fhir_observation(obs: Record) -> dict[str, Any]:
    """Observation: tags become codings of a single category concept."""
    category_codings = [
        coding(SYSTEM_OBSERVATION_CATEGORY, tag) for tag in as_list(obs.get("category"))
    ]
    value_quantity = None
    if obs.get("value_quantity_value") is not None:
        value_quantity = compact(
            {
                "value": obs["value_quantity_value"],
                "unit": text_or_none(obs.get("value_quantity_unit")),
                "system": SYSTEM_UCUM,
                "code": text_or_none(obs.get("value_quantity_code"))
                or text_or_none(obs.get("value_quantity_unit")),
            }
        )
    components = obs.get("components")
    return compact(
        {
            "resourceType": "Observation",
            "id": _id(obs),
            "status": text_or_none(obs.get("status")) or "unknown",
            "category": [{"coding": category_codings}] if category_codings else None,
            "code": concept(
                obs.get("code_system") or SYSTEM_LOINC, obs.get("code"), obs.get("code_display")
            ),
            "subject": _subject(obs),
            "encounter": reference("Encounter", obs.get("encounter_id")),
            "effectiveDateTime": text_or_none(obs.get("effective_datetime")),
            "valueQuantity": value_quantity,
            "valueString": text_or_none(obs.get("value_string")),
            "component": components if isinstance(components, list) else None,
            "note": _notes(obs.get("note")),
        }
    )


@total_mapper(
    "Condition",
    defaults={"clinicalStatus": _status_concept(SYSTEM_CONDITION_CLINICAL, None, "active")},
    patient_element="subject",
)
def map_to_fhir_condition(cond: Record) -> dict[str, Any]:
    """Condition: ``clinicalStatus`` is its status element."""
    verification = text_or_none(cond.get("verification_status"))
    return compact(
        {
            "resourceType": "Condition",
            "id": _id(cond),
            "clinicalStatus": _status_concept(
                SYSTEM_CONDITION_CLINICAL, cond.get("clinical_status"), "active"
            ),
            "verificationStatus": (
                {"coding": [coding(SYSTEM_CONDITION_VERIFICATION, verification)]}
                if verification
                else None
            ),
            "category": _category_concepts(cond.get("category"), SYSTEM_CONDITION_CATEGORY),
            "code": concept(
                cond.get("code_system") or SYSTEM_SNOMED,
                cond.get("code") or cond.get("code_code"),
                cond.get("code_display"),
            ),
            "subject": _subject(cond),
            "encounter": reference("Encounter", cond.get("encounter_id")),
            "onsetDateTime": text_or_none(cond.get("onset_datetime")),
            "abatementDateTime": text_or_none(cond.get("abatement_datetime")),
            "recordedDate": text_or_none(cond.get("recorded_date")),
            "note": _notes(cond.get("note")),
        }
    )


@total_mapper("MedicationRequest", "unknown", patient_element="subject")
def map_to_fhir_medication_request(med: Record) -> dict[str, Any]:
    dosage_text = text_or_none(med.get("dosage_text"))
    return compact(
        {
            "resourceType": "MedicationRequest",
            "id": _id(med),
            "status": text_or_none(med.get("status")) or "unknown",
            "intent": text_or_none(med.get("intent")) or "order",
            "medicationCodeableConcept": concept(
                med.get("medication_code_system") or SYSTEM_RXNORM,
                med.get("medication_code"),
                med.get("medication_display"),
            ),
            "subject": _subject(med),
            "encounter": reference("Encounter", med.get("encounter_id")),
            "authoredOn": text_or_none(med.get("authored_on")),
            "requester": reference("Practitioner", med.get("requester_id")),
            "dosageInstruction": [{"text": dosage_text}] if dosage_text else None,
            "note": _notes(med.get("note")),
        }
    )


@total_mapper("Procedure", "unknown", patient_element="subject")
def map_to_fhir_procedure(proc: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "Procedure",
            "id": _id(proc),
            "status": text_or_none(proc.get("status")) or "unknown",
            "code": concept(
                proc.get("code_system") or SYSTEM_SNOMED, proc.get("code"), proc.get("code_display")
            ),
            "subject": _subject(proc),
            "encounter": reference("Encounter", proc.get("encounter_id")),
            "performedDateTime": text_or_none(proc.get("performed_datetime")),
            "performedPeriod": _period(
                proc.get("performed_period_start"), proc.get("performed_period_end")
            ),
            "note": _notes(proc.get("note")),
        }
    )


@total_mapper("CarePlan", "active", patient_element="subject")
def map_to_fhir_care_plan(plan: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "CarePlan",
            "id": _id(plan),
            "status": text_or_none(plan.get("status")) or "active",
            "intent": text_or_none(plan.get("intent")) or "plan",
            "category": _category_concepts(plan.get("category"), SYSTEM_SNOMED),
            "title": text_or_none(plan.get("title")),
            "description": text_or_none(plan.get("description")),
            "subject": _subject(plan),
            "period": _period(plan.get("period_start"), plan.get("period_end")),
            "created": text_or_none(plan.get("created")) or text_or_none(plan.get("created_at")),
        }
    )


@total_mapper("Immunization", "completed", patient_element="patient")
def map_to_fhir_immunization(imm: Record) -> dict[str, Any]:
    """Immunization references the patient through ``patient``, not ``subject``."""
    return compact(
        {
            "resourceType": "Immunization",
            "id": _id(imm),
            "status": text_or_none(imm.get("status")) or "completed",
            "vaccineCode": concept(
                imm.get("vaccine_code_system") or SYSTEM_CVX,
                imm.get("vaccine_code"),
                imm.get("vaccine_display"),
            )
            or {"text": "Unknown vaccine"},
            "patient": _subject(imm),
            "occurrenceDateTime": text_or_none(imm.get("occurrence_datetime")),
            "lotNumber": text_or_none(imm.get("lot_number")),
            "note": _notes(imm.get("note")),
        }
    )


@total_mapper("DiagnosticReport", "unknown", patient_element="subject")
def map_to_fhir_diagnostic_report(report: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "DiagnosticReport",
            "id": _id(report),
            "status": text_or_none(report.get("status")) or "unknown",
            "category": _category_concepts(
                report.get("category") or report.get("category_code"), SYSTEM_DIAGNOSTIC_SERVICE
            ),
            "code": concept(
                report.get("code_system") or SYSTEM_LOINC,
                report.get("code") or report.get("code_code"),
                report.get("code_display"),
            ),
            "subject": _subject(report),
            "encounter": reference("Encounter", report.get("encounter_id")),
            "effectiveDateTime": text_or_none(report.get("effective_datetime")),
            "issued": text_or_none(report.get("issued")),
            "conclusion": text_or_none(report.get("conclusion")),
        }
    )


@total_mapper(
    "AllergyIntolerance",
    defaults={"clinicalStatus": _status_concept(SYSTEM_ALLERGY_CLINICAL, None, "active")},
    patient_element="patient",
)
def map_to_fhir_allergy_intolerance(allergy: Record) -> dict[str, Any]:
    """AllergyIntolerance references the patient through ``patient``."""
    verification = text_or_none(allergy.get("verification_status"))
    reaction = text_or_none(allergy.get("reaction_description"))
    allergen_type = text_or_none(allergy.get("allergen_type"))
    return compact(
        {
            "resourceType": "AllergyIntolerance",
            "id": _id(allergy),
            "clinicalStatus": _status_concept(
                SYSTEM_ALLERGY_CLINICAL, allergy.get("clinical_status"), "active"
            ),
            "verificationStatus": (
                {"coding": [coding(SYSTEM_ALLERGY_VERIFICATION, verification)]}
                if verification
                else None
            ),
            "category": [allergen_type] if allergen_type else None,
            "criticality": text_or_none(allergy.get("criticality")),
            "code": concept(
                allergy.get("allergen_code_system") or SYSTEM_RXNORM,
                allergy.get("allergen_code"),
                allergy.get("allergen_name"),
            ),
            "patient": _subject(allergy),
            "recordedDate": text_or_none(allergy.get("recorded_date")),
            "reaction": [{"description": reaction}] if reaction else None,
        }
    )


@total_mapper("Goal", "proposed", patient_element="subject")
def map_to_fhir_goal(goal: Record) -> dict[str, Any]:
    achievement = text_or_none(goal.get("achievement_status"))
    return compact(
        {
            "resourceType": "Goal",
            "id": _id(goal),
            "lifecycleStatus": text_or_none(goal.get("lifecycle_status")) or "proposed",
            "achievementStatus": concept(
                SYSTEM_GOAL_ACHIEVEMENT, achievement
            ),
            "category": _category_concepts(goal.get("category"), SYSTEM_SNOMED),
            "description": {"text": text_or_none(goal.get("description")) or "Unspecified goal"},
            "subject": _subject(goal),
            "startDate": text_or_none(goal.get("start_date")),
            "target": _one(compact({"dueDate": text_or_none(goal.get("target_date"))})),
            "note": _notes(goal.get("note")),
        }
    )


@total_mapper("CareTeam", "active", patient_element="subject")
def map_to_fhir_care_team(team: Record) -> dict[str, Any]:
    participants = []
    for member in as_list(team.get("participants")):
        if not isinstance(member, Mapping):
            continue
        participants.append(
            compact(
                {
                    "role": _one(
                        concept(SYSTEM_SNOMED, member.get("role_code"), member.get("role_display"))
                    ),
                    "member": reference(
                        member.get("member_type") or "Practitioner",
                        member.get("member_id"),
                        member.get("member_display"),
                    ),
                    "period": _period(member.get("period_start"), member.get("period_end")),
                }
            )
        )
    return compact(
        {
            "resourceType": "CareTeam",
            "id": _id(team),
            "status": text_or_none(team.get("status")) or "active",
            "name": text_or_none(team.get("name")),
            "subject": _subject(team),
            "period": _period(team.get("period_start"), team.get("period_end")),
            "participant": participants,
        }
    )


def _relates_to(doc: Record) -> list[dict[str, Any]] | None:
    target = reference("DocumentReference", doc.get("replaces_id"))
    return [{"code": "replaces", "target": target}] if target else None


def _context(doc: Record) -> dict[str, Any] | None:
    encounter = reference("Encounter", doc.get("encounter_id"))
    return {"encounter": [encounter]} if encounter else None


@total_mapper("DocumentReference", "current", patient_element="subject")
def map_to_fhir_document_reference(doc: Record) -> dict[str, Any]:
    content_type = text_or_none(doc.get("content_type")) or "text/plain"
    attachment = compact(
        {
            "contentType": content_type,
            "url": text_or_none(doc.get("content_url")),
            "data": text_or_none(doc.get("content_data")),
            "title": text_or_none(doc.get("title")),
        }
    )
    return compact(
        {
            "resourceType": "DocumentReference",
            "id": _id(doc),
            "status": text_or_none(doc.get("status")) or "current",
            "docStatus": text_or_none(doc.get("doc_status")),
            "type": concept(SYSTEM_LOINC, doc.get("type_code"), doc.get("type_display")),
            "category": _category_concepts(doc.get("category"), SYSTEM_LOINC),
            "subject": _subject(doc),
            "date": text_or_none(doc.get("date")),
            "author": _one(reference("Practitioner", doc.get("author_id"))),
            "relatesTo": _relates_to(doc),
            "description": text_or_none(doc.get("description")),
            "content": [{"attachment": attachment}],
            "context": _context(doc),
        }
    )


# =============================================================================
# Directory resources (not patient-scoped)
# =============================================================================


def _human_name(record: Record) -> dict[str, Any] | None:
    name = compact(
        {
            "family": text_or_none(record.get("family_name")),
            "given": [str(g) for g in as_list(record.get("given_names"))],
            "prefix": [str(p) for p in as_list(record.get("prefix"))],
            "suffix": [str(s) for s in as_list(record.get("suffix"))],
        }
    )
    return name or None


def _telecom(record: Record) -> list[dict[str, str]]:
    telecom = []
    if text_or_none(record.get("phone")):
        telecom.append({"system": "phone", "value": record["phone"]})
    if text_or_none(record.get("email")):
        telecom.append({"system": "email", "value": record["email"]})
    return telecom


def _address(record: Record) -> dict[str, Any] | None:
    return (
        compact(
            {
                "line": [str(line) for line in as_list(record.get("address_line"))],
                "city": text_or_none(record.get("city")),
                "state": text_or_none(record.get("state")),
                "postalCode": text_or_none(record.get("postal_code")),
            }
        )
        or None
    )


@total_mapper("Practitioner")
def map_to_fhir_practitioner(practitioner: Record) -> dict[str, Any]:
    npi = text_or_none(practitioner.get("npi"))
    name = _human_name(practitioner)
    return compact(
        {
            "resourceType": "Practitioner",
            "id": _id(practitioner),
            "identifier": [{"system": SYSTEM_NPI, "value": npi}] if npi else None,
            "active": practitioner.get("active", True) is not False,
            "name": [name] if name else None,
            "telecom": _telecom(practitioner),
            "address": _one(_address(practitioner)),
            "qualification": [
                {"code": {"text": str(q)}} for q in as_list(practitioner.get("qualifications"))
            ],
        }
    )


@total_mapper("PractitionerRole")
def map_to_fhir_practitioner_role(role: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "PractitionerRole",
            "id": _id(role),
            "active": role.get("active", True) is not False,
            "period": _period(role.get("period_start"), role.get("period_end")),
            "practitioner": reference("Practitioner", role.get("practitioner_id")),
            "organization": reference("Organization", role.get("organization_id")),
            "code": _one(concept(SYSTEM_SNOMED, role.get("role_code"), role.get("role_display"))),
            "specialty": _one(
                concept(SYSTEM_SNOMED, role.get("specialty_code"), role.get("specialty_display"))
            ),
            "location": _one(reference("Location", role.get("location_id"))),
        }
    )


@total_mapper("Location", "active")
def map_to_fhir_location(location: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "Location",
            "id": _id(location),
            "status": text_or_none(location.get("status")) or "active",
            "name": text_or_none(location.get("name")),
            "type": _one(concept(None, location.get("type_code"), location.get("type_display"))),
            "telecom": _telecom(location),
            "address": _address(location),
            "managingOrganization": reference("Organization", location.get("organization_id")),
        }
    )


@total_mapper("Organization")
def map_to_fhir_organization(org: Record) -> dict[str, Any]:
    npi = text_or_none(org.get("npi"))
    return compact(
        {
            "resourceType": "Organization",
            "id": _id(org),
            "identifier": [{"system": SYSTEM_NPI, "value": npi}] if npi else None,
            "active": org.get("active", True) is not False,
            "type": _one(concept(None, org.get("type_code"), org.get("type_display"))),
            "name": text_or_none(org.get("name")),
            "telecom": _telecom(org),
            "address": _one(_address(org)),
            "partOf": reference("Organization", org.get("parent_id")),
        }
    )


@total_mapper("Medication", "active")
def map_to_fhir_medication(med: Record) -> dict[str, Any]:
    return compact(
        {
            "resourceType": "Medication",
            "id": _id(med),
            "status": text_or_none(med.get("status")) or "active",
            "code": concept(
                med.get("code_system") or SYSTEM_RXNORM, med.get("code"), med.get("code_display")
            ),
            "form": concept(SYSTEM_SNOMED, med.get("form_code"), med.get("form_display")),
            "manufacturer": reference("Organization", med.get("manufacturer_id")),
        }
    )


@total_mapper("Provenance")
def map_to_fhir_provenance(prov: Record) -> dict[str, Any]:
    agents = []
    for agent in as_list(prov.get("agent")):
        if not isinstance(agent, Mapping):
            continue
        agents.append(
            compact(
                {
                    "type": concept(SYSTEM_PROVENANCE_AGENT_TYPE, agent.get("type")),
                    "who": reference(agent.get("who_type") or "Practitioner", agent.get("who_id"))
                    or {"display": "Unknown agent"},
                    "onBehalfOf": reference("Organization", agent.get("on_behalf_of_id")),
                }
            )
        )
    return compact(
        {
            "resourceType": "Provenance",
            "id": _id(prov),
            "target": [{"reference": str(ref)} for ref in as_list(prov.get("target_references"))],
            "recorded": text_or_none(prov.get("recorded")),
            "activity": concept(SYSTEM_DATA_OPERATION, prov.get("activity")),
            "reason": [{"text": prov["reason"]}] if text_or_none(prov.get("reason")) else None,
            "agent": agents or [{"who": {"display": "Unknown agent"}}],
        }
    )
