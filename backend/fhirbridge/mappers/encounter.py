"""Encounter record -> FHIR Encounter.

Encounter records come from the visit/billing side of the application and
carry their diagnoses inline (ICD-10 codes with an optional ``sequence``) and
the rendering provider as a nested object.
"""

from collections.abc import Mapping
from typing import Any

from fhirbridge.mappers.constants import (
    DEFAULT_ENCOUNTER_CLASS,
    DEFAULT_ENCOUNTER_STATUS,
    DIAGNOSIS_ROLE_ADMISSION,
    DIAGNOSIS_ROLE_DISCHARGE,
    ENCOUNTER_CLASS_DISPLAY,
    ENCOUNTER_STATUSES,
    PARTICIPANT_ATTENDER,
    SYSTEM_ACT_CODE,
    SYSTEM_DIAGNOSIS_ROLE,
    SYSTEM_PARTICIPATION_TYPE,
)
from fhirbridge.mappers.helpers import as_list, compact, reference, text_or_none
from fhirbridge.mappers.to_fhir import total_mapper


def encounter_status(value: Any) -> str:
    """Map a stored encounter status onto the FHIR value set."""
    status = text_or_none(value)
    if status is None:
        return DEFAULT_ENCOUNTER_STATUS
    return status if status in ENCOUNTER_STATUSES else "unknown"


def encounter_class(value: Any) -> dict[str, str]:
    code = (text_or_none(value) or DEFAULT_ENCOUNTER_CLASS).upper()
    return {
        "system": SYSTEM_ACT_CODE,
        "code": code,
        "display": ENCOUNTER_CLASS_DISPLAY.get(code, code.lower()),
    }


def patient_display(patient: Any) -> str | None:
    """"First Last" for a nested patient object, when both parts are known."""
    if not isinstance(patient, Mapping):
        return None
    parts = [text_or_none(patient.get("first_name")), text_or_none(patient.get("last_name"))]
    name = " ".join(part for part in parts if part)
    return name or None


def _diagnosis_entries(diagnoses: Any) -> list[dict[str, Any]]:
    """Build ``diagnosis[]`` ordered by sequence.

    Rank is the explicit sequence when given, otherwise the 1-based position.
    The first entry is the admission diagnosis and the rest are discharge
    diagnoses.
    """
    items = [d for d in as_list(diagnoses) if isinstance(d, Mapping) and text_or_none(d.get("code"))]
    ranked = []
    for position, diagnosis in enumerate(items, start=1):
        sequence = diagnosis.get("sequence")
        rank = sequence if isinstance(sequence, int) and not isinstance(sequence, bool) else position
        ranked.append((rank, diagnosis))
    ranked.sort(key=lambda pair: pair[0])

    entries = []
    for index, (rank, diagnosis) in enumerate(ranked):
        role_code, role_display = DIAGNOSIS_ROLE_ADMISSION if index == 0 else DIAGNOSIS_ROLE_DISCHARGE
        entries.append(
            {
                "condition": reference("Condition", diagnosis.get("code"), diagnosis.get("display")),
                "use": {
                    "coding": [
                        {"system": SYSTEM_DIAGNOSIS_ROLE, "code": role_code, "display": role_display}
                    ]
                },
                "rank": rank,
            }
        )
    return entries


def _participants(provider: Any) -> list[dict[str, Any]]:
    if not isinstance(provider, Mapping):
        return []
    individual = reference(
        "Practitioner",
        provider.get("id"),
        provider.get("organization_name") or provider.get("name"),
    )
    if individual is None:
        return []
    code, display = PARTICIPANT_ATTENDER
    return [
        {
            "type": [
                {"coding": [{"system": SYSTEM_PARTICIPATION_TYPE, "code": code, "display": display}]}
            ],
            "individual": individual,
        }
    ]


def _locations(location_id: Any) -> list[dict[str, Any]] | None:
    location = reference("Location", location_id)
    return [{"location": location}] if location else None


@total_mapper(
    "Encounter",
    DEFAULT_ENCOUNTER_STATUS,
    defaults={"class": encounter_class(DEFAULT_ENCOUNTER_CLASS)},
    patient_element="subject",
)
def encounter_to_fhir(encounter: Mapping[str, Any]) -> dict[str, Any]:
    """Serialize an encounter record, including diagnoses and attending provider."""
    subject = reference(
        "Patient", encounter.get("patient_id"), patient_display(encounter.get("patient"))
    ) or {"reference": "Patient/unknown"}
    start = text_or_none(encounter.get("period_start")) or text_or_none(
        encounter.get("date_of_service")
    )
    return compact(
        {
            "resourceType": "Encounter",
            "id": text_or_none(encounter.get("fhir_id")) or text_or_none(encounter.get("id")),
            "status": encounter_status(encounter.get("status")),
            "class": encounter_class(encounter.get("class_code")),
            "subject": subject,
            "participant": _participants(encounter.get("provider")),
            "period": compact({"start": start, "end": text_or_none(encounter.get("period_end"))}),
            "reasonCode": [{"text": encounter["reason"]}]
            if text_or_none(encounter.get("reason"))
            else None,
            "diagnosis": _diagnosis_entries(encounter.get("diagnoses")),
            "location": _locations(encounter.get("location_id")),
        }
    )
