"""Self-reported vitals -> Observation records."""

from collections.abc import Mapping
from typing import Any

from fhirbridge.mappers.constants import (
    LOINC_BODY_WEIGHT,
    LOINC_BP_PANEL,
    LOINC_DIASTOLIC,
    LOINC_GLUCOSE,
    LOINC_HEART_RATE,
    LOINC_SPO2,
    LOINC_SYSTOLIC,
    SYSTEM_LOINC,
    SYSTEM_UCUM,
)
from fhirbridge.mappers.helpers import text_or_none

SELF_REPORT_SOURCE = "self-report"

# report field -> (loinc, category, unit, ucum code)
_SIMPLE_VITALS = (
    ("heart_rate", LOINC_HEART_RATE, "vital-signs", "beats/minute", "/min"),
    ("spo2", LOINC_SPO2, "vital-signs", "%", "%"),
    ("blood_sugar", LOINC_GLUCOSE, "laboratory", "mg/dL", "mg/dL"),
    ("weight", LOINC_BODY_WEIGHT, "vital-signs", "lb", "[lb_av]"),
)


def _number(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _base(report: Mapping[str, Any], loinc: tuple[str, str], category: str) -> dict[str, Any]:
    code, display = loinc
    return {
        "patient_id": str(report["patient_id"]),
        "status": "final",
        "category": [category],
        "code_system": SYSTEM_LOINC,
        "code": code,
        "code_display": display,
        "effective_datetime": text_or_none(report.get("reported_at")),
        "external_id": f"{SELF_REPORT_SOURCE}:{report['id']}:{code}",
        "sync_source": SELF_REPORT_SOURCE,
        "note": "Patient self-reported",
    }


def _bp_component(loinc: tuple[str, str], value: float | int) -> dict[str, Any]:
    code, display = loinc
    return {
        "code": {"coding": [{"system": SYSTEM_LOINC, "code": code, "display": display}]},
        "valueQuantity": {
            "value": value,
            "unit": "mmHg",
            "system": SYSTEM_UCUM,
            "code": "mm[Hg]",
        },
    }


def self_report_to_observations(report: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Map one self-report row to zero or more Observation records.

    Blood pressure becomes a panel with systolic/diastolic components; every
    other measurement present becomes its own Observation. The external id is
    derived from the report id and LOINC code so re-syncing a report updates
    the same rows.
    """
    observations = []

    systolic = _number(report.get("bp_systolic"))
    diastolic = _number(report.get("bp_diastolic"))
    if systolic is not None or diastolic is not None:
        panel = _base(report, LOINC_BP_PANEL, "vital-signs")
        panel["components"] = [
            _bp_component(loinc, value)
            for loinc, value in ((LOINC_SYSTOLIC, systolic), (LOINC_DIASTOLIC, diastolic))
            if value is not None
        ]
        observations.append(panel)

    for field, loinc, category, unit, ucum in _SIMPLE_VITALS:
        value = _number(report.get(field))
        if value is None:
            continue
        observation = _base(report, loinc, category)
        observation.update(
            {
                "value_quantity_value": value,
                "value_quantity_unit": unit,
                "value_quantity_code": ucum,
            }
        )
        observations.append(observation)

    return observations
