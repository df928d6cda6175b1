"""Structural validation of inbound FHIR payloads."""

import json
import re
from typing import Any

from fhirbridge.schemas.security import ValidationResult

MAX_BUNDLE_BYTES = 10 * 1024 * 1024
MAX_INPUT_LENGTH = 1000

_BIRTH_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UNSAFE_CHARS = re.compile(r"[<>;]")


class FhirValidator:
    """Shape checks for Patient, Observation and Bundle resources.

    These are structural checks only; terminology binding and profile
    conformance are out of scope.
    """

    @classmethod
    def validate_patient(cls, patient: Any) -> ValidationResult:
        if not patient:
            return ValidationResult(is_valid=False, errors=["Patient resource is required"])
        if not isinstance(patient, dict):
            return ValidationResult(is_valid=False, errors=["Resource must be of type Patient"])

        errors = []
        if patient.get("resourceType") != "Patient":
            errors.append("Resource must be of type Patient")
        if not patient.get("id") and not patient.get("identifier"):
            errors.append("Patient must have either id or identifier")

        names = patient.get("name")
        if isinstance(names, list):
            for index, name in enumerate(names):
                if not isinstance(name, dict) or (not name.get("family") and not name.get("given")):
                    errors.append(f"Name[{index}] must have family or given name")

        birth_date = patient.get("birthDate")
        if birth_date is not None and not (
            isinstance(birth_date, str) and _BIRTH_DATE.match(birth_date)
        ):
            errors.append("birthDate must be in YYYY-MM-DD format")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            sanitized_input=cls.sanitize_input(patient) if not errors else None,
        )

    @classmethod
    def validate_observation(cls, observation: Any) -> ValidationResult:
        if not observation:
            return ValidationResult(is_valid=False, errors=["Observation resource is required"])
        if not isinstance(observation, dict):
            return ValidationResult(is_valid=False, errors=["Resource must be of type Observation"])

        errors = []
        if observation.get("resourceType") != "Observation":
            errors.append("Resource must be of type Observation")
        if not observation.get("status"):
            errors.append("Observation must have status")
        if not observation.get("code"):
            errors.append("Observation must have code")
        subject = observation.get("subject")
        if not isinstance(subject, dict) or not subject.get("reference"):
            errors.append("Observation must have subject (patient reference)")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            sanitized_input=cls.sanitize_input(observation) if not errors else None,
        )

    @classmethod
    def validate_bundle(cls, bundle: Any) -> ValidationResult:
        if not bundle:
            return ValidationResult(is_valid=False, errors=["Bundle is required"])
        if not isinstance(bundle, dict):
            return ValidationResult(is_valid=False, errors=["Resource must be of type Bundle"])

        # Oversized bundles are rejected before any structural inspection
        if len(json.dumps(bundle, default=str)) > MAX_BUNDLE_BYTES:
            return ValidationResult(is_valid=False, errors=["Bundle size exceeds 10MB limit"])

        errors = []
        if bundle.get("resourceType") != "Bundle":
            errors.append("Resource must be of type Bundle")
        if not bundle.get("type"):
            errors.append("Bundle must have type")

        entries = bundle.get("entry")
        if not isinstance(entries, list):
            errors.append("Bundle must have entry array")
        else:
            for index, entry in enumerate(entries):
                resource = entry.get("resource") if isinstance(entry, dict) else None
                if not resource:
                    errors.append(f"Entry[{index}] must have resource")
                elif not isinstance(resource, dict) or not resource.get("resourceType"):
                    errors.append(f"Entry[{index}].resource must have resourceType")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            sanitized_input=cls.sanitize_input(bundle) if not errors else None,
        )

    @classmethod
    def sanitize_input(cls, value: Any) -> Any:
        """Strip ``<>;`` from strings, trim and cap them, recursing into containers."""
        if isinstance(value, str):
            return _UNSAFE_CHARS.sub("", value).strip()[:MAX_INPUT_LENGTH]
        if isinstance(value, list):
            return [cls.sanitize_input(item) for item in value]
        if isinstance(value, dict):
            return {key: cls.sanitize_input(item) for key, item in value.items()}
        return value
