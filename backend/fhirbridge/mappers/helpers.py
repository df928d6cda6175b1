"""Pure helpers shared by the FHIR mappers.

All functions tolerate missing or malformed input and never raise.
"""

from datetime import datetime, timezone
from typing import Any


def extract_reference_id(reference: str | None) -> str | None:
    """Extract the id from a FHIR reference string.

    Handles both formats:
    - "urn:uuid:abc-123" -> "abc-123"
    - "Patient/abc-123" -> "abc-123"
    """
    if not reference or not isinstance(reference, str):
        return None

    if reference.startswith("urn:uuid:"):
        return reference[9:]
    elif "/" in reference:
        return reference.split("/")[-1]
    return reference


def extract_first_coding(codeable_concept: Any) -> dict[str, Any]:
    """Return the first coding of a CodeableConcept, or an empty dict."""
    if not isinstance(codeable_concept, dict):
        return {}
    codings = codeable_concept.get("coding")
    if isinstance(codings, list) and codings and isinstance(codings[0], dict):
        return codings[0]
    return {}


def extract_first_concept(concepts: Any) -> dict[str, Any]:
    """Return the first CodeableConcept of a list (e.g. ``category``)."""
    if isinstance(concepts, list) and concepts and isinstance(concepts[0], dict):
        return concepts[0]
    return {}


def as_list(value: Any) -> list:
    """Coerce a scalar-or-list field into a list, dropping empty values."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [item for item in value if item is not None and item != ""]
    return [value]


def text_or_none(value: Any) -> str | None:
    """Return ``value`` as a non-empty string, or None."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def coding(system: Any = None, code: Any = None, display: Any = None) -> dict[str, str]:
    """Build a coding triple, omitting absent members."""
    result = {}
    for key, value in (("system", system), ("code", code), ("display", display)):
        text = text_or_none(value)
        if text is not None:
            result[key] = text
    return result


def concept(system: Any = None, code: Any = None, display: Any = None) -> dict[str, Any] | None:
    """Build a single-coding CodeableConcept, or None when there is nothing to code."""
    built = coding(system, code, display)
    if "code" not in built and "display" not in built:
        return None
    return {"coding": [built]}


def reference(resource_type: str, resource_id: Any, display: Any = None) -> dict[str, str] | None:
    """Build a ``Type/id`` reference, or None when the id is absent."""
    id_text = text_or_none(resource_id)
    if id_text is None:
        return None
    ref = {"reference": f"{resource_type}/{id_text}"}
    display_text = text_or_none(display)
    if display_text:
        ref["display"] = display_text
    return ref


def compact(resource: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None, an empty list or an empty dict."""
    return {
        key: value
        for key, value in resource.items()
        if value is not None and value != [] and value != {}
    }


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 date or datetime into an aware datetime.

    Dates without a time resolve to midnight UTC; naive datetimes are
    assumed to be UTC. Unparseable values return None.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
