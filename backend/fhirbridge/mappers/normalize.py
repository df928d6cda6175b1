"""Dual-field normalization for records that carry both scalar and FHIR-array forms.

Condition and DiagnosticReport rows expose ``category`` (a list, the FHIR
shape) alongside ``category_code`` (a scalar kept for older consumers), and
``code`` alongside ``code_code``. The list/``code`` form is canonical: when it
is present the scalar is derived from it, and when only the scalar is present
the canonical field is rebuilt from the scalar. Normalization is idempotent.
"""

from typing import Any

from fhirbridge.mappers.helpers import as_list


def _normalize_dual_fields(record: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(record)

    categories = as_list(record.get("category"))
    if not categories and record.get("category_code"):
        categories = [record["category_code"]]
    if categories:
        normalized["category"] = categories
        normalized["category_code"] = categories[0]

    code = record.get("code") or record.get("code_code")
    if code:
        normalized["code"] = code
        normalized["code_code"] = code

    return normalized


def normalize_condition(record: dict[str, Any]) -> dict[str, Any]:
    """Return a Condition record with both field shapes populated and consistent."""
    return _normalize_dual_fields(record)


def normalize_diagnostic_report(record: dict[str, Any]) -> dict[str, Any]:
    """Return a DiagnosticReport record with both field shapes populated and consistent."""
    return _normalize_dual_fields(record)


def normalize_encounter(record: dict[str, Any]) -> dict[str, Any]:
    """Fill ``period_start`` from ``date_of_service`` and ``provider_id`` from ``provider``."""
    normalized = dict(record)
    if not normalized.get("period_start") and normalized.get("date_of_service"):
        normalized["period_start"] = normalized["date_of_service"]
    provider = normalized.get("provider")
    if not normalized.get("provider_id") and isinstance(provider, dict) and provider.get("id"):
        normalized["provider_id"] = provider["id"]
    return normalized
