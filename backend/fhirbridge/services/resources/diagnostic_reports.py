"""DiagnosticReport queries."""

from fhirbridge.mappers.constants import (
    DEFAULT_DIAGNOSTIC_REPORT_CATEGORY,
    IMAGING_REPORT_CATEGORIES,
)
from fhirbridge.services.resources.base import Record, ResourceService, days_ago, result_boundary

PENDING_STATUSES = ("registered", "partial", "preliminary")


class DiagnosticReportService(ResourceService):
    resource_type = "DiagnosticReport"

    @result_boundary("fetch")
    async def get_recent(self, patient_id: str, days: int = 30) -> list[Record]:
        return await self._find(patient_id=patient_id, since=days_ago(days))

    @result_boundary("fetch")
    async def get_lab_reports(self, patient_id: str, days: int | None = None) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            categories=[DEFAULT_DIAGNOSTIC_REPORT_CATEGORY],
            since=days_ago(days) if days else None,
        )

    @result_boundary("fetch")
    async def get_imaging_reports(self, patient_id: str, days: int | None = None) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            categories=IMAGING_REPORT_CATEGORIES,
            since=days_ago(days) if days else None,
        )

    @result_boundary("fetch")
    async def get_pending(self, patient_id: str) -> list[Record]:
        """Reports not yet final, oldest first."""
        return await self._find(patient_id=patient_id, statuses=PENDING_STATUSES, ascending=True)
