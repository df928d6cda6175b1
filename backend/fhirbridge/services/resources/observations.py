"""Observation queries by category, code and time window."""

from fhirbridge.services.resources.base import Record, ResourceService, days_ago, result_boundary

# Observations a clinician should act on; preliminary results are excluded
RESULT_STATUSES = ("final", "amended", "corrected")


class ObservationService(ResourceService):
    resource_type = "Observation"

    async def _by_category(
        self, patient_id: str, category: str, days: int | None = None
    ) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            statuses=RESULT_STATUSES,
            data_contains={"category": [category]},
            since=days_ago(days) if days else None,
        )

    @result_boundary("fetch")
    async def get_vital_signs(self, patient_id: str, days: int = 30) -> list[Record]:
        return await self._by_category(patient_id, "vital-signs", days)

    @result_boundary("fetch")
    async def get_lab_results(self, patient_id: str, days: int = 90) -> list[Record]:
        return await self._by_category(patient_id, "laboratory", days)

    @result_boundary("fetch")
    async def get_social_history(self, patient_id: str) -> list[Record]:
        return await self._by_category(patient_id, "social-history")

    @result_boundary("fetch")
    async def get_by_code(self, patient_id: str, code: str, days: int = 365) -> list[Record]:
        """Observations for one LOINC code, oldest first for trending."""
        return await self._find(
            patient_id=patient_id,
            codes=[code],
            since=days_ago(days),
            ascending=True,
        )

    @result_boundary("fetch")
    async def get_by_category(
        self, patient_id: str, category: str, days: int | None = None
    ) -> list[Record]:
        return await self._by_category(patient_id, category, days)
