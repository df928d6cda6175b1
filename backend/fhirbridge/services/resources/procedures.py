"""Procedure queries."""

from fhirbridge.services.resources.base import Record, ResourceService, days_ago, result_boundary


class ProcedureService(ResourceService):
    resource_type = "Procedure"

    @result_boundary("fetch")
    async def get_recent(self, patient_id: str, days: int = 90) -> list[Record]:
        return await self._find(patient_id=patient_id, since=days_ago(days))

    @result_boundary("fetch")
    async def get_by_encounter(self, encounter_id: str) -> list[Record]:
        return await self._find(encounter_id=encounter_id)

    @result_boundary("fetch")
    async def get_billable(self, patient_id: str, encounter_id: str | None = None) -> list[Record]:
        """Completed procedures carrying a billing code, optionally for one encounter."""
        procedures = await self._find(
            patient_id=patient_id, statuses=("completed",), encounter_id=encounter_id
        )
        return [p for p in procedures if p.get("code") or p.get("cpt_code")]
