"""Encounter queries and lifecycle."""

from datetime import datetime

from fhirbridge.services.resources.base import (
    Record,
    ResourceService,
    result_boundary,
    utc_now,
)


class EncounterService(ResourceService):
    resource_type = "Encounter"

    @result_boundary("fetch")
    async def get_by_class(self, patient_id: str, class_code: str) -> list[Record]:
        return await self._find(patient_id=patient_id, codes=[class_code])

    @result_boundary("fetch")
    async def get_recent(self, patient_id: str, limit: int = 10) -> list[Record]:
        return await self._find(patient_id=patient_id, limit=limit)

    @result_boundary("update")
    async def complete(self, encounter_id: str) -> Record:
        """Finish an encounter now."""
        return await self.repository.update(
            self.resource_type, encounter_id, {"status": "finished", "period_end": utc_now()}
        )

    @result_boundary("search")
    async def search(
        self,
        patient_id: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        class_code: str | None = None,
    ) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            statuses=[status] if status else None,
            codes=[class_code] if class_code else None,
            since=since,
            until=until,
        )
