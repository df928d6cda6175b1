"""CarePlan queries."""

from datetime import datetime

from fhirbridge.services.resources.base import Record, ResourceService, result_boundary


class CarePlanService(ResourceService):
    resource_type = "CarePlan"

    @result_boundary("fetch")
    async def get_current(self, patient_id: str) -> Record | None:
        """The most recently created plan with status active."""
        return await self._first(patient_id=patient_id, statuses=("active",))

    @result_boundary("fetch")
    async def get_by_status(self, patient_id: str, status: str) -> list[Record]:
        return await self._find(patient_id=patient_id, statuses=[status])

    @result_boundary("fetch")
    async def get_by_category(self, patient_id: str, category: str) -> list[Record]:
        return await self._find(patient_id=patient_id, data_contains={"category": [category]})

    @result_boundary("search")
    async def search(
        self,
        patient_id: str | None = None,
        status: str | None = None,
        category: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            statuses=[status] if status else None,
            data_contains={"category": [category]} if category else {},
            since=since,
            until=until,
        )
