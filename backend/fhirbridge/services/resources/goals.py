"""Goal queries and completion."""

from fhirbridge.services.resources.base import Record, ResourceService, result_boundary


class GoalService(ResourceService):
    resource_type = "Goal"

    @result_boundary("fetch")
    async def get_by_category(self, patient_id: str, category: str) -> list[Record]:
        return await self._find(patient_id=patient_id, data_contains={"category": [category]})

    @result_boundary("update")
    async def complete(self, goal_id: str) -> Record:
        return await self.repository.update(
            self.resource_type,
            goal_id,
            {"lifecycle_status": "completed", "achievement_status": "achieved"},
        )
