"""Condition queries: problem list, chronic conditions and resolution."""

from fhirbridge.mappers.constants import DEFAULT_CONDITION_CATEGORY
from fhirbridge.mappers.helpers import parse_timestamp
from fhirbridge.services.resources.base import (
    Record,
    ResourceService,
    days_ago,
    result_boundary,
    utc_now,
)

# Active longer than this counts as chronic
CHRONIC_AFTER_DAYS = 90


class ConditionService(ResourceService):
    resource_type = "Condition"

    @result_boundary("fetch")
    async def get_problem_list(self, patient_id: str) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            statuses=self.definition.active_statuses,
            categories=[DEFAULT_CONDITION_CATEGORY],
        )

    @result_boundary("fetch")
    async def get_by_encounter(self, encounter_id: str) -> list[Record]:
        return await self._find(encounter_id=encounter_id)

    @result_boundary("fetch")
    async def get_chronic(self, patient_id: str) -> list[Record]:
        """Active conditions whose onset is older than ``CHRONIC_AFTER_DAYS``."""
        cutoff = days_ago(CHRONIC_AFTER_DAYS)
        active = await self._find(patient_id=patient_id, statuses=("active",))
        chronic = []
        for condition in active:
            onset = parse_timestamp(condition.get("onset_datetime"))
            if onset is not None and onset <= cutoff:
                chronic.append(condition)
        return chronic

    @result_boundary("resolve")
    async def resolve(self, condition_id: str) -> Record:
        """Mark a condition resolved and stamp its abatement time."""
        return await self.repository.update(
            self.resource_type,
            condition_id,
            {"clinical_status": "resolved", "abatement_datetime": utc_now()},
        )
