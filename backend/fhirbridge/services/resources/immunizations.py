"""Immunization queries and vaccine care-gap checks."""

from datetime import datetime

from fhirbridge.mappers.helpers import parse_timestamp
from fhirbridge.services.resources.base import Record, ResourceService, days_ago, result_boundary

# Months are approximated as 30 days for due-date checks
DAYS_PER_MONTH = 30


class ImmunizationService(ResourceService):
    resource_type = "Immunization"

    @result_boundary("fetch")
    async def get_completed(self, patient_id: str) -> list[Record]:
        return await self._find(patient_id=patient_id, statuses=("completed",))

    @result_boundary("fetch")
    async def get_by_vaccine_code(self, patient_id: str, vaccine_code: str) -> list[Record]:
        return await self._find(patient_id=patient_id, codes=[vaccine_code])

    @result_boundary("check")
    async def check_vaccine_due(
        self, patient_id: str, vaccine_code: str, months_since_last: int = 12
    ) -> bool:
        """True when no completed dose was given within the interval."""
        latest = await self._first(
            patient_id=patient_id, codes=[vaccine_code], statuses=("completed",)
        )
        if latest is None:
            return True
        given = parse_timestamp(latest.get("occurrence_datetime"))
        return given is None or given < days_ago(months_since_last * DAYS_PER_MONTH)

    @result_boundary("search")
    async def search(
        self,
        patient_id: str | None = None,
        status: str | None = None,
        vaccine_code: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            statuses=[status] if status else None,
            codes=[vaccine_code] if vaccine_code else None,
            since=since,
            until=until,
        )
