"""Locations, organizations and the medication catalog.

These records are not tied to a patient; queries run over the whole table.
"""

from fhirbridge.services.resources.base import Record, ResourceService, result_boundary


class LocationService(ResourceService):
    resource_type = "Location"

    @result_boundary("fetch")
    async def get_all(self) -> list[Record]:
        return await self._find(statuses=self.definition.active_statuses)

    @result_boundary("fetch")
    async def get_by_type(self, type_code: str) -> list[Record]:
        return await self._find(statuses=self.definition.active_statuses, codes=[type_code])

    @result_boundary("search")
    async def search(self, term: str) -> list[Record]:
        return await self._find(search=term, search_fields=("name", "city"))


class OrganizationService(ResourceService):
    resource_type = "Organization"

    @result_boundary("fetch")
    async def get_all(self) -> list[Record]:
        return await self._find(active=True)

    @result_boundary("fetch")
    async def get_by_npi(self, npi: str) -> Record | None:
        return await self._first(codes=[npi])

    @result_boundary("fetch")
    async def get_by_type(self, type_code: str) -> list[Record]:
        return await self._find(active=True, categories=[type_code])

    @result_boundary("search")
    async def search(self, term: str) -> list[Record]:
        return await self._find(active=True, search=term, search_fields=("name", "npi"))


class MedicationService(ResourceService):
    resource_type = "Medication"

    @result_boundary("fetch")
    async def get_all(self) -> list[Record]:
        return await self._find(statuses=self.definition.active_statuses)

    @result_boundary("fetch")
    async def get_by_rxnorm(self, rxnorm_code: str) -> Record | None:
        return await self._first(codes=[rxnorm_code])

    @result_boundary("search")
    async def search(self, term: str) -> list[Record]:
        return await self._find(
            statuses=self.definition.active_statuses,
            search=term,
            search_fields=("code_display", "code"),
        )
