"""Practitioner directory and practitioner roles."""

import re
from collections.abc import Mapping
from typing import Any

from fhirbridge.mappers.helpers import as_list, text_or_none
from fhirbridge.services.resources.base import (
    Record,
    ResourceService,
    result_boundary,
    utc_now,
)

NPI_PATTERN = re.compile(r"^\d{10}$")

SEARCH_FIELDS = ("family_name", "given_names", "npi", "specialties")


class PractitionerService(ResourceService):
    resource_type = "Practitioner"

    @staticmethod
    def validate_npi(npi: str) -> bool:
        """NPIs are exactly ten digits."""
        return bool(NPI_PATTERN.match(npi or ""))

    @staticmethod
    def get_full_name(practitioner: Mapping[str, Any]) -> str:
        """Prefix, given names, family name and suffixes as one display string."""
        parts = []
        prefix = as_list(practitioner.get("prefix"))
        given = as_list(practitioner.get("given_names"))
        suffix = as_list(practitioner.get("suffix"))
        if prefix:
            parts.append(" ".join(str(p) for p in prefix))
        if given:
            parts.append(" ".join(str(g) for g in given))
        if text_or_none(practitioner.get("family_name")):
            parts.append(practitioner["family_name"])
        if suffix:
            parts.append(", ".join(str(s) for s in suffix))
        return " ".join(parts).strip()

    async def before_create(self, record: Record) -> Record:
        npi = text_or_none(record.get("npi"))
        if npi is not None and not self.validate_npi(npi):
            raise ValueError("Invalid NPI: must be 10 digits")
        return record

    @result_boundary("fetch")
    async def get_all(self) -> list[Record]:
        return await self._find(active=True)

    @result_boundary("fetch")
    async def get_by_user_id(self, user_id: str) -> Record | None:
        return await self._first(data_contains={"user_id": user_id})

    @result_boundary("fetch")
    async def get_by_npi(self, npi: str) -> Record | None:
        return await self._first(codes=[npi])

    @result_boundary("search")
    async def search(self, term: str) -> list[Record]:
        """Active practitioners whose name, NPI or specialty contains the term."""
        return await self._find(active=True, search=term, search_fields=SEARCH_FIELDS)

    @result_boundary("fetch")
    async def get_by_specialty(self, specialty: str) -> list[Record]:
        return await self._find(active=True, data_contains={"specialties": [specialty]})

    @result_boundary("delete")
    async def hard_delete(self, practitioner_id: str) -> bool:
        return await self.repository.delete(self.resource_type, practitioner_id)


class PractitionerRoleService(ResourceService):
    resource_type = "PractitionerRole"

    async def before_create(self, record: Record) -> Record:
        record.setdefault("period_start", utc_now())
        record.setdefault("active", True)
        return record

    @result_boundary("fetch")
    async def get_by_practitioner(self, practitioner_id: str) -> list[Record]:
        return await self._find(practitioner_id=practitioner_id)

    @result_boundary("fetch")
    async def get_active_by_practitioner(self, practitioner_id: str) -> list[Record]:
        """Active roles whose period covers now."""
        return await self._find(practitioner_id=practitioner_id, active=True, current_period=True)

    @result_boundary("update")
    async def end(self, role_id: str) -> Record:
        return await self.repository.update(self.resource_type, role_id, {"period_end": utc_now()})
