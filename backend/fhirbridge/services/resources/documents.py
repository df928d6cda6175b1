"""DocumentReference queries and versioning."""

from collections.abc import Mapping
from typing import Any

from fhirbridge.errors import ResourceNotFoundError
from fhirbridge.mappers.constants import CLINICAL_NOTE_TYPES, DISCHARGE_SUMMARY_TYPE
from fhirbridge.services.resources.base import Record, ResourceService, result_boundary


class DocumentReferenceService(ResourceService):
    resource_type = "DocumentReference"

    @result_boundary("fetch")
    async def get_by_type(self, patient_id: str, type_code: str) -> list[Record]:
        return await self._find(patient_id=patient_id, codes=[type_code])

    @result_boundary("fetch")
    async def get_clinical_notes(self, patient_id: str, limit: int | None = 20) -> list[Record]:
        return await self._find(
            patient_id=patient_id,
            codes=CLINICAL_NOTE_TYPES,
            statuses=self.definition.active_statuses,
            limit=limit,
        )

    @result_boundary("fetch")
    async def get_discharge_summaries(self, patient_id: str) -> list[Record]:
        return await self._find(patient_id=patient_id, codes=[DISCHARGE_SUMMARY_TYPE])

    @result_boundary("fetch")
    async def get_by_encounter(self, encounter_id: str) -> list[Record]:
        return await self._find(encounter_id=encounter_id)

    @result_boundary("supersede")
    async def supersede(self, document_id: str, replacement: Mapping[str, Any]) -> Record:
        """Mark a document superseded and store its replacement.

        The replacement inherits the patient of the original and records
        which document it replaces.

        Returns:
            The new document.
        """
        original = await self.repository.get_by_id(self.resource_type, document_id)
        if original is None:
            raise ResourceNotFoundError(self.resource_type, document_id)
        await self.repository.update(self.resource_type, document_id, {"status": "superseded"})
        record = {
            "patient_id": original.get("patient_id"),
            "status": "current",
            **replacement,
            "replaces_id": document_id,
        }
        return await self.repository.insert(self.resource_type, self.definition.normalize(record))
