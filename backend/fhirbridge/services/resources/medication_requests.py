"""MedicationRequest service with the allergy safety check on create."""

import logging

from fhirbridge.errors import AllergyConflictError
from fhirbridge.mappers.helpers import text_or_none
from fhirbridge.services.resources.base import Record, ResourceService, result_boundary

logger = logging.getLogger(__name__)


class MedicationRequestService(ResourceService):
    resource_type = "MedicationRequest"

    async def before_create(self, record: Record) -> Record:
        """Refuse the order when the patient has a matching active allergy.

        Raises:
            AllergyConflictError: With the most critical matching allergy.
        """
        display = text_or_none(record.get("medication_display"))
        if display is None:
            return record
        allergies = await self.repository.find_medication_allergies(record["patient_id"], display)
        if allergies:
            allergy = allergies[0]
            logger.warning(
                "Medication order blocked for patient %s by allergy %s",
                record["patient_id"],
                allergy.get("id"),
            )
            raise AllergyConflictError(
                allergen_name=allergy.get("allergen_name") or display,
                criticality=allergy.get("criticality"),
                reaction=allergy.get("reaction_description"),
            )
        return record

    @result_boundary("cancel")
    async def cancel(self, request_id: str, reason: str | None = None) -> Record:
        return await self.repository.update(
            self.resource_type,
            request_id,
            {"status": "cancelled", "note": f"Cancelled: {reason}" if reason else "Cancelled"},
        )

    @result_boundary("fetch")
    async def get_history(self, patient_id: str, limit: int = 50) -> list[Record]:
        return await self._find(patient_id=patient_id, limit=limit)
