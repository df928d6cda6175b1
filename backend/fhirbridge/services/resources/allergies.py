"""AllergyIntolerance service.

Allergies are never removed: deleting one marks it entered-in-error so the
history of what was once recorded survives.
"""

from typing import Any

from fhirbridge.services.resources.base import Record, ResourceService, result_boundary

_CRITICALITY_RANK = {"high": 0, "low": 1, "unable-to-assess": 2}


def by_criticality(allergies: list[Record]) -> list[Record]:
    """Most critical first, then alphabetically by allergen."""
    return sorted(
        allergies,
        key=lambda a: (
            _CRITICALITY_RANK.get(a.get("criticality"), len(_CRITICALITY_RANK)),
            (a.get("allergen_name") or "").lower(),
        ),
    )


class AllergyIntoleranceService(ResourceService):
    resource_type = "AllergyIntolerance"

    def soft_delete_changes(self) -> dict[str, Any]:
        return {"verification_status": "entered-in-error", "clinical_status": "inactive"}

    @result_boundary("fetch")
    async def get_all(self, patient_id: str) -> list[Record]:
        return by_criticality(await self._find(patient_id=patient_id))

    @result_boundary("fetch")
    async def get_by_type(self, patient_id: str, allergen_type: str) -> list[Record]:
        return by_criticality(
            await self._find(
                patient_id=patient_id,
                statuses=self.definition.active_statuses,
                categories=[allergen_type],
            )
        )

    @result_boundary("fetch")
    async def get_high_risk(self, patient_id: str) -> list[Record]:
        allergies = await self._find(
            patient_id=patient_id,
            statuses=self.definition.active_statuses,
            data_contains={"criticality": "high"},
        )
        return by_criticality(allergies)

    @result_boundary("check")
    async def check_medication_allergy(self, patient_id: str, medication_name: str) -> list[Record]:
        """Active allergies matching a medication name, most critical first."""
        return await self.repository.find_medication_allergies(patient_id, medication_name)
