"""Provenance: who did what to which resource, and when.

Provenance rows are append-only; ``delete`` refuses with ``ImmutableResourceError``.
"""

from collections.abc import Sequence

from fhirbridge.services.resources.base import (
    Record,
    ResourceService,
    days_ago,
    result_boundary,
    utc_now,
)


class ProvenanceService(ResourceService):
    resource_type = "Provenance"

    @result_boundary("fetch")
    async def get_for_resource(
        self, target_reference: str, target_type: str | None = None
    ) -> list[Record]:
        contains: dict = {"target_references": [target_reference]}
        if target_type:
            contains["target_types"] = [target_type]
        return await self._find(data_contains=contains)

    @result_boundary("fetch")
    async def get_by_agent(self, agent_id: str) -> list[Record]:
        return await self._find(data_contains={"agent": [{"who_id": agent_id}]})

    @result_boundary("fetch")
    async def get_audit_trail(self, patient_reference: str, days: int = 90) -> list[Record]:
        return await self._find(
            data_contains={"target_references": [patient_reference]},
            since=days_ago(days),
        )

    @result_boundary("create")
    async def record_audit(
        self,
        target_references: Sequence[str],
        activity: str,
        agent_id: str,
        target_types: Sequence[str] | None = None,
        agent_type: str | None = None,
        on_behalf_of_id: str | None = None,
        reason: str | None = None,
    ) -> Record:
        """Append a provenance record for a single agent action."""
        agent = {"who_id": agent_id, "type": agent_type, "on_behalf_of_id": on_behalf_of_id}
        record = {
            "target_references": list(target_references),
            "target_types": list(target_types or []),
            "recorded": utc_now(),
            "activity": activity,
            "agent": [{k: v for k, v in agent.items() if v is not None}],
            "reason": reason,
        }
        return await self.repository.insert(
            self.resource_type, {k: v for k, v in record.items() if v is not None}
        )
