"""CareTeam service with member management."""

from collections.abc import Mapping
from typing import Any

from fhirbridge.errors import ResourceNotFoundError
from fhirbridge.services.resources.base import Record, ResourceService, result_boundary


class CareTeamService(ResourceService):
    resource_type = "CareTeam"

    def soft_delete_changes(self) -> dict[str, Any]:
        return {"status": "inactive"}

    async def _load(self, team_id: str) -> Record:
        team = await self.repository.get_by_id(self.resource_type, team_id)
        if team is None:
            raise ResourceNotFoundError(self.resource_type, team_id)
        return team

    @result_boundary("fetch")
    async def get_active(self, patient_id: str) -> list[Record]:
        """Active teams whose period covers now."""
        return await self._find(
            patient_id=patient_id,
            statuses=self.definition.active_statuses,
            current_period=True,
        )

    @result_boundary("fetch")
    async def get_members(self, team_id: str) -> list[dict[str, Any]]:
        team = await self._load(team_id)
        return list(team.get("participants") or [])

    @result_boundary("update")
    async def add_member(self, team_id: str, member: Mapping[str, Any]) -> Record:
        if not member.get("member_id"):
            raise ValueError("member_id is required")
        team = await self._load(team_id)
        participants = [
            p for p in team.get("participants") or [] if p.get("member_id") != member["member_id"]
        ]
        participants.append(dict(member))
        return await self.repository.update(
            self.resource_type, team_id, {"participants": participants}
        )

    @result_boundary("update")
    async def remove_member(self, team_id: str, member_id: str) -> Record:
        team = await self._load(team_id)
        participants = [
            p for p in team.get("participants") or [] if p.get("member_id") != member_id
        ]
        return await self.repository.update(
            self.resource_type, team_id, {"participants": participants}
        )
