"""Per-type resource access services.

``build_services`` wires one instance of every service to a repository;
``FhirServices`` is the single entry point handed to callers.
"""

from dataclasses import dataclass

from fhirbridge.repositories.clinical import ClinicalRepository
from fhirbridge.services.resources.allergies import AllergyIntoleranceService
from fhirbridge.services.resources.base import ResourceService, result_boundary
from fhirbridge.services.resources.care_plans import CarePlanService
from fhirbridge.services.resources.care_teams import CareTeamService
from fhirbridge.services.resources.conditions import ConditionService
from fhirbridge.services.resources.diagnostic_reports import DiagnosticReportService
from fhirbridge.services.resources.directory import (
    LocationService,
    MedicationService,
    OrganizationService,
)
from fhirbridge.services.resources.documents import DocumentReferenceService
from fhirbridge.services.resources.encounters import EncounterService
from fhirbridge.services.resources.goals import GoalService
from fhirbridge.services.resources.immunizations import ImmunizationService
from fhirbridge.services.resources.medication_requests import MedicationRequestService
from fhirbridge.services.resources.observations import ObservationService
from fhirbridge.services.resources.practitioners import (
    PractitionerRoleService,
    PractitionerService,
)
from fhirbridge.services.resources.procedures import ProcedureService
from fhirbridge.services.resources.provenance import ProvenanceService


@dataclass(frozen=True)
class FhirServices:
    """One service instance per resource type."""

    medication_request: MedicationRequestService
    condition: ConditionService
    diagnostic_report: DiagnosticReportService
    procedure: ProcedureService
    observation: ObservationService
    immunization: ImmunizationService
    care_plan: CarePlanService
    care_team: CareTeamService
    practitioner: PractitionerService
    practitioner_role: PractitionerRoleService
    allergy_intolerance: AllergyIntoleranceService
    encounter: EncounterService
    document_reference: DocumentReferenceService
    goal: GoalService
    location: LocationService
    organization: OrganizationService
    medication: MedicationService
    provenance: ProvenanceService

    def for_type(self, resource_type: str) -> ResourceService:
        """Look up the service for a FHIR resource type.

        Raises:
            KeyError: If no service handles the type.
        """
        for service in vars(self).values():
            if service.resource_type == resource_type:
                return service
        raise KeyError(f"No service for resource type: {resource_type}")


def build_services(repository: ClinicalRepository) -> FhirServices:
    return FhirServices(
        medication_request=MedicationRequestService(repository),
        condition=ConditionService(repository),
        diagnostic_report=DiagnosticReportService(repository),
        procedure=ProcedureService(repository),
        observation=ObservationService(repository),
        immunization=ImmunizationService(repository),
        care_plan=CarePlanService(repository),
        care_team=CareTeamService(repository),
        practitioner=PractitionerService(repository),
        practitioner_role=PractitionerRoleService(repository),
        allergy_intolerance=AllergyIntoleranceService(repository),
        encounter=EncounterService(repository),
        document_reference=DocumentReferenceService(repository),
        goal=GoalService(repository),
        location=LocationService(repository),
        organization=OrganizationService(repository),
        medication=MedicationService(repository),
        provenance=ProvenanceService(repository),
    )


__all__ = [
    "AllergyIntoleranceService",
    "CarePlanService",
    "CareTeamService",
    "ConditionService",
    "DiagnosticReportService",
    "DocumentReferenceService",
    "EncounterService",
    "FhirServices",
    "GoalService",
    "ImmunizationService",
    "LocationService",
    "MedicationRequestService",
    "MedicationService",
    "ObservationService",
    "OrganizationService",
    "PractitionerRoleService",
    "PractitionerService",
    "ProcedureService",
    "ProvenanceService",
    "ResourceService",
    "build_services",
    "result_boundary",
]
