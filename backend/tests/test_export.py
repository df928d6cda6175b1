"""Tests for Bundle/NDJSON export and the encounter views."""

import datetime
import json

import pytest
import pytest_asyncio

from fhirbridge.errors import PersistenceError
from fhirbridge.repositories.clinical import ResourceQuery
from fhirbridge.schemas.bundle import BundleEntry, FhirBundle
from fhirbridge.schemas.encounter import EncounterSearchParams
from fhirbridge.services.export import BundleExporter, EncounterBundleService, bundle_entry


# =============================================================================
# Bundle model
# =============================================================================


class TestFhirBundle:
    """Tests for the FhirBundle model."""

    def test_total_derived_from_entries(self):
        """Test FhirBundle.of counts its entries."""
        entries = [BundleEntry(full_url=f"urn:uuid:{i}", resource={}) for i in range(3)]
        bundle = FhirBundle.of(entries)
        assert bundle.total == 3
        assert bundle.type == "collection"

    def test_mismatched_total_rejected(self):
        """Test a bundle cannot claim a different total."""
        with pytest.raises(ValueError):
            FhirBundle(total=1, entry=[])

    def test_wire_format_uses_fhir_names(self):
        """Test serialization uses resourceType and fullUrl."""
        bundle = FhirBundle.of([BundleEntry(full_url="urn:uuid:1", resource={"a": 1})])
        wire = bundle.to_fhir()
        assert wire["resourceType"] == "Bundle"
        assert wire["entry"][0]["fullUrl"] == "urn:uuid:1"
        assert wire["timestamp"]

    def test_bundle_entry_uses_internal_id(self, sample_condition):
        """Test entries are addressed by the record's internal id."""
        entry = bundle_entry("Condition", {**sample_condition, "id": "abc", "fhir_id": "ext"})
        assert entry.full_url == "urn:uuid:abc"
        assert entry.resource["id"] == "ext"


# =============================================================================
# Patient export
# =============================================================================


class TestExportPatientBundle:
    """Tests for BundleExporter.export_patient_bundle."""

    @pytest.mark.asyncio
    async def test_exports_condition_and_observation(
        self, memory_repository, patient_id, sample_condition, sample_observation
    ):
        """Test a diabetic patient with a blood pressure reading exports two entries."""
        condition = await memory_repository.insert("Condition", sample_condition)
        observation = await memory_repository.insert("Observation", sample_observation)

        result = await BundleExporter(memory_repository).export_patient_bundle(patient_id)

        assert result.success
        bundle = result.bundle
        assert bundle.type == "collection"
        assert bundle.total == 2
        by_type = {e.resource["resourceType"]: e for e in bundle.entry}
        assert by_type["Condition"].full_url == f"urn:uuid:{condition['id']}"
        assert by_type["Condition"].resource["code"]["coding"][0]["code"] == "E11.9"
        assert by_type["Observation"].full_url == f"urn:uuid:{observation['id']}"
        assert by_type["Observation"].resource["valueQuantity"]["value"] == 120

    @pytest.mark.asyncio
    async def test_other_patients_excluded(
        self, memory_repository, patient_id, sample_condition
    ):
        """Test only the requested patient's records are exported."""
        await memory_repository.insert("Condition", {**sample_condition, "patient_id": "someone"})

        result = await BundleExporter(memory_repository).export_patient_bundle(patient_id)

        assert result.success
        assert result.bundle.total == 0
        assert result.bundle.entry == []

    @pytest.mark.asyncio
    async def test_non_exported_types_excluded(self, memory_repository, patient_id, sample_allergy):
        """Test allergies are not part of the clinical export."""
        await memory_repository.insert("AllergyIntolerance", sample_allergy)

        result = await BundleExporter(memory_repository).export_patient_bundle(patient_id)

        assert result.bundle.total == 0

    @pytest.mark.asyncio
    async def test_one_failed_read_fails_export(self, mock_repository, patient_id):
        """Test a single failing read yields an error and no bundle."""

        async def find(query: ResourceQuery):
            if query.resource_type == "Procedure":
                raise PersistenceError("relation does not exist")
            return []

        mock_repository.find.side_effect = find

        result = await BundleExporter(mock_repository).export_patient_bundle(patient_id)

        assert not result.success
        assert result.bundle is None
        assert result.error == "relation does not exist"

    @pytest.mark.asyncio
    async def test_unreachable_database_fails_export(self, unreachable_repository, patient_id):
        """Test a refused database connection yields a failure result."""
        result = await BundleExporter(unreachable_repository).export_patient_bundle(patient_id)

        assert not result.success
        assert result.bundle is None
        assert "Connect call failed" in result.error

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, mock_repository, patient_id):
        """Test bugs are not converted into failure results."""
        mock_repository.find.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await BundleExporter(mock_repository).export_patient_bundle(patient_id)


class TestExportPatientNdjson:
    """Tests for BundleExporter.export_patient_ndjson."""

    @pytest.mark.asyncio
    async def test_groups_by_resource_type(
        self, memory_repository, patient_id, sample_condition, sample_observation
    ):
        """Test one compact JSON line per resource, grouped by type."""
        await memory_repository.insert("Condition", sample_condition)
        await memory_repository.insert("Observation", sample_observation)
        await memory_repository.insert(
            "Observation", {**sample_observation, "code": "8462-4", "value_quantity_value": 80}
        )

        result = await BundleExporter(memory_repository).export_patient_ndjson(patient_id)

        assert result.success
        assert set(result.resources) == {"Condition", "Observation"}
        lines = result.resources["Observation"].split("\n")
        assert len(lines) == 2
        assert all(json.loads(line)["resourceType"] == "Observation" for line in lines)
        assert ", " not in lines[0]
        assert ": " not in lines[0]

    @pytest.mark.asyncio
    async def test_empty_record(self, memory_repository, patient_id):
        """Test a patient without data exports no documents."""
        result = await BundleExporter(memory_repository).export_patient_ndjson(patient_id)
        assert result.success
        assert result.resources == {}

    @pytest.mark.asyncio
    async def test_failure_propagates_error(self, mock_repository, patient_id):
        """Test a failed export returns the sanitized error."""
        mock_repository.find.side_effect = PersistenceError("timeout", code="ETIMEDOUT")

        result = await BundleExporter(mock_repository).export_patient_ndjson(patient_id)

        assert not result.success
        assert result.error == "Request timed out"


# =============================================================================
# Encounters
# =============================================================================


class TestEncounterBundleService:
    """Tests for EncounterBundleService."""

    @pytest.mark.asyncio
    async def test_encounter_bundle_includes_linked_records(
        self, memory_repository, sample_encounter, sample_condition, patient_id
    ):
        """Test the searchset holds the encounter, its diagnoses and procedures."""
        encounter = await memory_repository.insert("Encounter", sample_encounter)
        await memory_repository.insert(
            "Condition", {**sample_condition, "encounter_id": encounter["id"]}
        )
        await memory_repository.insert(
            "Procedure",
            {
                "patient_id": patient_id,
                "status": "completed",
                "code": "430193006",
                "encounter_id": encounter["id"],
            },
        )
        await memory_repository.insert("Condition", sample_condition)

        bundle = await EncounterBundleService(memory_repository).get_encounter_bundle(
            encounter["id"]
        )

        assert bundle.type == "searchset"
        assert bundle.total == 3
        types = [e.resource["resourceType"] for e in bundle.entry]
        assert types == ["Encounter", "Condition", "Procedure"]

    @pytest.mark.asyncio
    async def test_missing_encounter_bundle(self, memory_repository):
        """Test an unknown encounter has no bundle."""
        service = EncounterBundleService(memory_repository)
        assert await service.get_encounter_bundle("nope") is None

    @pytest.mark.asyncio
    async def test_failed_detail_read_returns_none(self, mock_repository, sample_encounter):
        """Test a failure loading diagnoses yields no bundle."""
        mock_repository.get_by_id.return_value = {**sample_encounter, "id": "enc-1"}
        mock_repository.find.side_effect = PersistenceError("boom")

        service = EncounterBundleService(mock_repository)

        assert await service.get_encounter_bundle("enc-1") is None

    @pytest.mark.asyncio
    async def test_get_fhir_encounter(self, memory_repository, sample_encounter):
        """Test a stored encounter is returned as FHIR."""
        stored = await memory_repository.insert("Encounter", sample_encounter)

        resource = await EncounterBundleService(memory_repository).get_fhir_encounter(stored["id"])

        assert resource["resourceType"] == "Encounter"
        assert resource["id"] == stored["id"]
        assert resource["period"]["start"] == "2024-01-15"

    @pytest.mark.asyncio
    async def test_reads_degrade_on_error(self, mock_repository, patient_id):
        """Test read failures give None or an empty list."""
        mock_repository.get_by_id.side_effect = PersistenceError("down")
        mock_repository.find.side_effect = PersistenceError("down")
        service = EncounterBundleService(mock_repository)

        assert await service.get_fhir_encounter("enc-1") is None
        assert await service.get_patient_encounters(patient_id) == []
        assert await service.search_encounters(EncounterSearchParams(patient=patient_id)) == []

    @pytest.mark.asyncio
    async def test_patient_encounters(self, memory_repository, sample_encounter, patient_id):
        """Test every encounter of the patient is returned, newest first."""
        await memory_repository.insert("Encounter", sample_encounter)
        await memory_repository.insert("Encounter", {**sample_encounter, "date_of_service": "2024-03-01"})

        encounters = await EncounterBundleService(memory_repository).get_patient_encounters(patient_id)

        assert [e["period"]["start"] for e in encounters] == ["2024-03-01", "2024-01-15"]


class TestSearchEncounters:
    """Tests for EncounterBundleService.search_encounters."""

    @pytest_asyncio.fixture
    async def service(self, memory_repository, sample_encounter):
        await memory_repository.insert("Encounter", sample_encounter)
        await memory_repository.insert(
            "Encounter",
            {**sample_encounter, "date_of_service": "2024-02-01", "class_code": "EMER"},
        )
        await memory_repository.insert(
            "Encounter",
            {**sample_encounter, "date_of_service": "2024-03-10", "status": "cancelled"},
        )
        return EncounterBundleService(memory_repository)

    @pytest.mark.asyncio
    async def test_single_day(self, service, patient_id):
        """Test ``date`` matches that whole day only."""
        results = await service.search_encounters(
            EncounterSearchParams(patient=patient_id, date=datetime.date(2024, 1, 15))
        )
        assert [e["period"]["start"] for e in results] == ["2024-01-15"]

    @pytest.mark.asyncio
    async def test_date_range(self, service, patient_id):
        """Test date_from and date_to bound the search inclusively."""
        results = await service.search_encounters(
            EncounterSearchParams(
                patient=patient_id,
                date_from=datetime.date(2024, 1, 15),
                date_to=datetime.date(2024, 2, 1),
            )
        )
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_class_filter_is_case_insensitive(self, service, patient_id):
        """Test the class filter matches the mapped class code."""
        emergency = await service.search_encounters(
            EncounterSearchParams(patient=patient_id, encounter_class="emer")
        )
        ambulatory = await service.search_encounters(
            EncounterSearchParams(patient=patient_id, encounter_class="AMB")
        )
        assert len(emergency) == 1
        assert emergency[0]["class"]["code"] == "EMER"
        assert len(ambulatory) == 2

    @pytest.mark.asyncio
    async def test_status_filter(self, service, patient_id):
        """Test status narrows the results."""
        results = await service.search_encounters(
            EncounterSearchParams(patient=patient_id, status="cancelled")
        )
        assert [e["status"] for e in results] == ["cancelled"]
