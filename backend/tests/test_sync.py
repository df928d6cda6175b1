"""Tests for the FHIR sync engine.

The remote FHIR server is simulated with ``httpx.MockTransport`` and storage
with the in-memory repository, so these tests exercise fetch, mapping,
idempotent upsert and error reporting end to end.
"""

import httpx
import pytest
import pytest_asyncio

from fhirbridge.errors import PersistenceError
from fhirbridge.schemas.sync import SyncConnection
from fhirbridge.services.sync import FhirSyncEngine


def searchset(*resources) -> dict:
    return {
        "resourceType": "Bundle",
        "type": "searchset",
        "entry": [{"resource": resource} for resource in resources],
    }


def medication_request(resource_id: str, display: str = "Lisinopril 10 MG Oral Tablet") -> dict:
    return {
        "resourceType": "MedicationRequest",
        "id": resource_id,
        "status": "active",
        "medicationCodeableConcept": {"coding": [{"code": "314076", "display": display}]},
    }


@pytest.fixture
def connection(patient_id) -> SyncConnection:
    return SyncConnection(
        connection_id="conn-1",
        patient_id=patient_id,
        external_patient_id="ext-1",
        fhir_server_url="https://fhir.example.com/r4/",
        access_token="secret-token",
    )


@pytest_asyncio.fixture
async def make_engine(memory_repository, audit_logger):
    """Build an engine whose HTTP client answers with ``handler``."""
    clients = []

    def factory(handler, repository=None) -> FhirSyncEngine:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return FhirSyncEngine(
            repository if repository is not None else memory_repository,
            http_client=client,
            audit=audit_logger,
        )

    yield factory

    for client in clients:
        await client.aclose()


class TestFetch:
    """Tests for the remote search request."""

    @pytest.mark.asyncio
    async def test_request_shape(self, make_engine, connection):
        """Test URL, patient and status filters and auth headers."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=searchset())

        await make_engine(handler).sync_medication_requests(connection)

        request = seen[0]
        assert request.url.path == "/r4/MedicationRequest"
        assert request.url.params["patient"] == "ext-1"
        assert request.url.params["status"] == "active"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["Accept"] == "application/fhir+json"

    @pytest.mark.asyncio
    async def test_condition_filter(self, make_engine, connection):
        """Test conditions are filtered by clinical status."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=searchset())

        await make_engine(handler).sync_conditions(connection)

        assert seen[0].url.params["clinical-status"] == "active"

    @pytest.mark.asyncio
    async def test_non_success_status(self, make_engine, connection, memory_repository):
        """Test an HTTP error status is reported and nothing stored."""
        engine = make_engine(lambda request: httpx.Response(500, text="boom"))

        result = await engine.sync_procedures(connection)

        assert result.success is False
        assert result.count == 0
        assert result.errors == ["FHIR server returned 500"]
        assert memory_repository.rows == []

    @pytest.mark.asyncio
    async def test_timeout(self, make_engine, connection):
        """Test a timeout is reported as its own error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_engine(handler).sync_diagnostic_reports(connection)

        assert result.errors == ["FHIR server request timed out"]

    @pytest.mark.asyncio
    async def test_connection_error(self, make_engine, connection):
        """Test transport failures are reported without details."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await make_engine(handler).sync_conditions(connection)

        assert result.errors == ["FHIR server request failed: ConnectError"]

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_engine, connection):
        """Test an unparseable body is reported."""
        engine = make_engine(lambda request: httpx.Response(200, content=b"<html>"))

        result = await engine.sync_conditions(connection)

        assert result.errors == ["FHIR server returned invalid JSON"]

    @pytest.mark.asyncio
    async def test_bundle_without_entries(self, make_engine, connection):
        """Test an empty searchset is a successful sync of nothing."""
        engine = make_engine(lambda request: httpx.Response(200, json={"resourceType": "Bundle"}))

        result = await engine.sync_conditions(connection)

        assert result.success is True
        assert result.count == 0


class TestSyncResourceType:
    """Tests for per-entry mapping and upsert."""

    @pytest.mark.asyncio
    async def test_malformed_entry_does_not_block_others(
        self, make_engine, connection, memory_repository
    ):
        """Test one bad entry is reported while the rest are stored."""
        bundle = {
            "resourceType": "Bundle",
            "entry": [
                {"resource": medication_request("m1")},
                {"resource": {"resourceType": "MedicationRequest", "status": "active"}},
                {"resource": medication_request("m3", "Metformin 500 MG")},
            ],
        }
        engine = make_engine(lambda request: httpx.Response(200, json=bundle))

        result = await engine.sync_medication_requests(connection)

        assert result.count == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("MedicationRequest None:")
        assert result.success is False
        stored = memory_repository.of_type("MedicationRequest")
        assert {r["external_id"] for r in stored} == {"m1", "m3"}
        assert all(r["sync_source"] == "conn-1" for r in stored)

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(self, make_engine, connection, memory_repository):
        """Test syncing the same entries twice keeps one record per external id."""
        bundle = searchset(medication_request("m1"), medication_request("m2"))
        engine = make_engine(lambda request: httpx.Response(200, json=bundle))

        await engine.sync_medication_requests(connection)
        result = await engine.sync_medication_requests(connection)

        assert result.count == 2
        assert len(memory_repository.of_type("MedicationRequest")) == 2

    @pytest.mark.asyncio
    async def test_upsert_failure_is_per_entry(
        self, make_engine, connection, mock_repository
    ):
        """Test a storage failure is reported against the entry, sanitized."""
        mock_repository.upsert_by_external_id.side_effect = PersistenceError(
            "duplicate key", code="23505"
        )
        bundle = searchset(medication_request("m1"))
        engine = make_engine(lambda request: httpx.Response(200, json=bundle), mock_repository)

        result = await engine.sync_medication_requests(connection)

        assert result.count == 0
        assert result.errors == ["MedicationRequest m1: Duplicate record exists"]

    @pytest.mark.asyncio
    async def test_unsupported_type(self, make_engine, connection):
        """Test asking for an unmapped type is a programming error."""
        engine = make_engine(lambda request: httpx.Response(200, json=searchset()))
        with pytest.raises(ValueError, match="Unsupported sync resource type"):
            await engine.sync_resource_type(connection, "Patient")

    @pytest.mark.asyncio
    async def test_sync_is_audited(self, make_engine, connection, mock_security_repository):
        """Test each type sync writes a FHIR_SYNC audit event."""
        bundle = searchset(medication_request("m1"))
        engine = make_engine(lambda request: httpx.Response(200, json=bundle))

        await engine.sync_medication_requests(connection)

        payload = mock_security_repository.log_audit_event.await_args.args[0]
        assert payload["event_type"] == "FHIR_SYNC"
        assert payload["resource_type"] == "MedicationRequest"
        assert payload["metadata"]["count"] == 1
        assert payload["success"] is True


class TestSyncAllForPatient:
    """Tests for sync_all_new_resources_for_patient."""

    @pytest.mark.asyncio
    async def test_syncs_every_type(self, make_engine, connection, memory_repository):
        """Test each supported type is fetched and summarized."""
        resources = {
            "MedicationRequest": medication_request("m1"),
            "Condition": {"resourceType": "Condition", "id": "c1"},
            "DiagnosticReport": {"resourceType": "DiagnosticReport", "id": "d1"},
            "Procedure": {"resourceType": "Procedure", "id": "p1"},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            resource_type = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=searchset(resources[resource_type]))

        summary = await make_engine(handler).sync_all_new_resources_for_patient(connection)

        assert summary.success is True
        assert summary.count == 4
        assert summary.summary == {
            "medication_requests": 1,
            "conditions": 1,
            "diagnostic_reports": 1,
            "procedures": 1,
        }
        assert len(memory_repository.rows) == 4

    @pytest.mark.asyncio
    async def test_one_failing_type_does_not_stop_others(self, make_engine, connection):
        """Test a failing fetch is reported while other types still sync."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/Condition"):
                return httpx.Response(503)
            return httpx.Response(200, json=searchset())

        summary = await make_engine(handler).sync_all_new_resources_for_patient(connection)

        assert summary.success is False
        assert summary.errors == ["FHIR server returned 503"]
        assert summary.summary["conditions"] == 0

    @pytest.mark.asyncio
    async def test_unreachable_database_reports_every_type(
        self, make_engine, connection, unreachable_repository
    ):
        """Test a refused database connection is collected per entry for every type."""

        def handler(request: httpx.Request) -> httpx.Response:
            resource_type = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json=searchset({"resourceType": resource_type, "id": "r1"})
            )

        engine = make_engine(handler, repository=unreachable_repository)
        summary = await engine.sync_all_new_resources_for_patient(connection)

        assert summary.success is False
        assert summary.count == 0
        assert set(summary.summary) == {
            "medication_requests",
            "conditions",
            "diagnostic_reports",
            "procedures",
        }
        assert len(summary.errors) == 4


class TestSelfReportSync:
    """Tests for self-report -> Observation sync."""

    @pytest.fixture
    def engine(self, make_engine):
        return make_engine(lambda request: httpx.Response(404))

    @pytest.mark.asyncio
    async def test_sync_one_report(self, engine, memory_repository, patient_id):
        """Test a report's vitals become Observations and the report is marked synced."""
        memory_repository.self_reports["r1"] = {
            "id": "r1",
            "patient_id": patient_id,
            "reported_at": "2024-02-01T08:00:00+00:00",
            "bp_systolic": 130,
            "bp_diastolic": 85,
            "heart_rate": 72,
        }

        result = await engine.sync_self_report_to_fhir("r1")

        assert result.success is True
        assert len(result.observation_ids) == 2
        assert "r1" in memory_repository.synced_reports
        observations = memory_repository.of_type("Observation")
        assert {o["code"] for o in observations} == {"85354-9", "8867-4"}

    @pytest.mark.asyncio
    async def test_resync_updates_same_observations(self, engine, memory_repository, patient_id):
        """Test re-syncing a report reuses its Observations."""
        memory_repository.self_reports["r1"] = {"id": "r1", "patient_id": patient_id, "spo2": 97}

        first = await engine.sync_self_report_to_fhir("r1")
        second = await engine.sync_self_report_to_fhir("r1")

        assert first.observation_ids == second.observation_ids
        assert len(memory_repository.of_type("Observation")) == 1

    @pytest.mark.asyncio
    async def test_missing_report(self, engine):
        """Test an unknown report id fails cleanly."""
        result = await engine.sync_self_report_to_fhir("nope")
        assert result.success is False
        assert result.error == "Self report not found"

    @pytest.mark.asyncio
    async def test_batch_sync(self, engine, memory_repository, patient_id):
        """Test the batch syncs every pending report once."""
        for report_id in ("r1", "r2"):
            memory_repository.self_reports[report_id] = {
                "id": report_id,
                "patient_id": patient_id,
                "weight": 180.0,
            }

        first = await engine.sync_all_self_reports_to_fhir()
        second = await engine.sync_all_self_reports_to_fhir()

        assert first.success is True
        assert first.synced_count == 2
        assert first.error_count == 0
        assert second.synced_count == 0

    @pytest.mark.asyncio
    async def test_batch_counts_failures(self, make_engine, mock_repository, patient_id):
        """Test a failing report is counted while the rest continue."""
        mock_repository.list_unsynced_self_reports.return_value = [
            {"id": "r1", "patient_id": patient_id, "heart_rate": 70},
            {"id": "r2", "patient_id": patient_id, "heart_rate": 75},
        ]
        mock_repository.record_self_report_observations.side_effect = [
            [{"id": "obs-1"}],
            PersistenceError("connection reset"),
        ]
        engine = make_engine(lambda request: httpx.Response(404), mock_repository)

        result = await engine.sync_all_self_reports_to_fhir()

        assert result.success is False
        assert result.synced_count == 1
        assert result.error_count == 1
