"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- An in-memory clinical repository used by service, sync and export tests
- Mocked security repository and a real audit logger on top of it
- HTTP client for API testing with dependency overrides
- PostgreSQL test database engine (tests skip when it is unreachable)
- Common clinical records and remote FHIR resources
"""

import os
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fhirbridge import models  # noqa: F401
from fhirbridge.config import settings
from fhirbridge.database import Base
from fhirbridge.dependencies import get_clinical_repository, get_security_repository
from fhirbridge.errors import ResourceNotFoundError
from fhirbridge.main import app
from fhirbridge.registry import ResourceRegistry
from fhirbridge.repositories.clinical import ClinicalRepository, ResourceQuery
from fhirbridge.repositories.security import SecurityRepository
from fhirbridge.services.security import AuditLogger

TEST_API_KEY = "test-api-key"


# =============================================================================
# In-memory repository
# =============================================================================


def _contains(actual: Any, expected: Any) -> bool:
    """JSONB containment (``@>``) over plain Python values."""
    if isinstance(expected, Mapping):
        return isinstance(actual, Mapping) and all(
            key in actual and _contains(actual[key], value) for key, value in expected.items()
        )
    if isinstance(expected, list):
        return isinstance(actual, list) and all(
            any(_contains(item, wanted) for item in actual) for wanted in expected
        )
    return actual == expected


def _has_category(row: dict[str, Any], categories: Sequence[str]) -> bool:
    """Indexed category, or any tag of a list-valued category field."""
    if row["columns"]["category"] in categories:
        return True
    field = ResourceRegistry.get(row["resource_type"]).category_field
    values = row["record"].get(field) if field else None
    return isinstance(values, list) and any(tag in values for tag in categories)


class InMemoryClinicalRepository:
    """Dict-backed stand-in for ClinicalRepository.

    Records are indexed with the same resource definitions the real
    repository uses, so status/code/category/recency filters behave alike.
    """

    def __init__(self):
        self.rows: list[dict[str, Any]] = []
        self.self_reports: dict[str, dict[str, Any]] = {}
        self.synced_reports: set[str] = set()

    def _index(self, resource_type: str, record: Mapping[str, Any]) -> dict[str, Any]:
        definition = ResourceRegistry.get(resource_type)
        normalized = definition.normalize(dict(record))
        if not normalized.get("id"):
            normalized["id"] = str(uuid.uuid4())
        normalized.setdefault("fhir_id", normalized["id"])
        normalized.setdefault("deleted_at", None)
        columns = definition.extract_columns(normalized)
        normalized["active"] = columns["active"]
        return {
            "resource_type": resource_type,
            "record": normalized,
            "columns": columns,
            "sequence": len(self.rows),
        }

    def _matches(self, row: dict[str, Any], query: ResourceQuery) -> bool:
        record, columns = row["record"], row["columns"]
        effective = columns["effective_at"]
        checks = [
            row["resource_type"] == query.resource_type,
            query.patient_id is None or record.get("patient_id") == query.patient_id,
            not query.statuses or columns["status"] in query.statuses,
            not query.codes or columns["code"] in query.codes,
            not query.categories or _has_category(row, query.categories),
            query.encounter_id is None or columns["encounter_id"] == query.encounter_id,
            query.practitioner_id is None or columns["practitioner_id"] == query.practitioner_id,
            query.since is None or (effective is not None and effective >= query.since),
            query.until is None or (effective is not None and effective <= query.until),
            _contains(record, dict(query.data_contains)),
            query.active is None or record.get("active") is query.active,
            query.include_deleted or record.get("deleted_at") is None,
        ]
        if query.search and query.search_fields:
            term = query.search.lower()
            checks.append(
                any(term in str(record.get(name) or "").lower() for name in query.search_fields)
            )
        if query.current_period:
            now = datetime.now(timezone.utc)
            checks.append(effective is None or effective <= now)
            checks.append(columns["ends_at"] is None or columns["ends_at"] >= now)
        return all(checks)

    async def find(self, query: ResourceQuery) -> list[dict[str, Any]]:
        matching = [row for row in self.rows if self._matches(row, query)]
        dated = [row for row in matching if row["columns"]["effective_at"] is not None]
        undated = [row for row in matching if row["columns"]["effective_at"] is None]
        dated.sort(
            key=lambda r: (r["columns"]["effective_at"], r["sequence"]),
            reverse=not query.ascending,
        )
        undated.sort(key=lambda r: r["sequence"], reverse=not query.ascending)
        ordered = dated + undated
        if query.limit is not None:
            ordered = ordered[: query.limit]
        return [dict(row["record"]) for row in ordered]

    async def get_by_id(self, resource_type: str, resource_id: str) -> dict[str, Any] | None:
        for row in self.rows:
            if row["resource_type"] == resource_type and row["record"]["id"] == resource_id:
                return dict(row["record"])
        return None

    async def patient_ids_with_records(self, resource_types: Sequence[str]) -> list[str]:
        return sorted(
            {
                row["record"]["patient_id"]
                for row in self.rows
                if row["resource_type"] in resource_types
                and row["record"].get("patient_id")
                and row["record"].get("deleted_at") is None
            }
        )

    async def find_medication_allergies(
        self, patient_id: str, medication_display: str
    ) -> list[dict[str, Any]]:
        display = medication_display.lower()
        matches = []
        for row in self.rows:
            record = row["record"]
            allergen = (record.get("allergen_name") or "").lower()
            if (
                row["resource_type"] == "AllergyIntolerance"
                and record.get("patient_id") == patient_id
                and row["columns"]["status"] == "active"
                and record.get("deleted_at") is None
                and allergen
                and (allergen in display or display in allergen)
            ):
                matches.append(dict(record))
        return sorted(matches, key=lambda r: 0 if r.get("criticality") == "high" else 1)

    async def insert(self, resource_type: str, record: Mapping[str, Any]) -> dict[str, Any]:
        row = self._index(resource_type, record)
        self.rows.append(row)
        return dict(row["record"])

    async def update(
        self, resource_type: str, resource_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        for position, row in enumerate(self.rows):
            if row["resource_type"] == resource_type and row["record"]["id"] == resource_id:
                updated = self._index(resource_type, {**row["record"], **changes})
                updated["sequence"] = row["sequence"]
                self.rows[position] = updated
                return dict(updated["record"])
        raise ResourceNotFoundError(resource_type, resource_id)

    async def soft_delete(
        self,
        resource_type: str,
        resource_id: str,
        changes: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        return await self.update(
            resource_type,
            resource_id,
            {**(changes or {}), "active": False, "deleted_at": now.isoformat()},
        )

    async def delete(self, resource_type: str, resource_id: str) -> bool:
        before = len(self.rows)
        self.rows = [
            row
            for row in self.rows
            if not (row["resource_type"] == resource_type and row["record"]["id"] == resource_id)
        ]
        return len(self.rows) < before

    async def upsert_by_external_id(
        self, resource_type: str, record: Mapping[str, Any]
    ) -> dict[str, Any]:
        for row in self.rows:
            if (
                row["resource_type"] == resource_type
                and row["record"].get("external_id") == record.get("external_id")
            ):
                return await self.update(resource_type, row["record"]["id"], dict(record))
        return await self.insert(resource_type, record)

    async def upsert_many(
        self, items: Sequence[tuple[str, Mapping[str, Any]]]
    ) -> list[dict[str, Any]]:
        return [await self.upsert_by_external_id(t, record) for t, record in items]

    async def get_self_report(self, report_id: str) -> dict[str, Any] | None:
        return self.self_reports.get(report_id)

    async def list_unsynced_self_reports(self, limit: int) -> list[dict[str, Any]]:
        pending = [r for r in self.self_reports.values() if r["id"] not in self.synced_reports]
        return pending[:limit]

    async def record_self_report_observations(
        self, report_id: str, observations: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        stored = [await self.upsert_by_external_id("Observation", obs) for obs in observations]
        self.synced_reports.add(report_id)
        return stored

    def of_type(self, resource_type: str) -> list[dict[str, Any]]:
        """Every stored record of one type, in insertion order."""
        return [dict(row["record"]) for row in self.rows if row["resource_type"] == resource_type]


@pytest.fixture
def memory_repository() -> InMemoryClinicalRepository:
    """Empty in-memory clinical repository."""
    return InMemoryClinicalRepository()


@pytest.fixture
def mock_repository() -> AsyncMock:
    """AsyncMock with the ClinicalRepository interface."""
    return AsyncMock(spec=ClinicalRepository)


@pytest.fixture
def mock_security_repository() -> AsyncMock:
    """Security repository whose rate limit checks always pass."""
    repository = AsyncMock(spec=SecurityRepository)
    repository.check_rate_limit.return_value = True
    return repository


class UnreachableSession:
    """AsyncSession stand-in whose every round trip is refused by the server."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    def add(self, instance):
        pass

    async def _refuse(self, *args, **kwargs):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    execute = flush = refresh = commit = _refuse

    async def rollback(self):
        pass


@pytest.fixture
def unreachable_repository() -> ClinicalRepository:
    """ClinicalRepository whose database refuses every connection."""
    return ClinicalRepository(UnreachableSession)


@pytest.fixture
def unreachable_security_repository() -> SecurityRepository:
    """SecurityRepository whose database refuses every connection."""
    return SecurityRepository(UnreachableSession)


@pytest.fixture
def audit_logger(mock_security_repository) -> AuditLogger:
    """Real audit logger writing into the mocked security repository."""
    return AuditLogger(mock_security_repository)


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def api_headers() -> dict[str, str]:
    """Authentication headers for API requests."""
    return {"X-API-Key": TEST_API_KEY}


@pytest_asyncio.fixture
async def client(monkeypatch, memory_repository, mock_security_repository):
    """Async test client for the FastAPI app backed by test doubles."""
    monkeypatch.setattr(settings, "api_key", TEST_API_KEY)
    app.dependency_overrides[get_clinical_repository] = lambda: memory_repository
    app.dependency_overrides[get_security_repository] = lambda: mock_security_repository

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine with automatic schema management.

    Creates all tables before the test and drops them after. Uses
    DATABASE_TEST_URL when set, otherwise a ``fhirbridge_test`` database next
    to the configured one. Skips the test when PostgreSQL is unreachable.
    """
    db_url = os.environ.get("DATABASE_TEST_URL")
    if not db_url:
        db_url = settings.database_url.rsplit("/", 1)[0] + "/fhirbridge_test"

    engine = create_async_engine(db_url, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (OSError, SQLAlchemyError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not available: {type(e).__name__}")

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


# =============================================================================
# Sample data
# =============================================================================


@pytest.fixture
def patient_id() -> str:
    """Generate a unique patient ID for testing."""
    return str(uuid.uuid4())


@pytest.fixture
def sample_condition(patient_id) -> dict:
    """Active type 2 diabetes on the problem list."""
    return {
        "patient_id": patient_id,
        "clinical_status": "active",
        "verification_status": "confirmed",
        "category": ["problem-list-item"],
        "code_system": "http://hl7.org/fhir/sid/icd-10-cm",
        "code": "E11.9",
        "code_display": "Type 2 diabetes mellitus without complications",
        "onset_datetime": "2020-03-01T00:00:00+00:00",
        "recorded_date": "2020-03-02T00:00:00+00:00",
    }


@pytest.fixture
def sample_observation(patient_id) -> dict:
    """Systolic blood pressure of 120 mmHg."""
    return {
        "patient_id": patient_id,
        "status": "final",
        "category": ["vital-signs"],
        "code": "8480-6",
        "code_display": "Systolic blood pressure",
        "effective_datetime": "2024-01-15T10:30:00+00:00",
        "value_quantity_value": 120,
        "value_quantity_unit": "mmHg",
        "value_quantity_code": "mm[Hg]",
    }


@pytest.fixture
def sample_allergy(patient_id) -> dict:
    """High criticality penicillin allergy."""
    return {
        "patient_id": patient_id,
        "clinical_status": "active",
        "verification_status": "confirmed",
        "allergen_name": "Penicillin",
        "allergen_type": "medication",
        "criticality": "high",
        "reaction_description": "Anaphylaxis",
        "recorded_date": "2019-06-01",
    }


@pytest.fixture
def sample_encounter(patient_id) -> dict:
    """Ambulatory visit with two diagnoses and an attending provider."""
    return {
        "patient_id": patient_id,
        "status": "finished",
        "date_of_service": "2024-01-15",
        "patient": {"first_name": "John", "last_name": "Doe"},
        "provider": {"id": "prov-789", "organization_name": "WellFit Clinic"},
        "diagnoses": [
            {"code": "I10", "sequence": 2},
            {"code": "E11.9", "sequence": 1},
        ],
    }


@pytest.fixture
def fhir_medication_request() -> dict:
    """Active lisinopril order as returned by a remote FHIR server."""
    return {
        "resourceType": "MedicationRequest",
        "id": "medreq-1",
        "status": "active",
        "intent": "order",
        "medicationCodeableConcept": {
            "coding": [
                {
                    "system": "http://www.nlm.nih.gov/research/umls/rxnorm",
                    "code": "314076",
                    "display": "Lisinopril 10 MG Oral Tablet",
                }
            ]
        },
        "dosageInstruction": [{"text": "Take one tablet daily"}],
        "authoredOn": "2024-01-10T09:00:00Z",
        "requester": {"reference": "Practitioner/prac-1"},
    }


@pytest.fixture
def fhir_condition() -> dict:
    """Remote hypertension Condition with no category."""
    return {
        "resourceType": "Condition",
        "id": "cond-1",
        "clinicalStatus": {"coding": [{"code": "active"}]},
        "code": {"coding": [{"code": "38341003", "display": "Hypertension"}]},
        "onsetDateTime": "2018-05-01",
    }
