"""Clinical resource repository.

Single entry point for clinical resource persistence. Every public method
runs in its own short-lived session drawn from the injected session factory,
so concurrent callers (parallel export reads, per-entry sync upserts) never
share a session.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, delete, func, literal, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fhirbridge.errors import PersistenceError, ResourceNotFoundError
from fhirbridge.mappers.helpers import parse_timestamp, text_or_none
from fhirbridge.models.clinical import ENVELOPE_FIELDS, ClinicalResourceRow, SelfReport
from fhirbridge.registry import ResourceRegistry

# Columns an upsert must never overwrite on conflict
_IMMUTABLE_ON_CONFLICT = frozenset({"id", "fhir_id", "resource_type", "external_id", "created_at"})


@dataclass
class ResourceQuery:
    """Filters for a single read over one resource type.

    ``data_contains`` is matched with JSONB containment against the record
    body, so ``{"category": ["vital-signs"]}`` matches any record whose
    category list includes that tag and ``{"npi": "1234567890"}`` is an
    equality test.

    ``categories`` matches the indexed category or any tag of a list-valued
    category field.
    """

    resource_type: str
    patient_id: str | None = None
    statuses: Sequence[str] | None = None
    codes: Sequence[str] | None = None
    categories: Sequence[str] | None = None
    encounter_id: str | None = None
    practitioner_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    data_contains: Mapping[str, Any] = field(default_factory=dict)
    search: str | None = None
    search_fields: Sequence[str] = ()
    active: bool | None = None
    include_deleted: bool = False
    current_period: bool = False
    ascending: bool = False
    limit: int | None = None


def _as_uuid(value: Any) -> uuid.UUID:
    """Parse an id; raises ValueError for anything that is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


_LIKE_ESCAPE = "/"


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    escaped = value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
    return escaped.replace("%", _LIKE_ESCAPE + "%").replace("_", _LIKE_ESCAPE + "_")


def _escape_like_sql(expr: Any) -> Any:
    """SQL-side counterpart of ``_escape_like`` for column values."""
    escaped = func.replace(expr, _LIKE_ESCAPE, _LIKE_ESCAPE * 2)
    escaped = func.replace(escaped, "%", _LIKE_ESCAPE + "%")
    return func.replace(escaped, "_", _LIKE_ESCAPE + "_")


def _sqlstate(exc: Exception) -> str | None:
    for candidate in (getattr(exc, "orig", None), getattr(getattr(exc, "orig", None), "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def _persistence_error(exc: Exception) -> PersistenceError:
    orig = getattr(exc, "orig", None)
    message = str(orig) if orig is not None else str(exc)
    return PersistenceError(message, code=_sqlstate(exc))


class ClinicalRepository:
    """Repository for clinical resource persistence.

    Records go in and come out as plain dicts in the persisted record shape;
    the registry decides how each type is normalized and indexed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize repository with a session factory.

        Args:
            session_factory: Factory producing async SQLAlchemy sessions.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and wraps driver errors."""
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except (SQLAlchemyError, OSError) as exc:
                await db.rollback()
                raise _persistence_error(exc) from exc

    # =========================================================================
    # Reads
    # =========================================================================

    async def find(self, query: ResourceQuery) -> list[dict[str, Any]]:
        """Run one filtered read.

        Args:
            query: Filters, ordering and limit.

        Returns:
            Matching records ordered by recency (newest first unless ascending).
        """
        stmt = select(ClinicalResourceRow).where(*self._conditions(query))
        if query.ascending:
            stmt = stmt.order_by(
                ClinicalResourceRow.effective_at.asc().nulls_last(),
                ClinicalResourceRow.created_at.asc(),
            )
        else:
            stmt = stmt.order_by(
                ClinicalResourceRow.effective_at.desc().nulls_last(),
                ClinicalResourceRow.created_at.desc(),
            )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._session() as db:
            result = await db.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    async def get_by_id(self, resource_type: str, resource_id: str) -> dict[str, Any] | None:
        """Get a record by internal id.

        Args:
            resource_type: Resource type.
            resource_id: Internal UUID.

        Returns:
            The record, or None if no row matches.
        """
        stmt = select(ClinicalResourceRow).where(
            ClinicalResourceRow.id == _as_uuid(resource_id),
            ClinicalResourceRow.resource_type == resource_type,
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            try:
                return result.scalar_one().to_record()
            except NoResultFound:
                return None

    async def patient_ids_with_records(self, resource_types: Sequence[str]) -> list[str]:
        """Distinct patient ids owning at least one record of the given types."""
        stmt = (
            select(ClinicalResourceRow.patient_id)
            .where(
                ClinicalResourceRow.resource_type.in_(list(resource_types)),
                ClinicalResourceRow.patient_id.is_not(None),
                ClinicalResourceRow.deleted_at.is_(None),
            )
            .distinct()
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [str(patient_id) for patient_id in result.scalars().all()]

    async def find_medication_allergies(
        self, patient_id: str, medication_display: str
    ) -> list[dict[str, Any]]:
        """Active allergies whose allergen name overlaps a medication name.

        Matches case-insensitively in both directions (allergen within the
        medication display, or display within the allergen name). High
        criticality allergies sort first.

        Args:
            patient_id: Patient UUID.
            medication_display: Display name of the medication being ordered.

        Returns:
            Matching AllergyIntolerance records.
        """
        allergen = ClinicalResourceRow.data["allergen_name"].astext
        stmt = (
            select(ClinicalResourceRow)
            .where(
                ClinicalResourceRow.resource_type == "AllergyIntolerance",
                ClinicalResourceRow.patient_id == _as_uuid(patient_id),
                ClinicalResourceRow.status == "active",
                ClinicalResourceRow.deleted_at.is_(None),
                allergen.is_not(None),
                allergen != "",
                or_(
                    literal(medication_display).ilike(
                        func.concat("%", _escape_like_sql(allergen), "%"), escape=_LIKE_ESCAPE
                    ),
                    allergen.ilike(f"%{_escape_like(medication_display)}%", escape=_LIKE_ESCAPE),
                ),
            )
            .order_by(
                case(
                    (ClinicalResourceRow.data["criticality"].astext == "high", 0),
                    else_=1,
                )
            )
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    # =========================================================================
    # Writes
    # =========================================================================

    async def insert(self, resource_type: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a new record.

        Args:
            resource_type: Resource type.
            record: Record body plus envelope fields.

        Returns:
            The stored record.
        """
        values = self._row_values(resource_type, record)
        row = ClinicalResourceRow(**values)
        async with self._session() as db:
            db.add(row)
            await db.flush()
            await db.refresh(row)
            return row.to_record()

    async def update(
        self, resource_type: str, resource_id: str, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Merge changes into a record and re-derive its indexes.

        Args:
            resource_type: Resource type.
            resource_id: Internal UUID.
            changes: Fields to overwrite.

        Returns:
            The updated record.

        Raises:
            ResourceNotFoundError: If no row matches.
        """
        async with self._session() as db:
            row = await self._load_for_update(db, resource_type, resource_id)
            merged = {**row.to_record(), **changes}
            values = self._row_values(resource_type, merged)
            for key, value in values.items():
                if key not in _IMMUTABLE_ON_CONFLICT:
                    setattr(row, key, value)
            row.updated_at = datetime.now(timezone.utc)
            await db.flush()
            return row.to_record()

    async def soft_delete(
        self,
        resource_type: str,
        resource_id: str,
        changes: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Mark a record inactive and stamp ``deleted_at``.

        Args:
            resource_type: Resource type.
            resource_id: Internal UUID.
            changes: Extra body fields to set (e.g. an allergy's verification status).

        Returns:
            The updated record.
        """
        now = datetime.now(timezone.utc)
        return await self.update(
            resource_type,
            resource_id,
            {**(changes or {}), "active": False, "deleted_at": now.isoformat()},
        )

    async def delete(self, resource_type: str, resource_id: str) -> bool:
        """Hard-delete a record.

        Returns:
            True if a row was deleted, False if none matched.
        """
        stmt = delete(ClinicalResourceRow).where(
            ClinicalResourceRow.id == _as_uuid(resource_id),
            ClinicalResourceRow.resource_type == resource_type,
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.rowcount > 0

    async def upsert_by_external_id(
        self, resource_type: str, record: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Insert or update a record keyed on (resource_type, external_id).

        One ``INSERT ... ON CONFLICT DO UPDATE`` statement, so concurrent
        upserts of the same external id never create duplicates.

        Args:
            resource_type: Resource type.
            record: Record carrying ``external_id``.

        Returns:
            The stored record.
        """
        async with self._session() as db:
            return await self._upsert(db, resource_type, record)

    async def upsert_many(
        self, items: Sequence[tuple[str, Mapping[str, Any]]]
    ) -> list[dict[str, Any]]:
        """Upsert several records in one transaction (all or nothing).

        Args:
            items: Sequence of (resource_type, record) pairs.

        Returns:
            The stored records in input order.
        """
        async with self._session() as db:
            return [await self._upsert(db, resource_type, record) for resource_type, record in items]

    # =========================================================================
    # Self reports
    # =========================================================================

    async def get_self_report(self, report_id: str) -> dict[str, Any] | None:
        stmt = select(SelfReport).where(SelfReport.id == _as_uuid(report_id))
        async with self._session() as db:
            result = await db.execute(stmt)
            try:
                return result.scalar_one().to_record()
            except NoResultFound:
                return None

    async def list_unsynced_self_reports(self, limit: int) -> list[dict[str, Any]]:
        """Oldest self reports not yet converted to Observations."""
        stmt = (
            select(SelfReport)
            .where(SelfReport.fhir_synced_at.is_(None))
            .order_by(SelfReport.reported_at.asc())
            .limit(limit)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [report.to_record() for report in result.scalars().all()]

    async def record_self_report_observations(
        self, report_id: str, observations: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        """Upsert a report's Observations and mark the report synced, atomically.

        Args:
            report_id: Self report UUID.
            observations: Observation records derived from the report.

        Returns:
            The stored Observation records.
        """
        async with self._session() as db:
            stored = [await self._upsert(db, "Observation", obs) for obs in observations]
            await db.execute(
                update(SelfReport)
                .where(SelfReport.id == _as_uuid(report_id))
                .values(fhir_synced_at=datetime.now(timezone.utc))
            )
            return stored

    # =========================================================================
    # Internals
    # =========================================================================

    def _conditions(self, query: ResourceQuery) -> list:
        row = ClinicalResourceRow
        conditions = [row.resource_type == query.resource_type]
        if query.patient_id is not None:
            conditions.append(row.patient_id == _as_uuid(query.patient_id))
        if query.statuses:
            conditions.append(row.status.in_(list(query.statuses)))
        if query.codes:
            conditions.append(row.code.in_(list(query.codes)))
        if query.categories:
            tags = list(query.categories)
            matches = [row.category.in_(tags)]
            category_field = ResourceRegistry.get(query.resource_type).category_field
            if category_field:
                # List-valued categories match on any tag, not just the indexed first one
                matches.extend(row.data.contains({category_field: [tag]}) for tag in tags)
            conditions.append(or_(*matches))
        if query.encounter_id is not None:
            conditions.append(row.encounter_id == query.encounter_id)
        if query.practitioner_id is not None:
            conditions.append(row.practitioner_id == query.practitioner_id)
        if query.since is not None:
            conditions.append(row.effective_at >= query.since)
        if query.until is not None:
            conditions.append(row.effective_at <= query.until)
        if query.data_contains:
            conditions.append(row.data.contains(dict(query.data_contains)))
        if query.search and query.search_fields:
            pattern = f"%{_escape_like(query.search)}%"
            conditions.append(
                or_(
                    *(
                        row.data[name].astext.ilike(pattern, escape=_LIKE_ESCAPE)
                        for name in query.search_fields
                    )
                )
            )
        if query.active is not None:
            conditions.append(row.active.is_(query.active))
        if not query.include_deleted:
            conditions.append(row.deleted_at.is_(None))
        if query.current_period:
            now = datetime.now(timezone.utc)
            conditions.append(or_(row.effective_at.is_(None), row.effective_at <= now))
            conditions.append(or_(row.ends_at.is_(None), row.ends_at >= now))
        return conditions

    def _row_values(self, resource_type: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Split a record into column values using the type's definition."""
        definition = ResourceRegistry.get(resource_type)
        normalized = definition.normalize(dict(record))
        values = definition.extract_columns(normalized)
        patient_id = normalized.get("patient_id")
        values.update(
            {
                "resource_type": resource_type,
                "patient_id": _as_uuid(patient_id) if patient_id else None,
                "external_id": text_or_none(normalized.get("external_id")),
                "sync_source": text_or_none(normalized.get("sync_source")),
                "last_synced_at": parse_timestamp(normalized.get("last_synced_at")),
                "deleted_at": parse_timestamp(normalized.get("deleted_at")),
                "data": {k: v for k, v in normalized.items() if k not in ENVELOPE_FIELDS},
            }
        )
        record_id = normalized.get("id")
        values["id"] = _as_uuid(record_id) if record_id else uuid.uuid4()
        values["fhir_id"] = text_or_none(normalized.get("fhir_id")) or str(values["id"])
        return values

    async def _load_for_update(
        self, db: AsyncSession, resource_type: str, resource_id: str
    ) -> ClinicalResourceRow:
        result = await db.execute(
            select(ClinicalResourceRow)
            .where(
                ClinicalResourceRow.id == _as_uuid(resource_id),
                ClinicalResourceRow.resource_type == resource_type,
            )
            .with_for_update()
        )
        try:
            return result.scalar_one()
        except NoResultFound:
            raise ResourceNotFoundError(resource_type, str(resource_id)) from None

    async def _upsert(
        self, db: AsyncSession, resource_type: str, record: Mapping[str, Any]
    ) -> dict[str, Any]:
        values = self._row_values(resource_type, {**record, "id": None})
        stmt = pg_insert(ClinicalResourceRow).values(**values)
        assignments = {
            key: stmt.excluded[key] for key in values if key not in _IMMUTABLE_ON_CONFLICT
        }
        assignments["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            constraint="uq_clinical_type_external_id",
            set_=assignments,
        ).returning(ClinicalResourceRow)
        result = await db.execute(stmt, execution_options={"populate_existing": True})
        return result.scalar_one().to_record()
