"""SQLAlchemy models for clinical resources and patient self-reports."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from fhirbridge.database import Base

# Envelope keys owned by the row columns rather than the record body
ENVELOPE_FIELDS = frozenset(
    {
        "id",
        "fhir_id",
        "resource_type",
        "patient_id",
        "external_id",
        "sync_source",
        "last_synced_at",
        "active",
        "deleted_at",
        "created_at",
        "updated_at",
    }
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ClinicalResourceRow(Base):
    """One persisted clinical resource of any type.

    ``data`` holds the record body; the remaining columns are either envelope
    fields or indexes derived from the body by the resource definition.
    """

    __tablename__ = "clinical_resources"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Identifiers
    fhir_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        index=True,
        nullable=True,
    )

    # Sync envelope
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Derived query columns
    status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    code: Mapped[str | None] = mapped_column(String(128), nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    effective_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    encounter_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    practitioner_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Lifecycle
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    data: Mapped[dict] = mapped_column(JSONB, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("resource_type", "external_id", name="uq_clinical_type_external_id"),
        Index("idx_clinical_type_patient", "resource_type", "patient_id"),
        Index("idx_clinical_type_effective", "resource_type", "effective_at"),
        Index("idx_clinical_data_gin", "data", postgresql_using="gin"),
    )

    def to_record(self) -> dict[str, Any]:
        """Flatten the row back into the persisted record shape."""
        record = dict(self.data or {})
        record.update(
            {
                "id": str(self.id),
                "fhir_id": self.fhir_id,
                "patient_id": str(self.patient_id) if self.patient_id else None,
                "external_id": self.external_id,
                "sync_source": self.sync_source,
                "last_synced_at": _iso(self.last_synced_at),
                "active": self.active,
                "deleted_at": _iso(self.deleted_at),
                "created_at": _iso(self.created_at),
                "updated_at": _iso(self.updated_at),
            }
        )
        return record

    def __repr__(self) -> str:
        return f"<ClinicalResourceRow(id={self.id}, type={self.resource_type}, fhir_id={self.fhir_id})>"


class SelfReport(Base):
    """Vitals a patient reported from home, pending conversion to Observations."""

    __tablename__ = "self_reports"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    reported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("now()"),
    )

    bp_systolic: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bp_diastolic: Mapped[int | None] = mapped_column(Integer, nullable=True)
    heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    spo2: Mapped[int | None] = mapped_column(Integer, nullable=True)
    blood_sugar: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)

    fhir_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "idx_self_reports_unsynced",
            "reported_at",
            postgresql_where=text("fhir_synced_at IS NULL"),
        ),
    )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "patient_id": str(self.patient_id),
            "reported_at": _iso(self.reported_at),
            "bp_systolic": self.bp_systolic,
            "bp_diastolic": self.bp_diastolic,
            "heart_rate": self.heart_rate,
            "spo2": self.spo2,
            "blood_sugar": self.blood_sugar,
            "weight": self.weight,
        }
