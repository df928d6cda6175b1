"""Pydantic models for FHIR Bundles produced by the export engine."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BundleEntry(BaseModel):
    """One Bundle entry."""

    model_config = ConfigDict(populate_by_name=True)

    full_url: str = Field(alias="fullUrl")
    resource: dict[str, Any]


class FhirBundle(BaseModel):
    """FHIR Bundle whose ``total`` always equals the number of entries."""

    model_config = ConfigDict(populate_by_name=True)

    resource_type: Literal["Bundle"] = Field(default="Bundle", alias="resourceType")
    type: Literal["collection", "searchset", "transaction", "batch"] = "collection"
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    total: int = 0
    entry: list[BundleEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _total_matches_entries(self) -> "FhirBundle":
        if self.total != len(self.entry):
            raise ValueError(f"Bundle total {self.total} does not match {len(self.entry)} entries")
        return self

    @classmethod
    def of(cls, entries: list[BundleEntry], bundle_type: str = "collection") -> "FhirBundle":
        """Build a bundle with ``total`` derived from the entries."""
        return cls(type=bundle_type, total=len(entries), entry=entries)

    def to_fhir(self) -> dict[str, Any]:
        """Wire JSON (camelCase keys)."""
        return self.model_dump(by_alias=True)
