"""Pydantic schemas for encounter search."""

import datetime

from pydantic import BaseModel, Field


class EncounterSearchParams(BaseModel):
    """FHIR-style encounter search parameters.

    ``date`` searches a single day; ``encounter_class`` is applied after the
    query since the class code lives on the encounter record.
    """

    patient: str | None = None
    date: datetime.date | None = None
    date_from: datetime.date | None = None
    date_to: datetime.date | None = None
    status: str | None = None
    encounter_class: str | None = Field(default=None, alias="class")

    model_config = {"populate_by_name": True}
