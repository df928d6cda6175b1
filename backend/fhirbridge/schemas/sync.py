"""Pydantic schemas for external FHIR server synchronization."""

from pydantic import BaseModel, Field, SecretStr


class SyncConnection(BaseModel):
    """A patient's link to an external FHIR server."""

    connection_id: str = Field(description="Connection identifier stored as sync_source")
    patient_id: str = Field(description="Internal patient UUID")
    external_patient_id: str = Field(description="Patient id on the remote server")
    fhir_server_url: str
    access_token: SecretStr
