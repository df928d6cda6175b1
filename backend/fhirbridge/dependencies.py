"""FastAPI dependency providers.

Each provider builds one collaborator from the ones below it, so tests can
override any layer (usually the session factory or a repository) through
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fhirbridge.database import async_session_maker
from fhirbridge.repositories import ClinicalRepository, SecurityRepository
from fhirbridge.services.export import BundleExporter, EncounterBundleService
from fhirbridge.services.security import AuditLogger, RateLimiter
from fhirbridge.services.security.operations import SecureFhirOperations
from fhirbridge.services.sync import FhirSyncEngine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_maker


def get_clinical_repository(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ClinicalRepository:
    return ClinicalRepository(session_factory)


def get_security_repository(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SecurityRepository:
    return SecurityRepository(session_factory)


def get_audit_logger(
    repository: SecurityRepository = Depends(get_security_repository),
) -> AuditLogger:
    return AuditLogger(repository)


def get_rate_limiter(
    repository: SecurityRepository = Depends(get_security_repository),
    audit: AuditLogger = Depends(get_audit_logger),
) -> RateLimiter:
    return RateLimiter(repository, audit)


def get_bundle_exporter(
    repository: ClinicalRepository = Depends(get_clinical_repository),
) -> BundleExporter:
    return BundleExporter(repository)


def get_encounter_bundle_service(
    repository: ClinicalRepository = Depends(get_clinical_repository),
) -> EncounterBundleService:
    return EncounterBundleService(repository)


def get_secure_operations(
    repository: ClinicalRepository = Depends(get_clinical_repository),
    exporter: BundleExporter = Depends(get_bundle_exporter),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    audit: AuditLogger = Depends(get_audit_logger),
) -> SecureFhirOperations:
    return SecureFhirOperations(repository, exporter, rate_limiter, audit)


def get_sync_engine(
    repository: ClinicalRepository = Depends(get_clinical_repository),
    audit: AuditLogger = Depends(get_audit_logger),
) -> FhirSyncEngine:
    return FhirSyncEngine(repository, audit=audit)
