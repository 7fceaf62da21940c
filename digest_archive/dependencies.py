from __future__ import annotations

from functools import lru_cache

from digest_archive.config import AppSettings, load_settings
from digest_archive.repositories.database import Database
from digest_archive.repositories.issue_repository import IssueRepository
from digest_archive.repositories.job_runs_repository import JobRunsRepository
from digest_archive.services.document_source import (
    DocumentSource,
    GoogleDriveDocumentSource,
    LocalDocumentSource,
)
from digest_archive.services.ingestion_service import IngestionService
from digest_archive.services.issue_parser import CategoryVocabulary
from digest_archive.services.issue_segmentation import build_header_rules
from digest_archive.services.search_service import ArchiveSearchService
from digest_archive.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_database() -> Database:
    database = Database(get_settings().db_path)
    database.initialize()
    return database


@lru_cache(maxsize=1)
def get_issue_repository() -> IssueRepository:
    return IssueRepository(get_database())


@lru_cache(maxsize=1)
def get_job_runs_repository() -> JobRunsRepository:
    return JobRunsRepository(get_database())


def build_document_source(settings: AppSettings) -> DocumentSource:
    if settings.document_source == "local":
        return LocalDocumentSource(settings.local_document_dir)
    return GoogleDriveDocumentSource(
        service_account_base64=settings.google_service_account_base64,
        client_email=settings.google_client_email,
        private_key=settings.google_private_key,
    )


@lru_cache(maxsize=1)
def get_ingestion_service() -> IngestionService:
    settings = get_settings()
    return IngestionService(
        document_source=build_document_source(settings),
        issue_repository=get_issue_repository(),
        job_runs_repository=get_job_runs_repository(),
        vocabulary=CategoryVocabulary.from_names(settings.category_vocabulary),
        header_rules=build_header_rules(settings.issue_header_label),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_search_service() -> ArchiveSearchService:
    return ArchiveSearchService(
        get_issue_repository(),
        min_query_length=get_settings().search_min_query_length,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_search_service.cache_clear()
    get_ingestion_service.cache_clear()
    get_job_runs_repository.cache_clear()
    get_issue_repository.cache_clear()
    get_database.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
