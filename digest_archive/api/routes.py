from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from digest_archive.config import AppSettings
from digest_archive.dependencies import (
    get_ingestion_service,
    get_job_runs_repository,
    get_search_service,
    get_settings,
)
from digest_archive.models.archive_contracts import (
    ArticleSearchHit,
    ArticleSearchResponse,
    IngestFailureResponse,
    IngestMode,
    IngestRunResponse,
    JobRunResponse,
)
from digest_archive.repositories.job_runs_repository import JobRunsRepository
from digest_archive.services.ingestion_service import IngestionService
from digest_archive.services.search_service import ArchiveSearchService

LOGGER = logging.getLogger("digest_archive.api")

router = APIRouter()


@router.post(
    "/jobs/ingest",
    response_model=IngestRunResponse,
    responses={500: {"model": IngestFailureResponse}},
    tags=["jobs"],
    operation_id="run_ingest",
)
def run_ingest(
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    mode: IngestMode | None = None,
) -> IngestRunResponse | JSONResponse:
    document_id = settings.document_id
    if document_id is None:
        raise HTTPException(status_code=400, detail="DIGEST_ARCHIVE_DOCUMENT_ID is not configured.")

    result = service.run(mode=mode or settings.ingest_default_mode, document_id=document_id)
    if not result.succeeded:
        failure = IngestFailureResponse(
            error=result.error_message or "Ingestion failed",
            category=result.error_category or "unknown",
            run_id=result.run_id,
        )
        return JSONResponse(status_code=500, content=failure.model_dump())
    return IngestRunResponse.from_result(result)


@router.get(
    "/jobs",
    response_model=list[JobRunResponse],
    tags=["jobs"],
    operation_id="list_job_runs",
)
def list_job_runs(
    repository: Annotated[JobRunsRepository, Depends(get_job_runs_repository)],
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
) -> list[JobRunResponse]:
    return [JobRunResponse.from_record(record) for record in repository.list_recent_runs(limit=limit)]


@router.get(
    "/jobs/{run_id}",
    response_model=JobRunResponse,
    tags=["jobs"],
    operation_id="get_job_run",
)
def get_job_run(
    run_id: str,
    repository: Annotated[JobRunsRepository, Depends(get_job_runs_repository)],
) -> JobRunResponse:
    record = repository.get_run(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Job run not found: {run_id}")
    return JobRunResponse.from_record(record)


@router.get(
    "/search",
    response_model=ArticleSearchResponse,
    tags=["search"],
    operation_id="search_articles",
)
def search_articles(
    q: str,
    service: Annotated[ArchiveSearchService, Depends(get_search_service)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ArticleSearchResponse:
    try:
        hits = service.search(q, limit=limit, offset=offset)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    LOGGER.info("search served hits=%s offset=%s", len(hits), offset)
    results = [ArticleSearchHit.from_hit(hit) for hit in hits]
    return ArticleSearchResponse(query=q, count=len(results), results=results)
