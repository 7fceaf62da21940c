from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from digest_archive.repositories.issue_repository import ArticleHit
from digest_archive.repositories.job_runs_repository import JobRunRecord
from digest_archive.services.ingestion_service import IngestRunResult
from digest_archive.services.search_service import display_category_name

IngestMode = Literal["weekly", "backfill"]
JobStatus = Literal["running", "success", "failure"]


class IngestRunResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    mode: IngestMode
    status: JobStatus
    processed: int
    skipped_unchanged: int
    total_issues_found: int
    recent_issue_dates: list[str]
    error_category: str | None = None
    error_message: str | None = None

    @classmethod
    def from_result(cls, result: IngestRunResult) -> IngestRunResponse:
        return cls.model_validate(result.to_payload())


class IngestFailureResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    category: str
    run_id: str | None = None


class JobRunResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    job_type: str
    status: JobStatus
    started_at: datetime
    ended_at: datetime | None = None
    processed_count: int | None = None
    result: dict[str, Any]
    error_category: str | None = None
    error: dict[str, Any]

    @classmethod
    def from_record(cls, record: JobRunRecord) -> JobRunResponse:
        return cls.model_validate(
            {
                "run_id": record.run_id,
                "job_type": record.job_type,
                "status": record.status,
                "started_at": record.started_at,
                "ended_at": record.ended_at,
                "processed_count": record.processed_count,
                "result": record.result,
                "error_category": record.error_category,
                "error": record.error,
            }
        )


class ArticleSearchHit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    article_id: str
    title: str
    source_url: str
    source_domain: str
    summary_text: str | None = None
    quoted_stat: str | None = None
    issue_date: date
    subject_line: str | None = None
    category: str

    @classmethod
    def from_hit(cls, hit: ArticleHit) -> ArticleSearchHit:
        return cls(
            article_id=hit.article.article_id,
            title=hit.article.title,
            source_url=hit.article.source_url,
            source_domain=hit.article.source_domain,
            summary_text=hit.article.summary_text,
            quoted_stat=hit.article.quoted_stat,
            issue_date=hit.issue_date,
            subject_line=hit.subject_line,
            category=display_category_name(hit),
        )


class ArticleSearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    count: int
    results: list[ArticleSearchHit]
