from __future__ import annotations

import sqlite3
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

import pytest
from structlog.contextvars import get_contextvars

from digest_archive.models.issue_drafts import UNCATEGORIZED_CATEGORY_NAME, ParsedIssue
from digest_archive.repositories.database import Database
from digest_archive.repositories.issue_repository import (
    ArticleWriteError,
    IssueRepository,
    SavedIssue,
    StoreError,
)
from digest_archive.repositories.job_runs_repository import JobRunsRepository
from digest_archive.services.document_source import FetchError, RawDocument
from digest_archive.services.ingestion_service import (
    IngestionService,
    classify_ingest_error,
    select_blocks_for_mode,
)
from digest_archive.services.issue_segmentation import DateParseError, IssueBlock
from digest_archive.telemetry import TelemetryClient


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


class _FailingSource:
    def fetch(self, document_id: str) -> RawDocument:
        raise FetchError("Missing Google credentials", category="authentication")


class _FailingOnDateRepository(IssueRepository):
    def __init__(self, db: Database, *, fail_on: date) -> None:
        super().__init__(db)
        self._fail_on = fail_on

    def save_issue(
        self,
        *,
        parsed: ParsedIssue,
        raw_text: str,
        raw_markup: str | None,
        content_hash: str,
    ) -> SavedIssue:
        if parsed.issue_date == self._fail_on:
            raise ArticleWriteError('Failed to create article "Nike tests generative ads": boom')
        return super().save_issue(
            parsed=parsed,
            raw_text=raw_text,
            raw_markup=raw_markup,
            content_hash=content_hash,
        )


def _service(
    database: Database,
    source: Any,
    *,
    issue_repository: IssueRepository | None = None,
    sink: _CaptureSink | None = None,
) -> IngestionService:
    telemetry = TelemetryClient(enabled=True, sink=sink) if sink is not None else None
    return IngestionService(
        document_source=source,
        issue_repository=issue_repository or IssueRepository(database),
        job_runs_repository=JobRunsRepository(database),
        telemetry=telemetry,
    )


def _block(day: int, text: str = "") -> IssueBlock:
    return IssueBlock(issue_date=date(2024, 3, day), text=text, start_line=0, end_line=1)


def test_backfill_processes_every_issue(database: Database, sample_source: Any) -> None:
    result = _service(database, sample_source).run(mode="backfill", document_id="doc-1")

    assert result.succeeded
    assert result.processed == 5
    assert result.skipped_unchanged == 0
    assert result.total_issues_found == 5
    assert result.recent_issue_dates == ("2024-03-17", "2024-03-24", "2024-03-31")
    assert sample_source.fetched == ["doc-1"]

    repo = IssueRepository(database)
    assert [issue.issue_date for issue in repo.list_issues()] == [
        date(2024, 3, 31),
        date(2024, 3, 24),
        date(2024, 3, 17),
        date(2024, 3, 10),
        date(2024, 3, 3),
    ]
    assert repo.count_articles() == 10

    run = JobRunsRepository(database).get_run(result.run_id)
    assert run is not None
    assert run.job_type == "ingest:backfill"
    assert run.status == "success"
    assert run.processed_count == 5
    assert run.result["total_issues_found"] == 5


def test_unstructured_issue_is_recovered_from_markup(
    database: Database, sample_source: Any
) -> None:
    _service(database, sample_source).run(mode="backfill", document_id="doc-1")

    repo = IssueRepository(database)
    issue = repo.get_issue_by_date(date(2024, 3, 31))
    assert issue is not None
    assert issue.raw_markup is not None
    articles = repo.list_articles_for_issue(issue.issue_id)
    assert [article.title for article in articles] == [
        "Robots learn chores",
        "Seed rounds shrink",
        "Chip export rules",
    ]
    hits = repo.search_articles("robots", limit=5)
    assert [hit.category_name for hit in hits] == [UNCATEGORIZED_CATEGORY_NAME]


def test_weekly_processes_only_latest_issue(database: Database, sample_source: Any) -> None:
    result = _service(database, sample_source).run(mode="weekly", document_id="doc-1")

    assert result.succeeded
    assert result.processed == 1
    assert result.total_issues_found == 5

    repo = IssueRepository(database)
    assert [issue.issue_date for issue in repo.list_issues()] == [date(2024, 3, 31)]

    run = JobRunsRepository(database).get_run(result.run_id)
    assert run is not None
    assert run.job_type == "ingest:weekly"


def test_repeated_runs_are_idempotent(database: Database, sample_source: Any) -> None:
    service = _service(database, sample_source)
    service.run(mode="backfill", document_id="doc-1")
    repo = IssueRepository(database)
    before = {issue.issue_id: issue.updated_at for issue in repo.list_issues()}

    second = service.run(mode="backfill", document_id="doc-1")

    assert second.processed == 0
    assert second.skipped_unchanged == 5
    assert repo.count_articles() == 10
    assert {issue.issue_id: issue.updated_at for issue in repo.list_issues()} == before


def test_edited_issue_is_reprocessed(
    database: Database,
    sample_issues: tuple[str, ...],
    build_source: Callable[..., Any],
    sample_markup: str,
) -> None:
    source = build_source("\n".join(sample_issues), sample_markup)
    service = _service(database, source)
    service.run(mode="backfill", document_id="doc-1")

    edited = list(sample_issues)
    edited[2] = edited[2].replace("Nike tests generative ads", "Nike tests generative video ads")
    source.text = "\n".join(edited)
    result = service.run(mode="backfill", document_id="doc-1")

    assert result.processed == 1
    assert result.skipped_unchanged == 4
    repo = IssueRepository(database)
    assert [hit.article.title for hit in repo.search_articles("nike", limit=5)] == [
        "Nike tests generative video ads"
    ]


def test_fetch_failure_records_failed_run_without_writes(database: Database) -> None:
    sink = _CaptureSink()
    result = _service(database, _FailingSource(), sink=sink).run(
        mode="weekly",
        document_id="doc-1",
    )

    assert not result.succeeded
    assert result.status == "failure"
    assert result.error_category == "authentication"
    assert result.error_message == "Missing Google credentials"
    assert result.processed == 0
    assert IssueRepository(database).list_issues() == []

    run = JobRunsRepository(database).get_run(result.run_id)
    assert run is not None
    assert run.status == "failure"
    assert run.ended_at is not None
    assert run.error_category == "authentication"
    assert run.error["error_type"] == "FetchError"
    assert run.error["message"] == "Missing Google credentials"
    assert "Traceback" in run.error["traceback"]
    assert [name for name, _ in sink.events] == ["ingest.run.start", "ingest.run.error"]


def test_article_failure_aborts_run_but_keeps_earlier_issues(
    database: Database, sample_source: Any
) -> None:
    repo = _FailingOnDateRepository(database, fail_on=date(2024, 3, 17))

    result = _service(database, sample_source, issue_repository=repo).run(
        mode="backfill",
        document_id="doc-1",
    )

    assert result.status == "failure"
    assert result.error_category == "store"
    assert result.processed == 2
    assert 'Failed to create article "Nike tests generative ads"' in (result.error_message or "")
    assert [issue.issue_date for issue in repo.list_issues()] == [
        date(2024, 3, 10),
        date(2024, 3, 3),
    ]
    run = JobRunsRepository(database).get_run(result.run_id)
    assert run is not None
    assert run.processed_count == 2


def test_document_without_headers_succeeds_with_nothing_found(
    database: Database, build_source: Callable[..., Any]
) -> None:
    result = _service(database, build_source("no headers in here")).run(
        mode="backfill",
        document_id="doc-1",
    )

    assert result.succeeded
    assert result.total_issues_found == 0
    assert result.processed == 0
    assert result.recent_issue_dates == ()


def test_run_emits_issue_telemetry_and_clears_context(
    database: Database, sample_source: Any
) -> None:
    sink = _CaptureSink()
    service = _service(database, sample_source, sink=sink)

    service.run(mode="weekly", document_id="doc-1")
    service.run(mode="weekly", document_id="doc-1")

    names = [name for name, _ in sink.events]
    assert names == [
        "ingest.run.start",
        "ingest.issue.insert",
        "ingest.run.finish",
        "ingest.run.start",
        "ingest.issue.skip",
        "ingest.run.finish",
    ]
    insert_attributes = sink.events[1][1]
    assert insert_attributes["issue_date"] == "2024-03-31"
    assert insert_attributes["article_count"] == 3
    assert "ingest_run_id" not in get_contextvars()


def test_unknown_mode_is_rejected(database: Database, sample_source: Any) -> None:
    with pytest.raises(ValueError, match="Unsupported ingest mode"):
        _service(database, sample_source).run(mode="hourly", document_id="doc-1")

    assert JobRunsRepository(database).list_recent_runs() == []


def test_weekly_selection_prefers_last_block_on_tied_dates() -> None:
    blocks = [_block(3, "a"), _block(31, "first"), _block(10, "b"), _block(31, "second")]

    assert select_blocks_for_mode(blocks, "weekly") == [blocks[3]]
    assert select_blocks_for_mode(blocks, "backfill") == blocks
    assert select_blocks_for_mode([], "weekly") == []


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (FetchError("denied", category="authentication"), "authentication"),
        (FetchError("timeout"), "unknown"),
        (StoreError("disk full"), "store"),
        (sqlite3.OperationalError("locked"), "store"),
        (DateParseError("Invalid date: Smarch 40, 2024"), "parsing"),
        (RuntimeError("boom"), "unknown"),
    ],
)
def test_classify_ingest_error(error: Exception, expected: str) -> None:
    assert classify_ingest_error(error) == expected
