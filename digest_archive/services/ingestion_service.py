from __future__ import annotations

import logging
import sqlite3
import time
import traceback
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from structlog.contextvars import bind_contextvars, reset_contextvars

from digest_archive.repositories.issue_repository import IssueRepository, StoreError
from digest_archive.repositories.job_runs_repository import (
    JOB_STATUS_FAILURE,
    JOB_STATUS_SUCCESS,
    JobRunsRepository,
)
from digest_archive.services.change_gate import GATE_ACTION_SKIP, ChangeDetectionGate
from digest_archive.services.document_source import DocumentSource, FetchError
from digest_archive.services.issue_parser import (
    DEFAULT_CATEGORY_VOCABULARY,
    CategoryVocabulary,
    Unstructured,
    parse_issue_block,
)
from digest_archive.services.issue_segmentation import (
    DEFAULT_HEADER_RULES,
    DateParseError,
    HeaderRule,
    IssueBlock,
    split_document_into_issues,
)
from digest_archive.services.markup_fallback import (
    MarkupLinkIndex,
    apply_markup_fallback,
    index_markup_links,
)
from digest_archive.telemetry import TelemetryClient, elapsed_ms

LOGGER = logging.getLogger("digest_archive.ingestion")

INGEST_MODE_WEEKLY = "weekly"
INGEST_MODE_BACKFILL = "backfill"
INGEST_MODES: tuple[str, ...] = (INGEST_MODE_WEEKLY, INGEST_MODE_BACKFILL)

ERROR_CATEGORY_STORE = "store"
ERROR_CATEGORY_PARSING = "parsing"
ERROR_CATEGORY_UNKNOWN = "unknown"

RECENT_ISSUE_DATES_LIMIT = 3


@dataclass(frozen=True)
class IngestRunResult:
    run_id: str
    mode: str
    status: str
    processed: int
    skipped_unchanged: int
    total_issues_found: int
    recent_issue_dates: tuple[str, ...] = field(default_factory=tuple)
    error_category: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JOB_STATUS_SUCCESS

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "run_id": self.run_id,
            "mode": self.mode,
            "status": self.status,
            "processed": self.processed,
            "skipped_unchanged": self.skipped_unchanged,
            "total_issues_found": self.total_issues_found,
            "recent_issue_dates": list(self.recent_issue_dates),
        }
        if self.error_category is not None:
            payload["error_category"] = self.error_category
        if self.error_message is not None:
            payload["error_message"] = self.error_message
        return payload


@dataclass
class _RunProgress:
    processed: int = 0
    skipped_unchanged: int = 0
    total_issues_found: int = 0
    recent_issue_dates: tuple[str, ...] = ()


def job_type_for_mode(mode: str) -> str:
    return f"ingest:{mode}"


def select_blocks_for_mode(blocks: Sequence[IssueBlock], mode: str) -> list[IssueBlock]:
    """
    Pick the blocks a run processes.

    ``backfill`` keeps every block in document order. ``weekly`` keeps only the
    block with the latest date; on a tie the later block in the document wins.
    """
    if mode == INGEST_MODE_BACKFILL:
        return list(blocks)
    if mode != INGEST_MODE_WEEKLY:
        raise ValueError(f"Unsupported ingest mode: {mode}")
    latest: IssueBlock | None = None
    for block in blocks:
        if latest is None or block.issue_date >= latest.issue_date:
            latest = block
    return [latest] if latest is not None else []


def classify_ingest_error(exc: BaseException) -> str:
    if isinstance(exc, FetchError):
        return exc.category
    if isinstance(exc, StoreError | sqlite3.Error):
        return ERROR_CATEGORY_STORE
    if isinstance(exc, DateParseError | ValueError):
        return ERROR_CATEGORY_PARSING
    return ERROR_CATEGORY_UNKNOWN


def build_error_detail(exc: BaseException, *, category: str) -> dict[str, Any]:
    return {
        "category": category,
        "message": str(exc),
        "error_type": type(exc).__name__,
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


class IngestionService:
    """Runs one ingestion pass: fetch, segment, structure, gate and persist."""

    def __init__(
        self,
        *,
        document_source: DocumentSource,
        issue_repository: IssueRepository,
        job_runs_repository: JobRunsRepository,
        vocabulary: CategoryVocabulary = DEFAULT_CATEGORY_VOCABULARY,
        header_rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._document_source = document_source
        self._job_runs_repository = job_runs_repository
        self._gate = ChangeDetectionGate(issue_repository)
        self._vocabulary = vocabulary
        self._header_rules = tuple(header_rules)
        self._telemetry = telemetry or TelemetryClient.disabled()

    def run(self, *, mode: str, document_id: str) -> IngestRunResult:
        if mode not in INGEST_MODES:
            raise ValueError(f"Unsupported ingest mode: {mode}")

        run_id = self._job_runs_repository.start_run(job_type_for_mode(mode))
        context_tokens = bind_contextvars(ingest_run_id=run_id, ingest_mode=mode)
        started_at = time.perf_counter()
        progress = _RunProgress()
        self._telemetry.emit("ingest.run.start", run_id=run_id, mode=mode)
        LOGGER.info("ingest run started run_id=%s mode=%s", run_id, mode)
        try:
            try:
                self._run_blocks(mode=mode, document_id=document_id, progress=progress)
            except Exception as exc:
                return self._record_failure(
                    run_id=run_id,
                    mode=mode,
                    progress=progress,
                    exc=exc,
                    started_at=started_at,
                )

            result = IngestRunResult(
                run_id=run_id,
                mode=mode,
                status=JOB_STATUS_SUCCESS,
                processed=progress.processed,
                skipped_unchanged=progress.skipped_unchanged,
                total_issues_found=progress.total_issues_found,
                recent_issue_dates=progress.recent_issue_dates,
            )
            self._job_runs_repository.mark_succeeded(
                run_id,
                processed_count=progress.processed,
                result=result.to_payload(),
            )
            self._telemetry.emit(
                "ingest.run.finish",
                run_id=run_id,
                mode=mode,
                processed=progress.processed,
                skipped_unchanged=progress.skipped_unchanged,
                total_issues_found=progress.total_issues_found,
                recent_issue_dates=progress.recent_issue_dates,
                duration_ms=elapsed_ms(started_at),
            )
            LOGGER.info(
                "ingest run finished run_id=%s mode=%s processed=%s skipped=%s found=%s",
                run_id,
                mode,
                progress.processed,
                progress.skipped_unchanged,
                progress.total_issues_found,
            )
            return result
        finally:
            reset_contextvars(**context_tokens)

    def _run_blocks(self, *, mode: str, document_id: str, progress: _RunProgress) -> None:
        document = self._document_source.fetch(document_id)
        blocks = split_document_into_issues(document.text, self._header_rules)
        progress.total_issues_found = len(blocks)
        progress.recent_issue_dates = tuple(
            block.issue_date.isoformat() for block in blocks[-RECENT_ISSUE_DATES_LIMIT:]
        )
        if not blocks:
            LOGGER.warning("no issue headers detected document_id=%s", document_id)
            return

        selected = select_blocks_for_mode(blocks, mode)
        link_index: MarkupLinkIndex | None = None
        for block in selected:
            decision = self._gate.decide(block)
            if decision.action == GATE_ACTION_SKIP:
                progress.skipped_unchanged += 1
                self._telemetry.emit(
                    "ingest.issue.skip",
                    issue_date=block.issue_date.isoformat(),
                )
                LOGGER.info(
                    "ingest issue skipped date=%s reason=%s",
                    block.issue_date.isoformat(),
                    "unchanged",
                )
                continue

            parsed_result = parse_issue_block(block, self._vocabulary)
            parsed = parsed_result.issue
            if isinstance(parsed_result, Unstructured) and document.markup:
                if link_index is None:
                    link_index = index_markup_links(document.markup, self._header_rules)
                parsed = apply_markup_fallback(parsed, link_index)

            outcome = self._gate.apply(
                decision,
                block=block,
                parsed=parsed,
                raw_markup=document.markup or None,
            )
            progress.processed += 1
            self._telemetry.emit(
                f"ingest.issue.{outcome.action}",
                issue_date=block.issue_date.isoformat(),
                article_count=outcome.article_count,
                unparsed_lines=parsed.unparsed_line_count,
            )

    def _record_failure(
        self,
        *,
        run_id: str,
        mode: str,
        progress: _RunProgress,
        exc: Exception,
        started_at: float,
    ) -> IngestRunResult:
        category = classify_ingest_error(exc)
        LOGGER.error(
            "ingest run failed run_id=%s mode=%s category=%s processed=%s",
            run_id,
            mode,
            category,
            progress.processed,
            exc_info=exc,
        )
        self._job_runs_repository.mark_failed(
            run_id,
            processed_count=progress.processed,
            error_category=category,
            error=build_error_detail(exc, category=category),
        )
        self._telemetry.emit(
            "ingest.run.error",
            run_id=run_id,
            mode=mode,
            processed=progress.processed,
            error_category=category,
            error_type=type(exc).__name__,
            duration_ms=elapsed_ms(started_at),
        )
        return IngestRunResult(
            run_id=run_id,
            mode=mode,
            status=JOB_STATUS_FAILURE,
            processed=progress.processed,
            skipped_unchanged=progress.skipped_unchanged,
            total_issues_found=progress.total_issues_found,
            recent_issue_dates=progress.recent_issue_dates,
            error_category=category,
            error_message=str(exc),
        )
