from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from hashlib import sha256

from digest_archive.models.issue_drafts import ParsedIssue
from digest_archive.repositories.issue_repository import IssueRecord, IssueRepository
from digest_archive.services.issue_segmentation import IssueBlock

LOGGER = logging.getLogger("digest_archive.change_gate")

GATE_ACTION_SKIP = "skip"
GATE_ACTION_INSERT = "insert"
GATE_ACTION_UPDATE = "update"


@dataclass(frozen=True)
class GateDecision:
    action: str
    issue_date: date
    content_hash: str
    existing: IssueRecord | None


@dataclass(frozen=True)
class GateOutcome:
    action: str
    issue_id: str | None
    article_count: int


def compute_content_fingerprint(text: str) -> str:
    return sha256(text.encode("utf-8")).hexdigest()


class ChangeDetectionGate:
    def __init__(self, issue_repository: IssueRepository) -> None:
        self._issue_repository = issue_repository

    def decide(self, block: IssueBlock) -> GateDecision:
        content_hash = compute_content_fingerprint(block.text)
        existing = self._issue_repository.get_issue_by_date(block.issue_date)
        if existing is None:
            action = GATE_ACTION_INSERT
        elif existing.content_hash == content_hash:
            action = GATE_ACTION_SKIP
        else:
            action = GATE_ACTION_UPDATE
        LOGGER.debug(
            "change gate decided date=%s action=%s hash=%s",
            block.issue_date.isoformat(),
            action,
            content_hash[:16],
        )
        return GateDecision(
            action=action,
            issue_date=block.issue_date,
            content_hash=content_hash,
            existing=existing,
        )

    def apply(
        self,
        decision: GateDecision,
        *,
        block: IssueBlock,
        parsed: ParsedIssue,
        raw_markup: str | None,
    ) -> GateOutcome:
        if decision.action == GATE_ACTION_SKIP:
            return GateOutcome(
                action=GATE_ACTION_SKIP,
                issue_id=decision.existing.issue_id if decision.existing is not None else None,
                article_count=0,
            )

        saved = self._issue_repository.save_issue(
            parsed=parsed,
            raw_text=block.text,
            raw_markup=raw_markup,
            content_hash=decision.content_hash,
        )
        action = GATE_ACTION_INSERT if saved.created else GATE_ACTION_UPDATE
        LOGGER.info(
            "issue persisted date=%s action=%s issue_id=%s categories=%s articles=%s",
            parsed.issue_date.isoformat(),
            action,
            saved.issue.issue_id,
            len(parsed.categories),
            saved.article_count,
        )
        return GateOutcome(
            action=action,
            issue_id=saved.issue.issue_id,
            article_count=saved.article_count,
        )
