from __future__ import annotations

import logging

from digest_archive.models.issue_drafts import UNCATEGORIZED_CATEGORY_NAME
from digest_archive.repositories.issue_repository import ArticleHit, IssueRepository
from digest_archive.services.deduplication import dedupe_by_source_url

LOGGER = logging.getLogger("digest_archive.search")

DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100


class ArchiveSearchService:
    def __init__(self, issue_repository: IssueRepository, *, min_query_length: int = 2) -> None:
        self._issue_repository = issue_repository
        self._min_query_length = max(1, min_query_length)

    def search(
        self,
        query: str,
        *,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[ArticleHit]:
        """
        Keyword search over article titles, summaries and source domains.

        Hits sharing a source URL collapse to the one from the latest issue.
        """
        normalized = " ".join(query.split())
        if len(normalized) < self._min_query_length:
            raise ValueError(
                f"Search query must be at least {self._min_query_length} characters long."
            )
        bounded_limit = min(max(1, limit), MAX_SEARCH_LIMIT)
        hits = self._issue_repository.search_articles(
            normalized,
            limit=bounded_limit,
            offset=max(0, offset),
        )
        deduped = dedupe_by_source_url(hits)
        LOGGER.debug(
            "archive search query_chars=%s hits=%s deduped=%s",
            len(normalized),
            len(hits),
            len(deduped),
        )
        return deduped


def display_category_name(hit: ArticleHit) -> str:
    return hit.category_name or UNCATEGORIZED_CATEGORY_NAME
