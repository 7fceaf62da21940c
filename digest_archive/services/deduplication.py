from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Protocol, TypeVar


class DatedArticle(Protocol):
    @property
    def source_url(self) -> str: ...

    @property
    def issue_date(self) -> date: ...


ArticleT = TypeVar("ArticleT", bound=DatedArticle)


def dedupe_by_source_url(articles: Iterable[ArticleT]) -> list[ArticleT]:
    """
    Keep one entry per source URL: the one from the most recent issue.

    Output follows the order in which each URL was first seen. Among entries
    with the same issue date the first one seen is kept.
    """
    best_by_url: dict[str, ArticleT] = {}
    for article in articles:
        current = best_by_url.get(article.source_url)
        if current is None or article.issue_date > current.issue_date:
            best_by_url[article.source_url] = article
    return list(best_by_url.values())
