from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from urllib.parse import urlparse

UNCATEGORIZED_CATEGORY_NAME = "Uncategorized"


@dataclass(frozen=True)
class ArticleDraft:
    title: str
    source_url: str
    source_domain: str
    summary_text: str | None = None
    summary_markdown: str | None = None
    quoted_stat: str | None = None

    @classmethod
    def from_link(cls, *, title: str, source_url: str) -> ArticleDraft:
        return cls(
            title=title,
            source_url=source_url,
            source_domain=extract_source_domain(source_url),
        )


@dataclass(frozen=True)
class CategoryGroup:
    name: str
    articles: tuple[ArticleDraft, ...] = ()


@dataclass(frozen=True)
class Takeaway:
    shift: str | None = None
    signal: str | None = None
    why: str | None = None


@dataclass(frozen=True)
class ParsedIssue:
    issue_date: date
    subject_line: str | None = None
    takeaway: Takeaway = field(default_factory=Takeaway)
    categories: tuple[CategoryGroup, ...] = ()
    unparsed_line_count: int = 0

    @property
    def article_count(self) -> int:
        return sum(len(category.articles) for category in self.categories)


def extract_source_domain(url: str) -> str:
    """Host of ``url`` without a leading ``www.``; empty for anything that is not a URL."""
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        return ""
    if not host:
        return ""
    return host.removeprefix("www.")
