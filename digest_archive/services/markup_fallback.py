from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date
from html.parser import HTMLParser

from digest_archive.models.issue_drafts import (
    UNCATEGORIZED_CATEGORY_NAME,
    ArticleDraft,
    CategoryGroup,
    ParsedIssue,
)
from digest_archive.services.issue_segmentation import (
    DEFAULT_HEADER_RULES,
    HeaderRule,
    scan_issue_boundaries,
)

LOGGER = logging.getLogger("digest_archive.markup_fallback")

_LINE_BREAK_TAGS: frozenset[str] = frozenset(
    {
        "br",
        "div",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "hr",
        "li",
        "p",
        "td",
        "th",
        "tr",
    }
)


@dataclass(frozen=True)
class MarkupLink:
    title: str
    url: str
    line_index: int


class _AnchorCollector(HTMLParser):
    """Collects hyperlinks plus the visible text lines they appear on."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.lines: list[str] = []
        self.links: list[MarkupLink] = []
        self._line_parts: list[str] = []
        self._anchor_href: str | None = None
        self._anchor_parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        if tag_name in {"script", "style"}:
            self._skip_depth += 1
            return
        if tag_name in _LINE_BREAK_TAGS:
            self._flush_line()
        if tag_name == "a":
            attrs_map = {name.lower(): (value or "") for name, value in attrs}
            self._anchor_href = attrs_map.get("href", "").strip()
            self._anchor_parts = []

    def handle_endtag(self, tag: str) -> None:
        tag_name = tag.lower()
        if tag_name in {"script", "style"}:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag_name == "a":
            self._close_anchor()
            return
        if tag_name in _LINE_BREAK_TAGS:
            self._flush_line()

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        self._line_parts.append(data)
        if self._anchor_href is not None:
            self._anchor_parts.append(data)

    def close(self) -> None:
        super().close()
        self._close_anchor()
        self._flush_line()

    def _close_anchor(self) -> None:
        if self._anchor_href is None:
            return
        title = "".join(self._anchor_parts).strip()
        if self._anchor_href and title:
            self.links.append(
                MarkupLink(title=title, url=self._anchor_href, line_index=len(self.lines))
            )
        self._anchor_href = None
        self._anchor_parts = []

    def _flush_line(self) -> None:
        if not self._line_parts:
            return
        self.lines.append(" ".join("".join(self._line_parts).split()))
        self._line_parts = []


@dataclass(frozen=True)
class MarkupLinkIndex:
    """
    Hyperlinks of one markup document, grouped by the issue header preceding them.

    A date with no section of its own, or markup with no recognizable issue
    header at all, gets every link in the document.
    """

    links: tuple[MarkupLink, ...]
    sections: tuple[tuple[date, int, int], ...]

    def links_for(self, issue_date: date) -> list[MarkupLink]:
        ranges = [(start, end) for day, start, end in self.sections if day == issue_date]
        if not ranges:
            return list(self.links)
        return [
            link
            for link in self.links
            if any(start <= link.line_index < end for start, end in ranges)
        ]


def extract_markup_links(markup: str) -> list[MarkupLink]:
    collector = _AnchorCollector()
    collector.feed(markup)
    collector.close()
    return collector.links


def index_markup_links(
    markup: str,
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
) -> MarkupLinkIndex:
    collector = _AnchorCollector()
    collector.feed(markup)
    collector.close()

    boundaries = scan_issue_boundaries(collector.lines, rules)
    sections: list[tuple[date, int, int]] = []
    for position, boundary in enumerate(boundaries):
        end = (
            boundaries[position + 1].line_index
            if position + 1 < len(boundaries)
            else len(collector.lines)
        )
        sections.append((boundary.issue_date, boundary.line_index, end))

    LOGGER.debug(
        "markup indexed lines=%s links=%s sections=%s",
        len(collector.lines),
        len(collector.links),
        len(sections),
    )
    return MarkupLinkIndex(links=tuple(collector.links), sections=tuple(sections))


def build_uncategorized_group(links: Sequence[MarkupLink]) -> CategoryGroup | None:
    articles = tuple(ArticleDraft.from_link(title=link.title, source_url=link.url) for link in links)
    if not articles:
        return None
    return CategoryGroup(name=UNCATEGORIZED_CATEGORY_NAME, articles=articles)


def extract_fallback_category(markup: str) -> CategoryGroup | None:
    return build_uncategorized_group(extract_markup_links(markup))


def apply_markup_fallback(issue: ParsedIssue, link_index: MarkupLinkIndex) -> ParsedIssue:
    group = build_uncategorized_group(link_index.links_for(issue.issue_date))
    if group is None:
        LOGGER.info(
            "markup fallback found no links date=%s",
            issue.issue_date.isoformat(),
        )
        return issue
    LOGGER.info(
        "markup fallback recovered links date=%s articles=%s",
        issue.issue_date.isoformat(),
        len(group.articles),
    )
    return replace(issue, categories=(group,))
