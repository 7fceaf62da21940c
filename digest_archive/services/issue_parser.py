from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from digest_archive.models.issue_drafts import (
    ArticleDraft,
    CategoryGroup,
    ParsedIssue,
    Takeaway,
    extract_source_domain,
)
from digest_archive.services.issue_segmentation import IssueBlock, split_lines

LOGGER = logging.getLogger("digest_archive.parser")

DEFAULT_CATEGORY_NAMES: tuple[str, ...] = (
    "AI News",
    "Web3",
    "Crypto",
    "Wellness",
    "Marketing Innovators",
    "Reports",
    "Reports & Guides",
    "Guides",
)

SUBJECT_PATTERN = re.compile(r"^(?:Subject Line|Subject):\s*(.+)$", re.IGNORECASE | re.MULTILINE)

_BULLET_PREFIX_PATTERN = re.compile(r"^[-*•]\s*")
_PAREN_URL_PATTERN = re.compile(r"\((https?:[^)]+)\)", re.IGNORECASE)
_DASH_URL_PATTERN = re.compile(r"\s[-–—]\s(https?:\S+)")
_BARE_URL_PATTERN = re.compile(r"^https?://\S+$", re.IGNORECASE)

_MARKER_SHIFT = r"(?i:the shift)"
_MARKER_SIGNAL = r"(?i:the signal)"
_MARKER_WHY = r"(?i:why it matters)"
_NEW_CAPITALIZED_LINE = r"\n[A-Z]"


def _takeaway_pattern(marker: str, stop_markers: Sequence[str]) -> re.Pattern[str]:
    stops = [rf"\n\*{{0,2}}{stop}" for stop in stop_markers]
    stops.extend([_NEW_CAPITALIZED_LINE, r"\Z"])
    # Markers open a line or sit right after bold asterisks.
    return re.compile(
        rf"(?:^[ \t]*\*{{0,2}}|\*{{1,2}}){marker}:?\*{{0,2}}:?[ \t]*"
        rf"(?P<value>[\s\S]*?)(?={'|'.join(stops)})",
        re.MULTILINE,
    )


TAKEAWAY_SHIFT_PATTERN = _takeaway_pattern(_MARKER_SHIFT, (_MARKER_SIGNAL, _MARKER_WHY))
TAKEAWAY_SIGNAL_PATTERN = _takeaway_pattern(_MARKER_SIGNAL, (_MARKER_WHY,))
TAKEAWAY_WHY_PATTERN = _takeaway_pattern(_MARKER_WHY, ())


@dataclass(frozen=True)
class CategoryVocabulary:
    """Known category labels; a line starting with one of them opens that category."""

    names: tuple[str, ...]

    @classmethod
    def from_names(cls, names: Iterable[str]) -> CategoryVocabulary:
        cleaned: list[str] = []
        for name in names:
            stripped = name.strip()
            if stripped and stripped not in cleaned:
                cleaned.append(stripped)
        return cls(names=tuple(cleaned))

    def match_header(self, line: str) -> str | None:
        lowered = line.strip().lower()
        best: str | None = None
        for name in self.names:
            candidate = name.lower()
            if not lowered.startswith(candidate):
                continue
            # "Crypto" must not open a category on "Cryptography startup ...".
            following = lowered[len(candidate) : len(candidate) + 1]
            if following.isalnum():
                continue
            if best is None or len(name) > len(best):
                best = name
        return best


DEFAULT_CATEGORY_VOCABULARY = CategoryVocabulary(names=DEFAULT_CATEGORY_NAMES)


@dataclass(frozen=True)
class Structured:
    issue: ParsedIssue


@dataclass(frozen=True)
class Unstructured:
    """No category header was recognized; only subject and takeaway were read."""

    issue: ParsedIssue


BlockParseResult = Structured | Unstructured


@dataclass(frozen=True)
class _ArticleLine:
    draft: ArticleDraft | None
    consumed_next_line: bool


def parse_issue_block(
    block: IssueBlock,
    vocabulary: CategoryVocabulary = DEFAULT_CATEGORY_VOCABULARY,
) -> BlockParseResult:
    categories, unparsed_line_count = _parse_categories(split_lines(block.text), vocabulary)
    issue = ParsedIssue(
        issue_date=block.issue_date,
        subject_line=extract_subject_line(block.text),
        takeaway=extract_takeaway(block.text),
        categories=tuple(categories),
        unparsed_line_count=unparsed_line_count,
    )
    if unparsed_line_count:
        LOGGER.info(
            "issue block lines dropped date=%s unparsed_lines=%s",
            block.issue_date.isoformat(),
            unparsed_line_count,
        )
    if not categories:
        return Unstructured(issue=issue)
    return Structured(issue=issue)


def extract_subject_line(text: str) -> str | None:
    found = SUBJECT_PATTERN.search(text)
    if found is None:
        return None
    return found.group(1).strip() or None


def extract_takeaway(text: str) -> Takeaway:
    return Takeaway(
        shift=_search_value(TAKEAWAY_SHIFT_PATTERN, text),
        signal=_search_value(TAKEAWAY_SIGNAL_PATTERN, text),
        why=_search_value(TAKEAWAY_WHY_PATTERN, text),
    )


def parse_article_line(line: str, next_line: str | None = None) -> _ArticleLine:
    title = _BULLET_PREFIX_PATTERN.sub("", line.strip(), count=1)
    url = ""

    paren = _PAREN_URL_PATTERN.search(title)
    if paren is not None:
        url = paren.group(1)
        title = title.replace(paren.group(0), "", 1).strip()

    dash = _DASH_URL_PATTERN.search(title)
    if dash is not None:
        url = dash.group(1)
        title = title.replace(dash.group(0), "", 1).strip()

    consumed_next_line = False
    if not url and next_line is not None and _BARE_URL_PATTERN.match(next_line.strip()):
        url = next_line.strip()
        consumed_next_line = True

    if not title or not url:
        return _ArticleLine(draft=None, consumed_next_line=consumed_next_line)
    return _ArticleLine(
        draft=ArticleDraft(
            title=title,
            source_url=url,
            source_domain=extract_source_domain(url),
        ),
        consumed_next_line=consumed_next_line,
    )


def _parse_categories(
    lines: Sequence[str],
    vocabulary: CategoryVocabulary,
) -> tuple[list[CategoryGroup], int]:
    categories: list[CategoryGroup] = []
    unparsed_line_count = 0
    index = 0
    while index < len(lines):
        name = vocabulary.match_header(lines[index])
        if name is None:
            index += 1
            continue

        articles: list[ArticleDraft] = []
        index += 1
        while index < len(lines) and vocabulary.match_header(lines[index]) is None:
            line = lines[index].strip()
            if not line:
                index += 1
                continue
            next_line = lines[index + 1] if index + 1 < len(lines) else None
            parsed = parse_article_line(line, next_line)
            if parsed.consumed_next_line:
                index += 1
            if parsed.draft is None:
                unparsed_line_count += 1
            else:
                articles.append(parsed.draft)
            index += 1

        categories.append(CategoryGroup(name=name, articles=tuple(articles)))
    return categories, unparsed_line_count


def _search_value(pattern: re.Pattern[str], text: str) -> str | None:
    found = pattern.search(text)
    if found is None:
        return None
    value = found.group("value").strip()
    return value or None
