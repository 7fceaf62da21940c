from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime

LOGGER = logging.getLogger("digest_archive.segmentation")

DEFAULT_ISSUE_HEADER_LABEL = "DISRUPTION WEEKLY"

_LINE_SPLIT_PATTERN = re.compile(r"\r?\n")
_DATE_PHRASE = r"(?P<date>[A-Za-z]+\s+\d{1,2},\s*\d{4})"
_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y")
_MONTH_ALIASES = {"sept": "Sep"}
# Drive plain-text exports open with U+FEFF, which str.strip() keeps.
_BYTE_ORDER_MARK = "\ufeff"


class DateParseError(ValueError):
    pass


@dataclass(frozen=True)
class HeaderRule:
    """One header format era; ``match`` returns the date phrase or ``None``."""

    name: str
    pattern: re.Pattern[str]

    def match(self, line: str) -> str | None:
        found = self.pattern.match(line)
        if found is None:
            return None
        phrase = found.group("date").strip()
        return phrase or None


@dataclass(frozen=True)
class IssueBoundary:
    line_index: int
    issue_date: date
    rule_name: str


@dataclass(frozen=True)
class IssueBlock:
    issue_date: date
    text: str
    start_line: int
    end_line: int


def build_header_rules(label: str = DEFAULT_ISSUE_HEADER_LABEL) -> tuple[HeaderRule, ...]:
    """
    Header rules ordered from the current format to the loosest legacy one.

    The label is matched token by token so any run of whitespace between its
    words is accepted.
    """
    tokens = [re.escape(token) for token in label.split()]
    if not tokens:
        raise ValueError("Issue header label must not be empty")
    label_pattern = r"\s+".join(tokens)

    def _rule(name: str, body: str) -> HeaderRule:
        return HeaderRule(name=name, pattern=re.compile(body, re.IGNORECASE))

    return (
        _rule("label_gt_separator", rf"^{label_pattern}\s*>\s*{_DATE_PHRASE}"),
        _rule("label_dash_separator", rf"^{label_pattern}\s*[-–—>]\s*{_DATE_PHRASE}"),
        _rule("label_no_separator", rf"^{label_pattern}\s+{_DATE_PHRASE}"),
        _rule("label_with_extra_text", rf"^{label_pattern}.*?{_DATE_PHRASE}"),
        _rule("bare_date", rf"^{_DATE_PHRASE}\s*$"),
    )


DEFAULT_HEADER_RULES: tuple[HeaderRule, ...] = build_header_rules()


def parse_issue_date(phrase: str) -> date:
    """Parse ``Month D, YYYY`` (full or abbreviated month) into a calendar date."""
    compact = " ".join(phrase.replace(",", ", ").split())
    compact = compact.replace(" ,", ",")
    month, _, remainder = compact.partition(" ")
    month = _MONTH_ALIASES.get(month.lower(), month)
    normalized = f"{month} {remainder}".strip()
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(normalized, date_format).date()
        except ValueError:
            continue
    raise DateParseError(f"Invalid date: {phrase}")


def split_lines(text: str) -> list[str]:
    return _LINE_SPLIT_PATTERN.split(text)


def scan_issue_boundaries(
    lines: Sequence[str],
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
) -> list[IssueBoundary]:
    boundaries: list[IssueBoundary] = []
    for line_index, raw_line in enumerate(lines):
        line = raw_line.strip().lstrip(_BYTE_ORDER_MARK).strip()
        if not line:
            continue
        for rule in rules:
            phrase = rule.match(line)
            if phrase is None:
                continue
            try:
                issue_date = parse_issue_date(phrase)
            except DateParseError:
                LOGGER.debug(
                    "issue header date discarded line=%s rule=%s phrase=%s",
                    line_index + 1,
                    rule.name,
                    phrase,
                )
                continue
            LOGGER.debug(
                "issue header found line=%s rule=%s date=%s",
                line_index + 1,
                rule.name,
                issue_date.isoformat(),
            )
            boundaries.append(
                IssueBoundary(line_index=line_index, issue_date=issue_date, rule_name=rule.name)
            )
            break

    boundaries.sort(key=lambda boundary: boundary.line_index)
    return boundaries


def segment_issue_blocks(
    lines: Sequence[str],
    boundaries: Sequence[IssueBoundary],
) -> list[IssueBlock]:
    ordered = sorted(boundaries, key=lambda boundary: boundary.line_index)
    blocks: list[IssueBlock] = []
    for position, boundary in enumerate(ordered):
        start = boundary.line_index
        end = ordered[position + 1].line_index if position + 1 < len(ordered) else len(lines)
        blocks.append(
            IssueBlock(
                issue_date=boundary.issue_date,
                text="\n".join(lines[start:end]),
                start_line=start,
                end_line=end,
            )
        )
    return blocks


def split_document_into_issues(
    text: str,
    rules: Sequence[HeaderRule] = DEFAULT_HEADER_RULES,
) -> list[IssueBlock]:
    lines = split_lines(text)
    boundaries = scan_issue_boundaries(lines, rules)
    blocks = segment_issue_blocks(lines, boundaries)
    LOGGER.info("document segmented lines=%s issues=%s", len(lines), len(blocks))
    return blocks
