from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from sqlite3 import Connection, Row

from digest_archive.models.issue_drafts import (
    UNCATEGORIZED_CATEGORY_NAME,
    ArticleDraft,
    ParsedIssue,
)
from digest_archive.repositories.common import new_record_id, slugify, utc_now_iso
from digest_archive.repositories.database import Database


class StoreError(Exception):
    pass


class ArticleWriteError(StoreError):
    pass


@dataclass(frozen=True)
class IssueRecord:
    issue_id: str
    issue_date: date
    subject_line: str | None
    takeaway_shift: str | None
    takeaway_signal: str | None
    takeaway_why: str | None
    raw_text: str
    raw_markup: str | None
    content_hash: str
    unparsed_line_count: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CategoryRecord:
    category_id: str
    slug: str
    name: str


@dataclass(frozen=True)
class ArticleRecord:
    article_id: str
    issue_id: str
    category_id: str | None
    title: str
    summary_text: str | None
    summary_markdown: str | None
    source_url: str
    source_domain: str
    quoted_stat: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ArticleHit:
    """An article joined with the issue and category it was filed under."""

    article: ArticleRecord
    issue_date: date
    subject_line: str | None
    category_name: str | None

    @property
    def source_url(self) -> str:
        return self.article.source_url


@dataclass(frozen=True)
class SavedIssue:
    issue: IssueRecord
    created: bool
    article_count: int


class IssueRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_issue_by_date(self, issue_date: date) -> IssueRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM issues
                WHERE issue_date = ?
                LIMIT 1
                """,
                (issue_date.isoformat(),),
            ).fetchone()
        if row is None:
            return None
        return _row_to_issue(row)

    def get_issue(self, issue_id: str) -> IssueRecord | None:
        with self._db.connection() as conn:
            return _get_issue_with_conn(conn, issue_id)

    def list_issues(self, *, limit: int | None = None) -> list[IssueRecord]:
        query = "SELECT * FROM issues ORDER BY issue_date DESC"
        params: tuple[int, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (max(1, limit),)
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_issue(row) for row in rows]

    def save_issue(
        self,
        *,
        parsed: ParsedIssue,
        raw_text: str,
        raw_markup: str | None,
        content_hash: str,
    ) -> SavedIssue:
        """
        Upsert the issue for ``parsed.issue_date`` and replace its articles.

        All writes share one transaction: a failing article insert raises
        ``ArticleWriteError`` and leaves the stored issue exactly as it was.
        """
        try:
            with self._db.connection() as conn:
                issue_id, created = _upsert_issue_with_conn(
                    conn,
                    parsed=parsed,
                    raw_text=raw_text,
                    raw_markup=raw_markup,
                    content_hash=content_hash,
                )
                # Articles from an earlier parse of this date are stale.
                conn.execute("DELETE FROM articles WHERE issue_id = ?", (issue_id,))

                article_count = 0
                for group in parsed.categories:
                    category = _upsert_category_with_conn(conn, group.name)
                    for draft in group.articles:
                        try:
                            _insert_article_with_conn(
                                conn,
                                issue_id=issue_id,
                                category_id=category.category_id,
                                draft=draft,
                            )
                        except sqlite3.Error as exc:
                            raise ArticleWriteError(
                                f'Failed to create article "{draft.title}": {exc}'
                            ) from exc
                        article_count += 1

                saved = _get_issue_with_conn(conn, issue_id)
        except ArticleWriteError:
            raise
        except sqlite3.Error as exc:
            raise StoreError(
                f"Failed to save issue {parsed.issue_date.isoformat()}: {exc}"
            ) from exc

        if saved is None:
            raise StoreError("Issue was not found after upsert")
        return SavedIssue(issue=saved, created=created, article_count=article_count)

    def delete_issue(self, issue_id: str) -> bool:
        try:
            with self._db.connection() as conn:
                cursor = conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to delete issue {issue_id}: {exc}") from exc
        return cursor.rowcount > 0

    def upsert_category(self, name: str) -> CategoryRecord:
        try:
            with self._db.connection() as conn:
                return _upsert_category_with_conn(conn, name)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to upsert category {name!r}: {exc}") from exc

    def list_categories(self) -> list[CategoryRecord]:
        with self._db.connection() as conn:
            rows = conn.execute("SELECT * FROM categories ORDER BY slug ASC").fetchall()
        return [_row_to_category(row) for row in rows]

    def list_articles_for_issue(self, issue_id: str) -> list[ArticleRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM articles
                WHERE issue_id = ?
                ORDER BY rowid ASC
                """,
                (issue_id,),
            ).fetchall()
        return [_row_to_article(row) for row in rows]

    def count_articles(self, *, issue_id: str | None = None) -> int:
        with self._db.connection() as conn:
            if issue_id is None:
                row = conn.execute("SELECT COUNT(*) AS total FROM articles").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM articles WHERE issue_id = ?",
                    (issue_id,),
                ).fetchone()
        return int(row["total"]) if row is not None else 0

    def search_articles(self, query: str, *, limit: int, offset: int = 0) -> list[ArticleHit]:
        """
        Case-insensitive substring search over titles, summaries and source domains.

        A source URL filed in several issues appears once, from its latest issue,
        before the page is cut, so later pages never repeat an earlier URL.
        """
        pattern = f"%{_escape_like(query.strip())}%"
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                WITH matches AS (
                    SELECT
                        articles.*,
                        articles.rowid AS hit_rowid,
                        issues.issue_date AS hit_issue_date,
                        issues.subject_line AS hit_subject_line,
                        categories.name AS hit_category_name,
                        ROW_NUMBER() OVER (
                            PARTITION BY articles.source_url
                            ORDER BY issues.issue_date DESC,
                                articles.created_at DESC,
                                articles.rowid ASC
                        ) AS url_rank
                    FROM articles
                    JOIN issues ON issues.id = articles.issue_id
                    LEFT JOIN categories ON categories.id = articles.category_id
                    WHERE articles.title LIKE ? ESCAPE '\\'
                        OR articles.summary_text LIKE ? ESCAPE '\\'
                        OR articles.summary_markdown LIKE ? ESCAPE '\\'
                        OR articles.source_domain LIKE ? ESCAPE '\\'
                )
                SELECT * FROM matches
                WHERE url_rank = 1
                ORDER BY hit_issue_date DESC, created_at DESC, hit_rowid ASC
                LIMIT ? OFFSET ?
                """,
                (pattern, pattern, pattern, pattern, max(1, limit), max(0, offset)),
            ).fetchall()
        return [_row_to_hit(row) for row in rows]


def _upsert_issue_with_conn(
    conn: Connection,
    *,
    parsed: ParsedIssue,
    raw_text: str,
    raw_markup: str | None,
    content_hash: str,
) -> tuple[str, bool]:
    now_iso = utc_now_iso()
    issue_date_iso = parsed.issue_date.isoformat()
    existing = conn.execute(
        "SELECT id FROM issues WHERE issue_date = ? LIMIT 1",
        (issue_date_iso,),
    ).fetchone()

    if existing is None:
        issue_id = new_record_id("issue")
        conn.execute(
            """
            INSERT INTO issues (
                id,
                issue_date,
                subject_line,
                takeaway_shift,
                takeaway_signal,
                takeaway_why,
                raw_text,
                raw_markup,
                content_hash,
                unparsed_line_count,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                issue_id,
                issue_date_iso,
                parsed.subject_line,
                parsed.takeaway.shift,
                parsed.takeaway.signal,
                parsed.takeaway.why,
                raw_text,
                raw_markup,
                content_hash,
                parsed.unparsed_line_count,
                now_iso,
                now_iso,
            ),
        )
        return issue_id, True

    issue_id = str(existing["id"])
    conn.execute(
        """
        UPDATE issues
        SET subject_line = ?, takeaway_shift = ?, takeaway_signal = ?, takeaway_why = ?,
            raw_text = ?, raw_markup = ?, content_hash = ?, unparsed_line_count = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            parsed.subject_line,
            parsed.takeaway.shift,
            parsed.takeaway.signal,
            parsed.takeaway.why,
            raw_text,
            raw_markup,
            content_hash,
            parsed.unparsed_line_count,
            now_iso,
            issue_id,
        ),
    )
    return issue_id, False


def _upsert_category_with_conn(conn: Connection, name: str) -> CategoryRecord:
    slug = slugify(name) or slugify(UNCATEGORIZED_CATEGORY_NAME)
    conn.execute(
        """
        INSERT INTO categories (id, slug, name)
        VALUES (?, ?, ?)
        ON CONFLICT(slug) DO UPDATE SET name = excluded.name
        """,
        (new_record_id("category"), slug, name),
    )
    row = conn.execute("SELECT * FROM categories WHERE slug = ? LIMIT 1", (slug,)).fetchone()
    if row is None:
        raise StoreError(f"Category was not found after upsert slug={slug}")
    return _row_to_category(row)


def _insert_article_with_conn(
    conn: Connection,
    *,
    issue_id: str,
    category_id: str | None,
    draft: ArticleDraft,
) -> str:
    now_iso = utc_now_iso()
    article_id = new_record_id("article")
    conn.execute(
        """
        INSERT INTO articles (
            id,
            issue_id,
            category_id,
            title,
            summary_text,
            summary_markdown,
            source_url,
            source_domain,
            quoted_stat,
            created_at,
            updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            article_id,
            issue_id,
            category_id,
            draft.title,
            draft.summary_text,
            draft.summary_markdown,
            draft.source_url,
            draft.source_domain,
            draft.quoted_stat,
            now_iso,
            now_iso,
        ),
    )
    return article_id


def _get_issue_with_conn(conn: Connection, issue_id: str) -> IssueRecord | None:
    row = conn.execute("SELECT * FROM issues WHERE id = ? LIMIT 1", (issue_id,)).fetchone()
    if row is None:
        return None
    return _row_to_issue(row)


def _row_to_issue(row: Row) -> IssueRecord:
    return IssueRecord(
        issue_id=str(row["id"]),
        issue_date=date.fromisoformat(str(row["issue_date"])),
        subject_line=_as_optional_text(row["subject_line"]),
        takeaway_shift=_as_optional_text(row["takeaway_shift"]),
        takeaway_signal=_as_optional_text(row["takeaway_signal"]),
        takeaway_why=_as_optional_text(row["takeaway_why"]),
        raw_text=str(row["raw_text"]),
        raw_markup=_as_optional_text(row["raw_markup"]),
        content_hash=str(row["content_hash"]),
        unparsed_line_count=int(row["unparsed_line_count"] or 0),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        updated_at=datetime.fromisoformat(str(row["updated_at"])),
    )


def _row_to_category(row: Row) -> CategoryRecord:
    return CategoryRecord(
        category_id=str(row["id"]),
        slug=str(row["slug"]),
        name=str(row["name"]),
    )


def _row_to_article(row: Row) -> ArticleRecord:
    return ArticleRecord(
        article_id=str(row["id"]),
        issue_id=str(row["issue_id"]),
        category_id=_as_optional_text(row["category_id"]),
        title=str(row["title"]),
        summary_text=_as_optional_text(row["summary_text"]),
        summary_markdown=_as_optional_text(row["summary_markdown"]),
        source_url=str(row["source_url"]),
        source_domain=str(row["source_domain"]),
        quoted_stat=_as_optional_text(row["quoted_stat"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        updated_at=datetime.fromisoformat(str(row["updated_at"])),
    )


def _row_to_hit(row: Row) -> ArticleHit:
    return ArticleHit(
        article=_row_to_article(row),
        issue_date=date.fromisoformat(str(row["hit_issue_date"])),
        subject_line=_as_optional_text(row["hit_subject_line"]),
        category_name=_as_optional_text(row["hit_category_name"]),
    )


def _as_optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
