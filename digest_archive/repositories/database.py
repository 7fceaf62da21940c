from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    issue_date TEXT NOT NULL UNIQUE,
    subject_line TEXT NULL,
    takeaway_shift TEXT NULL,
    takeaway_signal TEXT NULL,
    takeaway_why TEXT NULL,
    raw_text TEXT NOT NULL,
    raw_markup TEXT NULL,
    content_hash TEXT NOT NULL,
    unparsed_line_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    issue_id TEXT NOT NULL,
    category_id TEXT NULL,
    title TEXT NOT NULL,
    summary_text TEXT NULL,
    summary_markdown TEXT NULL,
    source_url TEXT NOT NULL,
    source_domain TEXT NOT NULL,
    quoted_stat TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(issue_id) REFERENCES issues(id) ON DELETE CASCADE,
    FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_issue_id ON articles(issue_id);

CREATE INDEX IF NOT EXISTS idx_articles_source_url ON articles(source_url);

CREATE TABLE IF NOT EXISTS job_runs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT NULL,
    processed_count INTEGER NULL,
    result_json TEXT NULL,
    error_category TEXT NULL,
    error_json TEXT NULL
);

CREATE INDEX IF NOT EXISTS idx_job_runs_started_at ON job_runs(started_at DESC);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _maybe_migrate_issues_schema(conn)


def _maybe_migrate_issues_schema(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "issues")
    if not columns:
        return

    # Databases created before unparsed line accounting lack the counter.
    if "unparsed_line_count" not in columns:
        conn.execute(
            "ALTER TABLE issues ADD COLUMN unparsed_line_count INTEGER NOT NULL DEFAULT 0"
        )


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
