from __future__ import annotations

from pathlib import Path

from click.testing import CliRunner

from digest_archive.cli import main


def test_ingest_backfill_reports_counts(data_dir: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(main, ["ingest", "--mode", "backfill"])

    assert result.exit_code == 0, result.output
    assert "Ingestion complete" in result.output
    assert "Issues found: 5" in result.output
    assert "Processed: 5" in result.output
    assert "Recent issues: 2024-03-17, 2024-03-24, 2024-03-31" in result.output


def test_ingest_weekly_twice_skips_unchanged_issue(data_dir: Path) -> None:
    runner = CliRunner()

    runner.invoke(main, ["ingest"])
    result = runner.invoke(main, ["ingest", "-m", "weekly"])

    assert result.exit_code == 0, result.output
    assert "Processed: 0" in result.output
    assert "Unchanged: 1" in result.output


def test_ingest_missing_document_exits_nonzero(data_dir: Path) -> None:
    result = CliRunner().invoke(main, ["ingest", "--document-id", "missing-document"])

    assert result.exit_code == 1
    assert "Ingestion failed" in result.output
    assert "(unknown)" in result.output


def test_runs_lists_recorded_runs(data_dir: Path) -> None:
    runner = CliRunner()

    empty = runner.invoke(main, ["runs"])
    assert empty.exit_code == 0
    assert "No runs recorded" in empty.output

    runner.invoke(main, ["ingest", "--mode", "backfill"])
    listed = runner.invoke(main, ["runs", "-n", "5"])

    assert listed.exit_code == 0, listed.output
    assert "Ingestion runs" in listed.output


def test_search_prints_hits(data_dir: Path) -> None:
    runner = CliRunner()
    runner.invoke(main, ["ingest", "--mode", "backfill"])

    result = runner.invoke(main, ["search", "robots"])

    assert result.exit_code == 0, result.output
    assert "Searching for: robots" in result.output
    assert "Robots learn chores" in result.output
    assert "https://www.theverge.com/robots" in result.output


def test_search_without_hits(data_dir: Path) -> None:
    result = CliRunner().invoke(main, ["search", "quantum"])

    assert result.exit_code == 0
    assert "No results found" in result.output


def test_search_rejects_short_term(data_dir: Path) -> None:
    result = CliRunner().invoke(main, ["search", "a"])

    assert result.exit_code == 2
    assert "at least 2 characters" in result.output
