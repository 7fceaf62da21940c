from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from digest_archive.dependencies import reset_cached_dependencies
from digest_archive.logging_config import ROOT_LOGGER_NAME
from digest_archive.main import create_app
from digest_archive.repositories.database import Database
from digest_archive.services.document_source import RawDocument

SAMPLE_DOCUMENT_ID = "weekly-digest"

SAMPLE_ISSUES: tuple[str, ...] = (
    "\n".join(
        [
            "DISRUPTION WEEKLY > March 3, 2024",
            "Subject Line: Agents leave the lab",
            "The Shift: Models got cheap enough to run everywhere.",
            "The Signal: Every launch this week shipped an agent.",
            "Why it matters: Distribution beats model quality.",
            "",
            "AI News",
            "- OpenAI ships a new model (https://www.openai.com/blog/new-model)",
            "- Anthropic publishes agent guide - https://anthropic.com/news/agents",
            "Crypto",
            "Bitcoin ETF inflows hit a record",
            "https://www.coindesk.com/markets/etf-inflows",
            "Analysts are split on what comes next",
            "",
        ]
    ),
    "\n".join(
        [
            "DISRUPTION WEEKLY - March 10, 2024",
            "Subject: Wellness goes wearable",
            "",
            "Wellness",
            "- Oura adds glucose tracking (https://ouraring.com/blog/glucose)",
            "Reports & Guides",
            "- State of health tech 2024 (https://www.example.com/reports/health)",
            "",
        ]
    ),
    "\n".join(
        [
            "DISRUPTION WEEKLY March 17, 2024",
            "Subject Line: Marketing meets machines",
            "",
            "Marketing Innovators",
            "- Nike tests generative ads (https://www.example.com/nike-ads)",
            "",
        ]
    ),
    "\n".join(
        [
            "DISRUPTION WEEKLY Special Edition: March 24, 2024",
            "Subject Line: The quiet week",
            "",
            "Web3",
            "- Ethereum upgrade goes live (https://blog.ethereum.org/dencun)",
            "",
        ]
    ),
    "\n".join(
        [
            "March 31, 2024",
            "Subject Line: Link roundup",
            "A handful of links without any section headers this week.",
            "",
        ]
    ),
)

SAMPLE_PREAMBLE = "Archive export\n"

SAMPLE_MARKUP = (
    "<html><body>"
    "<p>DISRUPTION WEEKLY &gt; March 3, 2024</p>"
    '<p><a href="https://www.openai.com/blog/new-model">OpenAI ships a new model</a></p>'
    "<p>March 31, 2024</p>"
    '<p><a href="https://www.theverge.com/robots">Robots learn chores</a></p>'
    '<p><a href="https://techcrunch.com/funding">Seed rounds shrink</a></p>'
    '<p><a href="https://www.wired.com/chips">Chip export rules</a></p>'
    "</body></html>"
)


def build_sample_document_text(issues: tuple[str, ...] = SAMPLE_ISSUES) -> str:
    return SAMPLE_PREAMBLE + "\n".join(issues)


class StaticDocumentSource:
    def __init__(self, text: str, markup: str = "") -> None:
        self.text = text
        self.markup = markup
        self.fetched: list[str] = []

    def fetch(self, document_id: str) -> RawDocument:
        self.fetched.append(document_id)
        return RawDocument(text=self.text, markup=self.markup)


@pytest.fixture(autouse=True)
def _reset_application_logging() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def sample_issues() -> tuple[str, ...]:
    return SAMPLE_ISSUES


@pytest.fixture
def sample_document_text() -> str:
    return build_sample_document_text()


@pytest.fixture
def sample_markup() -> str:
    return SAMPLE_MARKUP


@pytest.fixture
def build_source() -> Callable[..., StaticDocumentSource]:
    def _build(text: str, markup: str = "") -> StaticDocumentSource:
        return StaticDocumentSource(text, markup)

    return _build


@pytest.fixture
def sample_source() -> StaticDocumentSource:
    return StaticDocumentSource(build_sample_document_text(), SAMPLE_MARKUP)


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "archive.db")
    db.initialize()
    return db


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    runtime_dir = tmp_path / "runtime-data"
    documents_dir = runtime_dir / "documents"
    documents_dir.mkdir(parents=True, exist_ok=True)
    (documents_dir / f"{SAMPLE_DOCUMENT_ID}.txt").write_text(
        build_sample_document_text(),
        encoding="utf-8",
    )
    (documents_dir / f"{SAMPLE_DOCUMENT_ID}.html").write_text(SAMPLE_MARKUP, encoding="utf-8")

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DIGEST_ARCHIVE_DATA_DIR", str(runtime_dir))
    monkeypatch.setenv("DIGEST_ARCHIVE_DOCUMENT_SOURCE", "local")
    monkeypatch.setenv("DIGEST_ARCHIVE_DOCUMENT_ID", SAMPLE_DOCUMENT_ID)
    monkeypatch.setenv("DIGEST_ARCHIVE_TELEMETRY_SINK", "none")
    reset_cached_dependencies()
    yield runtime_dir
    reset_cached_dependencies()


@pytest.fixture
def client(data_dir: Path) -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
