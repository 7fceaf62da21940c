from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from digest_archive.config import AppSettings

LOG_FILE_NAME = "digest-archive.log"
ROOT_LOGGER_NAME = "digest_archive"

# contextvar name -> key written on each record
_RUN_CONTEXT_KEYS: tuple[tuple[str, str], ...] = (
    ("ingest_run_id", "run_id"),
    ("ingest_mode", "mode"),
    ("http_request_id", "request_id"),
)


def configure_application_logging(
    settings: AppSettings,
    *,
    console_stream: TextIO | None = None,
) -> Path:
    """
    Route every ``digest_archive.*`` logger to the console and a JSON-lines file.

    The file receives DEBUG and up, the console honours ``settings.log_level``.
    Records written while an ingestion run or HTTP request is in progress carry
    its ``run_id``/``mode`` or ``request_id``. Calling this again replaces the
    handlers instead of stacking them.
    """
    log_file = settings.log_dir / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_record_context_chain(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream = console_stream if console_stream is not None else sys.stdout
    console_handler = logging.StreamHandler(stream=stream)
    console_handler.setLevel(logging.getLevelName(settings.log_level))
    console_handler.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=_is_terminal(stream)))
    )

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        _formatter(
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
            with_source=True,
        )
    )

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    logger.info(
        "logging configured console_level=%s path=%s",
        settings.log_level,
        log_file,
    )
    return log_file


def _record_context_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _rename_run_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _formatter(
    *renderers: Processor,
    with_source: bool = False,
) -> structlog.stdlib.ProcessorFormatter:
    processors: list[Processor] = [_add_source_location] if with_source else []
    processors.append(structlog.stdlib.ProcessorFormatter.remove_processors_meta)
    processors.extend(renderers)
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_record_context_chain(),
        processors=processors,
    )


def _rename_run_context(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for context_key, record_key in _RUN_CONTEXT_KEYS:
        if context_key in event_dict:
            value = event_dict.pop(context_key)
            event_dict.setdefault(record_key, value)
    return event_dict


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["source"] = f"{record.module}:{record.lineno}"
    return event_dict


def _is_terminal(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, OSError, ValueError):
        return False
