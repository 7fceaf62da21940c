from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Protocol

import structlog
from structlog.contextvars import get_contextvars

LOGGER = logging.getLogger("digest_archive.telemetry")

TelemetryValue = bool | int | float | str | None

REDACTED = "[redacted]"
# Raw issue text, markup exports and service-account material stay out of events.
_REDACTED_KEY_PARTS: tuple[str, ...] = (
    "credential",
    "key",
    "markup",
    "raw_",
    "secret",
    "text",
    "token",
)
_MAX_VALUE_CHARS = 160
# contextvar name -> event attribute
_RUN_CONTEXT_ATTRIBUTES: tuple[tuple[str, str], ...] = (
    ("ingest_run_id", "run_id"),
    ("ingest_mode", "mode"),
)


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        return None


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record on the ``digest_archive.telemetry`` logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("digest_archive.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info(event_name, **attributes)


@dataclass(frozen=True)
class TelemetryClient:
    """
    Emits named pipeline events such as ``ingest.run.finish`` or ``ingest.issue.update``.

    Events raised while an ingestion run is bound to the logging context pick
    up its ``run_id`` and ``mode`` automatically. Attribute values are flattened
    to scalars: dates become ISO strings, sequences are comma-joined, long
    strings are cut down.
    """

    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        context = get_contextvars()
        for context_key, attribute in _RUN_CONTEXT_ATTRIBUTES:
            if context_key in context:
                attributes.setdefault(attribute, context[context_key])
        self.sink.emit(
            event_name=event_name,
            attributes={
                key: REDACTED if _is_redacted(key) else _flatten(value)
                for key, value in attributes.items()
            },
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink != "log":
        LOGGER.warning("unknown telemetry sink; telemetry disabled sink=%s", sink)
        return TelemetryClient.disabled()
    return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())


def elapsed_ms(started_at: float) -> int:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return int((time.perf_counter() - started_at) * 1000)


def _is_redacted(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _REDACTED_KEY_PARTS)


def _flatten(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, list | tuple | set | frozenset):
        return _truncate(", ".join(str(_flatten(item)) for item in value))
    return _truncate(" ".join(str(value).split()))


def _truncate(text: str) -> str:
    if len(text) <= _MAX_VALUE_CHARS:
        return text
    return f"{text[:_MAX_VALUE_CHARS]}..."
