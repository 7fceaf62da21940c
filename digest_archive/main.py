from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from digest_archive.api.routes import router
from digest_archive.dependencies import get_database, get_settings, get_telemetry
from digest_archive.logging_config import configure_application_logging
from digest_archive.telemetry import elapsed_ms

LOGGER = logging.getLogger("digest_archive.api")

REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    database = get_database()
    LOGGER.info(
        "archive api ready db=%s source=%s document_id=%s default_mode=%s",
        database.path,
        settings.document_source,
        settings.document_id or "-",
        settings.ingest_default_mode,
    )
    if settings.document_id is None:
        LOGGER.warning("DIGEST_ARCHIVE_DOCUMENT_ID is not set; POST /jobs/ingest will return 400")
    yield


async def bind_request_id(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag logs for one request with its id and report status and latency."""
    request_id = request.headers.get(REQUEST_ID_HEADER, "").strip() or uuid4().hex
    context_tokens = bind_contextvars(http_request_id=request_id)
    started_at = perf_counter()
    try:
        response = await call_next(request)
    finally:
        reset_contextvars(**context_tokens)
    response.headers[REQUEST_ID_HEADER] = request_id
    get_telemetry().emit(
        "http.request.finish",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=elapsed_ms(started_at),
    )
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Digest Archive API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(bind_request_id)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
