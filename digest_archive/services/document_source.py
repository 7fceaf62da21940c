from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
from typing import Any, Protocol

LOGGER = logging.getLogger("digest_archive.document_source")

GOOGLE_DRIVE_SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/documents.readonly",
)
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

FETCH_ERROR_AUTHENTICATION = "authentication"
FETCH_ERROR_UNKNOWN = "unknown"


class FetchError(Exception):
    def __init__(self, message: str, *, category: str = FETCH_ERROR_UNKNOWN) -> None:
        super().__init__(message)
        self.category = category


@dataclass(frozen=True)
class RawDocument:
    text: str
    markup: str


class DocumentSource(Protocol):
    def fetch(self, document_id: str) -> RawDocument:
        ...


class LocalDocumentSource:
    """Reads ``<document_id>.txt`` and an optional ``<document_id>.html`` from a directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def fetch(self, document_id: str) -> RawDocument:
        text_path = self._directory / f"{document_id}.txt"
        markup_path = self._directory / f"{document_id}.html"
        try:
            text = text_path.read_text(encoding="utf-8-sig")
            markup = markup_path.read_text(encoding="utf-8") if markup_path.is_file() else ""
        except OSError as exc:
            raise FetchError(f"Unable to read document {document_id}: {exc}") from exc
        LOGGER.info(
            "local document loaded document_id=%s text_chars=%s markup_chars=%s",
            document_id,
            len(text),
            len(markup),
        )
        return RawDocument(text=text, markup=markup)


class GoogleDriveDocumentSource:
    """Exports a Google Doc as plain text and HTML with service-account credentials."""

    def __init__(
        self,
        *,
        service_account_base64: str | None = None,
        client_email: str | None = None,
        private_key: str | None = None,
    ) -> None:
        self._service_account_base64 = service_account_base64
        self._client_email = client_email
        self._private_key = private_key

    def fetch(self, document_id: str) -> RawDocument:
        client = self._build_drive_client()
        text = self._export(client, document_id, mime_type="text/plain")
        markup = self._export(client, document_id, mime_type="text/html")
        LOGGER.info(
            "google doc exported document_id=%s text_chars=%s markup_chars=%s",
            document_id,
            len(text),
            len(markup),
        )
        return RawDocument(text=text, markup=markup)

    def service_account_info(self) -> dict[str, Any]:
        if self._service_account_base64 is not None:
            try:
                decoded = base64.b64decode(self._service_account_base64, validate=True)
                info = json.loads(decoded.decode("utf-8"))
            except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise FetchError(
                    "Invalid GOOGLE_SERVICE_ACCOUNT_BASE64 format",
                    category=FETCH_ERROR_AUTHENTICATION,
                ) from exc
            if not isinstance(info, dict):
                raise FetchError(
                    "Invalid GOOGLE_SERVICE_ACCOUNT_BASE64 format",
                    category=FETCH_ERROR_AUTHENTICATION,
                )
            return info

        if not self._client_email or not self._private_key:
            raise FetchError(
                "Missing Google credentials. Set GOOGLE_SERVICE_ACCOUNT_BASE64 or "
                "GOOGLE_CLIENT_EMAIL + GOOGLE_PRIVATE_KEY",
                category=FETCH_ERROR_AUTHENTICATION,
            )
        return {
            "type": "service_account",
            "client_email": self._client_email,
            "private_key": self._private_key,
            "token_uri": GOOGLE_TOKEN_URI,
        }

    def _build_drive_client(self) -> Any:
        try:
            service_account_module = import_module("google.oauth2.service_account")
            discovery_module = import_module("googleapiclient.discovery")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise FetchError(
                "Google Drive export requires google-api-python-client and google-auth"
            ) from exc

        credentials_cls: Any = service_account_module.Credentials
        build_fn: Any = discovery_module.build
        try:
            credentials = credentials_cls.from_service_account_info(
                self.service_account_info(),
                scopes=list(GOOGLE_DRIVE_SCOPES),
            )
        except (ValueError, KeyError) as exc:
            raise FetchError(
                f"Invalid Google service account credentials: {exc}",
                category=FETCH_ERROR_AUTHENTICATION,
            ) from exc
        return build_fn("drive", "v3", credentials=credentials, cache_discovery=False)

    def _export(self, client: Any, document_id: str, *, mime_type: str) -> str:
        errors_module = import_module("googleapiclient.errors")
        auth_exceptions_module = import_module("google.auth.exceptions")
        http_error_cls: type[Exception] = errors_module.HttpError
        auth_error_cls: type[Exception] = auth_exceptions_module.GoogleAuthError

        try:
            payload = client.files().export(fileId=document_id, mimeType=mime_type).execute()
        except auth_error_cls as exc:
            raise FetchError(
                f"Google authentication failed: {exc}",
                category=FETCH_ERROR_AUTHENTICATION,
            ) from exc
        except http_error_cls as exc:
            status_code = _http_error_status(exc)
            category = (
                FETCH_ERROR_AUTHENTICATION if status_code in {401, 403} else FETCH_ERROR_UNKNOWN
            )
            raise FetchError(
                f"Google Drive export failed document_id={document_id} "
                f"mime_type={mime_type} status={status_code}",
                category=category,
            ) from exc
        except (TimeoutError, OSError) as exc:
            raise FetchError(
                f"Google Drive export network_error:{type(exc).__name__}"
            ) from exc

        if isinstance(payload, bytes):
            return payload.decode("utf-8-sig", errors="replace")
        return str(payload).removeprefix("\ufeff")


def _http_error_status(exc: Exception) -> int | None:
    response = getattr(exc, "resp", None)
    status = getattr(response, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None
