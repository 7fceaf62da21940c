from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

from digest_archive.repositories.common import new_record_id, utc_now_iso
from digest_archive.repositories.database import Database

JOB_STATUS_RUNNING = "running"
JOB_STATUS_SUCCESS = "success"
JOB_STATUS_FAILURE = "failure"


@dataclass(frozen=True)
class JobRunRecord:
    run_id: str
    job_type: str
    status: str
    started_at: datetime
    ended_at: datetime | None
    processed_count: int | None
    result: dict[str, Any]
    error_category: str | None
    error: dict[str, Any]


class JobRunsRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def start_run(self, job_type: str) -> str:
        run_id = new_record_id("run")
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO job_runs (id, job_type, status, started_at)
                VALUES (?, ?, ?, ?)
                """,
                (run_id, job_type, JOB_STATUS_RUNNING, utc_now_iso()),
            )
        return run_id

    def mark_succeeded(self, run_id: str, *, processed_count: int, result: dict[str, Any]) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE job_runs
                SET status = ?, ended_at = ?, processed_count = ?, result_json = ?
                WHERE id = ?
                """,
                (
                    JOB_STATUS_SUCCESS,
                    utc_now_iso(),
                    processed_count,
                    json.dumps(result, sort_keys=True),
                    run_id,
                ),
            )

    def mark_failed(
        self,
        run_id: str,
        *,
        processed_count: int,
        error_category: str,
        error: dict[str, Any],
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE job_runs
                SET status = ?, ended_at = ?, processed_count = ?, error_category = ?,
                    error_json = ?
                WHERE id = ?
                """,
                (
                    JOB_STATUS_FAILURE,
                    utc_now_iso(),
                    processed_count,
                    error_category,
                    json.dumps(error, sort_keys=True),
                    run_id,
                ),
            )

    def get_run(self, run_id: str) -> JobRunRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM job_runs
                WHERE id = ?
                LIMIT 1
                """,
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_run(row)

    def list_recent_runs(self, *, limit: int = 20) -> list[JobRunRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM job_runs
                ORDER BY started_at DESC, rowid DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [_row_to_run(row) for row in rows]


def _row_to_run(row: Any) -> JobRunRecord:
    ended_at_raw = row["ended_at"]
    processed_raw = row["processed_count"]
    return JobRunRecord(
        run_id=str(row["id"]),
        job_type=str(row["job_type"]),
        status=str(row["status"]),
        started_at=_parse_iso_datetime(str(row["started_at"])),
        ended_at=_parse_iso_datetime(str(ended_at_raw)) if ended_at_raw is not None else None,
        processed_count=int(processed_raw) if processed_raw is not None else None,
        result=_load_payload(row["result_json"]),
        error_category=_none_if_empty(row["error_category"]),
        error=_load_payload(row["error_json"]),
    )


def _load_payload(raw: object) -> dict[str, Any]:
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}

    if isinstance(parsed, dict):
        raw_dict = cast(dict[object, object], parsed)
        payload: dict[str, Any] = {}
        for key, value in raw_dict.items():
            if isinstance(key, str):
                payload[key] = value
        return payload
    return {}


def _parse_iso_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _none_if_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
