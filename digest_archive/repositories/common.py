from __future__ import annotations

import re
from datetime import UTC, datetime
from uuid import uuid4

_SLUG_SEPARATOR_PATTERN = re.compile(r"[^a-z0-9]+")


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_record_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def slugify(name: str) -> str:
    return _SLUG_SEPARATOR_PATTERN.sub("-", name.lower()).strip("-")
