from __future__ import annotations

from datetime import UTC, datetime


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def worker_url(host: str, path: str) -> str:
    return f"{host.rstrip('/')}/{path.lstrip('/')}"
