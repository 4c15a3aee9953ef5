from __future__ import annotations

import requests

from .models import BatchAssignment, WorkerStatus, parse_worker_status
from .utils import worker_url


class WorkerProtocolError(RuntimeError):
    pass


class WorkerClient:
    """HTTP client for one poll loop's conversations with its worker.

    Each poll loop owns its own client, so the underlying session is never
    shared between threads.
    """

    def __init__(self, timeout: float | None = None, session: requests.Session | None = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()

    def _require_ok(self, response: requests.Response, context: str) -> None:
        if not response.ok:
            body = response.text.strip()
            raise WorkerProtocolError(f"{context} failed: HTTP {response.status_code} {body[:200]}".rstrip())

    def fetch_status(self, host: str) -> WorkerStatus:
        url = worker_url(host, "/update")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise WorkerProtocolError(f"status request to {url} failed: {exc}") from exc
        self._require_ok(response, f"status request to {url}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise WorkerProtocolError(f"status from {url} is not valid JSON: {exc}") from exc
        try:
            return parse_worker_status(payload)
        except ValueError as exc:
            raise WorkerProtocolError(f"status from {url} is malformed: {exc}") from exc

    def send_assignment(self, host: str, assignment: BatchAssignment) -> None:
        url = worker_url(host, "/new")
        try:
            response = self.session.post(url, json=assignment.to_payload(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise WorkerProtocolError(f"assignment post to {url} failed: {exc}") from exc
        self._require_ok(response, f"assignment post to {url}")

    def close(self) -> None:
        self.session.close()
