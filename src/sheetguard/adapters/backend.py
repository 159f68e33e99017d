"""Spreadsheet backend gateway client."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from sheetguard.config import Settings
from sheetguard.contracts.common import BackendError

logger = logging.getLogger(__name__)

# Actions a backend gateway accepts.
BACKEND_ACTIONS = (
    "health", "listTabs", "fetchTabData", "readRange", "updateCell", "addRow", "batch", "discoverAll",
)

STATUS_MESSAGES = {
    401: "Unauthorized: invalid or missing API token",
    404: "Not found",
    422: "Validation failed",
    429: "Rate limit exceeded; wait before making another request",
    500: "Server error",
}


class SheetsBackend(Protocol):
    async def call(self, request: dict[str, Any]) -> dict[str, Any]: ...


def error_for_status(status: int, body: Any) -> BackendError:
    detail = body.get("error") if isinstance(body, dict) else None
    base = STATUS_MESSAGES.get(status, f"HTTP error {status}")
    message = f"{base}: {detail}" if detail else base
    return BackendError(message, status_code=status, payload=body)


class HttpSheetsBackend:
    """POSTs JSON requests to a spreadsheet gateway endpoint.

    The configured token is added to every request. Non-2xx statuses and
    ``success: false`` bodies raise ``BackendError``; nothing is retried.
    """

    def __init__(self, url: str, *, token: str | None = None, timeout: float = 30.0,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSheetsBackend":
        if not settings.backend_url:
            raise BackendError("backend_url is not configured")
        return cls(settings.backend_url, token=settings.backend_token, timeout=settings.backend_timeout)

    async def call(self, request: dict[str, Any]) -> dict[str, Any]:
        payload = dict(request)
        if self.token:
            payload["token"] = self.token
        action = payload.get("action")
        if action not in BACKEND_ACTIONS:
            raise BackendError(f"Unknown backend action: {action!r}", status_code=400)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise BackendError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Backend request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            logger.info("Backend %s returned HTTP %s", action, response.status_code)
            raise error_for_status(response.status_code, body)
        if not isinstance(body, dict):
            raise BackendError("Backend returned a non-JSON body", status_code=response.status_code)
        if body.get("success") is False:
            raise BackendError(str(body.get("error") or "Backend reported failure"),
                               status_code=response.status_code, payload=body)
        return body


def backend_from_settings(settings: Settings) -> SheetsBackend:
    """Remote gateway when a URL is configured, else the local workbook."""
    if settings.backend_url:
        return HttpSheetsBackend.from_settings(settings)
    if settings.workbook_path:
        from sheetguard.adapters.workbook import WorkbookBackend

        return WorkbookBackend(settings.workbook_path)
    raise BackendError("No backend configured: set backend_url or workbook_path")
