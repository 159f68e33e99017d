"""Execution gateway: the only place a sanitized action reaches the backend."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

import orjson

from sheetguard.adapters.backend import SheetsBackend
from sheetguard.contracts.actions import ActionIntent
from sheetguard.contracts.common import BackendError
from sheetguard.contracts.responses import ExecutionResult, PreviewResult

logger = logging.getLogger(__name__)


def payload_fingerprint(action: ActionIntent) -> str:
    """Stable hash of what a write of *action* would send."""
    body = orjson.dumps(action.wire_payload(), option=orjson.OPT_SORT_KEYS, default=str)
    return f"sha256:{hashlib.sha256(body).hexdigest()}"


def build_request(action: ActionIntent, *, dry_run: bool, author: str) -> dict[str, Any]:
    request = action.wire_payload()
    request["options"] = {"author": author, "dryRun": dry_run}
    return request


def _strip_status(response: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in response.items() if k not in ("success", "dryRun")}


class ExecutionGateway:
    """Sends dry runs and real writes; never retries."""

    def __init__(self, backend: SheetsBackend, *, author: str = "user") -> None:
        self.backend = backend
        self.author = author

    async def execute(self, action: ActionIntent, *, dry_run: bool,
                      author: str | None = None) -> PreviewResult | ExecutionResult:
        request = build_request(action, dry_run=dry_run, author=author or self.author)
        try:
            response = await self.backend.call(request)
        except BackendError as e:
            logger.info("%s %s failed: %s", "Dry run" if dry_run else "Write", action.kind.value, e.message)
            return ExecutionResult(success=False, error=e.message, status_code=e.status_code)

        if dry_run:
            preview = response.get("preview", _strip_status(response))
            if not isinstance(preview, dict):
                preview = {"values": preview}
            return PreviewResult(preview=preview, fingerprint=payload_fingerprint(action))

        result = response.get("result")
        if result is None:
            result = response.get("data", _strip_status(response))
        if not isinstance(result, dict):
            result = {"value": result}
        return ExecutionResult(success=True, result=result)
