"""Error codes, exit codes, and the JSON envelope every command prints."""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import Any

import orjson

from sheetguard.contracts.common import Issue, Metrics, ResponseEnvelope, Target


class ExitCategory(IntEnum):
    SUCCESS = 0
    VALIDATION = 10
    POLICY = 20
    CONFLICT = 40
    IO = 50
    RATE_LIMITED = 60
    INTERNAL = 90


ERROR_CATEGORIES = {
    "ERR_PARSE_FAILED": ExitCategory.VALIDATION,
    "ERR_VALIDATION_FAILED": ExitCategory.VALIDATION,
    "ERR_CONFIG_INVALID": ExitCategory.VALIDATION,
    "ERR_USAGE": ExitCategory.VALIDATION,
    "ERR_POLICY_VIOLATION": ExitCategory.POLICY,
    "ERR_NO_PENDING_ACTION": ExitCategory.CONFLICT,
    "ERR_PREVIEW_CONFLICT": ExitCategory.CONFLICT,
    "ERR_IO": ExitCategory.IO,
    "ERR_BACKEND_RATE_LIMITED": ExitCategory.RATE_LIMITED,
    "ERR_INTERNAL": ExitCategory.INTERNAL,
}

# HTTP status of a failed gateway call -> error code
STATUS_ERROR_CODES = {
    401: "ERR_BACKEND_UNAUTHORIZED",
    404: "ERR_BACKEND_NOT_FOUND",
    409: "ERR_PREVIEW_CONFLICT",
    422: "ERR_VALIDATION_FAILED",
    429: "ERR_BACKEND_RATE_LIMITED",
}


def backend_error_code(status_code: int | None) -> str:
    return STATUS_ERROR_CODES.get(status_code, "ERR_BACKEND_FAILED")


def success_envelope(
    command: str,
    result: Any,
    *,
    target: Target | None = None,
    warnings: list[str] | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    """Envelope for a completed command; plain warning strings get code ``WARN``."""
    return ResponseEnvelope(
        command=command,
        target=target or Target(),
        result=result,
        warnings=[Issue(code="WARN", message=text) for text in warnings or ()],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    target: Target | None = None,
    details: dict | None = None,
    result: Any = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        target=target or Target(),
        result=result,
        errors=[Issue(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def output_json(envelope: ResponseEnvelope) -> str:
    return orjson.dumps(envelope.model_dump(mode="json"), option=orjson.OPT_INDENT_2).decode()


def print_response(envelope: ResponseEnvelope) -> None:
    sys.stdout.write(output_json(envelope) + "\n")


def exit_code_for(envelope: ResponseEnvelope) -> int:
    """Process exit code for *envelope*, decided by its first error code.

    Unlisted ``ERR_BACKEND_*`` codes are I/O failures; anything else unknown
    is internal.
    """
    if envelope.ok:
        return ExitCategory.SUCCESS
    if not envelope.errors:
        return ExitCategory.INTERNAL
    code = envelope.errors[0].code.upper()
    if code in ERROR_CATEGORIES:
        return ERROR_CATEGORIES[code]
    if code.startswith("ERR_BACKEND"):
        return ExitCategory.IO
    return ExitCategory.INTERNAL
