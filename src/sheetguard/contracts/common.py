"""Exceptions shared across packages and the JSON response envelope."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SheetguardError(Exception):
    """Base class for errors raised inside sheetguard."""


class SchemaError(SheetguardError, ValueError):
    """Raised when a schema violates its structural invariants."""


class ConfigError(SheetguardError):
    """Raised when configuration cannot be loaded."""


class NormalizerError(SheetguardError):
    """Raised when a normalizer response cannot be understood."""


class PendingActionError(SheetguardError):
    """Raised when a pending action cannot be confirmed."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class BackendError(SheetguardError):
    """Raised by a spreadsheet backend on a failed request."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class Target(BaseModel):
    """Identifies the spreadsheet/tab/range a command works on."""

    spreadsheet_id: str | None = None
    tab: str | None = None
    range: str | None = None
    file: str | None = None


class Issue(BaseModel):
    """One warning or error carried by an envelope."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    duration_ms: int = 0


class ResponseEnvelope(BaseModel):
    """What every command and every stdio request answers with.

    ``ok`` is false exactly when ``errors`` is non-empty.
    """

    ok: bool = True
    command: str = ""
    target: Target = Field(default_factory=Target)
    result: Any = None
    warnings: list[Issue] = Field(default_factory=list)
    errors: list[Issue] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
