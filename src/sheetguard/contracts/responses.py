"""Result models for validation, preview, execution and the pipeline."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from sheetguard.contracts.actions import ActionIntent


class ValidationResult(BaseModel):
    """Outcome of checking an intent against a schema."""

    outcome: Literal["accepted", "rejected"]
    sanitized_action: ActionIntent | None = None
    removed_fields: list[str] = Field(default_factory=list)
    coercion_warnings: list[str] = Field(default_factory=list)
    low_confidence_fields: list[str] = Field(default_factory=list)
    rejection_reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == "accepted"


class PreviewResult(BaseModel):
    """What a write would produce, as reported by a dry run."""

    dry_run: Literal[True] = True
    preview: dict[str, Any] = Field(default_factory=dict)
    fingerprint: str = ""


class ExecutionResult(BaseModel):
    """Result of a real (or failed) backend call."""

    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    status_code: int | None = None


class TextReply(BaseModel):
    type: Literal["text"] = "text"
    content: str


class ActionPending(BaseModel):
    """An accepted action waiting for the user to confirm its preview."""

    type: Literal["action-pending"] = "action-pending"
    action: ActionIntent
    preview: PreviewResult | None = None
    removed_fields: list[str] = Field(default_factory=list)
    coercion_warnings: list[str] = Field(default_factory=list)
    low_confidence_fields: list[str] = Field(default_factory=list)
    explanation: str = ""


class PipelineError(BaseModel):
    type: Literal["error"] = "error"
    code: str
    message: str
    stage: str = ""
    details: dict[str, Any] | None = None


PipelineOutcome = Annotated[
    Union[TextReply, ActionPending, PipelineError], Field(discriminator="type")
]
