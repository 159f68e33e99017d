"""Pydantic models for schemas, intents, results, and response envelopes."""

from sheetguard.contracts.actions import (
    ACTION_VOCABULARY,
    ActionIntent,
    ActionKind,
    NormalizeContext,
    NormalizeFailure,
    NormalizeResult,
    NormalizeSuccess,
    ParsedAction,
    ParsedText,
    ParseFailure,
    ParseOutcome,
)
from sheetguard.contracts.common import (
    BackendError,
    ConfigError,
    Issue,
    Metrics,
    NormalizerError,
    PendingActionError,
    ResponseEnvelope,
    SchemaError,
    SheetguardError,
    Target,
)
from sheetguard.contracts.responses import (
    ActionPending,
    ExecutionResult,
    PipelineError,
    PipelineOutcome,
    PreviewResult,
    TextReply,
    ValidationResult,
)
from sheetguard.contracts.schema import ColumnDescriptor, ColumnType, Schema

__all__ = [
    "ACTION_VOCABULARY",
    "ActionIntent",
    "ActionKind",
    "ActionPending",
    "BackendError",
    "ColumnDescriptor",
    "ColumnType",
    "ConfigError",
    "ExecutionResult",
    "Issue",
    "Metrics",
    "NormalizeContext",
    "NormalizerError",
    "NormalizeFailure",
    "NormalizeResult",
    "NormalizeSuccess",
    "ParsedAction",
    "PendingActionError",
    "ParsedText",
    "ParseFailure",
    "ParseOutcome",
    "PipelineError",
    "PipelineOutcome",
    "PreviewResult",
    "ResponseEnvelope",
    "Schema",
    "SchemaError",
    "SheetguardError",
    "Target",
    "TextReply",
    "ValidationResult",
]
