"""Pipeline coordinator: parse, fall back once, validate, check policy.

Each ``run`` walks an explicit state machine::

    START -> PARSE -> (TEXT | NORMALIZE | VALIDATE)
    NORMALIZE -> (VALIDATE | TEXT | ERROR)
    VALIDATE -> (AWAIT_CONFIRMATION | ERROR)

and returns exactly one outcome. Every state entered is recorded on a
``PipelineTrace``; nothing loops and nothing is retried.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import orjson

from sheetguard.adapters.normalizer import Normalizer
from sheetguard.adapters.primary import intent_from_arguments
from sheetguard.contracts.actions import (
    ActionIntent,
    ActionKind,
    NormalizeContext,
    NormalizeSuccess,
    ParsedAction,
    ParsedText,
    ParseFailure,
)
from sheetguard.contracts.responses import ActionPending, PipelineError, PipelineOutcome, TextReply
from sheetguard.contracts.schema import Schema
from sheetguard.engine.normalizer import looks_structured
from sheetguard.observe.events import EventStream, PipelineTrace
from sheetguard.validation.policy import Policy, check_action_policy, violation_details
from sheetguard.validation.validators import DEFAULT_LOW_CONFIDENCE, validate_intent

logger = logging.getLogger(__name__)

UNABLE_TO_UNDERSTAND = "unable to understand instruction"


class State(str, Enum):
    START = "start"
    PARSE = "parse"
    TEXT = "text"
    NORMALIZE = "normalize"
    VALIDATE = "validate"
    AWAIT_CONFIRMATION = "await_confirmation"
    ERROR = "error"


def strict_object(text: str) -> dict[str, Any] | None:
    """The brace-delimited object in *text* if it is valid JSON as written."""
    start, end = text.find("{"), text.rfind("}")
    try:
        parsed = orjson.loads(text[start:end + 1])
    except orjson.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def explain(action: ActionIntent, removed: list[str], warnings: list[str]) -> str:
    """Plain-language summary of an accepted action."""
    tab = f"'{action.target_tab}'" if action.target_tab else "the current tab"
    fields = ", ".join(f"{k} = {v}" for k, v in action.data.items())
    kind = action.kind
    if kind is ActionKind.ADD_ROW:
        text = f"add a row to {tab} with {fields}"
    elif kind is ActionKind.UPDATE_CELL:
        text = f"set {action.range} in {tab} to {fields}"
    elif kind is ActionKind.READ_RANGE:
        text = f"read {action.range} from {tab}"
    elif kind is ActionKind.FETCH_TAB_DATA:
        text = f"fetch the data of {tab}"
    else:
        text = "do nothing"
    parts = [f"Here is what I understood: {text}."]
    if removed:
        parts.append("Ignored fields not in the sheet: " + ", ".join(removed) + ".")
    if warnings:
        parts.append("Warnings: " + "; ".join(warnings) + ".")
    return " ".join(parts)


class Coordinator:
    """Runs one instruction through parser, fallback normalizer, validator and policy."""

    def __init__(
        self,
        parser: Any,
        normalizer: Normalizer,
        *,
        policy: Policy | None = None,
        decimal_separator: str = ".",
        low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE,
        events: EventStream | None = None,
    ) -> None:
        self.parser = parser
        self.normalizer = normalizer
        self.policy = policy
        self.decimal_separator = decimal_separator
        self.low_confidence_threshold = low_confidence_threshold
        self.events = events or EventStream(enabled=False)
        self.last_trace: PipelineTrace | None = None

    def _enter(self, trace: PipelineTrace, state: State, **data: Any) -> State:
        trace.record(state.value, data)
        self.events.state_entered(state.value, data)
        return state

    async def run(self, instruction: str, schema: Schema) -> PipelineOutcome:
        trace = PipelineTrace(instruction)
        self.last_trace = trace
        self._enter(trace, State.START, instruction=instruction)

        self._enter(trace, State.PARSE)
        parsed = await self.parser.parse(instruction, schema)

        notes: list[str] = []
        if isinstance(parsed, ParsedAction):
            intent = parsed.intent
        elif isinstance(parsed, ParsedText):
            if not looks_structured(parsed.content):
                self._enter(trace, State.TEXT)
                return TextReply(content=parsed.content)
            obj = strict_object(parsed.content)
            if obj is not None and "action" in obj:
                intent = intent_from_arguments(obj, schema, instruction)
            else:
                normalized = await self._normalize(trace, parsed.content, schema)
                if normalized is None:
                    # the reply was prose after all
                    self._enter(trace, State.TEXT)
                    return TextReply(content=parsed.content)
                intent, notes = normalized
        elif isinstance(parsed, ParseFailure):
            normalized = await self._normalize(trace, parsed.raw_response, schema)
            if normalized is None:
                self._enter(trace, State.ERROR, reason=UNABLE_TO_UNDERSTAND)
                return PipelineError(code="ERR_PARSE_FAILED", message=UNABLE_TO_UNDERSTAND,
                                     stage=State.NORMALIZE.value)
            intent, notes = normalized
        else:
            raise AssertionError(f"unhandled parse outcome: {parsed!r}")

        return self._validate(trace, intent, schema, notes)

    async def _normalize(self, trace: PipelineTrace, raw: str,
                         schema: Schema) -> tuple[ActionIntent, list[str]] | None:
        self._enter(trace, State.NORMALIZE, raw=raw)
        context = NormalizeContext(headers=schema.headers)
        result = await self.normalizer.normalize(raw, context)
        if isinstance(result, NormalizeSuccess):
            return result.normalized, list(result.warnings)
        logger.info("Fallback normalizer failed: %s", result.error)
        return None

    def _validate(self, trace: PipelineTrace, intent: ActionIntent, schema: Schema,
                  notes: list[str]) -> PipelineOutcome:
        self._enter(trace, State.VALIDATE, action=intent.kind.value)
        fill: dict[str, Any] = {}
        if not intent.target_spreadsheet_id and schema.spreadsheet_id:
            fill["target_spreadsheet_id"] = schema.spreadsheet_id
        if not intent.target_tab and schema.tab:
            fill["target_tab"] = schema.tab
        if fill:
            intent = intent.model_copy(update=fill)

        result = validate_intent(
            intent, schema,
            decimal_separator=self.decimal_separator,
            low_confidence_threshold=self.low_confidence_threshold,
        )
        if not result.accepted or result.sanitized_action is None:
            self._enter(trace, State.ERROR, reason=result.rejection_reason)
            return PipelineError(
                code="ERR_VALIDATION_FAILED",
                message=result.rejection_reason or "validation failed",
                stage=State.VALIDATE.value,
            )

        action = result.sanitized_action
        if self.policy is not None:
            violations = check_action_policy(self.policy, action)
            if violations:
                message = "; ".join(v.message for v in violations)
                self._enter(trace, State.ERROR, reason=message)
                return PipelineError(code="ERR_POLICY_VIOLATION", message=message, stage="policy",
                                     details=violation_details(violations))

        warnings = [*notes, *result.coercion_warnings]
        self._enter(trace, State.AWAIT_CONFIRMATION, action=action.kind.value)
        return ActionPending(
            action=action,
            removed_fields=result.removed_fields,
            coercion_warnings=warnings,
            low_confidence_fields=result.low_confidence_fields,
            explanation=explain(action, result.removed_fields, warnings),
        )
