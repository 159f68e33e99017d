"""Validation of action intents against the schema of the target tab."""

from __future__ import annotations

from typing import Any

from sheetguard.contracts.actions import ActionIntent, ActionKind
from sheetguard.contracts.responses import ValidationResult
from sheetguard.contracts.schema import Schema
from sheetguard.validation.coercion import CoercionError, coerce_value
from sheetguard.validation.refs import is_cell_ref, is_range_ref, normalize_range
from sheetguard.validation.sanitizer import sanitize

NO_VALID_FIELDS = "no valid fields after validation"
DEFAULT_LOW_CONFIDENCE = 0.6


def _rejected(reason: str, *, removed: list[str] | None = None,
              warnings: list[str] | None = None) -> ValidationResult:
    return ValidationResult(
        outcome="rejected",
        removed_fields=removed or [],
        coercion_warnings=warnings or [],
        rejection_reason=reason,
    )


def _validate_fields(
    intent: ActionIntent,
    schema: Schema,
    *,
    decimal_separator: str,
    low_confidence_threshold: float,
) -> tuple[dict[str, Any], list[str], list[str], list[str]]:
    """Drop unknown and uncoercible fields; sanitize what survives."""
    data: dict[str, Any] = {}
    removed: list[str] = []
    warnings: list[str] = []
    low_confidence: list[str] = []

    for name, raw in intent.data.items():
        column = schema.column(name)
        if column is None:
            removed.append(name)
            continue
        try:
            value = coerce_value(raw, column.inferred_type, decimal_separator=decimal_separator)
        except CoercionError as e:
            warnings.append(f"{name}: {e} (expected {column.inferred_type.value}); field dropped")
            continue
        if isinstance(value, str):
            value = sanitize(value)
        if column.confidence < low_confidence_threshold:
            low_confidence.append(name)
            warnings.append(
                f"{name}: column type '{column.inferred_type.value}' was inferred "
                f"with low confidence ({column.confidence:.2f})"
            )
        data[name] = value

    return data, removed, warnings, low_confidence


def validate_intent(
    intent: ActionIntent,
    schema: Schema,
    *,
    decimal_separator: str = ".",
    low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE,
) -> ValidationResult:
    """Check *intent* against *schema* and return a sanitized copy or a rejection.

    Unknown fields are dropped into ``removed_fields`` and fields that fail
    type coercion are dropped with a warning; the instruction is only
    rejected when nothing usable remains or a required target is missing.
    """
    kind = intent.kind

    if kind is ActionKind.ADD_ROW or kind is ActionKind.UPDATE_CELL:
        rng = None
        if kind is ActionKind.UPDATE_CELL:
            rng = normalize_range(intent.range)
            if not rng:
                return _rejected("updateCell requires a cell range")
            if not is_cell_ref(rng):
                return _rejected(f"'{intent.range}' is not a single A1 cell reference")

        data, removed, warnings, low_conf = _validate_fields(
            intent, schema,
            decimal_separator=decimal_separator,
            low_confidence_threshold=low_confidence_threshold,
        )
        if kind is ActionKind.UPDATE_CELL and len(data) > 1:
            first = next(iter(data))
            for extra in list(data)[1:]:
                warnings.append(f"{extra}: updateCell writes a single cell; field dropped")
                del data[extra]
            low_conf = [f for f in low_conf if f == first]
        if not data:
            return _rejected(NO_VALID_FIELDS, removed=removed, warnings=warnings)

        sanitized = intent.model_copy(update={"data": data, "range": rng})
        return ValidationResult(
            outcome="accepted",
            sanitized_action=sanitized,
            removed_fields=removed,
            coercion_warnings=warnings,
            low_confidence_fields=low_conf,
        )

    elif kind is ActionKind.READ_RANGE:
        rng = normalize_range(intent.range)
        if not rng:
            return _rejected("readRange requires a range")
        if not is_range_ref(rng):
            return _rejected(f"'{intent.range}' is not an A1 range")
        return ValidationResult(
            outcome="accepted",
            sanitized_action=intent.model_copy(update={"range": rng, "data": {}}),
        )

    elif kind is ActionKind.FETCH_TAB_DATA:
        if not intent.target_tab.strip():
            return _rejected("fetchTabData requires a tab name")
        return ValidationResult(
            outcome="accepted",
            sanitized_action=intent.model_copy(update={"data": {}, "range": None}),
        )

    elif kind is ActionKind.UNSUPPORTED:
        return _rejected("unsupported action")

    raise AssertionError(f"unhandled action kind: {kind!r}")
