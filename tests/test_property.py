"""Property-based tests using Hypothesis.

These check invariants that must hold for any input:
- validated actions never carry a field outside the schema, nor a nested value
- the normalizer always returns a result instead of raising
- response envelopes survive JSON serialization
- payload fingerprints depend only on what would be written
"""

from __future__ import annotations

import json

from hypothesis import given, settings
from hypothesis import strategies as st

from sheetguard.contracts.actions import ActionIntent, ActionKind, NormalizeContext, NormalizeFailure, NormalizeSuccess
from sheetguard.contracts.schema import ColumnDescriptor, ColumnType, Schema
from sheetguard.engine.dispatcher import output_json, success_envelope
from sheetguard.engine.gateway import payload_fingerprint
from sheetguard.engine.normalizer import RuleNormalizer, filter_fields
from sheetguard.validation.validators import validate_intent

SCHEMA = Schema(columns=[
    ColumnDescriptor(name="Product", index=0, inferred_type=ColumnType.TEXT),
    ColumnDescriptor(name="Revenue", index=1, inferred_type=ColumnType.NUMBER),
    ColumnDescriptor(name="Date", index=2, inferred_type=ColumnType.DATE),
    ColumnDescriptor(name="Email", index=3, inferred_type=ColumnType.EMAIL),
])

field_names = st.one_of(st.sampled_from(SCHEMA.headers), st.text(min_size=1, max_size=12))
field_values = st.one_of(
    st.text(max_size=30),
    st.integers(min_value=-(2**53), max_value=2**53),
    st.floats(allow_nan=False, allow_infinity=False),
    st.booleans(),
    st.none(),
)
# what a model may wrongly put in a field: lists and objects, formulas included
nested_values = st.one_of(
    st.lists(st.one_of(st.text(max_size=10), st.just("=HYPERLINK(\"http://x\")")), max_size=3),
    st.dictionaries(st.text(max_size=5), st.text(max_size=10), max_size=2),
)
any_values = st.one_of(field_values, nested_values)


@given(st.dictionaries(field_names, any_values, max_size=8))
def test_validated_fields_are_schema_columns(data):
    result = validate_intent(ActionIntent(kind=ActionKind.ADD_ROW, data=data), SCHEMA)
    unknown = [k for k in data if k not in SCHEMA.headers]
    assert result.removed_fields == unknown
    if result.accepted:
        assert set(result.sanitized_action.data) <= set(SCHEMA.headers)
        for value in result.sanitized_action.data.values():
            assert not isinstance(value, (list, dict))
            assert not (isinstance(value, str) and value[:1] in ("=", "+", "-", "@"))
    else:
        assert result.sanitized_action is None


@given(st.dictionaries(field_names, field_values, max_size=8))
def test_filter_fields_keeps_only_headers(data):
    kept, warnings = filter_fields(data, SCHEMA.headers)
    assert set(kept) <= set(SCHEMA.headers)
    lowered = {h.lower() for h in SCHEMA.headers}
    assert len(warnings) == sum(1 for k in data if k.strip().lower() not in lowered)


@settings(max_examples=150)
@given(st.text(max_size=200))
def test_normalizer_never_raises(text):
    result = RuleNormalizer().normalize(text, NormalizeContext(headers=SCHEMA.headers))
    assert isinstance(result, (NormalizeSuccess, NormalizeFailure))
    if isinstance(result, NormalizeSuccess):
        assert set(result.normalized.data) <= set(SCHEMA.headers)


@given(st.dictionaries(st.text(max_size=10), st.integers(min_value=-(2**53), max_value=2**53), max_size=5))
def test_envelope_json_round_trip(result):
    data = json.loads(output_json(success_envelope("prop", result)))
    assert data["ok"] is True
    assert data["result"] == result


@given(
    st.dictionaries(st.sampled_from(SCHEMA.headers), st.integers(min_value=-(2**53), max_value=2**53), min_size=1),
    st.text(max_size=20),
    st.floats(min_value=0, max_value=1),
)
def test_fingerprint_ignores_annotations(data, source, confidence):
    base = ActionIntent(kind=ActionKind.ADD_ROW, target_tab="Sales", data=data)
    annotated = base.model_copy(update={"raw_source_text": source, "confidence": confidence})
    assert payload_fingerprint(base) == payload_fingerprint(annotated)
