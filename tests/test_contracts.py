"""Tests for the contract models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from sheetguard.contracts.actions import (
    ACTION_VOCABULARY,
    ActionIntent,
    ActionKind,
    NormalizeContext,
    ParsedText,
    ParseOutcome,
)
from sheetguard.contracts.responses import PipelineError, PipelineOutcome
from sheetguard.contracts.schema import ColumnDescriptor, Schema


def test_intent_reads_wire_aliases():
    intent = ActionIntent.model_validate({
        "action": "updateCell", "spreadsheetId": "abc", "tabName": "Sales",
        "range": "B2", "data": {"Revenue": 5},
    })
    assert intent.kind is ActionKind.UPDATE_CELL
    assert intent.target_spreadsheet_id == "abc"
    assert intent.target_tab == "Sales"


def test_unknown_action_is_unsupported():
    assert ActionIntent.model_validate({"action": "dropDatabase"}).kind is ActionKind.UNSUPPORTED
    assert ActionKind.parse(None) is ActionKind.UNSUPPORTED
    assert "unsupported" not in ACTION_VOCABULARY


def test_mutating_kinds():
    assert ActionKind.ADD_ROW.is_mutating
    assert ActionKind.UPDATE_CELL.is_mutating
    assert not ActionKind.READ_RANGE.is_mutating
    assert not ActionKind.FETCH_TAB_DATA.is_mutating


def test_wire_payload_update_cell():
    intent = ActionIntent(kind=ActionKind.UPDATE_CELL, target_tab="Sales", range="B2", data={"Revenue": 5})
    assert intent.wire_payload() == {
        "action": "updateCell", "spreadsheetId": "", "tabName": "Sales",
        "range": "B2", "data": {"value": 5, "column": "Revenue"},
    }


def test_wire_payload_read_has_no_data():
    intent = ActionIntent(kind=ActionKind.READ_RANGE, range="A1:B2", data={"x": 1})
    assert "data" not in intent.wire_payload()


def test_parse_outcome_discriminator():
    outcome = TypeAdapter(ParseOutcome).validate_python({"type": "text", "content": "hi"})
    assert outcome == ParsedText(content="hi")
    pipeline = TypeAdapter(PipelineOutcome).validate_python({"type": "error", "code": "E", "message": "m"})
    assert isinstance(pipeline, PipelineError)


def test_normalize_context_alias():
    context = NormalizeContext.model_validate({"expectedAction": "addRow", "headers": ["A"]})
    assert context.expected_action == "addRow"


def test_schema_rejects_duplicate_names():
    with pytest.raises(ValidationError):
        Schema(columns=[ColumnDescriptor(name="A", index=0), ColumnDescriptor(name="A", index=1)])


def test_schema_rejects_gapped_indexes():
    with pytest.raises(ValidationError):
        Schema(columns=[ColumnDescriptor(name="A", index=0), ColumnDescriptor(name="B", index=2)])


def test_schema_is_frozen(sales_schema):
    with pytest.raises(ValidationError):
        sales_schema.total_rows = 10


def test_schema_lookup_and_summary(sales_schema):
    assert sales_schema.headers == ["Product", "Revenue", "Date", "Email"]
    assert sales_schema.column("Revenue").index == 1
    assert sales_schema.column("Missing") is None
    assert "- Revenue (number, confidence 1.00) e.g. 1000, 1500" in sales_schema.summary()
    assert Schema().summary() == "(no columns)"
