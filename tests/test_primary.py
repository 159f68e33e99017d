"""Tests for the function-calling primary parser (model client faked)."""

from __future__ import annotations

import json
from types import SimpleNamespace

import openai
import pytest

from sheetguard.adapters.primary import (
    ACTION_TOOL,
    PRIMARY_CONFIDENCE,
    TOOL_NAME,
    OfflineParser,
    PrimaryParser,
    build_prompt,
    intent_from_arguments,
    parser_from_settings,
)
from sheetguard.config import Settings
from sheetguard.contracts.actions import ActionKind, ParsedAction, ParsedText, ParseFailure
from sheetguard.contracts.schema import Schema


class FakeCompletions:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.kwargs: dict = {}

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _client(response=None, error=None):
    completions = FakeCompletions(response, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _response(*, content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(arguments, name=TOOL_NAME):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


async def test_tool_call_becomes_action(sales_schema):
    client, completions = _client(_response(tool_calls=[_tool_call({
        "action": "addRow", "tabName": "Sales", "data": {"Product": "iPhone 15", "Revenue": "$1,200"},
    })]))
    outcome = await PrimaryParser(client).parse("Add iPhone 15 for $1,200", sales_schema)

    assert isinstance(outcome, ParsedAction)
    assert outcome.intent.kind is ActionKind.ADD_ROW
    assert outcome.intent.data == {"Product": "iPhone 15", "Revenue": "$1,200"}
    assert outcome.intent.raw_source_text == "Add iPhone 15 for $1,200"
    assert outcome.intent.confidence == PRIMARY_CONFIDENCE
    assert completions.kwargs["tools"] == [ACTION_TOOL]
    assert completions.kwargs["tool_choice"] == "auto"


async def test_update_cell_value_shape_maps_to_column(sales_schema):
    client, _ = _client(_response(tool_calls=[_tool_call({
        "action": "updateCell", "range": "B3", "data": {"value": 900},
    })]))
    outcome = await PrimaryParser(client).parse("set B3 to 900", sales_schema)
    assert outcome.intent.data == {"Revenue": 900}
    assert outcome.intent.range == "B3"


@pytest.mark.parametrize(
    "given, expected",
    [(0.35, 0.35), (1, 1.0), (7, 1.0), (-2, 0.0), ("high", PRIMARY_CONFIDENCE), (True, PRIMARY_CONFIDENCE)],
)
def test_confidence_argument(sales_schema, given, expected):
    intent = intent_from_arguments({"action": "readRange", "range": "A1", "confidence": given},
                                   sales_schema, "read A1")
    assert intent.confidence == expected


async def test_unknown_action_name_is_unsupported(sales_schema):
    client, _ = _client(_response(tool_calls=[_tool_call({"action": "deleteRow"})]))
    outcome = await PrimaryParser(client).parse("delete row 3", sales_schema)
    assert outcome.intent.kind is ActionKind.UNSUPPORTED


async def test_plain_text_reply(sales_schema):
    client, _ = _client(_response(content="  Revenue is the total of sales.  "))
    outcome = await PrimaryParser(client).parse("what is revenue?", sales_schema)
    assert isinstance(outcome, ParsedText)
    assert outcome.content == "Revenue is the total of sales."


async def test_other_tool_is_ignored(sales_schema):
    client, _ = _client(_response(content="hi", tool_calls=[_tool_call({}, name="other")]))
    outcome = await PrimaryParser(client).parse("hello", sales_schema)
    assert isinstance(outcome, ParsedText)


@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]"])
async def test_bad_arguments_fail_with_instruction(sales_schema, arguments):
    client, _ = _client(_response(tool_calls=[_tool_call(arguments)]))
    outcome = await PrimaryParser(client).parse("Add Product: X", sales_schema)
    assert isinstance(outcome, ParseFailure)
    assert outcome.raw_response == "Add Product: X"


async def test_api_error_is_a_failure(sales_schema):
    client, _ = _client(error=openai.OpenAIError("rate limited"))
    outcome = await PrimaryParser(client).parse("Add Product: X", sales_schema)
    assert isinstance(outcome, ParseFailure)
    assert "rate limited" in outcome.error


async def test_empty_response_is_a_failure(sales_schema):
    client, _ = _client(SimpleNamespace(choices=[]))
    assert isinstance(await PrimaryParser(client).parse("x", sales_schema), ParseFailure)
    client, _ = _client(_response(content="   "))
    assert isinstance(await PrimaryParser(client).parse("x", sales_schema), ParseFailure)


async def test_offline_parser_always_fails(sales_schema):
    outcome = await OfflineParser().parse("Add Product: X", sales_schema)
    assert isinstance(outcome, ParseFailure)
    assert outcome.raw_response == "Add Product: X"


def test_prompt_carries_headers(sales_schema):
    messages = build_prompt("add a row", sales_schema)
    assert messages[0]["role"] == "system"
    assert "Headers: Product, Revenue, Date, Email" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "add a row"}


def test_prompt_without_context():
    messages = build_prompt("hi", Schema())
    assert "No spreadsheet context available" in messages[0]["content"]


def test_parser_from_settings():
    assert isinstance(parser_from_settings(Settings()), OfflineParser)
    parser = parser_from_settings(Settings(openai_api_key="sk-test", model="gpt-4o"))
    assert isinstance(parser, PrimaryParser)
    assert parser.model == "gpt-4o"
