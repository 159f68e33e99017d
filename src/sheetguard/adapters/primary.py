"""Primary parser: structured function calling against an OpenAI-compatible model."""

from __future__ import annotations

import logging
from typing import Any

import openai
import orjson
from openai import AsyncOpenAI

from sheetguard.config import Settings
from sheetguard.contracts.actions import (
    ACTION_VOCABULARY,
    ActionIntent,
    ActionKind,
    ParsedAction,
    ParsedText,
    ParseFailure,
    ParseOutcome,
)
from sheetguard.contracts.schema import Schema
from sheetguard.engine.normalizer import column_for_range
from sheetguard.validation.refs import normalize_range

logger = logging.getLogger(__name__)

TOOL_NAME = "create_spreadsheet_action"
# used when the tool call carries no confidence of its own
PRIMARY_CONFIDENCE = 0.9

ACTION_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": "Create a structured action for spreadsheet manipulation",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(ACTION_VOCABULARY),
                    "description": "The spreadsheet action to perform",
                },
                "spreadsheetId": {"type": "string", "description": "The spreadsheet ID"},
                "tabName": {"type": "string", "description": "The tab name"},
                "range": {
                    "type": "string",
                    "description": "A1 notation range (for updateCell/readRange)",
                },
                "data": {
                    "type": "object",
                    "description": "Column name -> value for addRow; "
                                   "{column, value} for updateCell",
                },
                "confidence": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "description": "How sure you are that this action matches the instruction",
                },
            },
            "required": ["action"],
        },
    },
}

SYSTEM_PROMPT = """You are a spreadsheet assistant. Convert the user's instruction into a \
single call to create_spreadsheet_action when it asks to read or change the sheet.

- To read data use readRange (with an A1 range) or fetchTabData.
- To add data use addRow with column names taken only from the headers below.
- To change one cell use updateCell with a single A1 cell in range.
- Never invent column names.
If the instruction is a question or cannot be turned into an action, reply in plain text."""


def build_prompt(instruction: str, schema: Schema) -> list[dict[str, str]]:
    if schema.spreadsheet_id or schema.tab:
        context = (
            f"Current spreadsheet: {schema.spreadsheet_id or '(unknown)'}, "
            f"tab: {schema.tab or '(unknown)'}\n"
            f"Headers: {', '.join(schema.headers) or '(none)'}\n"
            f"Columns:\n{schema.summary()}"
        )
    else:
        context = "No spreadsheet context available"
    return [
        {"role": "system", "content": f"{SYSTEM_PROMPT}\n\nContext:\n{context}"},
        {"role": "user", "content": instruction},
    ]


def intent_from_arguments(args: dict[str, Any], schema: Schema, instruction: str) -> ActionIntent:
    """Map tool-call arguments onto an intent without validating them."""
    kind = ActionKind.parse(args.get("action"))
    rng = args.get("range") if isinstance(args.get("range"), str) else None
    raw = args.get("data")
    data: dict[str, Any] = dict(raw) if isinstance(raw, dict) else {}

    if kind is ActionKind.UPDATE_CELL and "value" in data and set(data) <= {"value", "column"}:
        column = data.get("column") or (column_for_range(normalize_range(rng), schema.headers) if rng else None)
        data = {str(column): data["value"]} if column else {}

    confidence = args.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = PRIMARY_CONFIDENCE

    return ActionIntent(
        kind=kind,
        target_spreadsheet_id=str(args.get("spreadsheetId") or ""),
        target_tab=str(args.get("tabName") or ""),
        data=data,
        range=rng,
        confidence=min(max(float(confidence), 0.0), 1.0),
        raw_source_text=instruction,
    )


class PrimaryParser:
    """Asks the model for one ``create_spreadsheet_action`` call.

    ``parse`` never raises: transport, rate-limit, API and argument errors all
    come back as ``ParseFailure`` carrying the original instruction.
    """

    def __init__(self, client: Any = None, *, model: str = "gpt-4o-mini",
                 temperature: float = 0.1) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> "PrimaryParser":
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        return cls(client, model=settings.model, temperature=settings.temperature)

    async def parse(self, instruction: str, schema: Schema) -> ParseOutcome:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=build_prompt(instruction, schema),
                tools=[ACTION_TOOL],
                tool_choice="auto",
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            logger.warning("Primary model call failed: %s", e)
            return ParseFailure(raw_response=instruction, error=str(e))

        try:
            message = response.choices[0].message
        except (AttributeError, IndexError) as e:
            return ParseFailure(raw_response=instruction, error=f"malformed response: {e}")

        for call in message.tool_calls or []:
            if call.function.name != TOOL_NAME:
                continue
            try:
                args = orjson.loads(call.function.arguments or "{}")
            except orjson.JSONDecodeError as e:
                logger.warning("Tool call arguments are not JSON: %s", e)
                return ParseFailure(raw_response=instruction, error=f"bad tool arguments: {e}")
            if not isinstance(args, dict):
                return ParseFailure(raw_response=instruction, error="tool arguments are not an object")
            return ParsedAction(intent=intent_from_arguments(args, schema, instruction))

        content = (message.content or "").strip()
        if not content:
            return ParseFailure(raw_response=instruction, error="empty model response")
        return ParsedText(content=content)


class OfflineParser:
    """Stands in for the model when no API key is configured.

    Every instruction comes back as a ``ParseFailure`` so the coordinator
    hands it straight to the fallback normalizer.
    """

    async def parse(self, instruction: str, schema: Schema) -> ParseOutcome:
        return ParseFailure(raw_response=instruction, error="no primary model configured")


def parser_from_settings(settings: Settings) -> PrimaryParser | OfflineParser:
    if settings.openai_api_key:
        return PrimaryParser.from_settings(settings)
    logger.info("No model API key configured; instructions go to the fallback normalizer")
    return OfflineParser()
