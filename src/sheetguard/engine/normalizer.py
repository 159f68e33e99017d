"""Rule-based normalizer: turns loose model output or free text into an intent.

Two entry shapes are understood. Text holding a brace-delimited object is
repaired until it parses as JSON, then its keys and action names are mapped
onto the wire vocabulary. Anything else is read as a sentence: the verb is
classified by keyword and ``Key: value`` pairs become row fields.

Every field name is checked against the tab headers before it is returned.
"""

from __future__ import annotations

import re
from typing import Any

import orjson

from sheetguard.contracts.actions import (
    ACTION_VOCABULARY,
    ActionIntent,
    ActionKind,
    NormalizeContext,
    NormalizeFailure,
    NormalizeResult,
    NormalizeSuccess,
)
from sheetguard.validation.refs import column_index, find_range, is_cell_ref, normalize_range

KEY_ALIASES = {
    "action": "action",
    "act": "action",
    "operation": "action",
    "command": "action",
    "spreadsheetid": "spreadsheetId",
    "sheetid": "spreadsheetId",
    "id": "spreadsheetId",
    "tabname": "tabName",
    "tab": "tabName",
    "sheet": "tabName",
    "sheetname": "tabName",
    "range": "range",
    "cell": "range",
    "cells": "range",
    "address": "range",
    "data": "data",
    "values": "data",
    "payload": "data",
    "fields": "data",
    "row": "data",
    "options": "options",
    "opts": "options",
    "confidence": "confidence",
}

ACTION_ALIASES = {
    "addrow": "addRow",
    "appendrow": "addRow",
    "append": "addRow",
    "insert": "addRow",
    "insertrow": "addRow",
    "add": "addRow",
    "updatecell": "updateCell",
    "setcell": "updateCell",
    "update": "updateCell",
    "set": "updateCell",
    "readrange": "readRange",
    "getrange": "readRange",
    "read": "readRange",
    "fetchtabdata": "fetchTabData",
    "gettabdata": "fetchTabData",
    "getdata": "fetchTabData",
    "fetch": "fetchTabData",
}

# Sentence keywords per action; the earliest match in the text wins.
VERB_PATTERNS: tuple[tuple[ActionKind, re.Pattern[str]], ...] = (
    (ActionKind.ADD_ROW, re.compile(r"\b(add|new row|append|insert)\b", re.IGNORECASE)),
    (ActionKind.UPDATE_CELL, re.compile(r"\b(update|change|set cell|set)\b", re.IGNORECASE)),
    (ActionKind.READ_RANGE, re.compile(r"\b(show|read|range)\b", re.IGNORECASE)),
)

_KEY = r"[A-Za-z_][\w .\-/#()]*?"
PAIR_RE = re.compile(
    rf"(?:^|[,;\n])\s*(?P<key>{_KEY})\s*[:=]\s*(?P<value>.*?)(?=\s*[,;\n]\s*{_KEY}\s*[:=]|\s*$)",
    re.DOTALL,
)
TAB_RE = re.compile(
    r"\b(?:in|on|to|from|into)?\s*\b(?:tab|sheet)(?:\s+name)?\s*[:\s]\s*"
    r"(?:'(?P<q1>[^']+)'|\"(?P<q2>[^\"]+)\"|(?P<bare>[\w\-]+))",
    re.IGNORECASE,
)
TO_VALUE_RE = re.compile(
    r"\bto\s+(?P<value>.+?)(?:\s+(?:in|at)\s+(?:cell\s+)?[A-Z]{1,3}[1-9][0-9]*)?\s*$",
    re.IGNORECASE | re.DOTALL,
)
LEADING_WORDS = {
    "add", "new", "row", "a", "an", "the", "with", "and", "update", "set",
    "change", "cell", "insert", "append", "please", "entry", "record",
}


def repair_json(text: str) -> str:
    """Apply the usual fixes for almost-JSON emitted by a language model."""
    fixed = text.strip()
    # 'single' -> "double" when the quotes delimit a whole token
    fixed = re.sub(r"(?<=[{\[,:\s])'([^'\n]*)'(?=\s*[,:}\]])", r'"\1"', fixed)
    # unquoted keys
    fixed = re.sub(r'([{,]\s*)([A-Za-z_][\w\- ]*?)\s*:(?!//)', r'\1"\2":', fixed)
    # trailing commas
    fixed = re.sub(r",\s*([}\]])", r"\1", fixed)
    # Python literals
    fixed = re.sub(r"\bTrue\b", "true", fixed)
    fixed = re.sub(r"\bFalse\b", "false", fixed)
    fixed = re.sub(r"\bNone\b", "null", fixed)
    return fixed


def extract_object(text: str) -> dict[str, Any] | None:
    """Parse the first brace-delimited object in *text*, repairing it if needed."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    candidate = text[start:end + 1]
    for attempt in (candidate, repair_json(candidate)):
        try:
            parsed = orjson.loads(attempt)
        except orjson.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def looks_structured(text: str) -> bool:
    """True when *text* contains something shaped like a JSON object."""
    start = text.find("{")
    return start != -1 and text.rfind("}") > start


def canonical_key(key: str) -> str:
    normalized = re.sub(r"[^a-z0-9]", "", key.lower())
    return KEY_ALIASES.get(normalized, key)


def canonical_action(name: Any) -> ActionKind:
    if isinstance(name, str):
        normalized = re.sub(r"[^a-z0-9]", "", name.lower())
        return ActionKind.parse(ACTION_ALIASES.get(normalized, name))
    return ActionKind.UNSUPPORTED


def filter_fields(data: dict[str, Any], headers: list[str]) -> tuple[dict[str, Any], list[str]]:
    """Keep only fields naming a header; returns the kept fields and a warning per drop.

    Names match exactly first, then case-insensitively (mapped to the
    header's own spelling).
    """
    by_lower = {h.strip().lower(): h for h in headers}
    kept: dict[str, Any] = {}
    warnings: list[str] = []
    for name, value in data.items():
        if name in headers:
            kept[name] = value
            continue
        header = by_lower.get(str(name).strip().lower())
        if header is not None:
            kept[header] = value
        else:
            warnings.append(f"dropped unknown field '{name}'")
    return kept, warnings


def column_for_range(rng: str, headers: list[str]) -> str | None:
    """Header of the column *rng* points into, if the tab has one there."""
    index = column_index(rng)
    if index is None or index >= len(headers):
        return None
    return headers[index]


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def _clean_key(key: str, headers: list[str]) -> str:
    """Trim a sentence prefix off a key ("Add Product" -> "Product")."""
    words = key.split()
    lowered = {h.lower() for h in headers}
    for i in range(len(words)):
        candidate = " ".join(words[i:])
        if candidate in headers or candidate.lower() in lowered:
            return candidate
    while len(words) > 1 and words[0].lower() in LEADING_WORDS:
        words = words[1:]
    return " ".join(words)


class RuleNormalizer:
    """Deterministic normalizer used in-process and behind the stdio server."""

    def normalize(self, raw_text: str, context: NormalizeContext | None = None) -> NormalizeResult:
        context = context or NormalizeContext()
        text = (raw_text or "").strip()
        if not text:
            return NormalizeFailure(error="empty input")

        obj = extract_object(text) if looks_structured(text) else None
        if obj is not None:
            intent, warnings = self._from_object(obj, context)
        else:
            intent, warnings = self._from_sentence(text, context)
        if intent is None:
            return NormalizeFailure(error=warnings[0] if warnings else "could not detect an action")

        data, dropped = filter_fields(intent.data, context.headers)
        warnings.extend(dropped)
        if intent.kind.is_mutating and not data:
            return NormalizeFailure(
                error=f"no fields matching the tab headers for {intent.kind.value}"
            )
        intent = intent.model_copy(update={"data": data, "raw_source_text": raw_text})
        return NormalizeSuccess(normalized=intent, warnings=warnings)

    def _expected(self, context: NormalizeContext) -> ActionKind | None:
        if context.expected_action in ACTION_VOCABULARY:
            return ActionKind(context.expected_action)
        return None

    def _from_object(self, obj: dict[str, Any],
                     context: NormalizeContext) -> tuple[ActionIntent | None, list[str]]:
        fields: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in obj.items():
            canonical = canonical_key(str(key))
            if canonical in ("action", "spreadsheetId", "tabName", "range", "data",
                             "options", "confidence"):
                fields[canonical] = value
            else:
                extra[key] = value

        kind = self._expected(context) or canonical_action(fields.get("action"))
        if kind is ActionKind.UNSUPPORTED:
            return None, [f"unrecognised action {fields.get('action')!r}"]

        rng = normalize_range(fields.get("range")) if isinstance(fields.get("range"), str) else ""
        raw_data = fields.get("data")
        data: dict[str, Any] = {}
        if isinstance(raw_data, dict):
            if kind is ActionKind.UPDATE_CELL and "value" in raw_data and set(raw_data) <= {"value", "column"}:
                column = raw_data.get("column") or column_for_range(rng, context.headers)
                if column:
                    data[str(column)] = raw_data["value"]
            else:
                data.update(raw_data)
        elif isinstance(raw_data, list) and kind is ActionKind.ADD_ROW:
            data.update(zip(context.headers, raw_data))
        elif raw_data is not None and kind is ActionKind.UPDATE_CELL:
            column = column_for_range(rng, context.headers)
            if column:
                data[column] = raw_data
        if "value" in extra and kind is ActionKind.UPDATE_CELL and not data:
            column = extra.pop("column", None) or column_for_range(rng, context.headers)
            value = extra.pop("value")
            if column:
                data[str(column)] = value
        data.update(extra)

        confidence = fields.get("confidence")
        intent = ActionIntent(
            kind=kind,
            target_spreadsheet_id=str(fields.get("spreadsheetId") or ""),
            target_tab=str(fields.get("tabName") or ""),
            data=data,
            range=rng or None,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.7,
        )
        return intent, []

    def _from_sentence(self, text: str,
                       context: NormalizeContext) -> tuple[ActionIntent | None, list[str]]:
        kind = self._expected(context)
        if kind is None:
            best: tuple[int, ActionKind] | None = None
            for candidate, pattern in VERB_PATTERNS:
                m = pattern.search(text)
                if m and (best is None or m.start() < best[0]):
                    best = (m.start(), candidate)
            if best is None:
                return None, ["could not detect an action"]
            kind = best[1]

        tab = ""
        tab_match = TAB_RE.search(text)
        if tab_match:
            tab = tab_match.group("q1") or tab_match.group("q2") or tab_match.group("bare") or ""
            text = (text[:tab_match.start()] + text[tab_match.end():]).strip()

        data: dict[str, Any] = {}
        cell_value: str | None = None
        head = text
        rng = ""
        seen_pair = False
        for m in PAIR_RE.finditer(text):
            if not seen_pair:
                seen_pair = True
                head = text[:m.start("value")]
                rng = normalize_range(find_range(head) or "")
            key = _clean_key(m.group("key").strip(), context.headers)
            value = _strip_quotes(m.group("value"))
            if not key or not value:
                continue
            if is_cell_ref(normalize_range(key)):
                # "B2: 500" names the cell, not a column
                rng = rng or normalize_range(key)
                cell_value = value
                continue
            data[key] = value

        if not seen_pair:
            rng = normalize_range(find_range(text) or "")
        if kind is ActionKind.UPDATE_CELL and not data and rng:
            column = column_for_range(rng, context.headers)
            if cell_value is None:
                to_value = TO_VALUE_RE.search(head)
                cell_value = _strip_quotes(to_value.group("value")) if to_value else None
            if column and cell_value:
                data[column] = cell_value
        if kind is ActionKind.READ_RANGE:
            rng = normalize_range(find_range(text) or "")

        intent = ActionIntent(
            kind=kind,
            target_tab=tab,
            data=data if kind.is_mutating else {},
            range=rng or None,
            confidence=0.5,
        )
        return intent, []
