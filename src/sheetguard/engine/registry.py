"""Schema registry: builds and holds the schema of the selected tab."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sheetguard.contracts.common import BackendError
from sheetguard.contracts.schema import ColumnDescriptor, ColumnType, Schema
from sheetguard.validation.coercion import CoercionError, coerce_date

if TYPE_CHECKING:
    from sheetguard.adapters.backend import SheetsBackend

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_RE = re.compile(r"^https?://.+", re.IGNORECASE)
BOOL_RE = re.compile(r"^(true|false|yes|no|1|0)$", re.IGNORECASE)

HEADER_ROWS_TO_CHECK = 3
HEADER_THRESHOLD = 0.7
SAMPLE_SIZE = 5


def _is_empty(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _classify(value: Any) -> ColumnType:
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, (int, float)):
        return ColumnType.NUMBER
    if isinstance(value, (datetime, date)):
        return ColumnType.DATE

    text = str(value).strip()
    if EMAIL_RE.match(text):
        return ColumnType.EMAIL
    if URL_RE.match(text):
        return ColumnType.URL
    if BOOL_RE.match(text):
        return ColumnType.BOOLEAN
    try:
        float(text)
        return ColumnType.NUMBER
    except ValueError:
        pass
    try:
        coerce_date(text)
        return ColumnType.DATE
    except CoercionError:
        return ColumnType.TEXT


def infer_column_type(values: Sequence[Any]) -> tuple[ColumnType, float]:
    """Majority type of the non-empty *values* and the share that agrees.

    A type has to beat 0.5 to win; otherwise the column is ``text`` at 0.5.
    An empty column is ``text`` with confidence 0.
    """
    counts: dict[ColumnType, int] = {}
    total = 0
    for value in values:
        if _is_empty(value):
            continue
        kind = _classify(value)
        counts[kind] = counts.get(kind, 0) + 1
        total += 1
    if total == 0:
        return ColumnType.TEXT, 0.0

    best, best_conf = ColumnType.TEXT, 0.5
    for kind, count in counts.items():
        conf = count / total
        if conf > best_conf:
            best, best_conf = kind, conf
    return best, round(best_conf, 4)


def header_score(row: Sequence[Any]) -> float:
    """How much a row looks like a header row (0..1)."""
    if not row:
        return 0.0
    width = len(row)
    cells = [str(c).strip() if c is not None else "" for c in row]
    non_empty = sum(1 for c in cells if c)
    strings = sum(1 for c, raw in zip(cells, row) if c and _classify(raw) is ColumnType.TEXT)
    unique = len({c.lower() for c in cells})
    score = (non_empty / width) * 0.5 + (strings / width) * 0.3 + (unique / width) * 0.2
    return min(1.0, score)


def detect_header_row(rows: Sequence[Sequence[Any]]) -> tuple[int, list[str]] | None:
    """Index and names of the header row among the first rows, if any."""
    for idx, row in enumerate(rows[:HEADER_ROWS_TO_CHECK]):
        if header_score(row) > HEADER_THRESHOLD:
            names: list[str] = []
            for pos, cell in enumerate(row):
                name = str(cell).strip() if cell is not None else ""
                names.append(name or f"Column{pos + 1}")
            return idx, names
    return None


def _dedupe(names: list[str]) -> list[str]:
    seen: dict[str, int] = {}
    out: list[str] = []
    for name in names:
        if name in seen:
            seen[name] += 1
            out.append(f"{name}_{seen[name]}")
        else:
            seen[name] = 1
            out.append(name)
    return out


def schema_from_rows(
    rows: Sequence[Sequence[Any]],
    *,
    spreadsheet_id: str | None = None,
    tab: str | None = None,
    total_rows: int | None = None,
) -> Schema:
    """Infer a schema from sampled rows (header row included, when present)."""
    rows = [list(r) for r in rows]
    if not rows:
        return Schema(columns=[], total_rows=0, has_header_row=False,
                      spreadsheet_id=spreadsheet_id, tab=tab)

    width = max(len(r) for r in rows)
    header = detect_header_row(rows)
    if header is not None:
        header_idx, names = header
        names = names + [f"Column{i + 1}" for i in range(len(names), width)]
        body = rows[header_idx + 1:]
        has_header = True
    else:
        names = [f"Column{i + 1}" for i in range(width)]
        body = rows
        has_header = False

    columns: list[ColumnDescriptor] = []
    for idx, name in enumerate(_dedupe(names)):
        values = [r[idx] if idx < len(r) else None for r in body]
        non_empty = [v for v in values if not _is_empty(v)]
        col_type, confidence = infer_column_type(non_empty)
        columns.append(ColumnDescriptor(
            name=name,
            index=idx,
            inferred_type=col_type,
            confidence=confidence,
            sample_values=non_empty[:SAMPLE_SIZE],
            non_empty_count=len(non_empty),
        ))

    return Schema(
        columns=columns,
        total_rows=total_rows if total_rows is not None else len(body),
        has_header_row=has_header,
        spreadsheet_id=spreadsheet_id,
        tab=tab,
    )


def schema_from_payload(payload: dict[str, Any], *, spreadsheet_id: str | None = None) -> Schema:
    """Build a schema from the ``data`` block of a ``fetchTabData`` response.

    Column entries carrying ``dataType`` are taken as reported; when the
    backend sent no column analysis the schema is inferred from
    ``sampleValues``.
    """
    tab = payload.get("sheetName")
    dims = payload.get("dimensions") or {}
    reported = payload.get("schema") or []
    header_idx = payload.get("headerRowIndex", 0)

    if not reported:
        return schema_from_rows(
            payload.get("sampleValues") or [],
            spreadsheet_id=spreadsheet_id, tab=tab,
            total_rows=dims.get("rows"),
        )

    columns: list[ColumnDescriptor] = []
    for idx, col in enumerate(reported):
        dtype = col.get("dataType") or {}
        type_name = dtype.get("type", "text")
        try:
            col_type = ColumnType(type_name)
        except ValueError:
            col_type = ColumnType.TEXT
        stats = col.get("stats") or {}
        columns.append(ColumnDescriptor(
            name=str(col.get("name") or f"Column{idx + 1}"),
            index=idx,
            inferred_type=col_type,
            confidence=float(dtype.get("confidence", 0.0 if type_name == "empty" else 1.0)),
            sample_values=list(stats.get("sampleValues") or []),
            non_empty_count=int(stats.get("nonEmpty", 0)),
        ))

    total = dims.get("rows", 0)
    has_header = header_idx is not None and header_idx >= 0 and not payload.get("generatedHeaders")
    offset = header_idx + 1 if has_header else 0
    return Schema(
        columns=columns,
        total_rows=max(0, total - offset),
        has_header_row=has_header,
        spreadsheet_id=spreadsheet_id,
        tab=tab,
    )


class SchemaRegistry:
    """Schemas of tabs read so far, keyed by spreadsheet and tab.

    ``select`` marks the tab the user is working on; pipeline calls still
    take the schema explicitly, so selecting another tab never changes a
    call already in flight.
    """

    def __init__(self) -> None:
        self._schemas: dict[tuple[str, str], Schema] = {}
        self.current: Schema | None = None

    def put(self, schema: Schema) -> Schema:
        key = (schema.spreadsheet_id or "", schema.tab or "")
        self._schemas[key] = schema
        return schema

    def get(self, spreadsheet_id: str, tab: str) -> Schema | None:
        return self._schemas.get((spreadsheet_id, tab))

    def select(self, spreadsheet_id: str, tab: str) -> Schema:
        schema = self.get(spreadsheet_id, tab)
        if schema is None:
            raise KeyError(f"No schema loaded for {spreadsheet_id}/{tab}")
        self.current = schema
        return schema

    def forget(self, spreadsheet_id: str, tab: str) -> None:
        removed = self._schemas.pop((spreadsheet_id, tab), None)
        if removed is not None and removed is self.current:
            self.current = None

    async def load(self, backend: "SheetsBackend", spreadsheet_id: str, tab: str,
                   *, sample_max_rows: int = 500) -> Schema:
        """Read *tab* through the backend and register its schema."""
        response = await backend.call({
            "action": "fetchTabData",
            "spreadsheetId": spreadsheet_id,
            "tabName": tab,
            "options": {"sampleMaxRows": sample_max_rows},
        })
        data = response.get("data")
        if not isinstance(data, dict):
            raise BackendError("fetchTabData response has no data block", payload=response)
        schema = schema_from_payload(data, spreadsheet_id=spreadsheet_id)
        if schema.tab is None:
            schema = schema.model_copy(update={"tab": tab})
        logger.info("Loaded schema for %s/%s: %d columns", spreadsheet_id, tab, len(schema.columns))
        return self.put(schema)
