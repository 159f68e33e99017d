"""Local .xlsx backend speaking the spreadsheet gateway protocol through openpyxl."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time
from io import BytesIO
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from sheetguard.contracts.common import BackendError
from sheetguard.engine.registry import HEADER_ROWS_TO_CHECK, detect_header_row, schema_from_rows
from sheetguard.io.fileops import WorkbookBusyError, backup_copy, replace_file, writer_lock
from sheetguard.validation.refs import AREA_PATTERN, CELL_PATTERN, normalize_range
from sheetguard.validation.sanitizer import sanitize

logger = logging.getLogger(__name__)


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def _cell_input(value: Any) -> Any:
    """Value as written to a cell: strings sanitized, numbers and booleans kept."""
    if value is None:
        return ""
    if isinstance(value, (bool, int, float)):
        return value
    return sanitize(value)


def _split_cell(ref: str) -> tuple[int, int]:
    m = CELL_PATTERN.match(ref)
    if not m:
        raise BackendError(f"Invalid cell reference: {ref}", status_code=422)
    return int(m.group(2)), column_index_from_string(m.group(1))


class WorkbookBackend:
    """Serves ``health``, ``listTabs``, ``fetchTabData``, ``readRange``,
    ``addRow``, ``updateCell`` and ``batch`` against one workbook file.

    ``options.dryRun`` returns the preview a write would produce and leaves
    the file untouched. Real writes hold an exclusive sidecar lock, back the
    file up when ``backup`` is on, and replace it atomically.
    """

    def __init__(self, path: str | Path, *, make_backup: bool = True, lock_timeout: float = 5.0) -> None:
        self.path = Path(path).resolve()
        self.make_backup = make_backup
        self.lock_timeout = lock_timeout

    async def call(self, request: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.handle, request)

    def handle(self, request: dict[str, Any]) -> dict[str, Any]:
        action = request.get("action")
        handlers = {
            "health": self._health,
            "listTabs": self._list_tabs,
            "fetchTabData": self._fetch_tab_data,
            "readRange": self._read_range,
            "updateCell": self._update_cell,
            "addRow": self._add_row,
            "batch": self._batch,
        }
        handler = handlers.get(action)
        if handler is None:
            raise BackendError(f"Unknown action: {action}", status_code=400)
        return handler(request)

    # -- workbook access -----------------------------------------------------

    def _load(self) -> Workbook:
        if not self.path.exists():
            raise BackendError(f"Workbook not found: {self.path}", status_code=404)
        try:
            return openpyxl.load_workbook(str(self.path))
        except Exception as e:
            raise BackendError(f"Cannot open workbook {self.path}: {e}", status_code=500) from e

    def _sheet(self, wb: Workbook, tab: str | None) -> Worksheet:
        if not tab or tab not in wb.sheetnames:
            raise BackendError(f"Tab '{tab}' not found", status_code=404)
        return wb[tab]

    def _save(self, wb: Workbook) -> str | None:
        backup_path = backup_copy(self.path) if self.make_backup else None
        buf = BytesIO()
        wb.save(buf)
        replace_file(self.path, buf.getvalue())
        return backup_path

    def _rows(self, ws: Worksheet, limit: int | None = None) -> list[list[Any]]:
        rows = []
        for row in ws.iter_rows(values_only=True, max_row=limit):
            rows.append(list(row))
        return rows

    def _headers(self, ws: Worksheet) -> list[str]:
        """Column names the way fetchTabData reports them."""
        return schema_from_rows(self._rows(ws, limit=HEADER_ROWS_TO_CHECK)).headers

    # -- handlers ------------------------------------------------------------

    def _health(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"success": True, "status": "ok", "workbook": str(self.path), "exists": self.path.exists()}

    def _list_tabs(self, request: dict[str, Any]) -> dict[str, Any]:
        wb = self._load()
        try:
            sheets = [
                {
                    "name": ws.title,
                    "gid": idx,
                    "rows": ws.max_row,
                    "cols": ws.max_column,
                    "hidden": ws.sheet_state != "visible",
                }
                for idx, ws in enumerate(wb.worksheets)
            ]
        finally:
            wb.close()
        return {"success": True, "sheets": sheets, "spreadsheetName": self.path.stem}

    def _fetch_tab_data(self, request: dict[str, Any]) -> dict[str, Any]:
        tab = request.get("tabName")
        options = request.get("options") or {}
        sample_max = int(options.get("sampleMaxRows", 500))
        wb = self._load()
        try:
            ws = self._sheet(wb, tab)
            rows = self._rows(ws, limit=sample_max)
            last_row = ws.max_row if rows else 0
            last_col = ws.max_column if rows else 0
        finally:
            wb.close()

        samples = [[_json_value(v) for v in row] for row in rows]
        schema = schema_from_rows(samples, tab=tab)
        header = detect_header_row(samples)
        columns = [
            {
                "name": col.name,
                "index": col.index,
                "dataType": {"type": col.inferred_type.value, "confidence": col.confidence},
                "stats": {"nonEmpty": col.non_empty_count, "sampleValues": col.sample_values},
            }
            for col in schema.columns
        ]
        return {
            "success": True,
            "data": {
                "sheetName": tab,
                "dimensions": {"rows": last_row, "cols": last_col, "sampledRows": len(rows)},
                "headers": schema.headers,
                "headerRowIndex": header[0] if header else 0,
                "generatedHeaders": header is None,
                "schema": columns,
                "sampleValues": samples,
            },
        }

    def _read_range(self, request: dict[str, Any]) -> dict[str, Any]:
        tab = request.get("tabName")
        rng = normalize_range(request.get("range"))
        if not AREA_PATTERN.match(rng):
            raise BackendError(f"Invalid range: {request.get('range')}", status_code=422)
        wb = self._load()
        try:
            ws = self._sheet(wb, tab)
            cells = ws[rng]
            if not isinstance(cells, tuple):
                values = [[_json_value(cells.value)]]
            else:
                values = [[_json_value(c.value) for c in row] for row in cells]
        finally:
            wb.close()
        return {"success": True, "data": {"range": rng, "values": values, "sheetName": tab}}

    def _update_cell(self, request: dict[str, Any]) -> dict[str, Any]:
        tab = request.get("tabName")
        rng = normalize_range(request.get("range"))
        data = request.get("data") or {}
        options = request.get("options") or {}
        row, col = _split_cell(rng)
        new_value = _cell_input(data.get("value"))

        if options.get("dryRun"):
            wb = self._load()
            try:
                old_value = _json_value(self._sheet(wb, tab).cell(row=row, column=col).value)
            finally:
                wb.close()
            return {
                "success": True,
                "dryRun": True,
                "preview": {
                    "action": "updateCell",
                    "spreadsheetId": request.get("spreadsheetId"),
                    "tabName": tab,
                    "range": rng,
                    "column": data.get("column"),
                    "oldValue": old_value,
                    "newValue": new_value,
                },
            }

        with self._locked():
            wb = self._load()
            try:
                cell = self._sheet(wb, tab).cell(row=row, column=col)
                old_value = _json_value(cell.value)
                cell.value = new_value
                backup_path = self._save(wb)
            finally:
                wb.close()
        logger.info("Updated %s!%s in %s", tab, rng, self.path.name)
        return {
            "success": True,
            "result": {"range": rng, "oldValue": old_value, "newValue": new_value, "backup": backup_path},
        }

    def _add_row(self, request: dict[str, Any]) -> dict[str, Any]:
        tab = request.get("tabName")
        data = request.get("data")
        options = request.get("options") or {}
        wb = self._load()
        try:
            ws = self._sheet(wb, tab)
            if isinstance(data, list):
                values = [_cell_input(v) for v in data]
                headers = [get_column_letter(i + 1) for i in range(len(values))]
            elif isinstance(data, dict):
                headers = self._headers(ws)
                values = [_cell_input(data.get(h, "")) for h in headers]
            else:
                raise BackendError("Invalid data format for addRow", status_code=422)
            row_index = ws.max_row + 1 if ws.max_row > 1 or ws.cell(1, 1).value is not None else 1

            if options.get("dryRun"):
                return {
                    "success": True,
                    "dryRun": True,
                    "preview": {
                        "action": "addRow",
                        "spreadsheetId": request.get("spreadsheetId"),
                        "tabName": tab,
                        "rowIndex": row_index,
                        "row": dict(zip(headers, values)),
                        "values": values,
                    },
                }
        finally:
            wb.close()

        with self._locked():
            wb = self._load()
            try:
                ws = self._sheet(wb, tab)
                ws.append(values)
                row_index = ws.max_row
                backup_path = self._save(wb)
            finally:
                wb.close()
        logger.info("Appended row %d to %s in %s", row_index, tab, self.path.name)
        return {
            "success": True,
            "result": {"appended": 1, "rowIndex": row_index, "rowData": values, "backup": backup_path},
        }

    def _batch(self, request: dict[str, Any]) -> dict[str, Any]:
        operations = request.get("operations") or []
        if not isinstance(operations, list):
            raise BackendError("batch requires a list of operations", status_code=422)
        options = request.get("options") or {}
        results = []
        for op in operations:
            merged = {
                "spreadsheetId": request.get("spreadsheetId"),
                "tabName": request.get("tabName"),
                **op,
                "options": {**options, **(op.get("options") or {})},
            }
            if merged.get("action") == "batch":
                raise BackendError("nested batch is not supported", status_code=422)
            results.append(self.handle(merged))
        return {"success": True, "results": results}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            with writer_lock(self.path, timeout=self.lock_timeout):
                yield
        except WorkbookBusyError as e:
            raise BackendError(str(e), status_code=409) from e
