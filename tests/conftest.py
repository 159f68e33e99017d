"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from sheetguard.contracts.actions import NormalizeContext, NormalizeResult, ParseOutcome
from sheetguard.contracts.common import BackendError
from sheetguard.contracts.schema import ColumnDescriptor, ColumnType, Schema

SALES_HEADERS = ["Product", "Revenue", "Date", "Email"]


def workbook_digest(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Settings must not pick up the developer's own keys or endpoints."""
    for var in list(os.environ):
        upper = var.upper()
        if upper.startswith("SHEETGUARD_") or upper in ("OPENAI_API_KEY", "OPENAI_BASE_URL"):
            monkeypatch.delenv(var)


@pytest.fixture()
def sales_workbook(tmp_path: Path) -> Path:
    """Workbook with a header row and three sales rows, plus an archive tab."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"
    ws.append(SALES_HEADERS)
    ws.append(["Widget", 1000, datetime(2024, 1, 15), "ann@example.com"])
    ws.append(["Gadget", 1500, datetime(2024, 2, 1), "bob@example.com"])
    ws.append(["Gizmo", 800, datetime(2024, 3, 3), "cy@example.com"])

    archive = wb.create_sheet("Archive")
    archive.append(["Product", "Revenue"])
    archive.append(["Old thing", 10])

    path = tmp_path / "sales.xlsx"
    wb.save(str(path))
    wb.close()
    return path


@pytest.fixture()
def sales_schema() -> Schema:
    return Schema(
        columns=[
            ColumnDescriptor(name="Product", index=0, inferred_type=ColumnType.TEXT,
                             sample_values=["Widget", "Gadget"], non_empty_count=3),
            ColumnDescriptor(name="Revenue", index=1, inferred_type=ColumnType.NUMBER,
                             sample_values=[1000, 1500], non_empty_count=3),
            ColumnDescriptor(name="Date", index=2, inferred_type=ColumnType.DATE,
                             sample_values=["2024-01-15"], non_empty_count=3),
            ColumnDescriptor(name="Email", index=3, inferred_type=ColumnType.EMAIL,
                             sample_values=["ann@example.com"], non_empty_count=3),
        ],
        total_rows=3,
        spreadsheet_id="sales",
        tab="Sales",
    )


class StubParser:
    """Primary parser double that returns a fixed outcome."""

    def __init__(self, outcome: ParseOutcome) -> None:
        self.outcome = outcome
        self.calls: list[str] = []

    async def parse(self, instruction: str, schema: Schema) -> ParseOutcome:
        self.calls.append(instruction)
        return self.outcome


class CountingNormalizer:
    """Normalizer double that records each call and replays a fixed result."""

    def __init__(self, result: NormalizeResult) -> None:
        self.result = result
        self.calls: list[tuple[str, NormalizeContext]] = []

    async def normalize(self, raw_text: str, context: NormalizeContext) -> NormalizeResult:
        self.calls.append((raw_text, context))
        return self.result


class RecordingBackend:
    """Backend double: records requests, answers from a callable."""

    def __init__(self, responder=None) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responder = responder

    async def call(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        if self.responder is not None:
            return self.responder(request)
        if request.get("options", {}).get("dryRun"):
            return {"success": True, "dryRun": True, "preview": {"action": request["action"]}}
        return {"success": True, "result": {"action": request["action"], "written": True}}

    @property
    def writes(self) -> list[dict[str, Any]]:
        return [r for r in self.requests if not r.get("options", {}).get("dryRun")]


def failing_responder(status: int, message: str = "boom"):
    def respond(request: dict[str, Any]) -> dict[str, Any]:
        raise BackendError(message, status_code=status)

    return respond


@pytest.fixture()
def recording_backend() -> RecordingBackend:
    return RecordingBackend()
