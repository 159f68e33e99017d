"""Tests for CLI commands via Typer test runner."""

from __future__ import annotations

import json
from pathlib import Path

import openpyxl
import pytest
from typer.testing import CliRunner

from sheetguard.cli import app
from sheetguard.validation.policy import POLICY_FILENAME

from conftest import workbook_digest

runner = CliRunner()

INSTRUCTION = "Add Product: iPhone 15, Revenue: $1,200"


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch):
    """No stray config or policy files from the working directory."""
    monkeypatch.chdir(tmp_path)


def _json(result) -> dict:
    out = result.stdout
    return json.loads(out[out.index("{"):])


def _row(path: Path, index: int) -> list:
    wb = openpyxl.load_workbook(str(path))
    try:
        return [c.value for c in wb["Sales"][index]]
    finally:
        wb.close()


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    data = _json(result)
    assert data["ok"] is True
    assert "version" in data["result"]


def test_sanitize():
    result = runner.invoke(app, ["sanitize", "=SUM(A1:A9)", "  plain  "])
    assert result.exit_code == 0
    outputs = [r["output"] for r in _json(result)["result"]]
    assert outputs == ["'=SUM(A1:A9)", "plain"]


def test_validate_with_schema_file(tmp_path: Path, sales_schema):
    schema_path = tmp_path / "sales.schema.json"
    schema_path.write_text(sales_schema.model_dump_json())
    action = json.dumps({"action": "addRow", "data": {"Product": "iPhone 15", "Revenue": "$1,200", "Color": "red"}})

    result = runner.invoke(app, ["validate", "--action", action, "--schema", str(schema_path)])
    assert result.exit_code == 0
    data = _json(result)
    assert data["result"]["sanitized_action"]["data"] == {"Product": "iPhone 15", "Revenue": 1200}
    assert data["result"]["sanitized_action"]["tabName"] == "Sales"
    assert data["result"]["removed_fields"] == ["Color"]


def test_validate_against_workbook(sales_workbook: Path):
    action = json.dumps({"action": "updateCell", "range": "B2", "data": {"Revenue": "lots"}})
    result = runner.invoke(app, ["validate", "--action", action, "-f", str(sales_workbook), "-t", "Sales"])
    assert result.exit_code == 10
    data = _json(result)
    assert data["ok"] is False
    assert data["errors"][0]["code"] == "ERR_VALIDATION_FAILED"


def test_validate_bad_json():
    result = runner.invoke(app, ["validate", "--action", "{nope", "--schema", "x.json"])
    assert result.exit_code == 10
    assert _json(result)["errors"][0]["code"] == "ERR_USAGE"


def test_validate_needs_schema_or_tab():
    result = runner.invoke(app, ["validate", "--action", '{"action": "addRow"}'])
    assert _json(result)["errors"][0]["code"] == "ERR_USAGE"


def test_normalize_with_headers():
    result = runner.invoke(app, ["normalize", INSTRUCTION + ", Color: red", "--headers", "Product,Revenue"])
    assert result.exit_code == 0
    data = _json(result)
    assert data["result"]["normalized"]["data"] == {"Product": "iPhone 15", "Revenue": "$1,200"}
    assert data["warnings"][0]["message"] == "dropped unknown field 'Color'"


def test_normalize_failure():
    result = runner.invoke(app, ["normalize", "hello there", "--headers", "Product"])
    assert result.exit_code == 10
    assert _json(result)["errors"][0]["code"] == "ERR_PARSE_FAILED"


def test_missing_config_file():
    result = runner.invoke(app, ["-c", "nope.yaml", "normalize", "x", "--headers", "A"])
    assert result.exit_code == 10
    assert _json(result)["errors"][0]["code"] == "ERR_CONFIG_INVALID"


def test_schema_infer_and_show(sales_workbook: Path, tmp_path: Path):
    out = tmp_path / "sales.schema.json"
    result = runner.invoke(app, ["schema", "infer", "-f", str(sales_workbook), "-t", "Sales", "--out", str(out)])
    assert result.exit_code == 0
    data = _json(result)
    assert [c["name"] for c in data["result"]["columns"]] == ["Product", "Revenue", "Date", "Email"]
    assert data["result"]["spreadsheet_id"] == "sales"
    assert out.exists()

    shown = runner.invoke(app, ["schema", "show", "--schema", str(out)])
    assert shown.exit_code == 0
    assert _json(shown)["result"]["headers"] == ["Product", "Revenue", "Date", "Email"]


def test_schema_infer_unknown_tab(sales_workbook: Path):
    result = runner.invoke(app, ["schema", "infer", "-f", str(sales_workbook), "-t", "Nope"])
    assert result.exit_code == 50
    assert _json(result)["errors"][0]["code"] == "ERR_BACKEND_NOT_FOUND"


def test_ask_dry_run_does_not_write(sales_workbook: Path):
    before = workbook_digest(sales_workbook)
    result = runner.invoke(app, ["ask", INSTRUCTION, "-f", str(sales_workbook), "-t", "Sales", "--dry-run"])
    assert result.exit_code == 0
    data = _json(result)
    assert data["result"]["executed"] is False
    pending = data["result"]["pending"]
    assert pending["action"]["data"] == {"Product": "iPhone 15", "Revenue": 1200}
    assert pending["preview"]["preview"]["rowIndex"] == 5
    assert workbook_digest(sales_workbook) == before


def test_ask_yes_writes(sales_workbook: Path, tmp_path: Path):
    trace = tmp_path / "trace.json"
    result = runner.invoke(app, ["ask", INSTRUCTION, "-f", str(sales_workbook), "-t", "Sales",
                                 "--yes", "--trace", str(trace)])
    assert result.exit_code == 0
    data = _json(result)
    assert data["result"]["executed"] is True
    assert data["result"]["execution"]["success"] is True
    assert _row(sales_workbook, 5)[:2] == ["iPhone 15", 1200]
    saved = json.loads(trace.read_text())
    assert saved["states"] == ["start", "parse", "normalize", "validate", "await_confirmation"]
    assert saved["instruction"] == INSTRUCTION


def test_ask_declined_prompt_cancels(sales_workbook: Path):
    before = workbook_digest(sales_workbook)
    result = runner.invoke(app, ["ask", INSTRUCTION, "-f", str(sales_workbook), "-t", "Sales"], input="n\n")
    assert result.exit_code == 0
    assert _json(result)["result"]["cancelled"] is True
    assert workbook_digest(sales_workbook) == before


def test_ask_unintelligible(sales_workbook: Path):
    result = runner.invoke(app, ["ask", "hello there", "-f", str(sales_workbook), "-t", "Sales", "--yes"])
    assert result.exit_code == 10
    data = _json(result)
    assert data["errors"][0]["code"] == "ERR_PARSE_FAILED"
    assert data["errors"][0]["details"] == {"stage": "normalize"}


def test_ask_protected_tab(sales_workbook: Path, tmp_path: Path):
    (tmp_path / POLICY_FILENAME).write_text("protected_tabs: [Sales]\n")
    before = workbook_digest(sales_workbook)
    result = runner.invoke(app, ["ask", INSTRUCTION, "-f", str(sales_workbook), "-t", "Sales", "--yes"])
    assert result.exit_code == 20
    assert _json(result)["errors"][0]["code"] == "ERR_POLICY_VIOLATION"
    assert workbook_digest(sales_workbook) == before


def test_ask_without_backend():
    result = runner.invoke(app, ["ask", INSTRUCTION, "-t", "Sales"])
    assert result.exit_code == 10
    assert _json(result)["errors"][0]["code"] == "ERR_CONFIG_INVALID"
