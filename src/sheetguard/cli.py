"""Typer CLI application: top-level commands and subcommand groups."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError

import sheetguard
from sheetguard.adapters.backend import SheetsBackend, backend_from_settings
from sheetguard.adapters.normalizer import normalizer_from_settings
from sheetguard.adapters.primary import parser_from_settings
from sheetguard.adapters.workbook import WorkbookBackend
from sheetguard.config import Settings
from sheetguard.contracts.actions import ActionIntent, NormalizeContext, NormalizeSuccess
from sheetguard.contracts.common import (
    BackendError,
    ConfigError,
    PendingActionError,
    Target,
)
from sheetguard.contracts.responses import ActionPending, PipelineError, TextReply
from sheetguard.contracts.schema import Schema
from sheetguard.engine.coordinator import Coordinator
from sheetguard.engine.dispatcher import (
    backend_error_code,
    error_envelope,
    exit_code_for,
    print_response,
    success_envelope,
)
from sheetguard.engine.gateway import ExecutionGateway
from sheetguard.engine.registry import SchemaRegistry
from sheetguard.engine.session import Session
from sheetguard.io.fileops import read_config_text
from sheetguard.observe.events import EventStream, Stopwatch
from sheetguard.validation.policy import Policy
from sheetguard.validation.sanitizer import sanitize
from sheetguard.validation.validators import validate_intent

# ---------------------------------------------------------------------------
# App & subcommand groups
# ---------------------------------------------------------------------------

_MAIN_HELP = """\
Guardrails between natural-language instructions and spreadsheet writes.

**Pipeline:**  parse → normalize → validate → sanitize → preview → confirm

1. `sheetguard schema infer -f data.xlsx -t Sales --out sales.schema.json`
2. `sheetguard ask -f data.xlsx -t Sales "Add Product: iPhone 15, Revenue: $1,200" --dry-run`
3. `sheetguard ask -f data.xlsx -t Sales "Add Product: iPhone 15, Revenue: $1,200" --yes`

**Every command** returns a JSON `ResponseEnvelope`:
`{"ok": bool, "command": "...", "result": {...}, "errors": [...], "warnings": [...], "metrics": {"duration_ms": N}}`

**Exit codes:** 0=success, 10=validation, 20=policy, 40=conflict, 50=backend, 60=rate limited, 90=internal
"""

_SCHEMA_EPILOG = """\
**Examples:**

`sheetguard schema infer -f data.xlsx -t Sales`: column names, inferred types, confidence

`sheetguard schema show --schema sales.schema.json`
"""


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(sheetguard.__version__)
        raise typer.Exit()


app = typer.Typer(
    name="sheetguard",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
schema_app = typer.Typer(
    name="schema", help="Infer and inspect tab schemas.",
    epilog=_SCHEMA_EPILOG,
    no_args_is_help=True, rich_markup_mode="markdown",
)
app.add_typer(schema_app)

_state: dict[str, Any] = {"config": None, "events": False}


@app.callback(invoke_without_command=True)
def main(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Print version and exit.", is_eager=True)
    ] = False,
    config: Annotated[
        Optional[str], typer.Option("--config", "-c", help="Path to a sheetguard.yaml config file")
    ] = None,
    events: Annotated[
        bool, typer.Option("--events", help="Emit NDJSON pipeline events to stderr")
    ] = False,
) -> None:
    if version:
        _version_callback(True)
    _state["config"] = config
    _state["events"] = events


# Type aliases for common options
FilePath = Annotated[Optional[str], typer.Option("--file", "-f", help="Local .xlsx workbook used as the backend")]
TabOpt = Annotated[Optional[str], typer.Option("--tab", "-t", help="Tab (sheet) name")]
SpreadsheetOpt = Annotated[
    Optional[str], typer.Option("--spreadsheet-id", help="Spreadsheet id for a remote backend")
]
SchemaPath = Annotated[Optional[str], typer.Option("--schema", help="Path to a schema JSON file")]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _emit(envelope, code=None):
    print_response(envelope)
    raise typer.Exit(code if code is not None else exit_code_for(envelope))


def _settings(cmd: str) -> Settings:
    try:
        settings = Settings.load(_state.get("config"))
    except ConfigError as e:
        _emit(error_envelope(cmd, "ERR_CONFIG_INVALID", str(e)))
    logging.basicConfig(level=settings.log_level.upper(), stream=sys.stderr)
    return settings


def _backend(cmd: str, settings: Settings, file: str | None) -> SheetsBackend:
    if file:
        return WorkbookBackend(file)
    try:
        return backend_from_settings(settings)
    except BackendError as e:
        _emit(error_envelope(cmd, "ERR_CONFIG_INVALID", e.message))


def _spreadsheet_id(file: str | None, spreadsheet_id: str | None) -> str:
    if spreadsheet_id:
        return spreadsheet_id
    return Path(file).stem if file else ""


def _backend_failure(cmd: str, e: BackendError, target: Target) -> None:
    _emit(error_envelope(
        cmd, backend_error_code(e.status_code), e.message,
        target=target, details={"status_code": e.status_code},
    ))


def _load_schema(cmd: str, settings: Settings, *, schema_path: str | None, file: str | None,
                 tab: str | None, spreadsheet_id: str | None) -> Schema:
    """Schema from a JSON file, or read from the backend for ``--tab``."""
    target = Target(spreadsheet_id=spreadsheet_id, tab=tab, file=file)
    if schema_path:
        try:
            return Schema.model_validate_json(read_config_text(schema_path))
        except OSError as e:
            _emit(error_envelope(cmd, "ERR_IO", f"Cannot read schema {schema_path}: {e}", target=target))
        except ValidationError as e:
            _emit(error_envelope(cmd, "ERR_VALIDATION_FAILED", f"Invalid schema file: {e}", target=target))
    if not tab:
        _emit(error_envelope(cmd, "ERR_USAGE", "Provide --schema or --tab", target=target))

    backend = _backend(cmd, settings, file)
    sid = _spreadsheet_id(file, spreadsheet_id)
    try:
        return asyncio.run(SchemaRegistry().load(backend, sid, tab))
    except BackendError as e:
        _backend_failure(cmd, e, target)


def _load_policy(settings: Settings) -> Policy | None:
    if settings.policy_path:
        return Policy.load(settings.policy_path)
    return Policy.load_from_dir(Path.cwd())


# ---------------------------------------------------------------------------
# sheetguard version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the sheetguard version.

    Example: `sheetguard version`
    """
    env = success_envelope("version", {"version": sheetguard.__version__})
    _emit(env)


# ---------------------------------------------------------------------------
# sheetguard sanitize
# ---------------------------------------------------------------------------
@app.command("sanitize")
def sanitize_cmd(
    values: Annotated[list[str], typer.Argument(help="Cell values to sanitize")],
):
    """Show how values would be written to a cell (formula escaping, truncation).

    Example: `sheetguard sanitize "=SUM(A1:A9)" "  plain  "`
    """
    with Stopwatch() as t:
        result = [{"input": v, "output": sanitize(v)} for v in values]
    env = success_envelope("sanitize", result, duration_ms=t.elapsed_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetguard validate
# ---------------------------------------------------------------------------
@app.command("validate")
def validate_cmd(
    action: Annotated[str, typer.Option("--action", "-a", help="Action intent as JSON")],
    schema: SchemaPath = None,
    file: FilePath = None,
    tab: TabOpt = None,
    spreadsheet_id: SpreadsheetOpt = None,
):
    """Validate and sanitize an action against a tab schema without executing it.

    Example: `sheetguard validate -f data.xlsx -t Sales --action '{"action":"addRow","data":{"Revenue":"$1,200"}}'`
    """
    settings = _settings("validate")
    with Stopwatch() as t:
        try:
            intent = ActionIntent.model_validate(json.loads(action))
        except (json.JSONDecodeError, ValidationError) as e:
            _emit(error_envelope("validate", "ERR_USAGE", f"Invalid --action JSON: {e}"))
        loaded = _load_schema("validate", settings, schema_path=schema, file=file,
                              tab=tab, spreadsheet_id=spreadsheet_id)
        if not intent.target_tab and loaded.tab:
            intent = intent.model_copy(update={"target_tab": loaded.tab})
        result = validate_intent(
            intent, loaded,
            decimal_separator=settings.decimal_separator,
            low_confidence_threshold=settings.low_confidence_threshold,
        )

    target = Target(spreadsheet_id=loaded.spreadsheet_id, tab=loaded.tab, file=file)
    payload = result.model_dump(mode="json", by_alias=True)
    if not result.accepted:
        env = error_envelope("validate", "ERR_VALIDATION_FAILED", result.rejection_reason or "rejected",
                             target=target, result=payload, duration_ms=t.elapsed_ms)
    else:
        env = success_envelope("validate", payload, target=target,
                               warnings=result.coercion_warnings, duration_ms=t.elapsed_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetguard normalize
# ---------------------------------------------------------------------------
@app.command("normalize")
def normalize_cmd(
    text: Annotated[str, typer.Argument(help="Free text or almost-JSON to normalize")],
    headers: Annotated[
        Optional[str], typer.Option("--headers", help="Comma-separated tab headers")
    ] = None,
    expected_action: Annotated[
        Optional[str], typer.Option("--expected-action", help="Action to assume (addRow, updateCell, ...)")
    ] = None,
    schema: SchemaPath = None,
    file: FilePath = None,
    tab: TabOpt = None,
):
    """Run the fallback normalizer and print the structured action it derives.

    Fields whose names are not tab headers are dropped and reported.

    Example: `sheetguard normalize "Add Product: iPhone 15, Revenue: $1,200" --headers "Product,Revenue"`
    """
    settings = _settings("normalize")
    with Stopwatch() as t:
        if headers is not None:
            names = [h.strip() for h in headers.split(",") if h.strip()]
        else:
            names = _load_schema("normalize", settings, schema_path=schema, file=file,
                                 tab=tab, spreadsheet_id=None).headers
        context = NormalizeContext(expected_action=expected_action, headers=names)
        result = asyncio.run(normalizer_from_settings(settings).normalize(text, context))

    payload = result.model_dump(mode="json", by_alias=True)
    if isinstance(result, NormalizeSuccess):
        env = success_envelope("normalize", payload, warnings=result.warnings, duration_ms=t.elapsed_ms)
    else:
        env = error_envelope("normalize", "ERR_PARSE_FAILED", result.error,
                             result=payload, duration_ms=t.elapsed_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetguard schema infer / show
# ---------------------------------------------------------------------------
@schema_app.command("infer")
def schema_infer(
    tab: Annotated[str, typer.Option("--tab", "-t", help="Tab (sheet) name")],
    file: FilePath = None,
    spreadsheet_id: SpreadsheetOpt = None,
    out: Annotated[Optional[str], typer.Option("--out", help="Write the schema JSON here")] = None,
):
    """Read a tab through the backend and infer its columns and types.

    Example: `sheetguard schema infer -f data.xlsx -t Sales --out sales.schema.json`
    """
    settings = _settings("schema.infer")
    with Stopwatch() as t:
        loaded = _load_schema("schema.infer", settings, schema_path=None, file=file,
                              tab=tab, spreadsheet_id=spreadsheet_id)
        if out:
            Path(out).write_text(loaded.model_dump_json(indent=2))
    result = loaded.model_dump(mode="json")
    result["written_to"] = out
    env = success_envelope(
        "schema.infer", result,
        target=Target(spreadsheet_id=loaded.spreadsheet_id, tab=loaded.tab, file=file),
        duration_ms=t.elapsed_ms,
    )
    _emit(env)


@schema_app.command("show")
def schema_show(
    schema: Annotated[str, typer.Option("--schema", help="Path to a schema JSON file")],
):
    """Summarize a saved schema file.

    Example: `sheetguard schema show --schema sales.schema.json`
    """
    settings = _settings("schema.show")
    loaded = _load_schema("schema.show", settings, schema_path=schema, file=None,
                          tab=None, spreadsheet_id=None)
    env = success_envelope("schema.show", {
        "tab": loaded.tab,
        "headers": loaded.headers,
        "total_rows": loaded.total_rows,
        "has_header_row": loaded.has_header_row,
        "summary": loaded.summary(),
    }, target=Target(spreadsheet_id=loaded.spreadsheet_id, tab=loaded.tab))
    _emit(env)


# ---------------------------------------------------------------------------
# sheetguard ask
# ---------------------------------------------------------------------------
@app.command("ask")
def ask_cmd(
    instruction: Annotated[str, typer.Argument(help="What to do, in plain language")],
    tab: Annotated[str, typer.Option("--tab", "-t", help="Tab (sheet) name")],
    file: FilePath = None,
    spreadsheet_id: SpreadsheetOpt = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Confirm the previewed action without prompting")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Stop after the preview")] = False,
    trace: Annotated[Optional[str], typer.Option("--trace", help="Save the pipeline trace JSON here")] = None,
):
    """Turn an instruction into a previewed action, then confirm and execute it.

    Nothing is written until the preview is confirmed (interactively or with `--yes`).

    Example: `sheetguard ask -f data.xlsx -t Sales "Add Product: iPhone 15, Revenue: $1,200" --dry-run`
    """
    settings = _settings("ask")
    target = Target(spreadsheet_id=spreadsheet_id, tab=tab, file=file)
    with Stopwatch() as t:
        schema = _load_schema("ask", settings, schema_path=None, file=file,
                              tab=tab, spreadsheet_id=spreadsheet_id)
        try:
            policy = _load_policy(settings)
        except ConfigError as e:
            _emit(error_envelope("ask", "ERR_CONFIG_INVALID", str(e), target=target))
        coordinator = Coordinator(
            parser_from_settings(settings),
            normalizer_from_settings(settings),
            policy=policy,
            decimal_separator=settings.decimal_separator,
            low_confidence_threshold=settings.low_confidence_threshold,
            events=EventStream(enabled=_state.get("events", False)),
        )
        gateway = ExecutionGateway(_backend("ask", settings, file), author=settings.author)
        session = Session(coordinator, gateway, author=settings.author)

        outcome = asyncio.run(session.submit_instruction(instruction, schema))
        if trace and coordinator.last_trace is not None:
            coordinator.last_trace.save(trace)

    if isinstance(outcome, TextReply):
        _emit(success_envelope("ask", outcome.model_dump(mode="json"), target=target, duration_ms=t.elapsed_ms))
    if isinstance(outcome, PipelineError):
        _emit(error_envelope("ask", outcome.code, outcome.message, target=target,
                             details={"stage": outcome.stage, **(outcome.details or {})}, duration_ms=t.elapsed_ms))
    assert isinstance(outcome, ActionPending)

    pending = outcome.model_dump(mode="json", by_alias=True)
    if dry_run:
        _emit(success_envelope("ask", {"pending": pending, "executed": False}, target=target,
                               warnings=outcome.coercion_warnings, duration_ms=t.elapsed_ms))

    if not yes:
        typer.echo(outcome.explanation, err=True)
        if not typer.confirm("Apply this change?", default=False, err=True):
            session.cancel_pending_action()
            _emit(success_envelope("ask", {"pending": pending, "executed": False, "cancelled": True},
                                   target=target, duration_ms=t.elapsed_ms))

    with Stopwatch() as t2:
        try:
            result = asyncio.run(session.confirm_pending_action())
        except PendingActionError as e:
            _emit(error_envelope("ask", e.code, e.message, target=target))
    duration = t.elapsed_ms + t2.elapsed_ms
    payload = {"pending": pending, "executed": True, "execution": result.model_dump(mode="json")}
    if not result.success:
        _emit(error_envelope("ask", backend_error_code(result.status_code), result.error or "write failed",
                             target=target, result=payload, duration_ms=duration))
    _emit(success_envelope("ask", payload, target=target, warnings=outcome.coercion_warnings,
                           duration_ms=duration))


# ---------------------------------------------------------------------------
# sheetguard serve --stdio
# ---------------------------------------------------------------------------
@app.command("serve")
def serve_cmd(
    stdio: Annotated[bool, typer.Option("--stdio", help="Use stdin/stdout for JSON request/response")] = True,
    file: FilePath = None,
):
    """Start the stdio server (normalize, validate, sanitize, schema.infer, backend).

    Each line is a JSON object: `{"id": "1", "command": "normalize", "args": {"raw": "...", "context": {"headers": ["A"]}}}`

    Example: `sheetguard serve --stdio -f data.xlsx`
    """
    from sheetguard.server.stdio import StdioServer

    settings = _settings("serve")
    backend = WorkbookBackend(file) if file else None
    server = StdioServer(backend, decimal_separator=settings.decimal_separator)
    server.run()


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m sheetguard`)
# ---------------------------------------------------------------------------
def main_entry() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Unhandled exceptions still produce a JSON envelope.
        env = error_envelope(
            "unknown",
            "ERR_INTERNAL",
            str(exc),
        )
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main_entry()
