"""Line-delimited JSON server exposing the offline pipeline stages.

Each request line is ``{"id", "command", "args"}``. Each response line is
``{"id", "ok": true, "result"}`` or ``{"id", "ok": false, "error", ...}``.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable, TextIO

import orjson
from pydantic import ValidationError

from sheetguard import __version__
from sheetguard.adapters.backend import SheetsBackend
from sheetguard.contracts.actions import ActionIntent, NormalizeContext
from sheetguard.contracts.common import BackendError
from sheetguard.contracts.schema import Schema
from sheetguard.engine.normalizer import RuleNormalizer
from sheetguard.engine.registry import schema_from_rows
from sheetguard.validation.sanitizer import sanitize
from sheetguard.validation.validators import validate_intent


class RequestError(Exception):
    """A request the server understood but cannot serve."""


class StdioServer:
    def __init__(self, backend: SheetsBackend | None = None, *, decimal_separator: str = ".") -> None:
        self.backend = backend
        self.decimal_separator = decimal_separator
        self.rules = RuleNormalizer()
        self.commands: dict[str, Callable[[dict[str, Any]], Any]] = {
            "health": self._health,
            "normalize": self._normalize,
            "validate": self._validate,
            "sanitize": self._sanitize,
            "schema.infer": self._infer_schema,
            "backend": self._backend,
        }

    # -- commands ------------------------------------------------------------

    def _health(self, args: dict[str, Any]) -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "backend": self.backend is not None}

    def _normalize(self, args: dict[str, Any]) -> dict[str, Any]:
        context = NormalizeContext.model_validate(args.get("context") or {})
        return self.rules.normalize(args.get("raw", ""), context).model_dump(mode="json", by_alias=True)

    def _validate(self, args: dict[str, Any]) -> dict[str, Any]:
        intent = ActionIntent.model_validate(args.get("action") or {})
        schema = Schema.model_validate(args.get("schema") or {})
        verdict = validate_intent(intent, schema, decimal_separator=self.decimal_separator)
        return verdict.model_dump(mode="json", by_alias=True)

    def _sanitize(self, args: dict[str, Any]) -> list[str]:
        return [sanitize(value) for value in args.get("values", [])]

    def _infer_schema(self, args: dict[str, Any]) -> dict[str, Any]:
        return schema_from_rows(args.get("rows") or [], tab=args.get("tab")).model_dump(mode="json")

    def _backend(self, args: dict[str, Any]) -> Any:
        if self.backend is None:
            raise RequestError("No backend configured")
        return asyncio.run(self.backend.call(args))

    # -- protocol ------------------------------------------------------------

    def handle_request(self, request: dict[str, Any]) -> dict[str, Any]:
        req_id = request.get("id", "")
        command = request.get("command", "")
        handler = self.commands.get(command)
        if handler is None:
            return {"id": req_id, "ok": False, "error": f"Unknown command: {command}"}
        try:
            return {"id": req_id, "ok": True, "result": handler(request.get("args") or {})}
        except RequestError as e:
            return {"id": req_id, "ok": False, "error": str(e)}
        except BackendError as e:
            return {"id": req_id, "ok": False, "error": e.message, "status": e.status_code}
        except ValidationError as e:
            return {"id": req_id, "ok": False, "error": f"Invalid arguments: {e.error_count()} errors",
                    "details": orjson.loads(e.json())}
        except Exception as e:
            return {"id": req_id, "ok": False, "error": str(e)}

    def run(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        """Answer each non-blank request line until stdin closes."""
        out = stdout or sys.stdout
        for line in stdin or sys.stdin:
            if not line.strip():
                continue
            try:
                request = orjson.loads(line)
            except orjson.JSONDecodeError as e:
                response: dict[str, Any] = {"ok": False, "error": f"Invalid JSON: {e}"}
            else:
                if isinstance(request, dict):
                    response = self.handle_request(request)
                else:
                    response = {"ok": False, "error": "Request must be a JSON object"}
            out.write(orjson.dumps(response, default=str).decode() + "\n")
            out.flush()
