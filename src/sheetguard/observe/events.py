"""Pipeline observability: NDJSON state events, per-run traces, and stopwatches."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO

import orjson

TRACE_VERSION = "1.0"
STATE_EVENT = "pipeline.state"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Stopwatch:
    """``with Stopwatch() as sw: ...`` then read ``sw.elapsed_ms``."""

    started: float = field(default_factory=time.perf_counter)
    stopped: float | None = None

    def __enter__(self) -> "Stopwatch":
        self.started = time.perf_counter()
        self.stopped = None
        return self

    def __exit__(self, *exc: object) -> None:
        self.stopped = time.perf_counter()

    @property
    def elapsed_ms(self) -> int:
        end = time.perf_counter() if self.stopped is None else self.stopped
        return int((end - self.started) * 1000)


class EventStream:
    """Writes one JSON object per line for each pipeline event.

    Disabled streams drop everything. The default sink is stderr so that
    stdout keeps carrying only the response envelope.
    """

    def __init__(self, enabled: bool = False, sink: TextIO | None = None) -> None:
        self.enabled = enabled
        self.sink = sink

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        line = orjson.dumps(
            {"event": event, "timestamp": _utcnow(), "data": data or {}},
            default=str,
        )
        out = self.sink or sys.stderr
        out.write(line.decode() + "\n")
        out.flush()

    def state_entered(self, state: str, data: dict[str, Any]) -> None:
        self.emit(STATE_EVENT, {"state": state, **data})


class PipelineTrace:
    """Ordered record of the states one instruction went through."""

    def __init__(self, instruction: str = "") -> None:
        self.instruction = instruction
        self.entries: list[dict[str, Any]] = []
        self._clock = Stopwatch()

    def record(self, state: str, data: dict[str, Any]) -> None:
        self.entries.append({"state": state, "at_ms": self._clock.elapsed_ms, **data})

    def states(self) -> list[str]:
        return [entry["state"] for entry in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_version": TRACE_VERSION,
            "generated_at": _utcnow(),
            "instruction": self.instruction,
            "states": self.states(),
            "total_duration_ms": self._clock.elapsed_ms,
            "entries": self.entries,
        }

    def save(self, path: str | Path) -> str:
        target = Path(path)
        target.write_bytes(orjson.dumps(self.to_dict(), default=str, option=orjson.OPT_INDENT_2))
        return str(target)
