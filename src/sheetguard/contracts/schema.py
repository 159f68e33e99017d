"""Schema models describing the target tab."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sheetguard.contracts.common import SchemaError


class ColumnType(str, Enum):
    """Data type inferred for a column from its sampled values."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    EMAIL = "email"
    URL = "url"
    BOOLEAN = "boolean"


class ColumnDescriptor(BaseModel):
    """One column of a tab, as observed by a prior read."""

    model_config = ConfigDict(frozen=True)

    name: str
    index: int = Field(ge=0)
    inferred_type: ColumnType = ColumnType.TEXT
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    sample_values: list[Any] = Field(default_factory=list)
    non_empty_count: int = Field(default=0, ge=0)


class Schema(BaseModel):
    """Ordered columns of a tab plus row/header metadata.

    Column names are unique and ``index`` values form a contiguous 0-based
    sequence matching position. A schema is immutable once built; a new one
    is built whenever the user selects a different tab.
    """

    model_config = ConfigDict(frozen=True)

    columns: list[ColumnDescriptor] = Field(default_factory=list)
    total_rows: int = Field(default=0, ge=0)
    has_header_row: bool = True
    spreadsheet_id: str | None = None
    tab: str | None = None

    @model_validator(mode="after")
    def _check_columns(self) -> "Schema":
        seen: set[str] = set()
        for position, col in enumerate(self.columns):
            if col.name in seen:
                raise SchemaError(f"Duplicate column name: '{col.name}'")
            seen.add(col.name)
            if col.index != position:
                raise SchemaError(
                    f"Column '{col.name}' has index {col.index}, expected {position}"
                )
        return self

    @property
    def headers(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnDescriptor | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def summary(self) -> str:
        """Compact one-line-per-column description used in model prompts."""
        if not self.columns:
            return "(no columns)"
        lines = []
        for col in self.columns:
            samples = ", ".join(str(v) for v in col.sample_values[:3])
            line = f"- {col.name} ({col.inferred_type.value}, confidence {col.confidence:.2f})"
            if samples:
                line += f" e.g. {samples}"
            lines.append(line)
        return "\n".join(lines)
