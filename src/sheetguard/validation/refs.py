"""A1-notation helpers shared by the validator, normalizer, and backends."""

from __future__ import annotations

import re

from openpyxl.utils.cell import column_index_from_string, coordinate_from_string
from openpyxl.utils.exceptions import CellCoordinatesException

CELL_PATTERN = re.compile(r"^([A-Z]{1,3})([1-9][0-9]*)$")
AREA_PATTERN = re.compile(r"^([A-Z]{1,3}[1-9][0-9]*)(?::([A-Z]{1,3}[1-9][0-9]*))?$")
# Finds an A1 ref inside free text; requires upper-case letters.
REF_IN_TEXT = re.compile(r"\b([A-Z]{1,3}[1-9][0-9]*(?::[A-Z]{1,3}[1-9][0-9]*)?)\b")


def normalize_range(ref: str | None) -> str:
    """Upper-case *ref*, drop ``$`` anchors, spaces and any ``Sheet!`` prefix."""
    if not ref:
        return ""
    cleaned = ref.strip()
    if "!" in cleaned:
        cleaned = cleaned.rsplit("!", 1)[1]
    return cleaned.replace("$", "").replace(" ", "").upper()


def is_cell_ref(ref: str) -> bool:
    return CELL_PATTERN.match(ref) is not None


def is_range_ref(ref: str) -> bool:
    return AREA_PATTERN.match(ref) is not None


def find_range(text: str) -> str | None:
    """First A1 ref mentioned in *text*, if any."""
    m = REF_IN_TEXT.search(text)
    return m.group(1) if m else None


def column_index(ref: str) -> int | None:
    """0-based column index of the first cell in *ref* (``"B2"`` -> 1)."""
    first = normalize_range(ref).split(":", 1)[0]
    try:
        letters, _row = coordinate_from_string(first)
        return column_index_from_string(letters) - 1
    except (CellCoordinatesException, ValueError):
        return None
