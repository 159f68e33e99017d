"""Cell value sanitizer: formula-injection escaping and length limits."""

from __future__ import annotations

from typing import Any

MAX_CELL_LENGTH = 1000
ELLIPSIS = "..."
FORMULA_PREFIXES = ("=", "+", "-", "@")
LITERAL_PREFIX = "'"


def is_formula_like(value: Any) -> bool:
    """True if a spreadsheet engine would evaluate *value* as a formula."""
    if not isinstance(value, str):
        return False
    return value.strip().startswith(FORMULA_PREFIXES)


def sanitize(value: Any) -> str:
    """Return *value* as text that a spreadsheet will store literally.

    ``None`` becomes ``""``. Surrounding whitespace is trimmed, a leading
    ``= + - @`` gets a single-quote prefix, and the result is capped at
    ``MAX_CELL_LENGTH`` characters with a trailing ``...`` marking the cut.
    Never raises.
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = text.strip()
    if text.startswith(FORMULA_PREFIXES):
        text = LITERAL_PREFIX + text
    if len(text) > MAX_CELL_LENGTH:
        text = text[: MAX_CELL_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    return text
