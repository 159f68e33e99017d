"""Per-column type coercion used by the schema validator."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse

from sheetguard.contracts.schema import ColumnType

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Tried in order after ISO 8601. Slash dates are month-first.
DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)


class CoercionError(ValueError):
    """Raised when a value cannot be coerced to its column type."""


# Lists, dicts and other containers never reach a cell.
SCALAR_TYPES = (str, int, float, bool, date, type(None))


def coerce_number(value: Any, *, decimal_separator: str = ".") -> int | float:
    """Parse a number, ignoring currency symbols and thousands separators.

    ``"$1,200"`` becomes ``1200``. Integral results are returned as ``int``.
    """
    if isinstance(value, bool):
        raise CoercionError(f"expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        return value
    if decimal_separator not in (".", ","):
        raise CoercionError(f"unsupported decimal separator {decimal_separator!r}")

    text = str(value).strip()
    first_digit = re.search(r"\d", text)
    if first_digit is None:
        raise CoercionError(f"'{text}' is not a number")
    negative = "-" in text[: first_digit.start()]

    grouping = "," if decimal_separator == "." else "."
    decimal_at = text.find(decimal_separator)
    if decimal_at != -1 and grouping in text[decimal_at + 1:]:
        raise CoercionError(f"'{text}' has a '{grouping}' after the decimal separator")

    kept = re.sub(rf"[^0-9{re.escape(decimal_separator)}]", "", text)
    if kept.count(decimal_separator) > 1:
        raise CoercionError(f"'{text}' has more than one decimal separator")
    if decimal_separator != ".":
        kept = kept.replace(decimal_separator, ".")
    if kept.startswith("."):
        kept = "0" + kept

    try:
        number = float(kept)
    except ValueError as e:
        raise CoercionError(f"'{text}' is not a number") from e
    if negative:
        number = -number
    if number.is_integer():
        return int(number)
    return number


def coerce_date(value: Any) -> str:
    """Parse a calendar date and return it as ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        raise CoercionError("empty date")
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise CoercionError(f"'{text}' is not a recognizable date")


def coerce_email(value: Any) -> str:
    text = str(value).strip()
    if not EMAIL_PATTERN.match(text):
        raise CoercionError(f"'{text}' is not an email address")
    return text


def coerce_url(value: Any) -> str:
    text = str(value).strip()
    parsed = urlparse(text)
    if not parsed.scheme or not parsed.netloc or not parsed.scheme.isalpha():
        raise CoercionError(f"'{text}' is not an absolute URL")
    return text


def coerce_value(value: Any, column_type: ColumnType, *, decimal_separator: str = ".") -> Any:
    """Coerce *value* according to *column_type*, raising ``CoercionError``."""
    if not isinstance(value, SCALAR_TYPES):
        raise CoercionError(f"expected a single value, got {type(value).__name__}")
    if column_type is ColumnType.NUMBER:
        return coerce_number(value, decimal_separator=decimal_separator)
    if column_type is ColumnType.DATE:
        return coerce_date(value)
    if column_type is ColumnType.EMAIL:
        return coerce_email(value)
    if column_type is ColumnType.URL:
        return coerce_url(value)
    if column_type in (ColumnType.BOOLEAN, ColumnType.TEXT):
        return value
    raise CoercionError(f"unknown column type: {column_type!r}")
