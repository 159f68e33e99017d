"""Tests for per-column type coercion."""

from __future__ import annotations

from datetime import date, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from sheetguard.contracts.schema import ColumnType
from sheetguard.validation.coercion import (
    CoercionError,
    coerce_date,
    coerce_email,
    coerce_number,
    coerce_url,
    coerce_value,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("$1,200", 1200),
        ("1200", 1200),
        ("12.5", 12.5),
        ("€ 3.000.000", None),
        ("-$5", -5),
        (".5", 0.5),
        (7, 7),
        (2.25, 2.25),
    ],
)
def test_coerce_number(raw, expected):
    if expected is None:
        with pytest.raises(CoercionError):
            coerce_number(raw)
    else:
        assert coerce_number(raw) == expected


def test_coerce_number_returns_int_when_integral():
    assert isinstance(coerce_number("$1,200.00"), int)


def test_coerce_number_comma_decimal():
    assert coerce_number("1.234,5", decimal_separator=",") == 1234.5
    assert coerce_number("€ 3.000.000", decimal_separator=",") == 3000000
    with pytest.raises(CoercionError):
        coerce_number("1,234.5", decimal_separator=",")


@pytest.mark.parametrize("raw", ["abc", "", True, "1.2.3", "1.234,5"])
def test_coerce_number_rejects(raw):
    with pytest.raises(CoercionError):
        coerce_number(raw)


@given(st.integers(min_value=-10**12, max_value=10**12))
def test_currency_formatted_integers(n):
    assert coerce_number(f"${n:,}") == n


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-03-15", "2024-03-15"),
        ("2024-03-15T10:30:00", "2024-03-15"),
        ("03/15/2024", "2024-03-15"),
        ("2024/03/15", "2024-03-15"),
        ("15.03.2024", "2024-03-15"),
        ("March 15, 2024", "2024-03-15"),
        ("15 Mar 2024", "2024-03-15"),
        (date(2024, 3, 15), "2024-03-15"),
        (datetime(2024, 3, 15, 8, 0), "2024-03-15"),
    ],
)
def test_coerce_date(raw, expected):
    assert coerce_date(raw) == expected


@pytest.mark.parametrize("raw", ["", "next tuesday", "13/45/2024"])
def test_coerce_date_rejects(raw):
    with pytest.raises(CoercionError):
        coerce_date(raw)


def test_coerce_email():
    assert coerce_email(" ann@example.com ") == "ann@example.com"
    with pytest.raises(CoercionError):
        coerce_email("ann at example")


def test_coerce_url():
    assert coerce_url("https://example.com/x") == "https://example.com/x"
    for bad in ("example.com", "mailto:ann", "http://"):
        with pytest.raises(CoercionError):
            coerce_url(bad)


def test_text_and_boolean_pass_through():
    assert coerce_value("anything", ColumnType.TEXT) == "anything"
    assert coerce_value("yes", ColumnType.BOOLEAN) == "yes"


@pytest.mark.parametrize("column_type", list(ColumnType))
@pytest.mark.parametrize("raw", [["=1+1"], {"f": "=1+1"}, ("a",), {"a"}])
def test_coerce_value_rejects_containers(raw, column_type):
    with pytest.raises(CoercionError, match="expected a single value"):
        coerce_value(raw, column_type)
