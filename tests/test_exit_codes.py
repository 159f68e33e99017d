"""Tests for error codes, envelopes and exit codes."""

from __future__ import annotations

import json

import pytest

from sheetguard.engine.dispatcher import (
    ExitCategory,
    backend_error_code,
    error_envelope,
    exit_code_for,
    output_json,
    success_envelope,
)


@pytest.mark.parametrize(
    "code, expected",
    [
        ("ERR_PARSE_FAILED", 10),
        ("ERR_VALIDATION_FAILED", 10),
        ("ERR_CONFIG_INVALID", 10),
        ("ERR_USAGE", 10),
        ("ERR_POLICY_VIOLATION", 20),
        ("ERR_NO_PENDING_ACTION", 40),
        ("ERR_PREVIEW_CONFLICT", 40),
        ("ERR_BACKEND_NOT_FOUND", 50),
        ("ERR_BACKEND_SOMETHING_NEW", 50),
        ("ERR_IO", 50),
        ("ERR_BACKEND_RATE_LIMITED", 60),
        ("ERR_INTERNAL", 90),
        ("ERR_WHATEVER", 90),
    ],
)
def test_exit_code_for_error(code, expected):
    assert exit_code_for(error_envelope("x", code, "msg")) == expected


def test_success_exit_code():
    assert exit_code_for(success_envelope("x", {})) == ExitCategory.SUCCESS


@pytest.mark.parametrize(
    "status, code",
    [
        (401, "ERR_BACKEND_UNAUTHORIZED"),
        (404, "ERR_BACKEND_NOT_FOUND"),
        (409, "ERR_PREVIEW_CONFLICT"),
        (422, "ERR_VALIDATION_FAILED"),
        (429, "ERR_BACKEND_RATE_LIMITED"),
        (500, "ERR_BACKEND_FAILED"),
        (None, "ERR_BACKEND_FAILED"),
    ],
)
def test_backend_error_code(status, code):
    assert backend_error_code(status) == code


def test_envelope_json_shape():
    env = success_envelope("ask", {"a": 1}, warnings=["dropped unknown field 'Color'"], duration_ms=3)
    data = json.loads(output_json(env))
    assert data["ok"] is True
    assert data["command"] == "ask"
    assert data["warnings"] == [{"code": "WARN", "message": "dropped unknown field 'Color'", "details": None}]
    assert data["metrics"] == {"duration_ms": 3}


def test_error_envelope_details():
    env = error_envelope("ask", "ERR_POLICY_VIOLATION", "protected", details={"stage": "policy"})
    assert env.ok is False
    assert env.errors[0].details == {"stage": "policy"}
