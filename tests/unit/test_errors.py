"""Tests for the structured error taxonomy."""
import json
import sqlite3
from pathlib import PurePosixPath

from osintforge.errors import (
    DeliveryError,
    ErrorCode,
    ExecutionError,
    OsintError,
    ParseError,
    RateLimitError,
    SandboxError,
    SandboxFailure,
    ValidationError,
    handle_error,
)


def test_default_codes_and_http_status():
    assert ValidationError("bad").code is ErrorCode.VALIDATION_FAILED
    assert ValidationError("bad").http_status == 400
    assert RateLimitError("slow down", retry_after_seconds=3).http_status == 429
    assert ParseError("garbage").code is ErrorCode.TOOL_OUTPUT_PARSE_ERROR
    assert DeliveryError("nope", status_code=500).http_status == 502


def test_sandbox_error_code_follows_kind():
    assert SandboxError(SandboxFailure.TIMEOUT, "t").code is ErrorCode.SANDBOX_TIMEOUT
    assert SandboxError(SandboxFailure.SPAWN, "s").code is ErrorCode.SANDBOX_SPAWN_FAILED
    exit_error = SandboxError(SandboxFailure.EXIT, "e", exit_code=2, stderr="boom")
    assert exit_error.code is ErrorCode.SANDBOX_NONZERO_EXIT
    assert exit_error.details == {"kind": "exit", "exit_code": 2}
    assert isinstance(exit_error, ExecutionError)


def test_str_is_the_message():
    error = OsintError("something broke")
    assert str(error) == "something broke"
    assert error.args[0] == "[SYSTEM_001] something broke"


def test_qualified_keeps_class_and_code():
    original = SandboxError(SandboxFailure.TIMEOUT, "Execution timed out after 1000ms")
    qualified = original.qualified("username-search")

    assert isinstance(qualified, SandboxError)
    assert qualified.kind is SandboxFailure.TIMEOUT
    assert qualified.code is ErrorCode.SANDBOX_TIMEOUT
    assert qualified.message == "Execution failed for username-search: Execution timed out after 1000ms"
    assert qualified.details["tool"] == "username-search"
    # The original is untouched
    assert original.message == "Execution timed out after 1000ms"
    assert "tool" not in original.details


def test_qualified_is_idempotent():
    once = ParseError("bad output").qualified("phone-lookup")
    assert once.qualified("phone-lookup") is once


def test_validation_errors_land_in_details():
    error = ValidationError("Invalid input", errors=[{"field": "username", "message": "too long"}])
    assert error.errors == [{"field": "username", "message": "too long"}]
    assert error.to_dict()["details"]["errors"][0]["field"] == "username"


def test_round_trip_through_dict():
    error = RateLimitError("Rate limit exceeded", retry_after_seconds=12)
    rebuilt = OsintError.from_dict(error.to_dict())
    assert rebuilt.code is ErrorCode.RATE_LIMIT_EXCEEDED
    assert rebuilt.details["retry_after"] == 12
    assert rebuilt.http_status == 429


def test_to_json_stringifies_non_json_details():
    error = ValidationError("Invalid imagePath", details={"path": PurePosixPath("/srv/x.jpg"), "tool": "image-metadata"})
    body = json.loads(error.to_json())
    assert body["code"] == "INPUT_001"
    assert body["details"]["path"] == "/srv/x.jpg"
    assert body["http_status"] == 400


def test_handle_error_passes_osint_errors_through():
    error = ParseError("bad")
    assert handle_error(error) is error


def test_handle_error_classifies_foreign_exceptions():
    wrapped = handle_error(TimeoutError("slow"), context="while waiting")
    assert wrapped.code is ErrorCode.SANDBOX_TIMEOUT
    assert wrapped.message == "while waiting: slow"

    assert handle_error(PermissionError("denied")).code is ErrorCode.AUTH_PERMISSION_DENIED
    assert handle_error(sqlite3.OperationalError("locked")).code is ErrorCode.DB_QUERY_FAILED

    generic = handle_error(ValueError())
    assert generic.code is ErrorCode.SYSTEM_INTERNAL_ERROR
    assert generic.message == "ValueError"
    assert generic.details["original_type"] == "ValueError"
