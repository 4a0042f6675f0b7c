"""Tests for the Result type, error kinds and error codes."""

import inspect

import pytest

from services import error_codes
from services.errors import (
    AlreadyJoined,
    Full,
    InsufficientFunds,
    PartialCancelFailure,
    WagerError,
)
from services.result import Result


class TestResult:
    def test_ok_with_value(self):
        result = Result.ok(42)
        assert result.success is True
        assert result.value == 42
        assert result.error is None
        assert bool(result) is True

    def test_fail_with_code(self):
        result = Result.fail("Match not found", code=error_codes.MATCH_NOT_FOUND)
        assert result.success is False
        assert result.error_code == error_codes.MATCH_NOT_FOUND
        assert bool(result) is False

    def test_from_error_keeps_code(self):
        result = Result.from_error(InsufficientFunds(7, available=5, required=10))
        assert result.error_code == error_codes.INSUFFICIENT_FUNDS
        assert "need 10" in result.error

    def test_capture_success(self):
        assert Result.capture(lambda: "joined").value == "joined"

    def test_capture_engine_error(self):
        def join():
            raise Full(3)

        result = Result.capture(join)
        assert not result
        assert result.error_code == error_codes.MATCH_FULL

    def test_capture_lets_other_errors_through(self):
        def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            Result.capture(broken)

    def test_unwrap(self):
        assert Result.ok(5).unwrap() == 5
        with pytest.raises(ValueError, match="Cannot unwrap failed result"):
            Result.fail("error").unwrap()
        assert Result.fail("error").unwrap_or(0) == 0

    def test_result_is_frozen(self):
        result = Result.ok(42)
        with pytest.raises(Exception):  # FrozenInstanceError
            result.value = 100


class TestErrors:
    def test_engine_errors_are_value_errors(self):
        """Command handlers catch ValueError; engine errors must be caught there too."""
        assert issubclass(WagerError, ValueError)
        assert isinstance(AlreadyJoined(1, 2), ValueError)

    def test_partial_cancel_names_failures(self):
        error = PartialCancelFailure(9, released=[1, 2], failed={3: "database is locked"})
        assert error.failed == {3: "database is locked"}
        assert error.error_code == error_codes.PARTIAL_CANCEL_FAILURE
        assert "3" in str(error)

    def test_error_codes_are_unique(self):
        codes = [
            value
            for name, value in inspect.getmembers(error_codes)
            if not name.startswith("_") and isinstance(value, str)
        ]
        assert len(codes) == len(set(codes)), "Duplicate error codes found"
