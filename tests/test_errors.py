"""
Error Classification Tests
--------------------------
Tests for the failure classifier and the error handler.

Tests cover:
- Message patterns and their precedence
- Exit codes and exception types
- Totality (no input escapes as an exception)
- User-facing messages and statistics
"""

import pytest
from pathlib import Path
import subprocess
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import (
    ErrorCategory, ErrorClassifier, ErrorHandler, ErrorInfo,
    SessionCancelledError, create_unsupported_error, create_validation_error,
)


class TestMessageClassification:
    """Tests for substring pattern matching."""

    @pytest.mark.parametrize("message,expected", [
        ("Permission denied", ErrorCategory.PERMISSION),
        ("java.lang.SecurityException: permission not granted", ErrorCategory.PERMISSION),
        ("Operation timed out after 10s", ErrorCategory.TIMEOUT),
        ("Shizuku service not available", ErrorCategory.SERVICE_UNAVAILABLE),
        ("error: no devices/emulators found", ErrorCategory.SERVICE_UNAVAILABLE),
        ("Network is unreachable", ErrorCategory.CONNECTION),
        ("Out of memory", ErrorCategory.RESOURCE),
        ("Invalid argument: x", ErrorCategory.VALIDATION),
        ("something odd happened", ErrorCategory.COMMAND_FAILED),
    ])
    def test_known_messages(self, message, expected):
        assert ErrorClassifier().classify(message) == expected

    def test_matching_is_case_insensitive(self):
        assert ErrorClassifier().classify("PERMISSION DENIED") == ErrorCategory.PERMISSION

    def test_first_pattern_wins(self):
        """A message matching two patterns takes the earlier one."""
        classifier = ErrorClassifier()

        # "denied" (PERMISSION) comes before "connection" (CONNECTION)
        assert classifier.classify("connection denied") == ErrorCategory.PERMISSION

    def test_registered_pattern_takes_precedence(self):
        classifier = ErrorClassifier()
        classifier.register("rish: not found", ErrorCategory.SERVICE_UNAVAILABLE)

        assert classifier.classify("rish: not found") == ErrorCategory.SERVICE_UNAVAILABLE

    def test_registered_pattern_can_be_appended(self):
        classifier = ErrorClassifier()
        classifier.register("permission denied", ErrorCategory.RESOURCE, first=False)

        assert classifier.classify("permission denied") == ErrorCategory.PERMISSION

    def test_same_input_same_category(self):
        classifier = ErrorClassifier()
        results = {classifier.classify("binder died") for _ in range(5)}

        assert results == {ErrorCategory.SERVICE_UNAVAILABLE}


class TestRawClassification:
    """Tests for exit codes, exceptions and odd inputs."""

    @pytest.mark.parametrize("code,expected", [
        (124, ErrorCategory.TIMEOUT),
        (126, ErrorCategory.PERMISSION),
        (127, ErrorCategory.SERVICE_UNAVAILABLE),
        (137, ErrorCategory.RESOURCE),
        (1, ErrorCategory.COMMAND_FAILED),
    ])
    def test_exit_codes(self, code, expected):
        assert ErrorClassifier().classify(code) == expected

    def test_none_is_command_failed(self):
        assert ErrorClassifier().classify(None) == ErrorCategory.COMMAND_FAILED

    def test_bool_is_not_an_exit_code(self):
        assert ErrorClassifier().classify(True) == ErrorCategory.COMMAND_FAILED

    def test_exception_types(self):
        classifier = ErrorClassifier()

        assert classifier.classify(TimeoutError()) == ErrorCategory.TIMEOUT
        assert classifier.classify(subprocess.TimeoutExpired("adb", 5)) == ErrorCategory.TIMEOUT
        assert classifier.classify(PermissionError()) == ErrorCategory.PERMISSION
        assert classifier.classify(FileNotFoundError("adb")) == ErrorCategory.SERVICE_UNAVAILABLE
        assert classifier.classify(ConnectionResetError()) == ErrorCategory.CONNECTION
        assert classifier.classify(MemoryError()) == ErrorCategory.RESOURCE

    def test_exception_falls_back_to_message(self):
        classifier = ErrorClassifier()

        assert classifier.classify(RuntimeError("device offline")) == ErrorCategory.SERVICE_UNAVAILABLE
        assert classifier.classify(RuntimeError("boom")) == ErrorCategory.COMMAND_FAILED

    def test_unprintable_input_is_command_failed(self):
        class Unprintable:
            def __str__(self):
                raise RuntimeError("no")

        assert ErrorClassifier().classify(Unprintable()) == ErrorCategory.COMMAND_FAILED


class TestErrorHandler:
    """Tests for user messages and statistics."""

    def test_every_category_has_a_message(self):
        for category in ErrorCategory:
            assert category in ErrorHandler.USER_MESSAGES

    def test_handle_returns_user_message(self):
        handler = ErrorHandler()
        message = handler.handle(ErrorInfo(ErrorCategory.TIMEOUT, "took 30s"))

        assert message == ErrorHandler.USER_MESSAGES[ErrorCategory.TIMEOUT]

    def test_stats_count_by_category(self):
        handler = ErrorHandler()
        handler.handle(ErrorInfo(ErrorCategory.TIMEOUT, "a"))
        handler.handle(ErrorInfo(ErrorCategory.TIMEOUT, "b"))
        handler.handle(ErrorInfo(ErrorCategory.PERMISSION, "c"))

        assert handler.get_error_stats() == {"TIMEOUT": 2, "PERMISSION": 1}

        handler.clear_history()
        assert handler.get_error_stats() == {}

    def test_history_is_bounded(self):
        handler = ErrorHandler(max_history=3)
        for i in range(5):
            handler.handle(ErrorInfo(ErrorCategory.COMMAND_FAILED, str(i)))

        assert handler.get_error_stats() == {"COMMAND_FAILED": 3}


class TestConstructors:

    def test_validation_error_is_not_retryable(self):
        error = create_validation_error("x must be >= 0", field_name="tap")

        assert error.category == ErrorCategory.VALIDATION
        assert error.retryable is False
        assert error.details == {"field": "tap"}

    def test_unsupported_error(self):
        error = create_unsupported_error("teleport")

        assert error.category == ErrorCategory.SERVICE_UNAVAILABLE
        assert "teleport" in error.message

    def test_cancelled_error_carries_session(self):
        error = SessionCancelledError("session_abc")

        assert error.session_id == "session_abc"
        assert "session_abc" in str(error)
