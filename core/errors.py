"""
Error Handling Module
---------------------
Typed error categories, the failure classifier and user-facing messages.

Every failure reported by an execution method ends up in exactly one of
seven categories. Unknown failures become COMMAND_FAILED.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple
import logging
import subprocess


class ErrorCategory(Enum):
    """Categories of execution failures for retry decisions."""
    PERMISSION = auto()           # Channel lacks the privilege
    SERVICE_UNAVAILABLE = auto()  # Channel/service not running or gone
    TIMEOUT = auto()              # Operation timed out
    CONNECTION = auto()           # Transport/network failure
    RESOURCE = auto()             # Memory, disk or similar exhausted
    COMMAND_FAILED = auto()       # Command ran and failed (default)
    VALIDATION = auto()           # Bad action parameters


class SessionCancelledError(Exception):
    """Raised at a suspension point once a session has been cancelled."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' was cancelled" if session_id else "Session was cancelled")


@dataclass
class ErrorInfo:
    """
    Classified failure attached to an ExecutionResult.

    The message is plain text and safe to show to the end user.
    """
    category: ErrorCategory
    message: str
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        return f"ErrorInfo({self.category.name}: {self.message})"


# Ordered pattern table - first match wins.
DEFAULT_PATTERNS: List[Tuple[str, ErrorCategory]] = [
    ("permission denied", ErrorCategory.PERMISSION),
    ("not granted", ErrorCategory.PERMISSION),
    ("not permitted", ErrorCategory.PERMISSION),
    ("denied", ErrorCategory.PERMISSION),
    ("timeout", ErrorCategory.TIMEOUT),
    ("timed out", ErrorCategory.TIMEOUT),
    ("not available", ErrorCategory.SERVICE_UNAVAILABLE),
    ("unavailable", ErrorCategory.SERVICE_UNAVAILABLE),
    ("disconnected", ErrorCategory.SERVICE_UNAVAILABLE),
    ("service not connected", ErrorCategory.SERVICE_UNAVAILABLE),
    ("binder died", ErrorCategory.SERVICE_UNAVAILABLE),
    ("no devices", ErrorCategory.SERVICE_UNAVAILABLE),
    ("device offline", ErrorCategory.SERVICE_UNAVAILABLE),
    ("network", ErrorCategory.CONNECTION),
    ("connection", ErrorCategory.CONNECTION),
    ("unreachable", ErrorCategory.CONNECTION),
    ("out of memory", ErrorCategory.RESOURCE),
    ("insufficient", ErrorCategory.RESOURCE),
    ("no space", ErrorCategory.RESOURCE),
    ("resource", ErrorCategory.RESOURCE),
    ("invalid", ErrorCategory.VALIDATION),
    ("missing required", ErrorCategory.VALIDATION),
    ("validation", ErrorCategory.VALIDATION),
]

# Shell exit codes with a conventional meaning
DEFAULT_EXIT_CODES: Dict[int, ErrorCategory] = {
    124: ErrorCategory.TIMEOUT,              # timeout(1)
    126: ErrorCategory.PERMISSION,           # found but not executable
    127: ErrorCategory.SERVICE_UNAVAILABLE,  # binary not found
    137: ErrorCategory.RESOURCE,             # SIGKILL, usually the OOM killer
}


class ErrorClassifier:
    """
    Maps a raw failure into an ErrorCategory.

    Pure and total: the same input always yields the same category and
    nothing raised by the input escapes.
    """

    def __init__(
        self,
        patterns: Optional[List[Tuple[str, ErrorCategory]]] = None,
        exit_codes: Optional[Dict[int, ErrorCategory]] = None
    ):
        self._patterns = list(patterns if patterns is not None else DEFAULT_PATTERNS)
        self._exit_codes = dict(exit_codes if exit_codes is not None else DEFAULT_EXIT_CODES)

    def register(self, pattern: str, category: ErrorCategory, first: bool = True) -> None:
        """Add a substring pattern. By default it takes precedence over the built-ins."""
        entry = (pattern.lower(), category)
        if first:
            self._patterns.insert(0, entry)
        else:
            self._patterns.append(entry)

    def classify(self, raw: Any) -> ErrorCategory:
        """Classify a message, exit code, exception or None."""
        if raw is None:
            return ErrorCategory.COMMAND_FAILED

        if isinstance(raw, BaseException):
            return self.classify_exception(raw)

        if isinstance(raw, int) and not isinstance(raw, bool):
            return self._exit_codes.get(raw, ErrorCategory.COMMAND_FAILED)

        try:
            text = str(raw).lower()
        except Exception:
            return ErrorCategory.COMMAND_FAILED

        for pattern, category in self._patterns:
            if pattern in text:
                return category

        return ErrorCategory.COMMAND_FAILED

    def classify_exception(self, exception: BaseException) -> ErrorCategory:
        """Classify by exception type first, then by its message."""
        if isinstance(exception, (TimeoutError, subprocess.TimeoutExpired)):
            return ErrorCategory.TIMEOUT
        if isinstance(exception, PermissionError):
            return ErrorCategory.PERMISSION
        if isinstance(exception, FileNotFoundError):
            return ErrorCategory.SERVICE_UNAVAILABLE
        if isinstance(exception, ConnectionError):
            return ErrorCategory.CONNECTION
        if isinstance(exception, MemoryError):
            return ErrorCategory.RESOURCE

        try:
            message = str(exception)
        except Exception:
            return ErrorCategory.COMMAND_FAILED

        return self.classify(message)


class ErrorHandler:
    """
    Turns classified errors into plain-text messages and keeps statistics.
    """

    USER_MESSAGES: Dict[ErrorCategory, str] = {
        ErrorCategory.PERMISSION: "I don't have permission to do that on this device.",
        ErrorCategory.SERVICE_UNAVAILABLE: "No automation service is available right now.",
        ErrorCategory.TIMEOUT: "That took too long. Please try again.",
        ErrorCategory.CONNECTION: "I'm having trouble connecting to the device.",
        ErrorCategory.RESOURCE: "The device is running low on resources.",
        ErrorCategory.COMMAND_FAILED: "The action couldn't be completed.",
        ErrorCategory.VALIDATION: "That action had invalid parameters.",
    }

    def __init__(self, max_history: int = 100):
        self._logger = logging.getLogger("droidpilot.errors")
        self._error_history: List[ErrorInfo] = []
        self._max_history = max_history

    def handle(self, error: ErrorInfo) -> str:
        """Log and record an error, returning a user-friendly message."""
        self._log_error(error)

        self._error_history.append(error)
        if len(self._error_history) > self._max_history:
            self._error_history.pop(0)

        return self.USER_MESSAGES.get(error.category, "An error occurred.")

    def _log_error(self, error: ErrorInfo) -> None:
        level_map = {
            ErrorCategory.VALIDATION: logging.WARNING,
            ErrorCategory.PERMISSION: logging.WARNING,
            ErrorCategory.SERVICE_UNAVAILABLE: logging.WARNING,
            ErrorCategory.TIMEOUT: logging.ERROR,
            ErrorCategory.CONNECTION: logging.ERROR,
            ErrorCategory.RESOURCE: logging.ERROR,
            ErrorCategory.COMMAND_FAILED: logging.ERROR,
        }
        self._logger.log(
            level_map.get(error.category, logging.ERROR),
            f"{error.category.name}: {error.message}",
            extra={"details": error.details}
        )

    def get_error_stats(self) -> Dict[str, int]:
        """Count recorded errors per category name."""
        stats: Dict[str, int] = {}
        for error in self._error_history:
            key = error.category.name
            stats[key] = stats.get(key, 0) + 1
        return stats

    def clear_history(self) -> None:
        self._error_history.clear()


# Convenience constructors

def create_validation_error(message: str, field_name: str = "") -> ErrorInfo:
    """Create a non-retryable validation error."""
    return ErrorInfo(
        category=ErrorCategory.VALIDATION,
        message=message,
        retryable=False,
        details={"field": field_name} if field_name else None
    )


def create_unsupported_error(kind: str) -> ErrorInfo:
    """Create the error reported when no available method handles a kind."""
    return ErrorInfo(
        category=ErrorCategory.SERVICE_UNAVAILABLE,
        message=f"No available execution method supports '{kind}'",
        retryable=False,
        details={"action": kind}
    )
