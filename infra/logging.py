"""
DroidPilot Centralized Logging
------------------------------
Structured logging with session_id propagation for per-session traceability.

Design:
- Every workflow session has a session_id
- session_id propagates through: Orchestrator -> Router -> Methods
- Console output through Rich, file output as JSON lines
- Clear severity discipline: INFO=state, WARNING=recoverable, ERROR=abort

Usage:
    from infra.logging import get_logger, SessionContext

    logger = get_logger("orchestrator")

    with SessionContext(session.id):
        logger.info("Iteration started")
"""

from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
import contextvars
import json
import logging

from rich.console import Console
from rich.logging import RichHandler

# Context variable for session_id - thread-safe and async-safe
_session_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "session_id", default=None
)


def get_session_id() -> Optional[str]:
    """Get the current session ID from context."""
    return _session_id_var.get()


def set_session_id(session_id: str) -> contextvars.Token:
    """Set the current session ID in context."""
    return _session_id_var.set(session_id)


def reset_session_id(token: contextvars.Token) -> None:
    """Reset the session ID to its previous value."""
    _session_id_var.reset(token)


class SessionContext:
    """
    Context manager for session scoping.

    Usage:
        with SessionContext(session_id):
            # All logs within this block carry session_id
            logger.info("Processing...")
    """

    def __init__(self, session_id: str):
        self._session_id = session_id
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = set_session_id(self._session_id)
        return self._session_id

    def __exit__(self, *args) -> None:
        if self._token is not None:
            reset_session_id(self._token)


class SessionIdFilter(logging.Filter):
    """Logging filter that adds session_id to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "session_id", None) is None:
            record.session_id = get_session_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured file logging."""

    EXTRA_FIELDS = ("method_id", "action_kind", "iteration", "details", "success")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "session_id": getattr(record, "session_id", "-"),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class SessionRichHandler(RichHandler):
    """RichHandler that prefixes messages with the session id."""

    def render_message(self, record: logging.LogRecord, message: str):
        session_id = getattr(record, "session_id", "-")
        if session_id and session_id != "-":
            message = f"[{session_id}] {message}"
        return super().render_message(record, message)


class FileRotatingHandler(RotatingFileHandler):
    """Size-based rotating JSON log file."""

    MAX_BYTES = 10 * 1024 * 1024  # 10 MB
    BACKUP_COUNT = 3

    def __init__(self, filename: str, max_bytes: Optional[int] = None, backup_count: Optional[int] = None):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            filename,
            mode="a",
            maxBytes=max_bytes or self.MAX_BYTES,
            backupCount=backup_count or self.BACKUP_COUNT,
            encoding="utf-8",
        )


# Global configuration state
_logging_initialized = False
_log_file_path: Optional[Path] = None


def configure_logging(
    level=logging.INFO,
    log_dir: Optional[str] = None,
    console: bool = True,
    file: bool = True,
    force: bool = False,
    rich_console: Optional[Console] = None,
) -> None:
    """
    Configure the droidpilot logging tree.

    Args:
        level: Logging level or level name (default INFO)
        log_dir: Directory for log files (default: ./logs)
        console: Enable Rich console output
        file: Enable JSON file output
        force: Reconfigure even if already configured
        rich_console: Console to render to (default: stderr)
    """
    global _logging_initialized, _log_file_path

    if _logging_initialized and not force:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger("droidpilot")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    session_filter = SessionIdFilter()

    if console:
        console_handler = SessionRichHandler(
            console=rich_console or Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        console_handler.setLevel(level)
        console_handler.addFilter(session_filter)
        root_logger.addHandler(console_handler)

    if file:
        log_path = Path(log_dir) if log_dir else Path("logs")
        _log_file_path = log_path / "droidpilot.log"

        file_handler = FileRotatingHandler(str(_log_file_path))
        file_handler.setLevel(logging.DEBUG)  # File gets everything
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(session_filter)
        root_logger.addHandler(file_handler)

    _logging_initialized = True


def get_log_file_path() -> Optional[Path]:
    return _log_file_path


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the droidpilot namespace.

    Args:
        name: Logger name (prefixed with 'droidpilot.' if not already)
    """
    if not name.startswith("droidpilot"):
        name = f"droidpilot.{name}"
    return logging.getLogger(name)


def log_session_end(
    session_id: str,
    state: str,
    iterations: int,
    message: Optional[str] = None,
) -> None:
    """
    Log the end of a session run with summary information.

    This is the SESSION_END boundary event for post-mortems.
    """
    logger = get_logger("session")
    extra = {"session_id": session_id, "iteration": iterations}

    if state == "ERROR":
        logger.error(f"SESSION_END: state={state}, iterations={iterations}, error={message}", extra=extra)
    else:
        logger.info(f"SESSION_END: state={state}, iterations={iterations}", extra=extra)
