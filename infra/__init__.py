# Infrastructure module - Logging and the internal service bus
# The service bus is imported directly (infra.service_bus) to keep this package light

from .logging import (
    get_logger, configure_logging, SessionContext,
    log_session_end, get_session_id,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "SessionContext",
    "log_session_end",
    "get_session_id",
]
