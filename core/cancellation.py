"""
Cancellation
------------
Cooperative cancellation token shared by a session loop and the router.

The token is checked at the top of every iteration and around every
suspension point (screen read, oracle call, backoff, settle delay, wait
actions).

Execution methods never receive the token as an argument. The router
binds it for the duration of one dispatch with `CancellationScope`, and
method code that suspends calls `sleep_ms(ms, current_token())`.
"""

from typing import Optional
import contextvars
import threading
import time

from .errors import SessionCancelledError


_token_var: contextvars.ContextVar[Optional["CancellationToken"]] = contextvars.ContextVar(
    "cancel_token", default=None
)


class CancellationToken:
    """threading.Event based cancellation flag with interruptible waits."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise SessionCancelledError once cancel() has been called."""
        if self._event.is_set():
            raise SessionCancelledError(self.session_id)

    def sleep(self, seconds: float) -> None:
        """
        Wait up to `seconds`, returning early on cancellation.

        Raises:
            SessionCancelledError: If the token is (or becomes) cancelled
        """
        self.raise_if_cancelled()
        if seconds > 0 and self._event.wait(timeout=seconds):
            raise SessionCancelledError(self.session_id)

    def __repr__(self) -> str:
        return f"CancellationToken(session={self.session_id!r}, cancelled={self.cancelled})"


def current_token() -> Optional[CancellationToken]:
    """The token bound by the innermost CancellationScope, if any."""
    return _token_var.get()


class CancellationScope:
    """
    Context manager binding a token for code that cannot take it as an argument.

    Usage:
        with CancellationScope(token):
            method.execute(action)
    """

    def __init__(self, token: Optional[CancellationToken]):
        self.token = token
        self._reset: Optional[contextvars.Token] = None

    def __enter__(self) -> "CancellationScope":
        self._reset = _token_var.set(self.token)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._reset is not None:
            _token_var.reset(self._reset)
            self._reset = None


def sleep_ms(milliseconds: int, token: Optional[CancellationToken] = None) -> None:
    """Sleep helper that honours an optional token."""
    seconds = max(0, milliseconds) / 1000.0
    if token is not None:
        token.sleep(seconds)
    elif seconds > 0:
        time.sleep(seconds)
