"""
Cancellation Tests
------------------
Tests for the cooperative cancellation token and the event channel.
"""

import pytest
from pathlib import Path
import sys
import threading
import time

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.cancellation import CancellationScope, CancellationToken, current_token, sleep_ms
from core.errors import SessionCancelledError
from core.session import EventChannel, EventKind, WorkflowEvent


class TestCancellationToken:

    def test_raise_if_cancelled(self):
        token = CancellationToken("s1")
        token.raise_if_cancelled()

        token.cancel()

        assert token.cancelled
        with pytest.raises(SessionCancelledError):
            token.raise_if_cancelled()

    def test_sleep_wakes_on_cancel(self):
        token = CancellationToken("s1")
        threading.Timer(0.05, token.cancel).start()

        started = time.monotonic()
        with pytest.raises(SessionCancelledError):
            token.sleep(5)

        assert time.monotonic() - started < 2

    def test_sleep_completes_when_not_cancelled(self):
        CancellationToken("s1").sleep(0.01)

    def test_sleep_ms_with_cancelled_token(self):
        token = CancellationToken("s1")
        token.cancel()

        with pytest.raises(SessionCancelledError):
            sleep_ms(10, token)

    def test_sleep_ms_without_token(self):
        sleep_ms(1)


class TestCancellationScope:

    def test_scope_binds_and_restores(self):
        outer, inner = CancellationToken("outer"), CancellationToken("inner")
        assert current_token() is None

        with CancellationScope(outer):
            assert current_token() is outer
            with CancellationScope(inner):
                assert current_token() is inner
            assert current_token() is outer

        assert current_token() is None

    def test_scope_restores_after_error(self):
        token = CancellationToken("s1")

        with pytest.raises(SessionCancelledError):
            with CancellationScope(token):
                token.cancel()
                sleep_ms(1000, current_token())

        assert current_token() is None


def event(n):
    return WorkflowEvent(session_id="s1", kind=EventKind.STEP, iteration=n, description=str(n))


class TestEventChannel:

    def test_poll_oldest_first(self):
        channel = EventChannel()
        for i in range(3):
            channel.emit(event(i))

        assert [e.iteration for e in channel.poll(2)] == [0, 1]
        assert [e.iteration for e in channel.poll()] == [2]

    def test_full_queue_drops_oldest(self):
        channel = EventChannel(maxlen=2)
        for i in range(5):
            channel.emit(event(i))

        assert len(channel) == 2
        assert [e.iteration for e in channel.poll()] == [3, 4]

    def test_listeners(self):
        channel = EventChannel()
        seen = []
        channel.add_listener(seen.append)
        channel.emit(event(1))
        channel.remove_listener(seen.append)
        channel.emit(event(2))

        assert [e.iteration for e in seen] == [1]

    def test_event_dict(self):
        data = event(4).to_dict()

        assert data["kind"] == "step"
        assert data["iteration"] == 4
