"""
Logging Tests
-------------
Tests for session-scoped structured logging.
"""

import json
import logging
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from infra.logging import (
    JSONFormatter, SessionContext, SessionIdFilter, configure_logging,
    get_log_file_path, get_logger, get_session_id,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("droidpilot.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSessionContext:

    def test_context_sets_and_restores(self):
        assert get_session_id() is None

        with SessionContext("session_1"):
            assert get_session_id() == "session_1"
            with SessionContext("session_2"):
                assert get_session_id() == "session_2"
            assert get_session_id() == "session_1"

        assert get_session_id() is None

    def test_filter_stamps_records(self):
        record = make_record()

        with SessionContext("session_1"):
            SessionIdFilter().filter(record)

        assert record.session_id == "session_1"

    def test_filter_without_session(self):
        record = make_record()
        SessionIdFilter().filter(record)

        assert record.session_id == "-"


class TestFormatting:

    def test_json_formatter(self):
        record = make_record("routed", session_id="s1", method_id="root", iteration=2)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "routed"
        assert entry["session_id"] == "s1"
        assert entry["method_id"] == "root"
        assert entry["iteration"] == 2
        assert entry["logger"] == "droidpilot.test"

    def test_get_logger_namespaces(self):
        assert get_logger("router").name == "droidpilot.router"
        assert get_logger("droidpilot.state").name == "droidpilot.state"


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        logger = logging.getLogger("droidpilot")
        handlers, level = list(logger.handlers), logger.level
        yield
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)

    def test_file_output_is_json(self, tmp_path):
        configure_logging(level="DEBUG", log_dir=str(tmp_path), console=False, file=True, force=True)

        with SessionContext("session_9"):
            get_logger("test").info("written")
        for handler in logging.getLogger("droidpilot").handlers:
            handler.flush()

        lines = get_log_file_path().read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "written"
        assert entry["session_id"] == "session_9"

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging(level="LOUD", console=False, file=False, force=True)
