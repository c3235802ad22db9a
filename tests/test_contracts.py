"""
Contract Tests
---------------
API surface tests for the public packages.

These tests verify:
- Public symbols exist
- Required types are exported
- Breaking changes cause test failure
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))


class TestCoreAPI:
    """Verify core exports."""

    def test_exports_exist(self):
        from core import (
            WorkflowStateMachine,
            StateKind,
            Idle, Running, NeedsClarification, Completed, Error,
            ErrorCategory,
            ErrorClassifier,
            RetryPolicyEngine,
            CancellationToken,
            CancellationScope,
            load_config,
        )

        assert WorkflowStateMachine is not None
        assert ErrorClassifier is not None
        assert RetryPolicyEngine is not None

    def test_error_category_values(self):
        from core.errors import ErrorCategory

        # These values must remain stable
        assert [c.name for c in ErrorCategory] == [
            "PERMISSION",
            "SERVICE_UNAVAILABLE",
            "TIMEOUT",
            "CONNECTION",
            "RESOURCE",
            "COMMAND_FAILED",
            "VALIDATION",
        ]

    def test_state_kind_values(self):
        from core.state_machine import StateKind

        assert [k.name for k in StateKind] == [
            "IDLE", "RUNNING", "NEEDS_CLARIFICATION", "COMPLETED", "ERROR",
        ]

    def test_orchestrator_exports(self):
        from core.orchestrator import (
            WorkflowOrchestrator,
            CLARIFICATION_PHRASES,
            FAILURE_INDICATORS,
        )
        from core.session import WorkflowSession, WorkflowEvent, EventKind

        assert "password" in CLARIFICATION_PHRASES
        assert "unable to" in FAILURE_INDICATORS
        assert hasattr(WorkflowSession, "resume")


class TestExecutionAPI:
    """Verify execution exports."""

    def test_exports_exist(self):
        from execution import (
            Action,
            ActionKind,
            ActionRouter,
            AvailabilityCache,
            ExecutionMethod,
            ExecutionResult,
            RawResult,
            ScriptedMethod,
            dry_run_method,
            normalize_action,
        )

        assert ActionRouter is not None

    def test_action_kind_values(self):
        from execution.actions import ActionKind

        assert {k.value for k in ActionKind} == {
            "tap", "long_press", "swipe", "type_text", "key_event", "wait",
            "launch", "open_url", "navigate_back", "navigate_home", "query_capability",
        }


class TestOracleAPI:
    """Verify oracle exports."""

    def test_exports_exist(self):
        from oracle import (
            ClaudeOracle,
            Decision,
            OracleError,
            ScriptedOracle,
            StaticScreenProvider,
            UiDumpScreenProvider,
            format_screen_context,
        )

        assert Decision().is_final


class TestInfraAPI:
    """Verify infra exports."""

    def test_exports_exist(self):
        from infra import configure_logging, get_logger, SessionContext
        from infra.service_bus import ServiceBus, create_app

        assert create_app() is not None
