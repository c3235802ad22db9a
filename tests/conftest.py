"""
DroidPilot Test Configuration
-----------------------------
Shared fixtures and configuration for all tests.

Device commands are blocked: no test may reach a real adb, su or rish.
"""

import sys
from pathlib import Path
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.config import OrchestratorSettings
from core.orchestrator import WorkflowOrchestrator
from core.retry_policy import RetryPolicyEngine
from execution.availability import AvailabilityCache
from execution.router import ActionRouter
from oracle.screen import StaticScreenProvider


# =============================================================================
# Test Isolation: Block Side Effects
# =============================================================================

@pytest.fixture(autouse=True)
def block_device_commands(monkeypatch):
    """
    Block subprocess calls during tests.

    This ensures:
    - Tests are hermetic (no attached device is touched)
    - CI pipelines without adb don't hang on timeouts

    ShellChannel tests inject their own runner instead.
    """
    import subprocess

    def _blocked(args, *a, **kwargs):
        raise RuntimeError(
            f"subprocess call {args!r} is forbidden during tests. "
            "Pass a fake runner to ShellChannel instead."
        )

    monkeypatch.setattr(subprocess, "run", _blocked)
    monkeypatch.setattr(subprocess, "Popen", _blocked)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root():
    """Return the project root path."""
    return PROJECT_ROOT


@pytest.fixture
def sleeps():
    """Records every backoff/settle delay instead of sleeping."""
    return []


@pytest.fixture
def make_router(sleeps):
    """Factory for routers that never actually sleep."""
    def _make(methods, **kwargs):
        kwargs.setdefault("sleep", sleeps.append)
        kwargs.setdefault("availability", AvailabilityCache(ttl_seconds=60.0))
        kwargs.setdefault("policy", RetryPolicyEngine())
        return ActionRouter(methods, **kwargs)
    return _make


@pytest.fixture
def make_orchestrator():
    """Factory for orchestrators with no settle delay."""
    def _make(router, oracle, screens=None, **settings):
        return WorkflowOrchestrator(
            router=router,
            oracle=oracle,
            screen_provider=StaticScreenProvider(screens),
            settings=OrchestratorSettings(**settings),
            sleep=lambda seconds: None,
        )
    return _make
