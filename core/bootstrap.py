"""
Bootstrap
---------
Builds the router, oracle, screen provider and orchestrator from an
AppConfig. Used by the CLI and the service bus server.
"""

from typing import Any, Optional
import logging

from execution.availability import AvailabilityCache
from execution.router import ActionRouter
from execution.shell import ShellChannel, accessibility_method, build_shell_tiers
from execution.stubs import dry_run_method
from oracle.claude import ClaudeOracle, OracleConfig
from oracle.scripted import ScriptedOracle
from oracle.screen import StaticScreenProvider, UiDumpScreenProvider

from .config import AppConfig
from .errors import ErrorClassifier
from .orchestrator import WorkflowOrchestrator
from .retry_policy import RetryPolicyEngine


logger = logging.getLogger("droidpilot.bootstrap")


def build_channel(config: AppConfig) -> ShellChannel:
    methods = config.methods
    return ShellChannel(
        adb_path=methods.adb_path,
        serial=methods.serial,
        timeout_seconds=methods.timeout_seconds,
    )


def build_router(
    config: AppConfig,
    accessibility_bridge: Optional[Any] = None,
    channel: Optional[ShellChannel] = None
) -> ActionRouter:
    """Router over the configured tiers, or the dry-run method alone."""
    if config.methods.dry_run:
        methods = [dry_run_method()]
    else:
        methods = build_shell_tiers(channel or build_channel(config), config.methods.tiers)
        accessibility = config.methods.tiers.get("accessibility") or {}
        if accessibility_bridge is not None and accessibility.get("enabled", True):
            methods.append(accessibility_method(
                accessibility_bridge,
                priority=int(accessibility.get("priority", 700)),
            ))

    return ActionRouter(
        methods,
        classifier=ErrorClassifier(),
        policy=RetryPolicyEngine.from_config(config.retry_policy),
        availability=AvailabilityCache(ttl_seconds=config.router.availability_ttl_seconds),
    )


def build_oracle(config: AppConfig):
    settings = config.oracle
    provider = settings.provider.lower()

    if provider == "claude":
        return ClaudeOracle(OracleConfig(
            model=settings.model,
            api_key_env=settings.api_key_env,
            max_tokens=settings.max_tokens,
            timeout_seconds=settings.timeout_seconds,
        ))

    if provider == "scripted":
        if not settings.script:
            raise ValueError("oracle.script is required for the scripted provider")
        return ScriptedOracle.from_yaml(settings.script)

    raise ValueError(f"Unknown oracle provider: {settings.provider}")


def build_screen_provider(config: AppConfig, channel: Optional[ShellChannel] = None):
    if config.methods.dry_run:
        return StaticScreenProvider(["Dry run: no device screen available."])
    return UiDumpScreenProvider(channel or build_channel(config))


def build_orchestrator(config: AppConfig, accessibility_bridge: Optional[Any] = None) -> WorkflowOrchestrator:
    """Wire everything from one config."""
    channel = None if config.methods.dry_run else build_channel(config)
    orchestrator = WorkflowOrchestrator(
        router=build_router(config, accessibility_bridge, channel),
        oracle=build_oracle(config),
        screen_provider=build_screen_provider(config, channel),
        settings=config.orchestrator,
    )
    logger.info(
        f"Orchestrator ready (oracle={config.oracle.provider}, dry_run={config.methods.dry_run})"
    )
    return orchestrator
