# Execution module - Action routing across privilege tiers
# Each method: id, priority, supported kinds, executor, availability probe
# The router is the only path from an Action to the device

from .actions import Action, ActionKind, normalize_action, validate_action
from .methods import ExecutionMethod, MethodDescriptor, RawResult
from .results import AttemptRecord, ExecutionResult
from .availability import AvailabilityCache
from .router import ActionRouter
from .shell import (
    ShellChannel,
    accessibility_method,
    build_shell_tiers,
    root_method,
    shizuku_adb_method,
    shizuku_method,
)
from .stubs import ScriptedMethod, dry_run_method

__all__ = [
    "Action", "ActionKind", "normalize_action", "validate_action",
    "ExecutionMethod", "MethodDescriptor", "RawResult",
    "AttemptRecord", "ExecutionResult",
    "AvailabilityCache",
    "ActionRouter",
    "ShellChannel", "accessibility_method", "build_shell_tiers",
    "root_method", "shizuku_adb_method", "shizuku_method",
    "ScriptedMethod", "dry_run_method",
]
