# Core module - Errors, retry policy, session state and orchestration
# The orchestrator is the only coordinator of a session loop.
#
# Import the orchestrator from core.orchestrator; this package only
# re-exports leaf modules so execution/ can import core.errors freely.

from .state_machine import (
    WorkflowStateMachine, WorkflowState, StateKind, StateTransition,
    Idle, Running, NeedsClarification, Completed, Error,
)
from .errors import (
    ErrorCategory, ErrorClassifier, ErrorHandler, ErrorInfo, SessionCancelledError,
)
from .retry_policy import RecoveryAction, RecoveryStrategy, RetryPolicyEngine
from .cancellation import CancellationScope, CancellationToken
from .config import AppConfig, load_config

__all__ = [
    "WorkflowStateMachine", "WorkflowState", "StateKind", "StateTransition",
    "Idle", "Running", "NeedsClarification", "Completed", "Error",
    "ErrorCategory", "ErrorClassifier", "ErrorHandler", "ErrorInfo", "SessionCancelledError",
    "RecoveryAction", "RecoveryStrategy", "RetryPolicyEngine",
    "CancellationScope", "CancellationToken",
    "AppConfig", "load_config",
]
