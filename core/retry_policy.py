"""
Retry Policy
------------
Static, per-deployment table mapping an ErrorCategory to a RecoveryAction.

Design:
- One RecoveryAction per category, frozen after construction
- Defaults below, overridable from the `retry_policy:` config section
- Parameter perturbation is a pure function returning a new Action
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Any, Dict, Mapping, Optional
import logging

from .errors import ErrorCategory


class RecoveryStrategy(Enum):
    """What the router does between attempts."""
    REQUEST_PERMISSION = auto()    # Notify the permission side channel, then retry
    REFRESH_AVAILABILITY = auto()  # Re-probe the method before retrying
    EXTEND_TIMEOUT = auto()        # Retry with a longer timeout
    RECONNECT = auto()             # Wait for the transport to come back
    WAIT_FOR_RESOURCES = auto()    # Long backoff, same parameters
    ALTERNATE_ENCODING = auto()    # Retry with re-encoded parameters
    FAIL_FAST = auto()             # No retry


class ParameterChange(Enum):
    """How action parameters are perturbed before a retry."""
    NONE = auto()
    EXTEND_TIMEOUT = auto()
    ALTERNATE_ENCODING = auto()
    JITTER_COORDINATES = auto()


@dataclass(frozen=True)
class RecoveryAction:
    """Retry recipe for one error category."""
    strategy: RecoveryStrategy
    max_retries: int
    backoff_ms: int
    parameter_jitter: ParameterChange = ParameterChange.NONE
    refresh_availability: bool = False
    timeout_multiplier: float = 2.0
    jitter_px: int = 4

    @property
    def retryable(self) -> bool:
        return self.max_retries > 0


DEFAULT_POLICIES: Dict[ErrorCategory, RecoveryAction] = {
    ErrorCategory.PERMISSION: RecoveryAction(
        strategy=RecoveryStrategy.REQUEST_PERMISSION,
        max_retries=2,
        backoff_ms=2000,
    ),
    ErrorCategory.SERVICE_UNAVAILABLE: RecoveryAction(
        strategy=RecoveryStrategy.REFRESH_AVAILABILITY,
        max_retries=3,
        backoff_ms=1500,
        refresh_availability=True,
    ),
    ErrorCategory.TIMEOUT: RecoveryAction(
        strategy=RecoveryStrategy.EXTEND_TIMEOUT,
        max_retries=2,
        backoff_ms=5000,
        parameter_jitter=ParameterChange.EXTEND_TIMEOUT,
    ),
    ErrorCategory.CONNECTION: RecoveryAction(
        strategy=RecoveryStrategy.RECONNECT,
        max_retries=3,
        backoff_ms=3000,
    ),
    ErrorCategory.RESOURCE: RecoveryAction(
        strategy=RecoveryStrategy.WAIT_FOR_RESOURCES,
        max_retries=2,
        backoff_ms=10000,
    ),
    ErrorCategory.COMMAND_FAILED: RecoveryAction(
        strategy=RecoveryStrategy.ALTERNATE_ENCODING,
        max_retries=2,
        backoff_ms=2000,
        parameter_jitter=ParameterChange.ALTERNATE_ENCODING,
    ),
    ErrorCategory.VALIDATION: RecoveryAction(
        strategy=RecoveryStrategy.FAIL_FAST,
        max_retries=0,
        backoff_ms=0,
    ),
}

DEFAULT_TIMEOUT_MS = 10000

# Offsets cycled through when jittering coordinates
_JITTER_PATTERN = [(1, 0), (0, 1), (-1, 0), (0, -1)]

_COORDINATE_KEYS = ("x", "y", "start_x", "start_y", "end_x", "end_y")


class RetryPolicyEngine:
    """
    Lookup table from error category to recovery action.

    The table is configuration, not router behavior; build a custom one
    with `from_config()` or `with_overrides()`.
    """

    def __init__(self, policies: Optional[Mapping[ErrorCategory, RecoveryAction]] = None):
        table = dict(DEFAULT_POLICIES)
        if policies:
            table.update(policies)
        self._policies: Dict[ErrorCategory, RecoveryAction] = table
        self._logger = logging.getLogger("droidpilot.retry_policy")

    def policy_for(self, category: ErrorCategory) -> RecoveryAction:
        """Get the recovery action for a category."""
        return self._policies.get(category, DEFAULT_POLICIES[ErrorCategory.COMMAND_FAILED])

    def should_retry(self, category: ErrorCategory, attempt: int) -> bool:
        """True while `attempt` (1-based attempts already made) is within the retry budget."""
        return attempt <= self.policy_for(category).max_retries

    def with_overrides(self, **changes: Any) -> "RetryPolicyEngine":
        """Copy of this engine with the same field changes applied to every category."""
        return RetryPolicyEngine({
            category: replace(action, **changes)
            for category, action in self._policies.items()
        })

    @classmethod
    def from_config(cls, section: Optional[Mapping[str, Any]]) -> "RetryPolicyEngine":
        """
        Build an engine from a config mapping such as:

            retry_policy:
              timeout: {max_retries: 1, backoff_ms: 2500}
              permission: {strategy: fail_fast, max_retries: 0}
        """
        logger = logging.getLogger("droidpilot.retry_policy")
        overrides: Dict[ErrorCategory, RecoveryAction] = {}

        for name, values in (section or {}).items():
            try:
                category = ErrorCategory[str(name).upper()]
            except KeyError:
                raise ValueError(f"Unknown error category in retry policy: {name}")

            base = DEFAULT_POLICIES[category]
            changes: Dict[str, Any] = {}

            for key, value in (values or {}).items():
                if key == "strategy":
                    changes[key] = RecoveryStrategy[str(value).upper()]
                elif key == "parameter_jitter":
                    changes[key] = ParameterChange[str(value).upper()]
                elif key in ("max_retries", "backoff_ms", "jitter_px"):
                    changes[key] = int(value)
                elif key == "timeout_multiplier":
                    changes[key] = float(value)
                elif key == "refresh_availability":
                    changes[key] = bool(value)
                else:
                    raise ValueError(f"Unknown retry policy field for {name}: {key}")

            if changes.get("max_retries", base.max_retries) < 0:
                raise ValueError(f"max_retries must be >= 0 for {name}")

            overrides[category] = replace(base, **changes)
            logger.info(f"Retry policy override for {category.name}: {changes}")

        return cls(overrides)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        """Serializable view of the table."""
        return {
            category.name: {
                "strategy": action.strategy.name,
                "max_retries": action.max_retries,
                "backoff_ms": action.backoff_ms,
                "parameter_jitter": action.parameter_jitter.name,
                "refresh_availability": action.refresh_availability,
            }
            for category, action in self._policies.items()
        }


def perturb(action: Any, recovery: RecoveryAction, attempt: int) -> Any:
    """
    Return a copy of `action` with parameters adjusted for the next attempt.

    `attempt` is the number of attempts already made on the current method.
    """
    change = recovery.parameter_jitter
    params = dict(action.parameters)

    if change == ParameterChange.EXTEND_TIMEOUT:
        current = params.get("timeout_ms", DEFAULT_TIMEOUT_MS)
        params["timeout_ms"] = int(current * recovery.timeout_multiplier)

    elif change == ParameterChange.ALTERNATE_ENCODING:
        if "text" in params:
            # Alternate between the plain and the escaped shell encoding
            params["encoding"] = "escaped" if params.get("encoding") != "escaped" else "plain"
        elif any(key in params for key in _COORDINATE_KEYS):
            params = _jitter(params, recovery.jitter_px, attempt)
        else:
            return action

    elif change == ParameterChange.JITTER_COORDINATES:
        params = _jitter(params, recovery.jitter_px, attempt)

    else:
        return action

    return action.with_parameters(params)


def _jitter(params: Dict[str, Any], jitter_px: int, attempt: int) -> Dict[str, Any]:
    dx, dy = _JITTER_PATTERN[(attempt - 1) % len(_JITTER_PATTERN)]
    result = dict(params)
    for key in _COORDINATE_KEYS:
        if key not in result:
            continue
        offset = dx if key.endswith("x") else dy
        result[key] = max(0, result[key] + offset * jitter_px)
    return result
