"""
State Machine
-------------
Workflow session state as a tagged union with validated transitions.
All state transitions are logged and kept in a bounded history.

Exactly one of Idle, Running, NeedsClarification, Completed or Error
holds at any time.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Set, Union
import logging
import threading


class StateKind(Enum):
    """Discriminator for WorkflowState variants."""
    IDLE = auto()                 # Not started, or cancelled
    RUNNING = auto()              # Loop in progress
    NEEDS_CLARIFICATION = auto()  # Waiting for user input
    COMPLETED = auto()            # Oracle reported the goal done
    ERROR = auto()                # Terminal failure


@dataclass(frozen=True)
class Idle:
    kind = StateKind.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "idle"}


@dataclass(frozen=True)
class Running:
    step: int
    description: str
    kind = StateKind.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "running", "step": self.step, "description": self.description}


@dataclass(frozen=True)
class NeedsClarification:
    step: int
    question: str
    context: str = ""
    kind = StateKind.NEEDS_CLARIFICATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": "needs_clarification",
            "step": self.step,
            "question": self.question,
            "context": self.context,
        }


@dataclass(frozen=True)
class Completed:
    result: str
    kind = StateKind.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "completed", "result": self.result}


@dataclass(frozen=True)
class Error:
    message: str
    kind = StateKind.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {"state": "error", "message": self.message}


WorkflowState = Union[Idle, Running, NeedsClarification, Completed, Error]


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: WorkflowState
    to_state: WorkflowState
    timestamp: datetime
    reason: str
    metadata: Dict = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"StateTransition({self.from_state.kind.name} → {self.to_state.kind.name}, "
            f"reason='{self.reason}')"
        )


# Define valid state transitions
VALID_TRANSITIONS: Dict[StateKind, Set[StateKind]] = {
    StateKind.IDLE: {StateKind.RUNNING, StateKind.IDLE},
    StateKind.RUNNING: {
        StateKind.RUNNING,
        StateKind.NEEDS_CLARIFICATION,
        StateKind.COMPLETED,
        StateKind.ERROR,
        StateKind.IDLE,
    },
    StateKind.NEEDS_CLARIFICATION: {StateKind.RUNNING, StateKind.ERROR, StateKind.IDLE},
    StateKind.COMPLETED: {StateKind.RUNNING, StateKind.IDLE},
    StateKind.ERROR: {StateKind.RUNNING, StateKind.IDLE},
}


class WorkflowStateMachine:
    """
    State holder for one workflow session.

    Responsibilities:
    - Track current state
    - Validate state transitions
    - Log all transitions
    - Notify listeners of state changes

    Safe to call from the loop thread and a cancelling thread.
    """

    def __init__(
        self,
        initial_state: Optional[WorkflowState] = None,
        max_history: int = 200,
        name: str = ""
    ):
        self._state: WorkflowState = initial_state or Idle()
        self._history: List[StateTransition] = []
        self._max_history = max_history
        self._listeners: List[Callable[[StateTransition], None]] = []
        self._lock = threading.RLock()
        self._name = name
        self._logger = logging.getLogger("droidpilot.state")

    @property
    def state(self) -> WorkflowState:
        """Get current state."""
        return self._state

    @property
    def kind(self) -> StateKind:
        return self._state.kind

    @property
    def history(self) -> List[StateTransition]:
        """Get transition history."""
        with self._lock:
            return self._history.copy()

    def can_transition(self, to_kind: StateKind) -> bool:
        """Check if transition to given state kind is valid."""
        return to_kind in VALID_TRANSITIONS.get(self._state.kind, set())

    def transition(
        self,
        to_state: WorkflowState,
        reason: str,
        metadata: Optional[Dict] = None
    ) -> StateTransition:
        """
        Transition to a new state.

        Args:
            to_state: Target state
            reason: Human-readable reason for transition
            metadata: Optional additional data

        Returns:
            StateTransition record

        Raises:
            ValueError: If transition is not valid
        """
        with self._lock:
            if not self.can_transition(to_state.kind):
                valid = VALID_TRANSITIONS.get(self._state.kind, set())
                valid_names = sorted(s.name for s in valid)
                raise ValueError(
                    f"Invalid transition: {self._state.kind.name} → {to_state.kind.name}. "
                    f"Valid targets: {valid_names}"
                )
            return self._apply(to_state, reason, metadata)

    def transition_if(
        self,
        expected: StateKind,
        to_state: WorkflowState,
        reason: str
    ) -> Optional[StateTransition]:
        """Transition only while the current kind is `expected`; None otherwise."""
        with self._lock:
            if self._state.kind != expected:
                return None
            return self.transition(to_state, reason)

    def _apply(
        self,
        to_state: WorkflowState,
        reason: str,
        metadata: Optional[Dict]
    ) -> StateTransition:
        transition = StateTransition(
            from_state=self._state,
            to_state=to_state,
            timestamp=datetime.now(),
            reason=reason,
            metadata=metadata or {}
        )

        old_state = self._state
        self._state = to_state

        self._history.append(transition)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        prefix = f"[{self._name}] " if self._name else ""
        if old_state.kind != to_state.kind:
            self._logger.info(
                f"{prefix}State transition: {old_state.kind.name} → {to_state.kind.name} "
                f"(reason: {reason})"
            )
        else:
            self._logger.debug(f"{prefix}State update: {to_state} (reason: {reason})")

        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception as e:
                self._logger.warning(f"Listener error: {e}")

        return transition

    def add_listener(self, callback: Callable[[StateTransition], None]) -> None:
        """Add a state change listener."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[StateTransition], None]) -> None:
        """Remove a state change listener."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    def reset(self, reason: str = "Manual reset") -> StateTransition:
        """Force IDLE from any state."""
        with self._lock:
            return self._apply(Idle(), reason, None)

    def is_busy(self) -> bool:
        """Check if the session loop is active."""
        return self._state.kind == StateKind.RUNNING

    def get_history_summary(self) -> str:
        """Get a human-readable summary of recent transitions."""
        history = self.history
        if not history:
            return "No transitions recorded."

        lines = ["State Transition History:", "-" * 40]

        for t in history[-10:]:
            lines.append(
                f"  {t.timestamp.strftime('%H:%M:%S')} | "
                f"{t.from_state.kind.name:19} → {t.to_state.kind.name:19} | "
                f"{t.reason}"
            )

        return "\n".join(lines)
