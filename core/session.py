"""
Workflow Session
----------------
One end-to-end execution of a user goal: its history, counters, state
and event feed. Created by the orchestrator, owned by the caller.

Control surface: start(goal, prior_history), resume(user_input), cancel().
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Optional, Sequence, Union
import logging
import threading
import uuid

from memory.conversation import ConversationMemory, ConversationTurn

from .cancellation import CancellationToken
from .state_machine import StateTransition, StateKind, WorkflowState, WorkflowStateMachine

if TYPE_CHECKING:
    from .orchestrator import WorkflowOrchestrator


class EventKind(Enum):
    """Kinds of feedback events."""
    STEP = auto()           # Running state changed
    ACTION = auto()         # One action finished routing
    CLARIFICATION = auto()  # Waiting for user input
    COMPLETED = auto()
    ERROR = auto()
    CANCELLED = auto()


@dataclass
class WorkflowEvent:
    """Feedback for presentation layers. Nothing depends on a subscriber."""
    session_id: str
    kind: EventKind
    iteration: int
    description: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "kind": self.kind.name.lower(),
            "iteration": self.iteration,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
        }


class EventChannel:
    """
    Listener fan-out plus a bounded polling queue.

    When the queue is full the oldest events are dropped.
    """

    def __init__(self, maxlen: int = 256):
        self._queue: Deque[WorkflowEvent] = deque(maxlen=maxlen)
        self._listeners: List[Callable[[WorkflowEvent], None]] = []
        self._lock = threading.Lock()
        self._logger = logging.getLogger("droidpilot.events")

    def emit(self, event: WorkflowEvent) -> None:
        with self._lock:
            self._queue.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._logger.warning(f"Event listener error: {e}")

    def poll(self, max_items: Optional[int] = None) -> List[WorkflowEvent]:
        """Remove and return queued events, oldest first."""
        with self._lock:
            count = len(self._queue) if max_items is None else min(max_items, len(self._queue))
            return [self._queue.popleft() for _ in range(count)]

    def add_listener(self, callback: Callable[[WorkflowEvent], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[WorkflowEvent], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def __len__(self) -> int:
        return len(self._queue)


def _event_kind_for(state: WorkflowState) -> EventKind:
    return {
        StateKind.IDLE: EventKind.CANCELLED,
        StateKind.RUNNING: EventKind.STEP,
        StateKind.NEEDS_CLARIFICATION: EventKind.CLARIFICATION,
        StateKind.COMPLETED: EventKind.COMPLETED,
        StateKind.ERROR: EventKind.ERROR,
    }[state.kind]


def describe_state(state: WorkflowState) -> str:
    """Plain-text description carried by every state."""
    if state.kind == StateKind.RUNNING:
        return state.description
    if state.kind == StateKind.NEEDS_CLARIFICATION:
        return state.question
    if state.kind == StateKind.COMPLETED:
        return state.result
    if state.kind == StateKind.ERROR:
        return state.message
    return "Idle"


class WorkflowSession:
    """
    Per-session mutable state.

    Mutated only by its orchestrator's loop and by cancel(); every
    mutation happens under `lock`. `run_lock` guarantees a single loop.
    """

    def __init__(
        self,
        orchestrator: "WorkflowOrchestrator",
        session_id: Optional[str] = None,
        max_history_turns: int = 200,
        event_queue_size: int = 256
    ):
        self.id = session_id or f"session_{uuid.uuid4().hex[:12]}"
        self.goal = ""
        self.history = ConversationMemory(max_turns=max_history_turns)
        self.iteration = 0
        self.consecutive_failures = 0
        self.created_at = datetime.now()

        self.lock = threading.RLock()
        self.run_lock = threading.Lock()
        self.token = CancellationToken(self.id)
        self.events = EventChannel(maxlen=event_queue_size)

        self._orchestrator = orchestrator
        self._state_machine = WorkflowStateMachine(name=self.id)
        self._state_machine.add_listener(self._on_transition)

    @property
    def state(self) -> WorkflowState:
        return self._state_machine.state

    @property
    def state_machine(self) -> WorkflowStateMachine:
        return self._state_machine

    def _on_transition(self, transition: StateTransition) -> None:
        state = transition.to_state
        if state.kind == StateKind.IDLE and transition.from_state.kind == StateKind.IDLE:
            return
        self.events.emit(WorkflowEvent(
            session_id=self.id,
            kind=_event_kind_for(state),
            iteration=self.iteration,
            description=describe_state(state) if state.kind != StateKind.IDLE else transition.reason,
        ))

    # Control surface

    def start(
        self,
        goal: str,
        prior_history: Optional[Sequence[Union[ConversationTurn, str]]] = None
    ) -> WorkflowState:
        """Run the goal to a stopping state. Blocks the calling thread."""
        return self._orchestrator.start(self, goal, prior_history)

    def resume(self, user_input: str) -> WorkflowState:
        """Answer a clarification and continue. Blocks the calling thread."""
        return self._orchestrator.resume(self, user_input)

    def cancel(self) -> None:
        """Move to Idle immediately; safe from any thread."""
        self._orchestrator.cancel(self)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view for the service bus and CLI."""
        with self.lock:
            return {
                "id": self.id,
                "goal": self.goal,
                "iteration": self.iteration,
                "consecutive_failures": self.consecutive_failures,
                "history_length": len(self.history),
                "history_summary": self.history.summarize(),
                "state": self.state.to_dict(),
            }

    def __repr__(self) -> str:
        return f"WorkflowSession(id={self.id}, state={self.state.kind.name})"
