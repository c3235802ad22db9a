"""
Orchestrator
------------
Drives a workflow session: asks the oracle what to do next, routes each
action, watches for stuck runs and decides when to stop.

Per iteration:
  screen context -> history -> oracle.decide -> clarification? completion?
  -> route each action in order -> stuck check -> next iteration

The loop runs in the caller's thread. Cancellation may come from any
thread; the loop notices it at the next suspension point and exits
without touching the session.
"""

from contextlib import contextmanager
from typing import Callable, Optional, Sequence, Union
import logging
import re

from execution.actions import Action, ActionKind
from infra.logging import SessionContext, log_session_end
from memory.conversation import ConversationTurn
from oracle.interfaces import format_screen_context

from .cancellation import CancellationToken
from .config import OrchestratorSettings
from .errors import SessionCancelledError
from .session import EventKind, WorkflowEvent, WorkflowSession
from .state_machine import (
    Completed,
    Error,
    NeedsClarification,
    Running,
    StateKind,
    WorkflowState,
)


CLARIFICATION_PHRASES = [
    "could you clarify",
    "i need more information",
    "please specify",
    "which one",
    "password",
    "login required",
    "sign in",
    "authentication needed",
    "permission denied",
    "i'm not sure",
    "not sure",
    "unclear",
    "ambiguous",
    "clarify",
]

FAILURE_INDICATORS = [
    "not found",
    "failed",
    "error",
    "timeout",
    "unable to",
]

DEFAULT_QUESTION = "Could you provide more information?"
STUCK_QUESTION = "I'm having trouble with this action. Could you help?"
PLANNING_DESCRIPTION = "Analyzing screen and planning action..."
MAX_ITERATIONS_MESSAGE = "Max iterations reached"

_QUESTION_RE = re.compile(r"[^.!?]*\?")


def needs_clarification(text: str) -> bool:
    """True when the oracle reply asks the user for input."""
    lower_text = (text or "").lower()
    return any(phrase in lower_text for phrase in CLARIFICATION_PHRASES)


def extract_clarification_question(text: str) -> str:
    """First sentence ending in '?', else a generic question."""
    match = _QUESTION_RE.search(text or "")
    if match and match.group(0).strip() != "?":
        return match.group(0).strip()
    return DEFAULT_QUESTION


def is_stuck(result_text: str) -> bool:
    """True when an action result reads like a failure."""
    lower_result = (result_text or "").lower()
    return any(indicator in lower_result for indicator in FAILURE_INDICATORS)


def describe_action(action: Action) -> str:
    """Running-state description for an action."""
    p = action.parameters
    kind = action.kind

    if kind == ActionKind.TAP.value:
        return f"Tapping at ({p.get('x', 0)}, {p.get('y', 0)})"
    if kind == ActionKind.LONG_PRESS.value:
        return f"Long pressing at ({p.get('x', 0)}, {p.get('y', 0)})"
    if kind == ActionKind.SWIPE.value:
        return "Swiping on screen"
    if kind == ActionKind.TYPE_TEXT.value:
        text = str(p.get("text", ""))
        return f"Typing: {text[:20]}{'...' if len(text) > 20 else ''}"
    if kind == ActionKind.NAVIGATE_BACK.value:
        return "Pressing back"
    if kind == ActionKind.NAVIGATE_HOME.value:
        return "Going home"
    if kind == ActionKind.WAIT.value:
        return "Waiting..."
    if kind == ActionKind.LAUNCH.value:
        return f"Launching app: {p.get('package', '')}"
    if kind == ActionKind.OPEN_URL.value:
        return "Opening URL in browser"
    return f"Executing: {kind}"


class WorkflowOrchestrator:
    """
    Session coordinator.

    Responsibilities:
    - Create sessions
    - Run the oracle/router loop for a session
    - Stuck detection and clarification escalation
    - Cancellation

    Collaborators are duck-typed:
    - router.execute(action, cancel_token) -> ExecutionResult
    - oracle.decide(history, goal) -> Decision
    - screen_provider.current_elements() -> list[ScreenElement] | str
    """

    def __init__(
        self,
        router,
        oracle,
        screen_provider,
        settings: Optional[OrchestratorSettings] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.router = router
        self.oracle = oracle
        self.screen_provider = screen_provider
        self.settings = settings or OrchestratorSettings()
        self._sleep = sleep
        self._logger = logging.getLogger("droidpilot.orchestrator")

    def create_session(self, session_id: Optional[str] = None) -> WorkflowSession:
        """Create an Idle session bound to this orchestrator."""
        session = WorkflowSession(
            self,
            session_id=session_id,
            max_history_turns=self.settings.max_history_turns,
            event_queue_size=self.settings.event_queue_size,
        )
        self._logger.info(f"Created session {session.id}")
        return session

    # Control surface

    def start(
        self,
        session: WorkflowSession,
        goal: str,
        prior_history: Optional[Sequence[Union[ConversationTurn, str]]] = None
    ) -> WorkflowState:
        """
        Idle|Completed|Error -> Running(1) and run until a stopping state.

        Raises:
            ValueError: If the session is running or awaiting clarification
        """
        if not goal or not goal.strip():
            raise ValueError("Goal must not be empty")

        with SessionContext(session.id):
            self._require_startable(session)
            with session.run_lock:
                with session.lock:
                    self._require_startable(session)

                    token = CancellationToken(session.id)
                    session.token = token
                    session.goal = goal
                    session.iteration = 1
                    session.consecutive_failures = 0
                    session.history.clear()

                    for turn in prior_history or []:
                        if isinstance(turn, ConversationTurn):
                            session.history.extend([turn])
                        else:
                            session.history.add_user_turn(str(turn))
                    session.history.add_user_turn(goal)

                    session.state_machine.transition(
                        Running(1, "Starting..."), f"Started: {goal}"
                    )

                self._logger.info(f"Session started with goal: {goal}")
                return self._run(session, token)

    def resume(self, session: WorkflowSession, user_input: str) -> WorkflowState:
        """
        NeedsClarification -> Running(iteration) and continue the loop.

        Raises:
            ValueError: If the session is not awaiting clarification
        """
        with SessionContext(session.id):
            self._require_clarification(session)
            with session.run_lock:
                with session.lock:
                    self._require_clarification(session)

                    token = CancellationToken(session.id)
                    session.token = token
                    session.history.add_user_turn(user_input)
                    session.consecutive_failures = 0

                    session.state_machine.transition(
                        Running(session.iteration, "Resuming with user input..."),
                        "Clarification provided",
                    )

                self._logger.info(f"Session resumed at iteration {session.iteration}")
                return self._run(session, token)

    @staticmethod
    def _require_startable(session: WorkflowSession) -> None:
        if session.state.kind not in (StateKind.IDLE, StateKind.COMPLETED, StateKind.ERROR):
            raise ValueError(f"Cannot start session in state {session.state.kind.name}")

    @staticmethod
    def _require_clarification(session: WorkflowSession) -> None:
        if session.state.kind != StateKind.NEEDS_CLARIFICATION:
            raise ValueError(f"Cannot resume session in state {session.state.kind.name}")

    def cancel(self, session: WorkflowSession) -> None:
        """Any state -> Idle; history cleared, counters reset."""
        with SessionContext(session.id):
            with session.lock:
                session.token.cancel()
                session.history.clear()
                session.iteration = 0
                session.consecutive_failures = 0
                if session.state.kind != StateKind.IDLE:
                    session.state_machine.reset("Cancelled")
            self._logger.info("Session cancelled")

    # Loop

    def _run(self, session: WorkflowSession, token: CancellationToken) -> WorkflowState:
        try:
            self._loop(session, token)
        except SessionCancelledError:
            self._logger.info("Loop exited after cancellation")
        except Exception as e:
            message = str(e) or type(e).__name__
            self._logger.error(f"Session aborted: {message}")
            try:
                self._set_state(session, token, Error(message), f"Exception: {type(e).__name__}")
            except SessionCancelledError:
                self._logger.info("Cancelled before the error could be recorded")

        state = session.state
        log_session_end(
            session.id,
            state.kind.name,
            session.iteration,
            message=state.message if state.kind == StateKind.ERROR else None,
        )
        return state

    def _loop(self, session: WorkflowSession, token: CancellationToken) -> None:
        max_iterations = self.settings.max_iterations

        while session.iteration <= max_iterations:
            token.raise_if_cancelled()
            iteration = session.iteration
            self._set_state(session, token, Running(iteration, PLANNING_DESCRIPTION), "Iteration start")

            screen = self.screen_provider.current_elements()
            token.raise_if_cancelled()
            with self._mutating(session, token):
                session.history.add_screen_turn(format_screen_context(screen))

            decision = self.oracle.decide(session.history.turns, session.goal)
            token.raise_if_cancelled()

            text = decision.text or ""
            if text.strip():
                with self._mutating(session, token):
                    session.history.add_assistant_turn(text)

            if needs_clarification(text):
                self._set_state(
                    session, token,
                    NeedsClarification(iteration, extract_clarification_question(text), text),
                    "Oracle asked for clarification",
                )
                return

            if not decision.actions:
                self._set_state(session, token, Completed(text), "Oracle reported completion")
                return

            for action in decision.actions:
                if self._run_action(session, token, iteration, action):
                    return

            with self._mutating(session, token):
                session.iteration += 1

        self._set_state(session, token, Error(MAX_ITERATIONS_MESSAGE), "Iteration budget exhausted")

    def _run_action(
        self,
        session: WorkflowSession,
        token: CancellationToken,
        iteration: int,
        action: Action
    ) -> bool:
        """Route one action. True means the loop must stop (clarification)."""
        self._set_state(session, token, Running(iteration, describe_action(action)), "Executing action")

        result = self.router.execute(action, cancel_token=token)
        token.raise_if_cancelled()
        result_text = result.summary()

        with self._mutating(session, token):
            session.history.add_action_turn(
                action.kind, result_text, result.success, call_id=action.call_id
            )
            if is_stuck(result_text):
                session.consecutive_failures += 1
            else:
                session.consecutive_failures = 0
            failures = session.consecutive_failures

        session.events.emit(WorkflowEvent(
            session_id=session.id,
            kind=EventKind.ACTION,
            iteration=iteration,
            description=result_text,
        ))

        if failures >= self.settings.stuck_threshold:
            self._logger.warning(f"Stuck after {failures} consecutive failures")
            self._set_state(
                session, token,
                NeedsClarification(iteration, STUCK_QUESTION, result_text),
                "Stuck detection",
            )
            return True

        self._settle(token)
        return False

    def _settle(self, token: CancellationToken) -> None:
        """Let the screen update after an action."""
        seconds = self.settings.action_settle_ms / 1000.0
        if self._sleep is not None:
            token.raise_if_cancelled()
            self._sleep(seconds)
            token.raise_if_cancelled()
        else:
            token.sleep(seconds)

    def _set_state(
        self,
        session: WorkflowSession,
        token: CancellationToken,
        state: WorkflowState,
        reason: str
    ) -> None:
        with self._mutating(session, token):
            session.state_machine.transition(state, reason)

    @contextmanager
    def _mutating(self, session: WorkflowSession, token: CancellationToken):
        """Session lock that refuses entry once the run's token is cancelled."""
        with session.lock:
            token.raise_if_cancelled()
            yield session
