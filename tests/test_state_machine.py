"""
State Machine Tests
-------------------
Tests for workflow session states and their transitions.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.state_machine import (
    Completed, Error, Idle, NeedsClarification, Running,
    StateKind, WorkflowStateMachine,
)


class TestStates:

    def test_initial_state_is_idle(self):
        machine = WorkflowStateMachine()

        assert machine.state == Idle()
        assert machine.kind == StateKind.IDLE
        assert not machine.is_busy()

    def test_states_serialize(self):
        assert Running(2, "Tapping at (1, 2)").to_dict() == {
            "state": "running", "step": 2, "description": "Tapping at (1, 2)",
        }
        assert NeedsClarification(3, "Which one?").to_dict()["question"] == "Which one?"
        assert Completed("done").to_dict() == {"state": "completed", "result": "done"}
        assert Error("boom").to_dict() == {"state": "error", "message": "boom"}

    def test_states_are_immutable(self):
        state = Running(1, "x")

        with pytest.raises(Exception):
            state.step = 2


class TestTransitions:

    def test_happy_path(self):
        machine = WorkflowStateMachine()

        machine.transition(Running(1, "Starting..."), "start")
        machine.transition(Running(1, "Tapping"), "action")
        machine.transition(NeedsClarification(1, "Which one?"), "ask")
        machine.transition(Running(1, "Resuming"), "answer")
        machine.transition(Completed("All set"), "done")

        assert machine.state == Completed("All set")
        assert len(machine.history) == 5

    @pytest.mark.parametrize("setup,target", [
        ([], Completed("x")),
        ([], NeedsClarification(1, "?")),
        ([], Error("x")),
        ([Running(1, "a"), NeedsClarification(1, "?")], Completed("x")),
        ([Running(1, "a"), Completed("x")], Error("y")),
    ])
    def test_invalid_transitions(self, setup, target):
        machine = WorkflowStateMachine()
        for state in setup:
            machine.transition(state, "setup")

        with pytest.raises(ValueError, match="Invalid transition"):
            machine.transition(target, "bad")

    def test_terminal_states_can_restart(self):
        machine = WorkflowStateMachine()
        machine.transition(Running(1, "a"), "start")
        machine.transition(Error("boom"), "fail")

        machine.transition(Running(1, "again"), "restart")

        assert machine.kind == StateKind.RUNNING

    def test_reset_from_any_state(self):
        machine = WorkflowStateMachine()
        machine.transition(Running(1, "a"), "start")
        machine.transition(NeedsClarification(1, "?"), "ask")

        machine.reset("Cancelled")

        assert machine.state == Idle()
        assert machine.history[-1].reason == "Cancelled"

    def test_transition_if(self):
        machine = WorkflowStateMachine()

        assert machine.transition_if(StateKind.RUNNING, Completed("x"), "skip") is None
        assert machine.transition_if(StateKind.IDLE, Running(1, "a"), "go") is not None
        assert machine.kind == StateKind.RUNNING

    def test_history_is_bounded(self):
        machine = WorkflowStateMachine(max_history=3)
        machine.transition(Running(1, "a"), "start")
        for i in range(10):
            machine.transition(Running(1, str(i)), "step")

        assert len(machine.history) == 3
        assert "State Transition History" in machine.get_history_summary()


class TestListeners:

    def test_listener_receives_transitions(self):
        machine = WorkflowStateMachine()
        seen = []
        machine.add_listener(seen.append)

        machine.transition(Running(1, "a"), "start")

        assert len(seen) == 1
        assert seen[0].from_state == Idle()
        assert seen[0].to_state == Running(1, "a")

    def test_listener_errors_do_not_break_transitions(self):
        machine = WorkflowStateMachine()

        def broken(transition):
            raise RuntimeError("listener bug")

        machine.add_listener(broken)
        machine.transition(Running(1, "a"), "start")

        assert machine.kind == StateKind.RUNNING

    def test_remove_listener(self):
        machine = WorkflowStateMachine()
        seen = []
        machine.add_listener(seen.append)
        machine.remove_listener(seen.append)

        machine.transition(Running(1, "a"), "start")

        assert seen == []
