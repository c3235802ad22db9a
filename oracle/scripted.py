"""
Scripted Oracle
---------------
Deterministic DecisionOracle that replays a fixed list of decisions.

Scripts can be built in code or loaded from YAML:

    decisions:
      - text: "Opening the settings app"
        actions:
          - {kind: launch, parameters: {package: com.android.settings}}
      - text: "Settings is open."
"""

from pathlib import Path
from typing import Any, Dict, List, Sequence, Union
import logging

import yaml

from execution.actions import Action
from memory.conversation import ConversationTurn

from .interfaces import Decision, OracleError


class ScriptedOracle:
    """
    Returns the scripted decisions in order.

    When the script is exhausted the last decision repeats if
    `repeat_last` is set, otherwise a final "Done." decision is returned.
    Exceptions in the script are raised at their turn.
    """

    def __init__(
        self,
        decisions: Sequence[Union[Decision, BaseException]],
        repeat_last: bool = False
    ):
        self._decisions = list(decisions)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []
        self._logger = logging.getLogger("droidpilot.oracle.scripted")

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def decide(self, history: Sequence[ConversationTurn], goal: str) -> Decision:
        index = len(self.calls)
        self.calls.append({"goal": goal, "history_length": len(history)})

        if index < len(self._decisions):
            item = self._decisions[index]
        elif self.repeat_last and self._decisions:
            item = self._decisions[-1]
        else:
            item = Decision(text="Done.")

        if isinstance(item, BaseException):
            raise item

        self._logger.debug(f"Decision {index + 1}: {item.text!r} ({len(item.actions)} actions)")
        return item

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptedOracle":
        entries = data.get("decisions")
        if not isinstance(entries, list):
            raise ValueError("Oracle script requires a 'decisions' list")

        decisions = []
        for entry in entries:
            entry = entry or {}
            actions = [Action.from_dict(a) for a in entry.get("actions") or []]
            decisions.append(Decision(text=str(entry.get("text", "")), actions=actions))

        return cls(decisions, repeat_last=bool(data.get("repeat_last", False)))

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ScriptedOracle":
        """Load a script file."""
        script_path = Path(path)
        if not script_path.exists():
            raise OracleError(f"Oracle script not found: {script_path}")

        with open(script_path, "r") as f:
            data = yaml.safe_load(f) or {}

        oracle = cls.from_dict(data)
        oracle._logger.info(f"Loaded {len(oracle._decisions)} scripted decisions from {script_path}")
        return oracle
