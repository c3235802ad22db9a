"""
Oracle Interfaces
-----------------
Data exchanged with the decision oracle and the screen context provider.

Both collaborators are duck-typed:
- oracle.decide(history, goal) -> Decision
- screen_provider.current_elements() -> list[ScreenElement] | str
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from execution.actions import Action


class OracleError(Exception):
    """The oracle could not produce a decision (transport, auth, bad reply)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ScreenProviderError(Exception):
    """The screen context could not be read."""


@dataclass
class Decision:
    """
    One oracle reply.

    `actions` empty means the oracle considers the goal achieved.
    """
    text: str = ""
    actions: List[Action] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return not self.actions

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "actions": [a.to_dict() for a in self.actions]}


@dataclass(frozen=True)
class ScreenElement:
    """A visible UI node worth reporting to the oracle."""
    class_name: str
    text: str
    bounds: tuple  # (left, top, right, bottom)
    clickable: bool = False
    editable: bool = False
    resource_id: Optional[str] = None

    @property
    def center_x(self) -> int:
        return (self.bounds[0] + self.bounds[2]) // 2

    @property
    def center_y(self) -> int:
        return (self.bounds[1] + self.bounds[3]) // 2

    def describe(self, index: int) -> str:
        interactivity = "clickable" if self.clickable else "not clickable"
        return (
            f"[{index}] {self.class_name}: \"{self.text}\" at "
            f"({self.center_x}, {self.center_y}) - {interactivity}"
        )


EMPTY_SCREEN_TEXT = "Screen appears empty or inaccessible."


def format_screen_context(context: Union[str, Sequence[ScreenElement], None]) -> str:
    """Render provider output as the text appended to session history."""
    if context is None:
        return EMPTY_SCREEN_TEXT
    if isinstance(context, str):
        return context

    elements = list(context)
    if not elements:
        return EMPTY_SCREEN_TEXT

    lines = ["Screen elements (id, type, text, bounds, clickable):"]
    lines.extend(element.describe(i) for i, element in enumerate(elements))
    return "\n".join(lines)
