"""
Stub Methods
------------
Deterministic methods for dry runs, demos and tests.
"""

from typing import Iterable, List, Optional, Sequence, Union
import logging

from .actions import Action, ActionKind
from .methods import ExecutionMethod, RawResult


Response = Union[RawResult, str, BaseException]


class ScriptedMethod(ExecutionMethod):
    """
    ExecutionMethod that replays scripted responses.

    Each response is a RawResult, a string (treated as a failure message)
    or an exception instance (raised). Once the script runs out, the last
    response repeats; with no script every call succeeds.

    Example:
        ScriptedMethod("root", 800, {"tap"}, ["permission denied"])
    """

    def __init__(
        self,
        id: str,
        priority: int,
        supported_actions: Iterable[str],
        responses: Optional[Sequence[Response]] = None,
        available: bool = True
    ):
        self.responses: List[Response] = list(responses or [])
        self.available = available
        self.calls: List[Action] = []
        self.probe_count = 0
        super().__init__(
            id=id,
            priority=priority,
            supported_actions=frozenset(supported_actions),
            executor=self._replay,
            probe=self._probe,
            description="Scripted responses",
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _probe(self) -> bool:
        self.probe_count += 1
        return self.available

    def _replay(self, action: Action) -> RawResult:
        index = len(self.calls)
        self.calls.append(action)

        if not self.responses:
            return RawResult.ok(f"{self.id} performed {action.describe()}")

        response = self.responses[min(index, len(self.responses) - 1)]
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, str):
            return RawResult.fail(response)
        return response


def dry_run_method(priority: int = 0) -> ExecutionMethod:
    """Accepts every known kind and performs nothing."""
    logger = logging.getLogger("droidpilot.dry_run")

    def execute(action: Action) -> RawResult:
        logger.info(f"[DRY RUN] {action.describe()}")
        return RawResult.ok(f"[DRY RUN] Would execute {action.describe()}")

    return ExecutionMethod(
        id="dry_run",
        priority=priority,
        supported_actions=frozenset(k.value for k in ActionKind),
        executor=execute,
        description="Logs actions without touching a device",
    )
